"""
Audio Assembly Service for the Intelligent Podcast Generator.
Builds the downloadable single-file WAV and the zip bundle of segment clips.
"""

import io
import re
import zipfile
from typing import List

from models.entities import AudioDownload, IntelligentPodcast, PodcastSegment
from services.audio_format import WavFormat, build_wav_header, extract_pcm
from services.blob_fetch import AudioFetcher
from errors import NotReadyError, NoAudioAvailableError
from config import get_logger

logger = get_logger(__name__)

FORBIDDEN_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1F]')
MAX_FILENAME_LENGTH = 120


def safe_filename(name: str) -> str:
    """
    Sanitize a podcast title for use as a file name (without extension).

    Forbidden and control characters become ``_``, whitespace runs collapse
    to one space, and the result is cut to 120 characters.
    """
    cleaned = FORBIDDEN_FILENAME_CHARS.sub("_", (name or "").strip())
    cleaned = re.sub(r'\s+', ' ', cleaned)
    cleaned = cleaned[:MAX_FILENAME_LENGTH]
    return cleaned or "podcast"


def build_transcript(segments: List[PodcastSegment]) -> str:
    """Every segment as ``SPEAKER: text``, separated by a blank line."""
    return "\n\n".join(f"{s.speaker.value.upper()}: {s.text}" for s in segments)


class AudioAssembler:
    """
    Service for assembling downloadable audio.

    Features:
    - Single WAV: PCM payloads concatenated in segment order under a fresh header
    - Zip bundle: transcript plus one file per segment clip
    - Sequential fetch in segment order; any fetch failure aborts the build
    - Deterministic output for unchanged assets
    """

    def __init__(self, fetcher: AudioFetcher, wav_format: WavFormat = None):
        self.fetcher = fetcher
        self.wav_format = wav_format or WavFormat.from_settings()

    def _qualifying_segments(self, podcast: IntelligentPodcast) -> List[PodcastSegment]:
        if not podcast.is_ready:
            raise NotReadyError(f"Podcast {podcast.id} is not ready (status: {podcast.status.value})")
        segments = podcast.audio_segments
        if not segments:
            raise NoAudioAvailableError()
        return segments

    async def build_wav(self, podcast: IntelligentPodcast) -> AudioDownload:
        """
        Concatenate every segment's PCM into one WAV file.

        Segments whose asset holds no PCM beyond the 44-byte header are
        skipped. Raises NoAudioAvailableError when nothing is left.
        """
        segments = self._qualifying_segments(podcast)
        logger.info(f"Assembling WAV for {podcast.id} from {len(segments)} segments")

        payloads = []
        for segment in segments:
            asset = await self.fetcher.fetch(segment.audio_url)
            pcm = extract_pcm(asset.content)
            if pcm is None:
                logger.warning(f"Segment {segment.id} asset has no PCM payload ({len(asset.content)} bytes), skipping")
                continue
            payloads.append(pcm)

        if not payloads:
            raise NoAudioAvailableError()

        pcm = b"".join(payloads)
        content = build_wav_header(len(pcm), self.wav_format) + pcm
        logger.info(f"WAV assembled: {len(payloads)} clips, {len(pcm)} PCM bytes")

        return AudioDownload(
            content=content,
            filename=f"{safe_filename(podcast.title)}.wav",
            media_type="audio/wav"
        )

    async def build_zip_bundle(self, podcast: IntelligentPodcast) -> AudioDownload:
        """Bundle the transcript and every segment clip into a deflated zip."""
        segments = self._qualifying_segments(podcast)
        logger.info(f"Assembling zip for {podcast.id} from {len(segments)} segments")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("transcript.txt", build_transcript(podcast.segments))

            for position, segment in enumerate(segments, start=1):
                asset = await self.fetcher.fetch(segment.audio_url)
                extension = "wav" if asset.is_wav else "mp3"
                archive.writestr(f"{position:03d}-{segment.speaker.value}.{extension}", asset.content)

        return AudioDownload(
            content=buffer.getvalue(),
            filename=f"{safe_filename(podcast.title)}.zip",
            media_type="application/zip"
        )
