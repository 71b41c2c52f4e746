"""
Voice Synthesis Service for the Intelligent Podcast Generator.
Synthesizes every dialogue segment and predicted answer with the voice of
its speaker, isolating per-item failures.
"""

import inspect
import re
from typing import List, Optional, Callable, Any

from models.entities import PodcastSegment, PredictedQuestion, VoiceProfile, SpeakerRole
from services.ai_clients import SpeechSynthesizer
from services.audio_format import WavFormat, pcm_duration
from services.blob_fetch import AudioFetcher
from services.script_planner import estimate_seconds
from errors import StageFailure, SegmentSynthesisError
from config import get_settings, get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, Optional[str]], Any]


def clean_tts_text(text: str, max_chars: int) -> str:
    """
    Make text safe to read aloud.

    Strips markdown emphasis, headings and bullets, collapses whitespace and
    truncates to ``max_chars``, preferring a sentence boundary.
    """
    text = text or ""
    text = re.sub(r'^\s{0,3}#{1,6}\s*', '', text, flags=re.MULTILINE)
    text = re.sub(r'^\s*(?:[-*+]|\d+\.)\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'(\*\*|__|\*|_|`)(.+?)\1', r'\2', text)
    text = re.sub(r'\[([^\]]+)\]\([^)]*\)', r'\1', text)
    text = re.sub(r'\s+', ' ', text).strip()

    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    boundary = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
    if boundary > max_chars // 2:
        cut = cut[:boundary + 1]
    return cut.strip()


async def report_progress(
    callback: Optional[ProgressCallback],
    current: int,
    total: int,
    step: Optional[str] = None
) -> None:
    """Invoke an observation-only progress hook, sync or async."""
    if callback is None:
        return
    try:
        result = callback(current, total, step)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Progress hook failed at {current}/{total}: {e}")


class VoiceSynthesizer:
    """
    Service for multi-voice audio synthesis.

    Features:
    - Voice selection by speaker role, falling back to the first profile
    - Text cleanup and length limit before synthesis
    - Duration derived from the synthesized PCM sample count
    - Per-item failure isolation (failed items keep no audio, duration 0)
    - Input order preserved, items processed sequentially
    """

    def __init__(
        self,
        speech_synthesizer: SpeechSynthesizer,
        fetcher: AudioFetcher,
        wav_format: WavFormat = None
    ):
        self.settings = get_settings()
        self.speech_synthesizer = speech_synthesizer
        self.fetcher = fetcher
        self.wav_format = wav_format or WavFormat.from_settings()

    @staticmethod
    def select_profile(role: SpeakerRole, voice_profiles: List[VoiceProfile]) -> VoiceProfile:
        for profile in voice_profiles:
            if profile.role == role:
                return profile
        return voice_profiles[0]

    async def synthesize_clip(self, text: str, language: str, profile: VoiceProfile):
        """
        Synthesize one clip and measure it.

        Returns:
            Tuple of (audio_url, duration_seconds)
        """
        cleaned = clean_tts_text(text, self.settings.tts_max_chars)
        audio_url = await self.speech_synthesizer.synthesize(cleaned, language, profile.voice_id)
        if not audio_url:
            raise ValueError("Synthesis returned no asset reference")

        asset = await self.fetcher.fetch(audio_url)
        if asset.is_wav:
            duration = pcm_duration(asset.content, self.wav_format)
        else:
            # Compressed assets carry no canonical header to count samples from
            duration = estimate_seconds(cleaned, self.settings.words_per_minute)
        return audio_url, duration

    async def generate_multi_voice_audio(
        self,
        segments: List[PodcastSegment],
        voice_profiles: List[VoiceProfile],
        language: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[PodcastSegment]:
        """
        Synthesize audio for every segment.

        Args:
            segments: Script segments in playback order
            voice_profiles: One profile per dialogue role
            language: ISO 639-1 code
            on_progress: Optional hook called with (current, total, step)

        Returns:
            New segment list, same order, with audio_url and duration set
        """
        if not voice_profiles:
            raise StageFailure("synthesis", "No voice profiles configured")

        total = len(segments)
        logger.info(f"Synthesizing {total} segments in {language}")
        processed: List[PodcastSegment] = []
        succeeded = 0

        for i, segment in enumerate(segments):
            number = i + 1

            if not segment.text or not segment.text.strip():
                logger.warning(f"Segment {number}/{total} has empty text, skipping")
                processed.append(segment.model_copy(update={
                    "audio_url": None, "duration": 0.0, "audio_error": "empty text"
                }))
                await report_progress(on_progress, number, total, f"Segment {number}/{total} skipped")
                continue

            profile = self.select_profile(segment.speaker, voice_profiles)
            try:
                audio_url, duration = await self.synthesize_clip(segment.text, language, profile)
            except Exception as e:
                failure = SegmentSynthesisError(segment.id, str(e))
                logger.error(f"Segment {number}/{total} failed: {failure.message}")
                processed.append(segment.model_copy(update={
                    "audio_url": None, "duration": 0.0, "audio_error": failure.message
                }))
                await report_progress(on_progress, number, total, f"Segment {number}/{total} failed (continuing)")
                continue

            succeeded += 1
            processed.append(segment.model_copy(update={
                "audio_url": audio_url, "duration": duration, "audio_error": None
            }))
            logger.debug(f"Segment {number}/{total} done: {duration:.1f}s ({profile.name})")
            await report_progress(on_progress, number, total, f"Segment {number}/{total} audio generated")

        logger.info(f"Synthesis complete: {succeeded}/{total} segments with audio")
        return processed

    async def generate_predicted_questions_audio(
        self,
        questions: List[PredictedQuestion],
        language: str,
        host_profile: VoiceProfile,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[PredictedQuestion]:
        """Pre-synthesize each predicted answer in the host's voice."""
        total = len(questions)
        processed: List[PredictedQuestion] = []

        for i, question in enumerate(questions):
            number = i + 1
            if not question.answer.strip():
                processed.append(question.model_copy(update={"audio_url": None, "audio_error": "empty text"}))
                await report_progress(on_progress, number, total, None)
                continue
            try:
                audio_url, _ = await self.synthesize_clip(question.answer, language, host_profile)
                processed.append(question.model_copy(update={"audio_url": audio_url, "audio_error": None}))
            except Exception as e:
                failure = SegmentSynthesisError(question.id, str(e))
                logger.error(f"Predicted question {number}/{total} failed: {failure.message}")
                processed.append(question.model_copy(update={"audio_url": None, "audio_error": failure.message}))
            await report_progress(on_progress, number, total, None)

        logger.info(f"Predicted question audio complete for {total} questions")
        return processed
