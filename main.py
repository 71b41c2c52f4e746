"""
Intelligent Podcast Generator - Main Orchestrator

This is the main entry point for the podcast generation pipeline.
It coordinates knowledge extraction, script planning, voice synthesis,
persistence, semantic search and audio downloads.
"""

import asyncio
import inspect
import json
import sys
import uuid
from datetime import timedelta
from pathlib import Path
from typing import List, Dict, Any, Optional, Callable
import argparse

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config import get_settings, LogConfig, get_logger
from errors import PodcastError, InputError, NotFoundError, StageFailure
from models.entities import (
    AudioDownload,
    GenerationConfig,
    IntelligentPodcast,
    PodcastStatus,
    PodcastStyle,
    SearchResponse,
    SpeakerRole,
    VoiceProfile
)
from services.ai_clients import (
    TextGenerator,
    Embedder,
    SpeechSynthesizer,
    OpenAITextGenerator,
    OpenAISpeechSynthesizer,
    build_embedder
)
from services.audio_assembly import AudioAssembler
from services.audio_format import WavFormat
from services.blob_fetch import AudioFetcher
from services.cache import TTLCache
from services.document_provider import DocumentProvider, DirectoryDocumentProvider
from services.knowledge_extraction import KnowledgeExtractor
from services.podcast_store import PodcastStore, build_store
from services.script_planner import ScriptPlanner, recompute_timings, annotate_first_mentions
from services.semantic_search import SemanticSearchEngine
from services.voice_synthesis import VoiceSynthesizer

# Initialize logging
settings = get_settings()
LogConfig.setup_logging(settings.log_level)
logger = get_logger(__name__)


# Default voices per synthesis provider
DEFAULT_VOICES: Dict[str, List[Dict[str, str]]] = {
    "openai": [
        {
            "role": "host",
            "name": "Sophie",
            "voice_id": "nova",
            "description": "Warm, curious host who guides the conversation",
        },
        {
            "role": "expert",
            "name": "Marcus",
            "voice_id": "onyx",
            "description": "Knowledgeable expert who explains concepts in depth",
        },
        {
            "role": "simplifier",
            "name": "Emma",
            "voice_id": "shimmer",
            "description": "Friendly explainer who breaks down complex ideas with analogies",
        },
    ],
}


def default_voice_profiles(provider: str = "openai") -> List[VoiceProfile]:
    """Build the host/expert/simplifier profiles for a provider."""
    voices = DEFAULT_VOICES.get((provider or "").lower())
    if voices is None:
        raise InputError(f"Unknown voice provider: {provider}")
    return [
        VoiceProfile(
            id=f"{provider}-{voice['role']}",
            role=SpeakerRole(voice["role"]),
            name=voice["name"],
            provider=provider,
            voice_id=voice["voice_id"],
            description=voice["description"]
        )
        for voice in voices
    ]


class IntelligentPodcastSystem:
    """
    Main orchestrator for the Intelligent Podcast Generator.

    Coordinates the entire pipeline:
    1. Document loading
    2. Knowledge graph extraction and language detection
    3. Chapter and multi-voice dialogue planning
    4. Per-segment voice synthesis
    5. Predicted question audio
    6. Write-once persistence
    """

    def __init__(
        self,
        documents: DocumentProvider = None,
        store: PodcastStore = None,
        text_generator: TextGenerator = None,
        embedder: Embedder = None,
        speech_synthesizer: SpeechSynthesizer = None,
        fetcher: AudioFetcher = None,
        encoding=None
    ):
        """
        Initialize the system.

        Every collaborator can be injected; missing ones are built from
        settings.
        """
        self.settings = get_settings()

        self.text_generator = text_generator or OpenAITextGenerator()
        self.embedder = embedder or build_embedder()
        self.speech_synthesizer = speech_synthesizer or OpenAISpeechSynthesizer()
        self.fetcher = fetcher or AudioFetcher(cache=TTLCache(
            self.settings.asset_cache_ttl_seconds,
            self.settings.asset_cache_max_entries
        ))
        self.documents = documents or DirectoryDocumentProvider()
        self.store = store or build_store()

        wav_format = WavFormat.from_settings()
        self.extractor = KnowledgeExtractor(self.text_generator, self.embedder, encoding=encoding)
        self.planner = ScriptPlanner(self.text_generator)
        self.voices = VoiceSynthesizer(self.speech_synthesizer, self.fetcher, wav_format)
        self.assembler = AudioAssembler(self.fetcher, wav_format)
        self.search_engine = SemanticSearchEngine(self.extractor)

        logger.info("Intelligent Podcast System initialized")

    async def generate(
        self,
        owner_id: str,
        document_ids: List[str],
        target_duration: float = 30,
        language: Optional[str] = None,
        style: str = "conversational",
        voice_provider: str = "openai",
        user_prompt: str = "",
        number_of_predicted_questions: Optional[int] = None,
        progress_callback: Optional[Callable[[int, str], Any]] = None
    ) -> Dict[str, Any]:
        """
        Complete pipeline for generating one podcast.

        Args:
            owner_id: Caller identity; the podcast is owned by it
            document_ids: Source documents, in order
            target_duration: Target length in minutes
            language: ISO 639-1 code, or None/"auto" to detect
            style: educational, conversational, technical or storytelling
            voice_provider: Synthesis provider for the default voices
            user_prompt: Optional listener request passed to the planner
            number_of_predicted_questions: Override the default count
            progress_callback: Optional callback(percent, message)

        Returns:
            Summary dict of the stored podcast
        """
        if not owner_id:
            raise InputError("owner_id is required")
        if not document_ids:
            raise InputError("At least one document id is required")
        if target_duration is None or target_duration <= 0:
            raise InputError("target_duration must be positive")
        try:
            podcast_style = PodcastStyle((style or "conversational").lower())
        except ValueError as e:
            raise InputError(f"Unknown style: {style}") from e
        voice_profiles = default_voice_profiles(voice_provider)

        documents = self.documents.get_documents(document_ids)
        podcast_id = str(uuid.uuid4())

        async def update_progress(percent: int, message: str):
            logger.info(f"[{podcast_id[:8]}] {percent}% - {message}")
            if progress_callback:
                result = progress_callback(percent, message)
                if inspect.isawaitable(result):
                    await result

        # Step 1: Knowledge graph
        await update_progress(10, "Extracting knowledge graph...")
        try:
            extraction = await self.extractor.extract_and_analyze(documents, language=language)
        except Exception as e:
            logger.error(f"Extraction failed for {podcast_id}: {e}")
            raise StageFailure("extraction", str(e)) from e
        graph = extraction.graph
        podcast_language = extraction.detected_language

        # Step 2: Script
        await update_progress(35, f"Planning script over {len(graph.concepts)} concepts...")
        config = GenerationConfig(
            target_duration=target_duration,
            language=podcast_language,
            style=podcast_style,
            voice_profiles=voice_profiles,
            number_of_predicted_questions=number_of_predicted_questions,
            user_prompt=user_prompt or ""
        )
        try:
            script = await self.planner.generate_intelligent_script(documents, graph, config)
        except Exception as e:
            logger.error(f"Planning failed for {podcast_id}: {e}")
            raise StageFailure("planning", str(e)) from e

        # Step 3: Segment audio
        await update_progress(50, f"Synthesizing {len(script.segments)} segments...")

        async def segment_progress(current: int, total: int, step: Optional[str]):
            percent = 50 + int(40 * current / total) if total else 90
            await update_progress(percent, step or f"Segment {current}/{total}")

        try:
            segments = await self.voices.generate_multi_voice_audio(
                script.segments, voice_profiles, podcast_language, on_progress=segment_progress
            )
        except StageFailure:
            raise
        except Exception as e:
            logger.error(f"Synthesis failed for {podcast_id}: {e}")
            raise StageFailure("synthesis", str(e)) from e

        chapters = script.chapters
        total_seconds = recompute_timings(chapters, segments)
        annotate_first_mentions(graph, segments)

        # Step 4: Predicted question audio
        await update_progress(90, f"Synthesizing {len(script.predicted_questions)} predicted answers...")

        async def question_progress(current: int, total: int, step: Optional[str]):
            percent = 90 + int(5 * current / total) if total else 95
            await update_progress(percent, f"Predicted answer {current}/{total}")

        host = self.voices.select_profile(SpeakerRole.HOST, voice_profiles)
        try:
            questions = await self.voices.generate_predicted_questions_audio(
                script.predicted_questions, podcast_language, host, on_progress=question_progress
            )
        except Exception as e:
            logger.error(f"Predicted question synthesis failed for {podcast_id}: {e}")
            raise StageFailure("synthesis", str(e)) from e

        # Step 5: Persist once, already complete
        podcast = IntelligentPodcast(
            id=podcast_id,
            owner_id=owner_id,
            title=script.title,
            description=script.description,
            duration=round(total_seconds),
            language=podcast_language,
            document_ids=list(document_ids),
            knowledge_graph=graph,
            chapters=chapters,
            segments=segments,
            predicted_questions=questions,
            status=PodcastStatus.READY,
            generation_progress=100
        )
        self.store.create(podcast)
        await update_progress(100, "Podcast ready")

        missing = len(segments) - len(podcast.audio_segments)
        if missing:
            logger.warning(f"Podcast {podcast_id} is ready with {missing} segments missing audio")
        logger.info(f"✓ Generated: {podcast.title} ({podcast.duration}s, {len(segments)} segments)")

        return self.summarize(podcast)

    @staticmethod
    def summarize(podcast: IntelligentPodcast) -> Dict[str, Any]:
        return {
            "id": podcast.id,
            "title": podcast.title,
            "description": podcast.description,
            "duration": podcast.duration,
            "chapterCount": len(podcast.chapters),
            "segmentCount": len(podcast.segments),
            "predictedQuestionCount": len(podcast.predicted_questions),
            "status": podcast.status.value,
        }

    def get_podcast(self, owner_id: str, podcast_id: str) -> IntelligentPodcast:
        """Load a podcast owned by the caller."""
        podcast = self.store.get(podcast_id)
        if podcast is None or podcast.owner_id != owner_id:
            raise NotFoundError("Podcast not found")
        return podcast

    async def search(self, owner_id: str, podcast_id: str, query: str) -> SearchResponse:
        """Search a podcast for segments relevant to a query."""
        if not query or not query.strip():
            raise InputError("Query is required")
        podcast = self.get_podcast(owner_id, podcast_id)
        return await self.search_engine.search(podcast, query)

    async def download_wav(self, owner_id: str, podcast_id: str) -> AudioDownload:
        """Assemble the single-file WAV of a ready podcast."""
        return await self.assembler.build_wav(self.get_podcast(owner_id, podcast_id))

    async def download_zip(self, owner_id: str, podcast_id: str) -> AudioDownload:
        """Assemble the zip bundle of a ready podcast."""
        return await self.assembler.build_zip_bundle(self.get_podcast(owner_id, podcast_id))

    def reconcile_abandoned(self, deadline_minutes: float = None) -> int:
        """Mark podcasts stuck in generating past the deadline as error."""
        minutes = deadline_minutes or self.settings.generation_deadline_minutes
        return self.store.reconcile_abandoned(timedelta(minutes=minutes))

    def close(self):
        """Close all connections."""
        self.store.close()
        logger.info("System connections closed")


def save_download(download: AudioDownload, output_dir: str) -> Path:
    """Write an assembled download to disk."""
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / download.filename
    path.write_bytes(download.content)
    return path


# CLI Interface
def main():
    parser = argparse.ArgumentParser(
        description="Intelligent Podcast Generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a podcast from documents in DOCUMENTS_DIR
  python main.py --generate lecture-1 lecture-2 --duration 15 --language auto

  # Search a generated podcast
  python main.py --search <podcast-id> "gradient descent"

  # Download the podcast audio
  python main.py --download-wav <podcast-id>
  python main.py --download-zip <podcast-id>

  # Mark podcasts stuck in generating as error
  python main.py --reconcile
        """
    )

    parser.add_argument("--generate", nargs="+", metavar="DOCUMENT_ID", help="Generate a podcast from documents")
    parser.add_argument("--search", nargs=2, metavar=("PODCAST_ID", "QUERY"), help="Search a podcast")
    parser.add_argument("--download-wav", metavar="PODCAST_ID", help="Download the podcast as one WAV file")
    parser.add_argument("--download-zip", metavar="PODCAST_ID", help="Download segments and transcript as zip")
    parser.add_argument("--reconcile", action="store_true", help="Mark abandoned generations as error")

    parser.add_argument("--owner", default="local", help="Owner id")
    parser.add_argument("--duration", type=float, default=30, help="Target duration in minutes")
    parser.add_argument("--language", default="auto", help="ISO 639-1 code or 'auto'")
    parser.add_argument("--style", default="conversational", help="Podcast style")
    parser.add_argument("--voice-provider", default="openai", help="Voice provider")
    parser.add_argument("--prompt", default="", help="Extra listener request")
    parser.add_argument("--output", default=settings.output_dir, help="Download directory")

    args = parser.parse_args()

    if not (args.generate or args.search or args.download_wav or args.download_zip or args.reconcile):
        parser.print_help()
        return

    system = IntelligentPodcastSystem()

    try:
        if args.generate:
            result = asyncio.run(system.generate(
                owner_id=args.owner,
                document_ids=args.generate,
                target_duration=args.duration,
                language=args.language,
                style=args.style,
                voice_provider=args.voice_provider,
                user_prompt=args.prompt
            ))
            print(json.dumps(result, indent=2))

        elif args.search:
            podcast_id, query = args.search
            response = asyncio.run(system.search(args.owner, podcast_id, query))
            print("\n" + "="*60)
            print(f"Query: {response.query}")
            print("="*60)
            for result in response.results:
                minutes, seconds = divmod(int(result.timestamp), 60)
                print(f"  [{minutes:02d}:{seconds:02d}] {result.relevance:.2f}  {result.snippet}")
            if not response.results:
                print("  No matching segments")
            print("="*60)

        elif args.download_wav or args.download_zip:
            if args.download_wav:
                download = asyncio.run(system.download_wav(args.owner, args.download_wav))
            else:
                download = asyncio.run(system.download_zip(args.owner, args.download_zip))
            path = save_download(download, args.output)
            print(f"Saved {len(download.content)} bytes to {path}")

        elif args.reconcile:
            count = system.reconcile_abandoned()
            print(f"Reconciled {count} abandoned podcasts")

    except PodcastError as e:
        logger.error(f"✗ {e.message}")
        print(json.dumps(e.to_dict(), indent=2))
        sys.exit(1)

    finally:
        system.close()


if __name__ == "__main__":
    main()
