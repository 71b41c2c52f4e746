"""
Integration Tests for the Intelligent Podcast Generator

Tests the complete pipeline and system integration with fake
text-generation and speech capabilities.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def make_system(documents, text_generator, embedder, speech, encoding, store=None):
    from main import IntelligentPodcastSystem
    from services.document_provider import InMemoryDocumentProvider
    from services.podcast_store import InMemoryPodcastStore

    return IntelligentPodcastSystem(
        documents=InMemoryDocumentProvider(documents),
        store=store or InMemoryPodcastStore(),
        text_generator=text_generator,
        embedder=embedder,
        speech_synthesizer=speech,
        encoding=encoding
    )


class TestPipeline:
    """Test end-to-end generation."""

    @pytest.mark.asyncio
    async def test_generate_two_documents(self, documents, text_generator, embedder, speech, encoding):
        from models.entities import PodcastStatus

        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)

        podcast = system.store.get(summary["id"])
        assert summary["status"] == "ready"
        assert podcast.status == PodcastStatus.READY
        assert podcast.generation_progress == 100
        assert summary["chapterCount"] >= 1
        assert summary["segmentCount"] >= summary["chapterCount"]
        assert 1 <= summary["predictedQuestionCount"] <= 5
        assert summary["duration"] == round(sum(s.duration for s in podcast.segments))
        assert summary["title"] == "How Machines Learn"
        assert podcast.language == "en"
        assert podcast.document_ids == ["doc-nn", "doc-opt"]

    @pytest.mark.asyncio
    async def test_timings_follow_synthesized_audio(self, documents, text_generator, embedder, speech, encoding):
        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)
        podcast = system.store.get(summary["id"])

        t = 0.0
        for segment in podcast.segments:
            assert segment.timestamp == pytest.approx(t)
            t += segment.duration
        assert podcast.chapters[0].start_time == 0.0
        assert podcast.chapters[-1].end_time == pytest.approx(t)
        for previous, chapter in zip(podcast.chapters, podcast.chapters[1:]):
            assert chapter.start_time == previous.end_time

        first = podcast.knowledge_graph.get_concept(podcast.segments[0].concepts[0])
        assert first.first_mentioned_at == 0.0

    @pytest.mark.asyncio
    async def test_failed_segment_is_kept(self, documents, text_generator, embedder, encoding):
        from fakes import FakeSpeechSynthesizer

        speech = FakeSpeechSynthesizer(fail_calls={2})
        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)
        podcast = system.store.get(summary["id"])

        assert summary["status"] == "ready"
        assert podcast.segments[1].audio_url is None
        assert podcast.segments[1].duration == 0.0
        assert podcast.segments[1].audio_error
        assert len(podcast.audio_segments) == len(podcast.segments) - 1
        assert summary["segmentCount"] == len(podcast.segments)

    @pytest.mark.asyncio
    async def test_predicted_answers_synthesized(self, documents, text_generator, embedder, speech, encoding):
        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)
        podcast = system.store.get(summary["id"])

        assert all(q.has_audio for q in podcast.predicted_questions)
        answer_calls = speech.calls[len(podcast.segments):]
        assert len(answer_calls) == len(podcast.predicted_questions)
        assert {voice for _, _, voice in answer_calls} == {"nova"}

    @pytest.mark.asyncio
    async def test_progress_callback(self, documents, text_generator, embedder, speech, encoding):
        system = make_system(documents, text_generator, embedder, speech, encoding)
        seen = []

        await system.generate(
            "user-1", ["doc-nn", "doc-opt"], target_duration=10,
            progress_callback=lambda percent, message: seen.append(percent)
        )

        assert seen[0] == 10
        assert seen == sorted(seen)
        assert seen[-1] == 100
        assert 35 in seen and 50 in seen and 90 in seen

    @pytest.mark.asyncio
    async def test_stage_failure_persists_nothing(self, documents, embedder, speech, encoding):
        from fakes import ScriptedTextGenerator
        from errors import StageFailure
        from services.podcast_store import InMemoryPodcastStore

        store = InMemoryPodcastStore()
        system = make_system(documents, ScriptedTextGenerator(fail_on="outline"), embedder, speech, encoding, store)

        with pytest.raises(StageFailure) as excinfo:
            await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)

        assert excinfo.value.stage == "planning"
        assert len(store._records) == 0
        assert speech.calls == []

    @pytest.mark.asyncio
    async def test_extraction_failure(self, documents, embedder, speech, encoding):
        from errors import StageFailure
        from services.ai_clients import TextGenerator

        class BrokenGenerator(TextGenerator):
            async def generate(self, prompt, system=None, json_mode=False, temperature=None):
                raise ConnectionError("model endpoint unreachable")

        system = make_system(documents, BrokenGenerator(), embedder, speech, encoding)

        with pytest.raises(StageFailure) as excinfo:
            await system.generate("user-1", ["doc-nn"], target_duration=10)
        assert excinfo.value.stage == "extraction"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"document_ids": []},
        {"target_duration": 0},
        {"style": "opera"},
        {"voice_provider": "acme"},
        {"owner_id": ""},
    ])
    async def test_bad_input(self, documents, text_generator, embedder, speech, encoding, kwargs):
        from errors import InputError

        system = make_system(documents, text_generator, embedder, speech, encoding)
        arguments = {"owner_id": "user-1", "document_ids": ["doc-nn"], "target_duration": 10}
        arguments.update(kwargs)

        with pytest.raises(InputError):
            await system.generate(**arguments)
        assert text_generator.calls == []

    @pytest.mark.asyncio
    async def test_unknown_document(self, documents, text_generator, embedder, speech, encoding):
        from errors import NotFoundError

        system = make_system(documents, text_generator, embedder, speech, encoding)

        with pytest.raises(NotFoundError):
            await system.generate("user-1", ["doc-nn", "missing"], target_duration=10)


class TestDelivery:
    """Test search and downloads through the system surface."""

    @pytest.mark.asyncio
    async def test_search_and_downloads(self, documents, text_generator, embedder, speech, encoding):
        import io
        import zipfile

        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)
        podcast = system.store.get(summary["id"])

        response = await system.search("user-1", summary["id"], "gradient descent")
        assert response.results
        assert all(0 < r.relevance <= 1 for r in response.results)

        wav = await system.download_wav("user-1", summary["id"])
        expected_pcm = sum(
            len(text.split()) * 480 for text, _, _ in speech.calls[:len(podcast.segments)]
        )
        assert wav.content[:4] == b"RIFF"
        assert len(wav.content) == 44 + expected_pcm
        assert wav.filename == "How Machines Learn.wav"

        bundle = await system.download_zip("user-1", summary["id"])
        with zipfile.ZipFile(io.BytesIO(bundle.content)) as archive:
            names = archive.namelist()
        assert names[0] == "transcript.txt"
        assert len(names) == 1 + len(podcast.segments)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_podcast(self, documents, text_generator, embedder, speech, encoding):
        from errors import NotFoundError

        system = make_system(documents, text_generator, embedder, speech, encoding)
        summary = await system.generate("user-1", ["doc-nn", "doc-opt"], target_duration=10)

        with pytest.raises(NotFoundError):
            await system.search("user-2", summary["id"], "gradient descent")
        with pytest.raises(NotFoundError):
            await system.download_wav("user-2", summary["id"])

    @pytest.mark.asyncio
    async def test_empty_query(self, documents, text_generator, embedder, speech, encoding):
        from errors import InputError

        system = make_system(documents, text_generator, embedder, speech, encoding)
        with pytest.raises(InputError):
            await system.search("user-1", "any", "")

    @pytest.mark.asyncio
    async def test_download_requires_ready(self, documents, text_generator, embedder, speech, encoding):
        from errors import NotReadyError
        from models.entities import IntelligentPodcast, PodcastStatus
        from services.podcast_store import InMemoryPodcastStore

        store = InMemoryPodcastStore()
        store.create(IntelligentPodcast(id="p-1", owner_id="user-1", status=PodcastStatus.GENERATING))
        system = make_system(documents, text_generator, embedder, speech, encoding, store)

        with pytest.raises(NotReadyError):
            await system.download_zip("user-1", "p-1")

    def test_reconcile_abandoned(self, documents, text_generator, embedder, speech, encoding):
        from datetime import timedelta
        from models.entities import IntelligentPodcast, PodcastStatus, utcnow
        from services.podcast_store import InMemoryPodcastStore

        store = InMemoryPodcastStore()
        store.create(IntelligentPodcast(
            id="stuck", owner_id="user-1", status=PodcastStatus.GENERATING,
            updated_at=utcnow() - timedelta(hours=3)
        ))
        system = make_system(documents, text_generator, embedder, speech, encoding, store)

        assert system.reconcile_abandoned(deadline_minutes=30) == 1
        assert store.get("stuck").status == PodcastStatus.ERROR


class TestVoiceProfiles:
    """Test default voice profiles."""

    def test_defaults(self):
        from main import default_voice_profiles
        from models.entities import SpeakerRole

        profiles = default_voice_profiles("openai")

        assert [(p.role, p.name, p.voice_id) for p in profiles] == [
            (SpeakerRole.HOST, "Sophie", "nova"),
            (SpeakerRole.EXPERT, "Marcus", "onyx"),
            (SpeakerRole.SIMPLIFIER, "Emma", "shimmer"),
        ]

    def test_unknown_provider(self):
        from main import default_voice_profiles
        from errors import InputError

        with pytest.raises(InputError):
            default_voice_profiles("acme")
