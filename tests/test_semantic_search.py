"""
Tests for semantic search over podcast segments.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def podcast(sample_graph):
    from models.entities import IntelligentPodcast, PodcastSegment, PodcastStatus, SpeakerRole

    concept_sets = [
        ["concept-1"],
        ["concept-5", "concept-6"],
        [],
        ["concept-3", "concept-5"],
        ["concept-4"],
        ["concept-6"],
    ]
    segments = [
        PodcastSegment(
            id=f"segment-{i}",
            chapter_id="chapter-1",
            speaker=SpeakerRole.HOST,
            text=f"Segment {i} " + "long explanation " * 30,
            timestamp=float(i * 10),
            concepts=concepts
        )
        for i, concepts in enumerate(concept_sets)
    ]
    return IntelligentPodcast(
        id="podcast-1",
        owner_id="user-1",
        knowledge_graph=sample_graph,
        segments=segments,
        status=PodcastStatus.READY
    )


def make_engine(text_generator, embedder, encoding):
    from services.knowledge_extraction import KnowledgeExtractor
    from services.semantic_search import SemanticSearchEngine

    return SemanticSearchEngine(KnowledgeExtractor(text_generator, embedder, encoding=encoding))


class TestSemanticSearch:
    """Test concept-based segment search."""

    @pytest.mark.asyncio
    async def test_results_are_ranked_and_bounded(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "gradient descent")

        relevances = [r.relevance for r in response.results]
        assert response.query == "gradient descent"
        assert response.results
        assert all(0 < r <= 1 for r in relevances)
        assert relevances == sorted(relevances, reverse=True)
        assert len(response.results) <= 10
        assert len(response.concepts) == 5

    @pytest.mark.asyncio
    async def test_relevance_is_share_of_matched_concepts(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "gradient descent")
        matched = {c["id"] for c in response.concepts}

        segments = {s.id: s for s in podcast.segments}
        for result in response.results:
            overlap = [c for c in segments[result.segment_id].concepts if c in matched]
            assert result.concepts == overlap
            assert result.relevance == pytest.approx(len(overlap) / len(matched))
            assert result.timestamp == segments[result.segment_id].timestamp

    @pytest.mark.asyncio
    async def test_zero_overlap_never_returned(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "learning rate")
        matched = {c["id"] for c in response.concepts}
        returned = {r.segment_id for r in response.results}

        for segment in podcast.segments:
            if not matched.intersection(segment.concepts):
                assert segment.id not in returned
        assert "segment-2" not in returned

    @pytest.mark.asyncio
    async def test_ties_keep_segment_order(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "neuron")

        by_relevance = {}
        for result in response.results:
            by_relevance.setdefault(result.relevance, []).append(int(result.segment_id.split("-")[1]))
        for indices in by_relevance.values():
            assert indices == sorted(indices)

    @pytest.mark.asyncio
    async def test_snippet(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "backpropagation")
        result = response.results[0]
        text = next(s.text for s in podcast.segments if s.id == result.segment_id)

        assert result.snippet == text[:200] + "..."

    @pytest.mark.asyncio
    async def test_truncated_to_ten(self, sample_graph, text_generator, embedder, encoding):
        from models.entities import IntelligentPodcast, PodcastSegment, SpeakerRole

        segments = [
            PodcastSegment(id=f"segment-{i}", chapter_id="c", speaker=SpeakerRole.HOST,
                           text="x", concepts=list(sample_graph.concept_ids))
            for i in range(15)
        ]
        podcast = IntelligentPodcast(id="p", owner_id="u", knowledge_graph=sample_graph, segments=segments)

        response = await make_engine(text_generator, embedder, encoding).search(podcast, "neuron")

        assert [r.segment_id for r in response.results] == [f"segment-{i}" for i in range(10)]
        assert all(r.relevance == 1.0 for r in response.results)

    @pytest.mark.asyncio
    async def test_repeated_concept_ids_count_once(self, sample_graph, text_generator, embedder, encoding):
        from models.entities import IntelligentPodcast, PodcastSegment, SpeakerRole

        segments = [
            PodcastSegment(id="segment-0", chapter_id="c", speaker=SpeakerRole.HOST,
                           text="Gradient descent again", concepts=["concept-5"] * 6),
            PodcastSegment(id="segment-1", chapter_id="c", speaker=SpeakerRole.HOST,
                           text="Gradient descent once", concepts=["concept-5"]),
        ]
        podcast = IntelligentPodcast(id="p", owner_id="u", knowledge_graph=sample_graph, segments=segments)

        response = await make_engine(text_generator, embedder, encoding).search(podcast, "gradient descent")
        matched = {c["id"] for c in response.concepts}

        assert "concept-5" in matched
        assert [r.segment_id for r in response.results] == ["segment-0", "segment-1"]
        assert response.results[0].concepts == ["concept-5"]
        assert response.results[0].relevance == pytest.approx(1 / len(matched))
        assert response.results[0].relevance == response.results[1].relevance

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, podcast, text_generator, embedder, encoding):
        from errors import InputError

        with pytest.raises(InputError):
            await make_engine(text_generator, embedder, encoding).search(podcast, "   ")

    @pytest.mark.asyncio
    async def test_to_dict(self, podcast, text_generator, embedder, encoding):
        response = await make_engine(text_generator, embedder, encoding).search(podcast, "gradient descent")
        data = response.to_dict()

        assert set(data) == {"query", "results", "concepts"}
        assert "segment_id" in data["results"][0]
