"""
Tests for knowledge extraction and concept similarity.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def make_extractor(text_generator, embedder, encoding):
    from services.knowledge_extraction import KnowledgeExtractor
    return KnowledgeExtractor(text_generator, embedder, encoding=encoding)


class TestKnowledgeExtractor:
    """Test knowledge graph extraction."""

    def test_chunking_preserves_document_order(self, documents, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)

        # Second document is shorter; order must not follow size
        chunks = extractor.chunk_documents(documents, max_tokens=300)

        assert [c.document_index for c in chunks] == sorted(c.document_index for c in chunks)
        assert chunks[0].document_id == "doc-nn"
        assert "".join(c.text for c in chunks if c.document_index == 0) == documents[0].content

    def test_chunking_respects_document_budget(self, documents, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)

        chunks = extractor.chunk_documents(documents, max_tokens=50, max_tokens_per_document=120)

        for index in (0, 1):
            text = "".join(c.text for c in chunks if c.document_index == index)
            assert len(text) == 120
        assert all(len(c.text) <= 50 for c in chunks)

    @pytest.mark.asyncio
    async def test_extract_and_analyze(self, documents, embedder, encoding, text_generator):
        from models.graph_schema import RelationshipType

        extractor = make_extractor(text_generator, embedder, encoding)
        result = await extractor.extract_and_analyze(documents)
        graph = result.graph
        names = [c.name for c in graph.concepts]

        assert result.detected_language == "en"
        assert text_generator.calls == ["concepts", "concepts"]
        # "The Neuron" in the second document merges with "Neuron"
        assert names == [
            "Neuron", "Activation Function", "Backpropagation",
            "Loss Function", "Gradient Descent", "Learning Rate"
        ]
        assert graph.concept_ids == [f"concept-{i}" for i in range(1, 7)]
        assert set(graph.embeddings) == set(graph.concept_ids)

        requires = {(r.from_id, r.to_id) for r in graph.edges_of_kind(RelationshipType.REQUIRES)}
        # Cross-document link resolved by name
        assert ("concept-3", "concept-5") in requires
        assert ("concept-2", "concept-1") in requires
        assert "concept-2" in graph.get_concept("concept-1").related_concepts

    @pytest.mark.asyncio
    async def test_merged_concept_keeps_longer_description(self, documents, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)
        result = await extractor.extract_and_analyze(documents)

        assert result.graph.get_concept("concept-1").description == "A unit that weights its inputs and fires."

    @pytest.mark.asyncio
    async def test_concept_count_is_bounded(self, documents, embedder, encoding):
        from fakes import ScriptedTextGenerator
        from config import get_settings

        limit = get_settings().max_concepts
        many = {
            doc.title: [{"id": f"c{i}", "name": f"{doc.title} idea {i}"} for i in range(100)]
            for doc in documents
        }
        extractor = make_extractor(ScriptedTextGenerator(concepts_by_title=many), embedder, encoding)
        result = await extractor.extract_and_analyze(documents)

        assert 0 < len(result.graph.concepts) <= limit

    @pytest.mark.asyncio
    async def test_empty_input_is_rejected(self, embedder, encoding, text_generator):
        from errors import InputError

        extractor = make_extractor(text_generator, embedder, encoding)
        with pytest.raises(InputError):
            await extractor.extract_and_analyze([])

    @pytest.mark.asyncio
    async def test_unintelligible_input_falls_back_to_titles(self, documents, embedder, encoding):
        from fakes import ScriptedTextGenerator

        generator = ScriptedTextGenerator(fail_on="concepts")
        extractor = make_extractor(generator, embedder, encoding)
        result = await extractor.extract_and_analyze(documents)

        assert [c.name for c in result.graph.concepts] == ["Neural Networks", "Optimization"]
        assert result.graph.relationships == []
        assert set(result.graph.embeddings) == {"concept-1", "concept-2"}

    @pytest.mark.asyncio
    async def test_pinned_language_skips_detection(self, embedder, encoding, text_generator):
        from models.entities import DocumentContent

        docs = [DocumentContent(id="d", title="Neural Networks", content="Texte", language="auto")]
        extractor = make_extractor(text_generator, embedder, encoding)
        result = await extractor.extract_and_analyze(docs, language="FR")

        assert result.detected_language == "fr"
        assert "language" not in text_generator.calls


class TestLanguageDetection:
    """Test dominant language detection."""

    @staticmethod
    def docs(*languages):
        from models.entities import DocumentContent
        return [
            DocumentContent(id=f"d{i}", title=f"T{i}", content="Some text here", language=lang)
            for i, lang in enumerate(languages)
        ]

    @pytest.mark.asyncio
    async def test_majority_vote(self, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)
        assert await extractor.detect_language(self.docs("en", "fr", "fr")) == "fr"

    @pytest.mark.asyncio
    async def test_tie_goes_to_first_document(self, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)
        assert await extractor.detect_language(self.docs("de", "fr", "fr", "de")) == "de"

    @pytest.mark.asyncio
    async def test_unknown_tags_ask_the_model(self, embedder, encoding):
        from fakes import ScriptedTextGenerator

        generator = ScriptedTextGenerator(language="es\n")
        extractor = make_extractor(generator, embedder, encoding)

        assert await extractor.detect_language(self.docs("auto", "")) == "es"
        assert generator.calls == ["language"]


class TestSimilarConcepts:
    """Test concept similarity ranking."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [0, 1, 3, 6, 50])
    async def test_at_most_k_sorted_by_similarity(self, sample_graph, embedder, encoding, text_generator, k):
        from services.ai_clients import cosine_similarity

        extractor = make_extractor(text_generator, embedder, encoding)
        found = await extractor.find_similar_concepts("gradient descent learning rate", sample_graph, k)

        assert len(found) == min(k, len(sample_graph.concepts))
        query = embedder.vectorize("gradient descent learning rate")
        scores = [cosine_similarity(query, sample_graph.embeddings[c.id]) for c in found]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_best_match_first(self, sample_graph, embedder, encoding, text_generator):
        extractor = make_extractor(text_generator, embedder, encoding)
        found = await extractor.find_similar_concepts("backpropagation", sample_graph, 1)

        assert found[0].name == "Backpropagation"

    @pytest.mark.asyncio
    async def test_ties_keep_graph_order(self, embedder, encoding, text_generator):
        from models.graph_schema import ConceptNode, KnowledgeGraph

        concepts = [ConceptNode(id=f"concept-{i}", name=f"Idea {i}") for i in range(4)]
        graph = KnowledgeGraph(concepts=concepts, embeddings={c.id: [1.0, 0.0] for c in concepts})

        class FlatEmbedder(type(embedder)):
            async def embed(self, texts):
                return [[1.0, 0.0] for _ in texts]

        extractor = make_extractor(text_generator, FlatEmbedder(2), encoding)
        found = await extractor.find_similar_concepts("anything", graph, 3)

        assert [c.id for c in found] == ["concept-0", "concept-1", "concept-2"]
