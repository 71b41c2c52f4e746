"""
Shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from models.entities import DocumentContent, VoiceProfile, SpeakerRole
from models.graph_schema import ConceptNode, Difficulty, KnowledgeGraph, Relationship, RelationshipType
from services.ai_clients import HashingEmbedder
from fakes import CharEncoding, ScriptedTextGenerator, FakeSpeechSynthesizer


@pytest.fixture
def encoding():
    return CharEncoding()


@pytest.fixture
def text_generator():
    return ScriptedTextGenerator()


@pytest.fixture
def embedder():
    return HashingEmbedder(dimensions=256)


@pytest.fixture
def speech():
    return FakeSpeechSynthesizer()


@pytest.fixture
def documents():
    return [
        DocumentContent(
            id="doc-nn",
            title="Neural Networks",
            content="Neurons combine weighted inputs. Activation functions add non-linearity. " * 20,
            page_count=4,
            language="en"
        ),
        DocumentContent(
            id="doc-opt",
            title="Optimization",
            content="Training minimizes a loss function with gradient descent. " * 20,
            page_count=3,
            language="en"
        ),
    ]


@pytest.fixture
def voice_profiles():
    return [
        VoiceProfile(id="v-host", role=SpeakerRole.HOST, name="Sophie", provider="openai", voice_id="nova"),
        VoiceProfile(id="v-expert", role=SpeakerRole.EXPERT, name="Marcus", provider="openai", voice_id="onyx"),
        VoiceProfile(id="v-simple", role=SpeakerRole.SIMPLIFIER, name="Emma", provider="openai", voice_id="shimmer"),
    ]


@pytest.fixture
def sample_graph(embedder):
    """Six concepts over two topics with prerequisite and related edges."""
    names = [
        ("concept-1", "Neuron", Difficulty.EASY),
        ("concept-2", "Activation Function", Difficulty.MEDIUM),
        ("concept-3", "Backpropagation", Difficulty.HARD),
        ("concept-4", "Loss Function", Difficulty.EASY),
        ("concept-5", "Gradient Descent", Difficulty.MEDIUM),
        ("concept-6", "Learning Rate", Difficulty.EASY),
    ]
    concepts = [
        ConceptNode(id=cid, name=name, description=f"About {name.lower()}", difficulty=difficulty)
        for cid, name, difficulty in names
    ]
    edges = [
        ("concept-2", "concept-1", RelationshipType.REQUIRES),
        ("concept-3", "concept-2", RelationshipType.REQUIRES),
        ("concept-3", "concept-5", RelationshipType.REQUIRES),
        ("concept-5", "concept-4", RelationshipType.REQUIRES),
        ("concept-6", "concept-5", RelationshipType.REQUIRES),
        ("concept-1", "concept-2", RelationshipType.RELATED),
        ("concept-5", "concept-3", RelationshipType.RELATED),
    ]
    return KnowledgeGraph(
        concepts=concepts,
        relationships=[Relationship(from_id=a, to_id=b, kind=k) for a, b, k in edges],
        embeddings={c.id: embedder.vectorize(c.embedding_text()) for c in concepts}
    )
