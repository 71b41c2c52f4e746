"""Services package for the Intelligent Podcast Generator."""

from .knowledge_extraction import KnowledgeExtractor
from .script_planner import ScriptPlanner
from .voice_synthesis import VoiceSynthesizer
from .audio_assembly import AudioAssembler, safe_filename
from .semantic_search import SemanticSearchEngine
from .podcast_store import PodcastStore, InMemoryPodcastStore, Neo4jPodcastStore
from .document_provider import DocumentProvider, InMemoryDocumentProvider, DirectoryDocumentProvider

__all__ = [
    "KnowledgeExtractor",
    "ScriptPlanner",
    "VoiceSynthesizer",
    "AudioAssembler",
    "safe_filename",
    "SemanticSearchEngine",
    "PodcastStore",
    "InMemoryPodcastStore",
    "Neo4jPodcastStore",
    "DocumentProvider",
    "InMemoryDocumentProvider",
    "DirectoryDocumentProvider"
]
