"""Data models for the Intelligent Podcast Generator."""

from .graph_schema import (
    Difficulty,
    RelationshipType,
    ConceptNode,
    Relationship,
    KnowledgeGraph
)

from .entities import (
    SpeakerRole,
    PodcastStatus,
    PodcastStyle,
    DocumentContent,
    VoiceProfile,
    PodcastChapter,
    PodcastSegment,
    PredictedQuestion,
    IntelligentPodcast,
    GenerationConfig,
    ScriptResult,
    ExtractionResult,
    SemanticSearchResult,
    SearchResponse,
    AudioDownload
)

__all__ = [
    "Difficulty",
    "RelationshipType",
    "ConceptNode",
    "Relationship",
    "KnowledgeGraph",
    "SpeakerRole",
    "PodcastStatus",
    "PodcastStyle",
    "DocumentContent",
    "VoiceProfile",
    "PodcastChapter",
    "PodcastSegment",
    "PredictedQuestion",
    "IntelligentPodcast",
    "GenerationConfig",
    "ScriptResult",
    "ExtractionResult",
    "SemanticSearchResult",
    "SearchResponse",
    "AudioDownload"
]
