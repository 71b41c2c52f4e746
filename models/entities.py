"""
Podcast data models for the Intelligent Podcast Generator.
Defines Pydantic models for documents, voices, chapters, segments,
predicted questions, the podcast aggregate and search results.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime, timezone

from models.graph_schema import Difficulty, KnowledgeGraph


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SpeakerRole(str, Enum):
    """Dialogue roles, one voice profile per role per generation run."""
    HOST = "host"
    EXPERT = "expert"
    SIMPLIFIER = "simplifier"


class PodcastStatus(str, Enum):
    """Lifecycle status of a podcast."""
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class PodcastStyle(str, Enum):
    """Narrative style requested for the script."""
    EDUCATIONAL = "educational"
    CONVERSATIONAL = "conversational"
    TECHNICAL = "technical"
    STORYTELLING = "storytelling"


class DocumentContent(BaseModel):
    """
    A study document supplied as input. Immutable.

    Attributes:
        id: Document id
        title: Document title
        content: Full extracted text
        page_count: Number of pages in the source
        language: ISO 639-1 language tag, or "auto" when unknown
        extracted_at: When the text was extracted
    """
    id: str
    title: str
    content: str
    page_count: int = 0
    language: str = "auto"
    extracted_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class VoiceProfile(BaseModel):
    """
    Mapping from a dialogue role to a synthesis provider voice.

    Attributes:
        id: Profile id
        role: The dialogue role this voice speaks for
        name: Display name of the speaker
        provider: Synthesis provider name
        voice_id: Provider-specific voice identity
        description: Persona description used in prompts
    """
    id: str
    role: SpeakerRole
    name: str
    provider: str
    voice_id: str
    description: str = ""


class PodcastChapter(BaseModel):
    """An ordered, time-bounded group of segments covering a subset of concepts."""
    id: str
    title: str
    start_time: float = 0.0
    end_time: float = 0.0
    concepts: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    summary: str = ""


class PodcastSegment(BaseModel):
    """
    One spoken turn of the dialogue.

    Attributes:
        id: Segment id
        chapter_id: Owning chapter
        speaker: Voice role speaking this turn
        text: What is said
        audio_url: Synthesized asset reference, None when unsynthesized
        duration: Seconds of audio (0 if unsynthesized)
        timestamp: Start offset within the podcast in seconds
        concepts: Concept ids discussed in this turn
        is_question_breakpoint: Natural pause for listener questions
        difficulty: Difficulty of the turn
        audio_error: Why synthesis failed, when it did
    """
    id: str
    chapter_id: str
    speaker: SpeakerRole
    text: str
    audio_url: Optional[str] = None
    duration: float = 0.0
    timestamp: float = 0.0
    concepts: List[str] = Field(default_factory=list)
    is_question_breakpoint: bool = False
    difficulty: Difficulty = Difficulty.MEDIUM
    audio_error: Optional[str] = None

    @field_validator('duration', 'timestamp')
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be non-negative")
        return v

    @property
    def has_audio(self) -> bool:
        """Whether an audio asset exists, even a zero-length one."""
        return bool(self.audio_url)


class PredictedQuestion(BaseModel):
    """An anticipated listener question with a pre-written answer."""
    id: str
    question: str
    answer: str
    relevant_concepts: List[str] = Field(default_factory=list)
    related_segments: List[str] = Field(default_factory=list)
    audio_url: Optional[str] = None
    audio_error: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_url)


class IntelligentPodcast(BaseModel):
    """Aggregate root for a generated podcast."""
    id: str
    owner_id: str
    title: str = ""
    description: str = ""
    duration: int = 0
    language: str = "en"
    document_ids: List[str] = Field(default_factory=list)
    knowledge_graph: KnowledgeGraph = Field(default_factory=KnowledgeGraph)
    chapters: List[PodcastChapter] = Field(default_factory=list)
    segments: List[PodcastSegment] = Field(default_factory=list)
    predicted_questions: List[PredictedQuestion] = Field(default_factory=list)
    status: PodcastStatus = PodcastStatus.GENERATING
    generation_progress: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_ready(self) -> bool:
        return self.status == PodcastStatus.READY

    @property
    def audio_segments(self) -> List[PodcastSegment]:
        return [s for s in self.segments if s.has_audio]


class GenerationConfig(BaseModel):
    """Parameters for script planning."""
    target_duration: float = Field(default=30, gt=0, description="Minutes")
    language: str = "en"
    style: PodcastStyle = PodcastStyle.CONVERSATIONAL
    voice_profiles: List[VoiceProfile] = Field(default_factory=list)
    number_of_predicted_questions: Optional[int] = None
    user_prompt: str = ""


class ScriptResult(BaseModel):
    """Output of the script planner."""
    title: str
    description: str
    chapters: List[PodcastChapter]
    segments: List[PodcastSegment]
    predicted_questions: List[PredictedQuestion]


class ExtractionResult(BaseModel):
    """Output of the knowledge extractor."""
    graph: KnowledgeGraph
    detected_language: str


class SemanticSearchResult(BaseModel):
    """A segment matched by a semantic search."""
    segment_id: str
    timestamp: float
    relevance: float = Field(gt=0.0, le=1.0)
    snippet: str
    concepts: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Ranked search results plus the concepts the query matched."""
    query: str
    results: List[SemanticSearchResult] = Field(default_factory=list)
    concepts: List[Dict[str, Any]] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")


class AudioDownload(BaseModel):
    """An assembled downloadable artifact."""
    content: bytes
    filename: str
    media_type: str

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.filename}"'
