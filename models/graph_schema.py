"""
Knowledge graph schema for the Intelligent Podcast Generator.
Defines concept nodes, typed relationships and the graph aggregate.
"""

from typing import List, Optional, Dict
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum


class Difficulty(str, Enum):
    """Difficulty rating shared by concepts, chapters and segments."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "Difficulty":
        """Map free-form model output to a difficulty, defaulting to medium."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.MEDIUM


class RelationshipType(str, Enum):
    """Kinds of relationships between concepts."""
    REQUIRES = "requires"
    RELATED = "related"
    OPPOSITE = "opposite"
    EXAMPLE = "example"


class ConceptNode(BaseModel):
    """
    A named idea extracted from the source documents.

    Attributes:
        id: Unique id within the graph (e.g. "concept-3")
        name: Short concept name
        description: One or two sentence explanation
        difficulty: How hard the concept is for a newcomer
        related_concepts: Ids of concepts linked to this one
        first_mentioned_at: Timestamp (seconds) of first mention in the podcast
    """
    id: str
    name: str
    description: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    related_concepts: List[str] = Field(default_factory=list)
    first_mentioned_at: Optional[float] = None

    @field_validator('name')
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Concept name cannot be empty")
        return v.strip()

    def embedding_text(self) -> str:
        """Text used to embed this concept."""
        return f"{self.name}: {self.description}".strip()


class Relationship(BaseModel):
    """
    A typed, directed edge between two concepts.

    For ``requires`` edges, ``from_id`` requires ``to_id``: the target is a
    prerequisite and must be introduced no later than the source.
    """
    from_id: str
    to_id: str
    kind: RelationshipType


class KnowledgeGraph(BaseModel):
    """
    Concepts, their typed relationships and one embedding per concept.

    Every relationship endpoint and every embedding key must reference an
    existing concept id.
    """
    concepts: List[ConceptNode] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    embeddings: Dict[str, List[float]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_references(self) -> "KnowledgeGraph":
        ids = [c.id for c in self.concepts]
        known = set(ids)
        if len(known) != len(ids):
            raise ValueError("Concept ids must be unique within a graph")
        for rel in self.relationships:
            if rel.from_id not in known or rel.to_id not in known:
                raise ValueError(
                    f"Relationship {rel.from_id} -> {rel.to_id} references an unknown concept"
                )
        unknown = set(self.embeddings) - known
        if unknown:
            raise ValueError(f"Embeddings reference unknown concepts: {sorted(unknown)}")
        return self

    @property
    def concept_ids(self) -> List[str]:
        return [c.id for c in self.concepts]

    def get_concept(self, concept_id: str) -> Optional[ConceptNode]:
        for concept in self.concepts:
            if concept.id == concept_id:
                return concept
        return None

    def edges_of_kind(self, kind: RelationshipType) -> List[Relationship]:
        return [r for r in self.relationships if r.kind == kind]

    def to_summary(self) -> str:
        """Bulleted concept list for prompts."""
        return "\n".join(
            f"- [{c.id}] {c.name} ({c.difficulty.value}): {c.description}"
            for c in self.concepts
        )
