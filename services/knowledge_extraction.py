"""
Knowledge Extraction Service for the Intelligent Podcast Generator.
Builds a concept graph and detects the dominant language of study documents.
"""

import re
from collections import Counter
from typing import List, Dict, Any, Optional, Tuple

import tiktoken
from pydantic import BaseModel, Field

from models.graph_schema import (
    ConceptNode,
    Difficulty,
    KnowledgeGraph,
    Relationship,
    RelationshipType
)
from models.entities import DocumentContent, ExtractionResult
from services.ai_clients import (
    Embedder,
    TextGenerator,
    cosine_similarity,
    parse_json_object
)
from errors import InputError, MalformedResponseError
from config import get_settings, get_logger, language_name

logger = get_logger(__name__)


# Concept extraction prompt template
CONCEPT_EXTRACTION_PROMPT = """You analyze educational material to prepare a high-quality teaching podcast.

Identify the genuinely central ideas of the document below and express them as concepts that are useful in spoken teaching. Each concept must be concrete, distinct from the others, and reusable in a deep conversation.

For each concept, provide:
1. id: a local id like "c1", "c2", ...
2. name: short name of the concept
3. description: 1-2 sentences explaining it
4. difficulty: easy, medium, or hard
5. requires: ids of concepts a listener must understand first
6. related: ids of concepts on a closely related topic
7. opposite: ids of concepts that contrast with this one
8. examples: ids of concepts that are concrete examples of this one

RULES:
- Return at most {max_concepts} concepts.
- Only link to ids of concepts you return.
- Write names and descriptions in {language}.
- Do NOT invent ideas that are not in the document.

Document: {title}
---
{content}
---

Return ONLY a valid JSON object of the form {{"concepts": [...]}}."""

LANGUAGE_DETECTION_PROMPT = """Detect the language of the text and return ONLY its ISO 639-1 code (en, fr, es, de, ...). No punctuation. No extra words.

{sample}"""

LINK_FIELDS: Dict[str, RelationshipType] = {
    "requires": RelationshipType.REQUIRES,
    "related": RelationshipType.RELATED,
    "relatedConcepts": RelationshipType.RELATED,
    "opposite": RelationshipType.OPPOSITE,
    "examples": RelationshipType.EXAMPLE,
}

UNUSABLE_LANGUAGE_TAGS = {"", "auto", "unknown", "und"}


class DocumentChunk(BaseModel):
    """A token-bounded slice of one document."""
    document_index: int
    document_id: str
    title: str
    text: str
    chunk_index: int = 0


class RawConcept(BaseModel):
    """A concept as returned by the model, before ids are assigned."""
    name: str
    description: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    links: Dict[RelationshipType, List[str]] = Field(default_factory=dict)


class KnowledgeExtractor:
    """
    Service for building a knowledge graph from study documents.

    Features:
    - Deterministic, order-preserving token-bounded chunking
    - One concept-extraction call per document
    - Concept normalization and cross-document deduplication
    - Typed relationships (requires, related, opposite, example)
    - Concept embeddings for similarity search
    - Dominant language detection by majority vote
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        embedder: Embedder,
        encoding=None
    ):
        self.settings = get_settings()
        self.text_generator = text_generator
        self.embedder = embedder
        self._encoding = encoding

    @property
    def encoding(self):
        if self._encoding is None:
            self._encoding = tiktoken.encoding_for_model("gpt-4")
        return self._encoding

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        return len(self.encoding.encode(text))

    def chunk_documents(
        self,
        documents: List[DocumentContent],
        max_tokens: int = None,
        max_tokens_per_document: int = None
    ) -> List[DocumentChunk]:
        """
        Split documents into chunks for processing.

        Documents keep their input order and each document contributes at
        most ``max_tokens_per_document`` tokens.

        Args:
            documents: Source documents
            max_tokens: Maximum tokens per chunk
            max_tokens_per_document: Token budget per document

        Returns:
            List of DocumentChunk objects
        """
        max_tokens = max_tokens or self.settings.max_tokens_per_chunk
        budget = max_tokens_per_document or self.settings.max_extraction_tokens_per_document
        chunks = []

        for doc_index, doc in enumerate(documents):
            tokens = self.encoding.encode(doc.content or "")[:budget]
            for chunk_index, start in enumerate(range(0, len(tokens), max_tokens)):
                chunks.append(DocumentChunk(
                    document_index=doc_index,
                    document_id=doc.id,
                    title=doc.title,
                    text=self.encoding.decode(tokens[start:start + max_tokens]),
                    chunk_index=chunk_index
                ))

        logger.info(f"Split {len(documents)} documents into {len(chunks)} chunks")
        return chunks

    async def extract_and_analyze(
        self,
        documents: List[DocumentContent],
        language: Optional[str] = None
    ) -> ExtractionResult:
        """
        Build the knowledge graph and detect the dominant language.

        Args:
            documents: Non-empty list of source documents
            language: Pinned language code; "auto" or None to detect

        Returns:
            ExtractionResult with the graph and language
        """
        if not documents:
            raise InputError("At least one document is required")

        if language and language.lower() not in UNUSABLE_LANGUAGE_TAGS:
            detected = language.lower()
        else:
            detected = await self.detect_language(documents)
        logger.info(f"Extraction language: {detected}")

        chunks = self.chunk_documents(documents)
        raw_concepts: List[RawConcept] = []
        per_document = max(3, self.settings.max_concepts // len(documents))

        for doc_index, doc in enumerate(documents):
            doc_chunks = [c for c in chunks if c.document_index == doc_index]
            if not doc_chunks:
                logger.warning(f"Document {doc.id} has no text, skipping extraction")
                continue
            content = "\n\n".join(c.text for c in doc_chunks)
            raw_concepts.extend(
                await self.extract_concepts(doc.title, content, detected, per_document)
            )

        concepts, relationships = self.build_concepts(raw_concepts)

        if not concepts:
            logger.warning("No concepts extracted, falling back to document titles")
            concepts = self.fallback_concepts(documents)
            relationships = []

        embeddings = await self.generate_concept_embeddings(concepts)

        graph = KnowledgeGraph(
            concepts=concepts,
            relationships=relationships,
            embeddings=embeddings
        )
        logger.info(
            f"Knowledge graph: {len(graph.concepts)} concepts, "
            f"{len(graph.relationships)} relationships"
        )
        return ExtractionResult(graph=graph, detected_language=detected)

    async def extract_concepts(
        self,
        title: str,
        content: str,
        language: str,
        max_concepts: int
    ) -> List[RawConcept]:
        """
        Extract concepts from a single document.

        Unparseable model output yields no concepts; API errors propagate.
        """
        prompt = CONCEPT_EXTRACTION_PROMPT.format(
            max_concepts=max_concepts,
            language=language_name(language),
            title=title,
            content=content
        )
        response = await self.text_generator.generate(
            prompt,
            system="You are a precise knowledge extraction assistant. Always return valid JSON.",
            json_mode=True,
            temperature=0.3
        )

        try:
            concepts = self._parse_concept_response(response)
        except MalformedResponseError as e:
            logger.warning(f"Concept extraction output for '{title}' unparseable: {e}")
            return []

        logger.debug(f"Extracted {len(concepts)} concepts from '{title}'")
        return concepts[:max_concepts]

    def _parse_concept_response(self, content: str) -> List[RawConcept]:
        """Parse model response into RawConcept objects with name-based links."""
        data = parse_json_object(content)
        items = data.get("concepts", [])
        if not isinstance(items, list):
            raise MalformedResponseError("'concepts' is not a list")

        local_names: Dict[str, str] = {}
        for item in items:
            if isinstance(item, dict) and item.get("id") and item.get("name"):
                local_names[str(item["id"]).strip()] = str(item["name"]).strip()

        concepts = []
        for item in items:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or "").strip()
            if not name:
                logger.warning(f"Dropping concept without a name: {item}")
                continue

            links: Dict[RelationshipType, List[str]] = {}
            for field, kind in LINK_FIELDS.items():
                targets = item.get(field) or []
                if not isinstance(targets, list):
                    continue
                resolved = [local_names.get(str(t).strip(), str(t).strip()) for t in targets if t]
                links.setdefault(kind, []).extend(resolved)

            concepts.append(RawConcept(
                name=name,
                description=str(item.get("description") or "").strip(),
                difficulty=Difficulty.coerce(item.get("difficulty")),
                links=links
            ))
        return concepts

    def build_concepts(
        self,
        raw_concepts: List[RawConcept]
    ) -> Tuple[List[ConceptNode], List[Relationship]]:
        """
        Deduplicate raw concepts, assign stable ids and resolve links.

        Returns:
            Concept nodes in first-seen order and their typed relationships
        """
        merged: Dict[str, RawConcept] = {}
        for raw in raw_concepts:
            key = self._normalize_name(raw.name)
            if key not in merged:
                if len(merged) >= self.settings.max_concepts:
                    continue
                merged[key] = raw.model_copy(deep=True)
            else:
                self._merge_into(merged[key], raw)

        ids = {key: f"concept-{i + 1}" for i, key in enumerate(merged)}

        concepts: List[ConceptNode] = []
        relationships: List[Relationship] = []
        seen_edges = set()

        for key, raw in merged.items():
            concept_id = ids[key]
            related_ids: List[str] = []
            for kind, targets in raw.links.items():
                for target in targets:
                    target_id = ids.get(self._normalize_name(target))
                    if not target_id or target_id == concept_id:
                        continue
                    edge = (concept_id, target_id, kind)
                    if edge not in seen_edges:
                        seen_edges.add(edge)
                        relationships.append(
                            Relationship(from_id=concept_id, to_id=target_id, kind=kind)
                        )
                    if target_id not in related_ids:
                        related_ids.append(target_id)

            concepts.append(ConceptNode(
                id=concept_id,
                name=raw.name,
                description=raw.description,
                difficulty=raw.difficulty,
                related_concepts=related_ids
            ))

        return concepts, relationships

    def _merge_into(self, target: RawConcept, other: RawConcept) -> None:
        """Merge a duplicate concept into the first occurrence."""
        if len(other.description) > len(target.description):
            target.description = other.description
        for kind, names in other.links.items():
            existing = target.links.setdefault(kind, [])
            existing.extend(n for n in names if n not in existing)

    def _normalize_name(self, value: str) -> str:
        """Normalize concept name for comparison."""
        normalized = value.lower().strip()
        normalized = re.sub(r'^(the|a|an)\s+', '', normalized)
        normalized = re.sub(r'[.,!?]+$', '', normalized)
        return re.sub(r'\s+', ' ', normalized)

    def fallback_concepts(self, documents: List[DocumentContent]) -> List[ConceptNode]:
        """One concept per distinct document title, so planning never sees an empty graph."""
        concepts: List[ConceptNode] = []
        seen = set()
        for doc in documents:
            name = (doc.title or "").strip() or f"Document {doc.id}"
            key = self._normalize_name(name)
            if key in seen:
                continue
            seen.add(key)
            excerpt = re.sub(r'\s+', ' ', doc.content or "").strip()[:200]
            concepts.append(ConceptNode(
                id=f"concept-{len(concepts) + 1}",
                name=name,
                description=excerpt or f"Overview of {name}",
                difficulty=Difficulty.MEDIUM
            ))
        return concepts

    async def generate_concept_embeddings(
        self,
        concepts: List[ConceptNode]
    ) -> Dict[str, List[float]]:
        """Compute one embedding vector per concept."""
        if not concepts:
            return {}
        vectors = await self.embedder.embed([c.embedding_text() for c in concepts])
        return {c.id: v for c, v in zip(concepts, vectors)}

    async def detect_language(self, documents: List[DocumentContent]) -> str:
        """
        Detect the dominant language across documents.

        Majority vote over per-document tags; ties go to the first
        document's language. With no usable tags the model is asked to
        classify a sample of the first document.
        """
        tags = [
            (doc.language or "").strip().lower()
            for doc in documents
        ]
        usable = [t for t in tags if t not in UNUSABLE_LANGUAGE_TAGS]
        if usable:
            counts = Counter(usable)
            top = max(counts.values())
            tied = {lang for lang, count in counts.items() if count == top}
            if tags[0] in tied:
                return tags[0]
            return next(t for t in usable if t in tied)

        sample = (documents[0].content or "")[:8000]
        if not sample.strip():
            return "en"
        try:
            out = await self.text_generator.generate(
                LANGUAGE_DETECTION_PROMPT.format(sample=sample),
                temperature=0
            )
        except Exception as e:
            logger.warning(f"Language detection failed, defaulting to en: {e}")
            return "en"
        match = re.search(r'[a-z]{2}', out.strip().lower())
        return match.group() if match else "en"

    async def rank_concepts(
        self,
        query: str,
        graph: KnowledgeGraph
    ) -> List[Tuple[ConceptNode, float]]:
        """
        Rank every concept by cosine similarity to the query.

        Sorted by descending similarity; ties keep graph order.
        """
        if not graph.concepts:
            return []
        query_embedding = await self.embedder.embed_one(query)
        scored = [
            (concept, cosine_similarity(query_embedding, graph.embeddings.get(concept.id, [])))
            for concept in graph.concepts
        ]
        # sorted() is stable, so equal similarities keep graph order
        return sorted(scored, key=lambda pair: -pair[1])

    async def find_similar_concepts(
        self,
        query: str,
        graph: KnowledgeGraph,
        k: int = 5
    ) -> List[ConceptNode]:
        """
        Find the k concepts most similar to a query.

        Args:
            query: Free text query
            graph: Knowledge graph to search
            k: Number of concepts, clamped to the concept count

        Returns:
            At most k concepts sorted by non-increasing similarity
        """
        k = max(0, min(k, len(graph.concepts)))
        if k == 0:
            return []
        ranked = await self.rank_concepts(query, graph)
        return [concept for concept, _ in ranked[:k]]
