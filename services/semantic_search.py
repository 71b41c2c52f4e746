"""
Semantic Search Service for the Intelligent Podcast Generator.
Finds the podcast segments that discuss what a listener asks about.
"""

from typing import List

from models.entities import IntelligentPodcast, SearchResponse, SemanticSearchResult
from services.knowledge_extraction import KnowledgeExtractor
from errors import InputError
from config import get_logger

logger = get_logger(__name__)

MATCHED_CONCEPTS = 5
MAX_RESULTS = 10
SNIPPET_LENGTH = 200


class SemanticSearchEngine:
    """
    Concept-based search over a podcast's segments.

    The query is matched to the podcast's concepts by embedding similarity;
    segments are ranked by the share of matched concepts they discuss.
    """

    def __init__(self, extractor: KnowledgeExtractor):
        self.extractor = extractor

    async def search(self, podcast: IntelligentPodcast, query: str) -> SearchResponse:
        """
        Search a podcast for segments relevant to a query.

        Args:
            podcast: Podcast with its stored knowledge graph
            query: Free text query

        Returns:
            SearchResponse with at most 10 results, most relevant first
        """
        query = (query or "").strip()
        if not query:
            raise InputError("Query is required")

        similar = await self.extractor.find_similar_concepts(
            query, podcast.knowledge_graph, MATCHED_CONCEPTS
        )
        matched_ids = [c.id for c in similar]
        matched = set(matched_ids)

        results: List[SemanticSearchResult] = []
        if matched:
            for segment in podcast.segments:
                # Unique ids, segment order
                overlap = [cid for cid in dict.fromkeys(segment.concepts) if cid in matched]
                if not overlap:
                    continue
                results.append(SemanticSearchResult(
                    segment_id=segment.id,
                    timestamp=segment.timestamp,
                    relevance=len(overlap) / len(matched),
                    snippet=segment.text[:SNIPPET_LENGTH] + "...",
                    concepts=overlap
                ))

        # Stable: equal relevance keeps segment order
        results.sort(key=lambda r: -r.relevance)
        logger.info(f"Search '{query[:50]}' on {podcast.id}: {len(results)} matching segments")

        return SearchResponse(
            query=query,
            results=results[:MAX_RESULTS],
            concepts=[c.model_dump(mode="json") for c in similar]
        )
