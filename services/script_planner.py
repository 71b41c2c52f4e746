"""
Script Planning Service for the Intelligent Podcast Generator.
Turns a knowledge graph into chapters, a multi-voice dialogue and
predicted listener questions.
"""

import re
from typing import List, Dict, Any, Optional, Sequence, Set

from models.graph_schema import Difficulty, KnowledgeGraph, RelationshipType
from models.entities import (
    DocumentContent,
    GenerationConfig,
    PodcastChapter,
    PodcastSegment,
    PredictedQuestion,
    ScriptResult,
    SpeakerRole,
    VoiceProfile
)
from services.ai_clients import TextGenerator, parse_json_object
from errors import InputError, MalformedResponseError
from config import get_settings, get_logger, language_name

logger = get_logger(__name__)

SOURCE_EXCERPT_CHARS = 12000
MAX_TURNS_PER_CHAPTER = 40

DIFFICULTY_RANK = {Difficulty.EASY: 0, Difficulty.MEDIUM: 1, Difficulty.HARD: 2}
RANKED_DIFFICULTIES = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]


OUTLINE_PROMPT = """You are planning an educational podcast in {language}.

Style: {style}
Target length: about {target_duration} minutes.
{user_request}
SOURCE CONTENT:
{sources}

The podcast has {chapter_count} chapters. Each chapter covers these concepts, in this order:
{chapter_plan}

Return ONLY a JSON object:
{{
  "title": "An engaging podcast title",
  "description": "A 2-3 sentence description that makes people want to listen",
  "chapters": [
    {{"title": "Chapter title for navigation", "summary": "One sentence summary"}}
  ]
}}
The "chapters" list must have exactly {chapter_count} entries, in order. Write everything in {language}."""

DIALOGUE_PROMPT = """You are writing chapter {chapter_number} of {chapter_count} of a podcast in {language}: "{chapter_title}".

Speakers:
{speakers}

Style: {style}
Chapter summary: {chapter_summary}

Concepts to cover in this chapter (use these ids):
{concepts}

Relevant source material:
{sources}

Write exactly {turn_count} turns, about {words_per_turn} words each on average, with the speakers in this order:
{turn_plan}

{position_note}
Let ideas flow naturally; the expert develops explanations fully, the host reacts and asks what listeners would ask, the simplifier (if present) restates hard ideas with analogies.

Return ONLY a JSON object:
{{
  "segments": [
    {{"speaker": "host", "text": "What they say", "concepts": ["concept-1"]}}
  ]
}}
Write all dialogue in {language}."""

QUESTIONS_PROMPT = """You anticipate questions listeners might have while listening to an educational podcast in {language}.

Concepts discussed in the podcast:
{concepts}

Generate {count} natural questions a curious listener might ask, with concise but helpful answers (2-4 sentences). Vary the types: clarifications, deeper dives, concrete examples, connections between topics, practical applications.

Return ONLY a JSON object:
{{
  "questions": [
    {{"question": "The listener's question", "answer": "Concise answer", "relevantConcepts": ["concept-1"]}}
  ]
}}
Only use concept ids from the list above. Write in {language}."""


def count_words(text: str) -> int:
    """Count whitespace separated words."""
    return len((text or "").split())


def estimate_seconds(text: str, words_per_minute: int) -> float:
    """Estimated narration length of text at a fixed speaking rate."""
    wpm = words_per_minute if words_per_minute > 50 else 150
    return count_words(text) / wpm * 60.0


def speaker_labels(voice_profiles: Sequence[VoiceProfile]) -> Set[str]:
    """Lowercased speaker names and role values a dialogue line may start with."""
    labels = {role.value for role in SpeakerRole}
    labels.update(p.name.strip().lower() for p in voice_profiles if p.name.strip())
    return labels


def recompute_timings(
    chapters: List[PodcastChapter],
    segments: List[PodcastSegment]
) -> float:
    """
    Lay segments end to end and derive contiguous chapter intervals.

    Segments must already be in chapter order. Returns the total length in
    seconds.
    """
    by_chapter: Dict[str, List[PodcastSegment]] = {}
    for segment in segments:
        by_chapter.setdefault(segment.chapter_id, []).append(segment)

    t = 0.0
    for chapter in chapters:
        chapter.start_time = t
        for segment in by_chapter.get(chapter.id, []):
            segment.timestamp = t
            t += max(0.0, segment.duration)
        chapter.end_time = t
    return t


def annotate_first_mentions(graph: KnowledgeGraph, segments: List[PodcastSegment]) -> None:
    """Set each concept's first-mention timestamp from the segment list."""
    first: Dict[str, float] = {}
    for segment in segments:
        for concept_id in segment.concepts:
            first.setdefault(concept_id, segment.timestamp)
    for concept in graph.concepts:
        concept.first_mentioned_at = first.get(concept.id)


class ScriptPlanner:
    """
    Service for planning the podcast script.

    Features:
    - Prerequisite-respecting concept ordering with topical grouping
    - Duration-scaled chapter partitioning (3-8 chapters)
    - Round-robin multi-voice turn plan per chapter
    - Regular question breakpoints
    - Predicted questions tied to discussed concepts and segments
    """

    def __init__(self, text_generator: TextGenerator):
        self.settings = get_settings()
        self.text_generator = text_generator

    async def generate_intelligent_script(
        self,
        documents: List[DocumentContent],
        graph: KnowledgeGraph,
        config: GenerationConfig
    ) -> ScriptResult:
        """
        Generate chapters, dialogue segments and predicted questions.

        Args:
            documents: Source documents
            graph: Knowledge graph built from the documents
            config: Target duration, language, style and voice profiles

        Returns:
            ScriptResult with title, description, chapters, segments, questions
        """
        if not graph.concepts:
            raise InputError("Cannot plan a script from an empty knowledge graph")
        roles = self.speaking_roles(config.voice_profiles)

        ordered = self.order_concepts(graph)
        groups = self.partition_concepts(ordered, config.target_duration)
        logger.info(f"Planning {len(groups)} chapters over {len(ordered)} concepts")

        outline = await self.generate_outline(documents, graph, groups, config)

        chapters: List[PodcastChapter] = []
        segments: List[PodcastSegment] = []
        turn_count = self.turns_per_chapter(config.target_duration, len(groups), len(roles))

        for index, concept_ids in enumerate(groups):
            entry = outline["chapters"][index]
            chapter = PodcastChapter(
                id=f"chapter-{index + 1}",
                title=entry["title"],
                concepts=list(concept_ids),
                difficulty=self.combined_difficulty(graph, concept_ids),
                summary=entry["summary"]
            )
            turns = await self.generate_chapter_dialogue(
                documents, graph, chapter, index, len(groups), roles, turn_count, config
            )
            segments.extend(self.build_segments(
                chapter, turns, roles, graph, len(segments), config.voice_profiles
            ))
            chapters.append(chapter)

        for segment in segments:
            segment.duration = estimate_seconds(segment.text, self.settings.words_per_minute)
        total = recompute_timings(chapters, segments)
        logger.info(
            f"Script: {len(segments)} segments, "
            f"{sum(count_words(s.text) for s in segments)} words, ~{total / 60:.1f} min estimated"
        )

        questions = await self.generate_predicted_questions(graph, segments, config)

        self.validate_script(graph, chapters, segments, questions)
        return ScriptResult(
            title=outline["title"],
            description=outline["description"],
            chapters=chapters,
            segments=segments,
            predicted_questions=questions
        )

    def speaking_roles(self, voice_profiles: Sequence[VoiceProfile]) -> List[SpeakerRole]:
        """Distinct roles in a stable order, host first."""
        if not voice_profiles:
            raise InputError("At least one voice profile is required")
        roles = []
        for profile in voice_profiles:
            if profile.role not in roles:
                roles.append(profile.role)
        if SpeakerRole.HOST in roles:
            roles.remove(SpeakerRole.HOST)
            roles.insert(0, SpeakerRole.HOST)
        return roles

    def order_concepts(self, graph: KnowledgeGraph) -> List[str]:
        """
        Order concepts so prerequisites come first.

        Among concepts whose prerequisites are placed, one sharing a
        ``related`` edge with the last placed concept is preferred, then
        graph order. Cycles are broken at the earliest remaining concept.
        """
        position = {c.id: i for i, c in enumerate(graph.concepts)}
        prerequisites: Dict[str, Set[str]] = {c.id: set() for c in graph.concepts}
        neighbours: Dict[str, Set[str]] = {c.id: set() for c in graph.concepts}

        for rel in graph.relationships:
            if rel.kind == RelationshipType.REQUIRES:
                prerequisites[rel.from_id].add(rel.to_id)
            elif rel.kind == RelationshipType.RELATED:
                neighbours[rel.from_id].add(rel.to_id)
                neighbours[rel.to_id].add(rel.from_id)

        placed: List[str] = []
        placed_set: Set[str] = set()
        remaining = sorted(position, key=position.get)

        while remaining:
            available = [c for c in remaining if prerequisites[c] <= placed_set]
            if not available:
                logger.warning(f"Prerequisite cycle among {remaining}, breaking at {remaining[0]}")
                available = [remaining[0]]

            pick = available[0]
            if placed:
                close = [c for c in available if c in neighbours[placed[-1]]]
                if close:
                    pick = close[0]

            placed.append(pick)
            placed_set.add(pick)
            remaining.remove(pick)

        return placed

    def chapter_count(self, target_duration: float, concept_count: int) -> int:
        """Chapters for a target length, monotonic in the duration."""
        wanted = round(target_duration / self.settings.minutes_per_chapter)
        wanted = max(self.settings.min_chapters, min(self.settings.max_chapters, wanted))
        return max(1, min(wanted, concept_count))

    def partition_concepts(self, ordered: List[str], target_duration: float) -> List[List[str]]:
        """Split the ordered concepts into contiguous, balanced chapter groups."""
        count = self.chapter_count(target_duration, len(ordered))
        base, extra = divmod(len(ordered), count)
        groups, start = [], 0
        for i in range(count):
            size = base + (1 if i < extra else 0)
            groups.append(ordered[start:start + size])
            start += size
        return groups

    def turns_per_chapter(self, target_duration: float, chapter_count: int, role_count: int) -> int:
        """Dialogue turns per chapter so total narration approximates the target."""
        total_words = target_duration * self.settings.words_per_minute
        words_per_chapter = total_words / max(1, chapter_count)
        turns = round(words_per_chapter / self.settings.words_per_turn)
        return max(role_count, min(MAX_TURNS_PER_CHAPTER, turns))

    def combined_difficulty(self, graph: KnowledgeGraph, concept_ids: Sequence[str]) -> Difficulty:
        """Rounded mean difficulty of a set of concepts."""
        ranks = [
            DIFFICULTY_RANK[c.difficulty]
            for c in graph.concepts if c.id in set(concept_ids)
        ]
        if not ranks:
            return Difficulty.MEDIUM
        return RANKED_DIFFICULTIES[round(sum(ranks) / len(ranks))]

    def _source_excerpts(self, documents: List[DocumentContent]) -> str:
        per_document = SOURCE_EXCERPT_CHARS // max(1, len(documents))
        return "\n\n---\n\n".join(
            f"Document: {doc.title}\n{doc.content[:per_document]}" for doc in documents
        )

    async def generate_outline(
        self,
        documents: List[DocumentContent],
        graph: KnowledgeGraph,
        groups: List[List[str]],
        config: GenerationConfig
    ) -> Dict[str, Any]:
        """Ask for the title, description and per-chapter titles and summaries."""
        names = {c.id: c.name for c in graph.concepts}
        chapter_plan = "\n".join(
            f"{i + 1}. " + ", ".join(names[cid] for cid in group)
            for i, group in enumerate(groups)
        )
        user_request = f"Listener's request: {config.user_prompt}\n" if config.user_prompt else ""

        response = await self.text_generator.generate(
            OUTLINE_PROMPT.format(
                language=language_name(config.language),
                style=config.style.value,
                target_duration=config.target_duration,
                user_request=user_request,
                sources=self._source_excerpts(documents),
                chapter_count=len(groups),
                chapter_plan=chapter_plan
            ),
            json_mode=True,
            temperature=0.7
        )
        data = parse_json_object(response)

        raw_chapters = data.get("chapters")
        if not isinstance(raw_chapters, list):
            raise MalformedResponseError("Outline has no 'chapters' list")

        chapters = []
        for i, group in enumerate(groups):
            entry = raw_chapters[i] if i < len(raw_chapters) and isinstance(raw_chapters[i], dict) else {}
            default_title = " & ".join(names[cid] for cid in group[:2])
            chapters.append({
                "title": str(entry.get("title") or default_title).strip(),
                "summary": str(entry.get("summary") or "").strip(),
            })

        return {
            "title": str(data.get("title") or "Podcast").strip(),
            "description": str(data.get("description") or "").strip(),
            "chapters": chapters,
        }

    async def generate_chapter_dialogue(
        self,
        documents: List[DocumentContent],
        graph: KnowledgeGraph,
        chapter: PodcastChapter,
        index: int,
        chapter_count: int,
        roles: List[SpeakerRole],
        turn_count: int,
        config: GenerationConfig
    ) -> List[Dict[str, Any]]:
        """Generate the raw dialogue turns of one chapter."""
        profiles = {p.role: p for p in config.voice_profiles}
        speakers = "\n".join(
            f"- {role.value}: {profiles[role].name}, {profiles[role].description}"
            for role in roles
        )
        concepts = "\n".join(
            f"- [{c.id}] {c.name}: {c.description}"
            for c in graph.concepts if c.id in chapter.concepts
        )
        turn_plan = ", ".join(roles[i % len(roles)].value for i in range(turn_count))

        if index == 0:
            position_note = "This is the opening: the host welcomes listeners and introduces the topic."
        elif index == chapter_count - 1:
            position_note = "This is the final chapter: finish with a short recap and goodbye."
        else:
            position_note = "Continue the conversation; do not re-introduce the podcast."

        response = await self.text_generator.generate(
            DIALOGUE_PROMPT.format(
                chapter_number=index + 1,
                chapter_count=chapter_count,
                language=language_name(config.language),
                chapter_title=chapter.title,
                speakers=speakers,
                style=config.style.value,
                chapter_summary=chapter.summary or chapter.title,
                concepts=concepts or "- (general overview)",
                sources=self._source_excerpts(documents),
                turn_count=turn_count,
                words_per_turn=self.settings.words_per_turn,
                turn_plan=turn_plan,
                position_note=position_note
            ),
            json_mode=True,
            temperature=0.8
        )
        data = parse_json_object(response)

        turns = data.get("segments")
        if not isinstance(turns, list):
            raise MalformedResponseError(f"Dialogue for {chapter.id} has no 'segments' list")
        turns = [
            t for t in turns
            if isinstance(t, dict) and str(t.get("text") or "").strip()
        ]
        if not turns:
            raise MalformedResponseError(f"Dialogue for {chapter.id} is empty")
        return turns

    def build_segments(
        self,
        chapter: PodcastChapter,
        turns: List[Dict[str, Any]],
        roles: List[SpeakerRole],
        graph: KnowledgeGraph,
        offset: int,
        voice_profiles: Sequence[VoiceProfile] = ()
    ) -> List[PodcastSegment]:
        """
        Turn raw dialogue into segments.

        Speakers follow the round-robin plan, concept references are limited
        to the graph, and every ``breakpoint_interval``-th segment of the
        podcast is a question breakpoint.
        """
        known = set(graph.concept_ids)
        labels = speaker_labels(voice_profiles)
        difficulty = {c.id: c.difficulty for c in graph.concepts}
        segments = []

        for i, turn in enumerate(turns):
            raw_concepts = turn.get("concepts") or []
            concept_ids = []
            if isinstance(raw_concepts, list):
                for cid in raw_concepts:
                    cid = str(cid).strip()
                    if cid in known and cid not in concept_ids:
                        concept_ids.append(cid)
            if not concept_ids and chapter.concepts:
                concept_ids = [chapter.concepts[i * len(chapter.concepts) // len(turns)]]

            ranks = [DIFFICULTY_RANK[difficulty[cid]] for cid in concept_ids]
            absolute = offset + i
            segments.append(PodcastSegment(
                id=f"segment-{absolute}",
                chapter_id=chapter.id,
                speaker=roles[i % len(roles)],
                text=self._clean_text(str(turn["text"]), labels),
                concepts=concept_ids,
                is_question_breakpoint=(absolute + 1) % self.settings.breakpoint_interval == 0,
                difficulty=RANKED_DIFFICULTIES[max(ranks)] if ranks else chapter.difficulty
            ))

        return segments

    def _clean_text(self, text: str, labels: Set[str]) -> str:
        # Drop a leading "Sophie:" / "HOST:" label the model sometimes adds
        match = re.match(r"\s*([^:\n]{1,40}?)\s*:\s+", text)
        if match and match.group(1).strip().lower() in labels:
            text = text[match.end():]
        return re.sub(r'\s+', ' ', text).strip()

    def question_count(self, config: GenerationConfig) -> int:
        if config.number_of_predicted_questions is not None:
            return max(0, config.number_of_predicted_questions)
        suggested = round(config.target_duration / 3)
        return max(
            self.settings.min_predicted_questions,
            min(self.settings.max_predicted_questions, suggested)
        )

    async def generate_predicted_questions(
        self,
        graph: KnowledgeGraph,
        segments: List[PodcastSegment],
        config: GenerationConfig
    ) -> List[PredictedQuestion]:
        """
        Generate predicted questions tied to concepts actually discussed.

        Questions with no discussed concept are dropped; the list is cut to
        the configured count.
        """
        count = self.question_count(config)
        if count == 0:
            return []

        discussed: List[str] = []
        for segment in segments:
            for cid in segment.concepts:
                if cid not in discussed:
                    discussed.append(cid)
        concepts = [graph.get_concept(cid) for cid in discussed]

        response = await self.text_generator.generate(
            QUESTIONS_PROMPT.format(
                language=language_name(config.language),
                concepts="\n".join(f"- [{c.id}] {c.name}: {c.description}" for c in concepts),
                count=count
            ),
            json_mode=True,
            temperature=0.6
        )
        data = parse_json_object(response)
        items = data.get("questions")
        if not isinstance(items, list):
            raise MalformedResponseError("Predicted questions output has no 'questions' list")

        questions: List[PredictedQuestion] = []
        for item in items:
            if len(questions) >= count:
                break
            if not isinstance(item, dict):
                continue
            question = str(item.get("question") or "").strip()
            answer = str(item.get("answer") or "").strip()
            if not question or not answer:
                continue

            relevant = self._relevant_concepts(item, question, concepts, set(discussed))
            if not relevant:
                logger.warning(f"Dropping predicted question with no discussed concept: {question[:60]}")
                continue

            questions.append(PredictedQuestion(
                id=f"predicted-q-{len(questions)}",
                question=question,
                answer=answer,
                relevant_concepts=relevant,
                related_segments=self.find_related_segments(relevant, segments)
            ))

        if len(questions) < min(count, self.settings.min_predicted_questions):
            logger.warning(f"Only {len(questions)} predicted questions usable (wanted {count})")
        return questions

    def _relevant_concepts(self, item, question, concepts, discussed: Set[str]) -> List[str]:
        raw = item.get("relevantConcepts") or item.get("relevant_concepts") or []
        relevant = []
        if isinstance(raw, list):
            for cid in raw:
                cid = str(cid).strip()
                if cid in discussed and cid not in relevant:
                    relevant.append(cid)
        if not relevant:
            lowered = question.lower()
            relevant = [c.id for c in concepts if c.name.lower() in lowered]
        return relevant

    @staticmethod
    def find_related_segments(concept_ids: Sequence[str], segments: List[PodcastSegment]) -> List[str]:
        """Ids of segments discussing any of the given concepts."""
        wanted = set(concept_ids)
        return [s.id for s in segments if wanted.intersection(s.concepts)]

    @staticmethod
    def validate_script(
        graph: KnowledgeGraph,
        chapters: List[PodcastChapter],
        segments: List[PodcastSegment],
        questions: List[PredictedQuestion]
    ) -> None:
        """Raise ValueError if a generated script breaks a structural invariant."""
        known = set(graph.concept_ids)
        chapter_order = {c.id: i for i, c in enumerate(chapters)}

        for chapter in chapters:
            if not any(s.chapter_id == chapter.id for s in segments):
                raise ValueError(f"Chapter {chapter.id} has no segments")

        previous_chapter, previous_time = -1, 0.0
        for segment in segments:
            if segment.chapter_id not in chapter_order:
                raise ValueError(f"Segment {segment.id} references unknown chapter {segment.chapter_id}")
            if chapter_order[segment.chapter_id] < previous_chapter:
                raise ValueError(f"Segment {segment.id} is out of chapter order")
            if segment.timestamp < previous_time:
                raise ValueError(f"Segment {segment.id} timestamp decreases")
            if not set(segment.concepts) <= known:
                raise ValueError(f"Segment {segment.id} references unknown concepts")
            previous_chapter = chapter_order[segment.chapter_id]
            previous_time = segment.timestamp

        expected_start = 0.0
        for chapter in chapters:
            if abs(chapter.start_time - expected_start) > 1e-6 or chapter.end_time < chapter.start_time:
                raise ValueError(f"Chapter {chapter.id} interval is not contiguous")
            expected_start = chapter.end_time

        segment_ids = {s.id for s in segments}
        for question in questions:
            if not set(question.relevant_concepts) <= known:
                raise ValueError(f"Question {question.id} references unknown concepts")
            if not question.related_segments or not set(question.related_segments) <= segment_ids:
                raise ValueError(f"Question {question.id} has no valid related segment")
