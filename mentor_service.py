"""
Mentor service composing the knowledge graph components.

This is the surface a protocol server calls: track a learning conversation,
look up gaps and recommendations, read progress views with a fallback to the
overview, and render Markdown context for the mentor prompts.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import logfire

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager, get_neo4j_connection
from mentor_entities import DetailLevel, EntityFactory, LearningStyle, UserEntity
from entity_repository import EntityRepository
from knowledge_state import ConversationAnalysis, EvidenceResult, KnowledgeStateEngine
from recommendations import (
    ConceptGaps,
    MissingPrerequisite,
    RecommendationEngine,
    Recommendation,
    KNOWN_PROFICIENCY_THRESHOLD,
)
from knowledge_overview import (
    ConceptProgress,
    KnowledgeOverview,
    LearningEventSummary,
    RelatedConcepts,
    TopicKnowledge,
    DEFAULT_RECENT_EVENTS_LIMIT,
)
from conversation_analysis import ConversationAnalyzer


logger = logging.getLogger(__name__)


CONTEXT_RECENT_EVENTS = 5


class ProgressScope(str, Enum):
    """Views of a learner's progress."""
    OVERVIEW = "overview"
    TOPIC = "topic"
    CONCEPT = "concept"
    RELATED = "related"
    NEXT = "next"
    GAPS = "gaps"
    RECENT = "recent"


@dataclass
class TrackingResult:
    """Outcome of tracking one conversation."""
    user_id: str
    programming_related: bool
    analysis: Optional[ConversationAnalysis] = None
    updates: List[EvidenceResult] = field(default_factory=list)

    @property
    def tracked(self) -> bool:
        return bool(self.updates)

    @property
    def concepts(self) -> List[str]:
        return [update.concept_name for update in self.updates]


class MentorService:
    """Entry point for the protocol-server layer."""

    def __init__(self,
                 connection: Optional[Neo4jConnectionManager] = None,
                 analyzer: Optional[ConversationAnalyzer] = None,
                 config: Optional[RuntimeConfig] = None):
        """Initialize the service and its components.

        Args:
            connection: Neo4j connection manager shared by all components
            analyzer: LLM conversation analyzer
            config: Runtime configuration
        """
        self.config = config or get_config()
        self.connection = connection or get_neo4j_connection()
        self.repository = EntityRepository(connection=self.connection, config=self.config)
        self.knowledge = KnowledgeStateEngine(
            connection=self.connection, repository=self.repository, config=self.config
        )
        self.recommendations = RecommendationEngine(connection=self.connection, config=self.config)
        self.overview = KnowledgeOverview(connection=self.connection, config=self.config)
        self.analyzer = analyzer or ConversationAnalyzer(config=self.config)

    async def get_or_create_user(self,
                                 user_id: str,
                                 learning_style: Optional[LearningStyle] = None,
                                 detail_level: Optional[DetailLevel] = None) -> UserEntity:
        """Fetch a learner, creating them with default preferences if new.

        Preferences given for an existing learner replace the stored ones.
        """
        created = await self.repository.ensure_user(
            EntityFactory.create_new_user(user_id, learning_style=learning_style, detail_level=detail_level)
        )
        if not created and (learning_style or detail_level):
            return await self.repository.update_learning_preferences(user_id, learning_style, detail_level)
        return await self.repository.get_user(user_id)

    async def track_learning(self,
                             user_id: str,
                             conversation: str,
                             topic_hint: Optional[str] = None) -> TrackingResult:
        """Analyse a conversation and fold its evidence into the learner's profile.

        Args:
            user_id: Learner id; created if new
            conversation: Conversation text
            topic_hint: Main topic, if known

        Returns:
            What was recognised and updated
        """
        with logfire.span('track_learning', user_id=user_id):
            await self.get_or_create_user(user_id)

            if not await self.analyzer.is_programming_related(conversation):
                logger.info(f"Conversation for {user_id} is not programming related; nothing tracked")
                return TrackingResult(user_id=user_id, programming_related=False)

            analysis = await self.analyzer.analyze_conversation(conversation, topic_hint=topic_hint)
            updates: List[EvidenceResult] = []
            if analysis.concepts:
                updates = await self.knowledge.update_learning_profile(user_id, analysis)

        return TrackingResult(
            user_id=user_id,
            programming_related=True,
            analysis=analysis,
            updates=updates,
        )

    async def find_knowledge_gaps(self, user_id: str, concept_names: Sequence[str]) -> List[ConceptGaps]:
        return await self.recommendations.find_missing_prerequisites(user_id, concept_names)

    async def recommend_next_concepts(self, user_id: str, topic: Optional[str] = None) -> List[Recommendation]:
        await self.get_or_create_user(user_id)
        return await self.recommendations.recommend_next(user_id, topic)

    async def get_learning_progress(self,
                                    user_id: str,
                                    scope: str = ProgressScope.OVERVIEW.value,
                                    identifier: Optional[str] = None) -> Dict[str, Any]:
        """Read one progress view as JSON-ready data.

        Unknown scopes, scopes missing their identifier, and views whose
        subject does not exist all fall back to the overview.

        Args:
            user_id: Learner id; created if new
            scope: One of overview, topic, concept, related, next, gaps, recent
            identifier: Topic or concept name, or the event limit for recent

        Returns:
            ``{"scope": <scope served>, "data": <view>}``
        """
        await self.get_or_create_user(user_id)

        try:
            requested = ProgressScope(scope or ProgressScope.OVERVIEW.value)
        except ValueError:
            logger.debug(f"Unknown progress scope '{scope}', using overview")
            requested = ProgressScope.OVERVIEW

        data: Any = None
        if requested == ProgressScope.TOPIC and identifier:
            data = await self.overview.topic_knowledge(identifier, user_id)
        elif requested == ProgressScope.CONCEPT and identifier:
            concepts = await self.overview.concept_knowledge([identifier], user_id)
            data = concepts[0] if concepts else None
        elif requested == ProgressScope.RELATED and identifier:
            data = await self.overview.related_concepts(identifier, user_id)
        elif requested == ProgressScope.NEXT:
            data = await self.recommendations.recommend_next(user_id, identifier)
        elif requested == ProgressScope.GAPS and identifier:
            data = await self.recommendations.find_missing_prerequisites(user_id, [identifier])
        elif requested == ProgressScope.RECENT:
            data = await self.overview.recent_learning_events(user_id, self._parse_limit(identifier))

        if data is None:
            if requested != ProgressScope.OVERVIEW:
                logger.debug(f"No {requested.value} view for '{identifier}', falling back to overview")
            requested = ProgressScope.OVERVIEW
            data = await self.overview.user_overview(user_id)

        return {'scope': requested.value, 'data': to_jsonable(data)}

    @staticmethod
    def _parse_limit(identifier: Optional[str]) -> int:
        try:
            limit = int(identifier) if identifier else DEFAULT_RECENT_EVENTS_LIMIT
        except ValueError:
            return DEFAULT_RECENT_EVENTS_LIMIT
        return limit if limit > 0 else DEFAULT_RECENT_EVENTS_LIMIT

    async def build_learning_context(self,
                                     user_id: str,
                                     question: str = "",
                                     topic: Optional[str] = None) -> str:
        """Render the learner's profile, focused on a question, as Markdown.

        A topic that exists adds a section with the learner's standing in it;
        an unknown topic is left out.
        """
        user = await self.get_or_create_user(user_id)
        profile = await self.repository.get_learning_profile(user_id)

        concept_names = await self.overview.identify_concepts_in_text(question)
        concepts = await self.overview.concept_knowledge(concept_names, user_id)
        gaps = await self.recommendations.find_missing_prerequisites(user_id, concept_names)
        recent = await self.overview.recent_learning_events(user_id, CONTEXT_RECENT_EVENTS)

        context = format_learning_context(user, profile.learning_goals, concepts, gaps, recent)
        if topic:
            knowledge = await self.overview.topic_knowledge(topic, user_id)
            if knowledge is None:
                logger.debug(f"Topic '{topic}' not found, leaving it out of the context")
            else:
                context += "\n" + format_topic_context(knowledge)
        return context

    async def build_learning_path_context(self, user_id: str, topic: str) -> str:
        """Render what a learner knows and should learn next in a topic."""
        with logfire.span('build_learning_path_context', user_id=user_id, topic=topic):
            user = await self.get_or_create_user(user_id)
            profile = await self.repository.get_learning_profile(user_id)

            recommendations = await self.recommendations.recommend_next(user_id, topic)
            knowledge = await self.overview.topic_knowledge(topic, user_id)
            known = [
                concept for concept in (knowledge.concepts if knowledge else [])
                if concept.proficiency is not None and concept.proficiency >= KNOWN_PROFICIENCY_THRESHOLD
            ]

        return format_learning_path_context(topic, user, profile.learning_goals, known, recommendations)

    async def build_concept_context(self,
                                    user_id: str,
                                    concept: str,
                                    learning_style: Optional[LearningStyle] = None,
                                    detail_level: Optional[DetailLevel] = None) -> str:
        """Render the context for explaining one concept to a learner.

        Args:
            user_id: Learner id; created if new
            concept: Concept to explain
            learning_style: Style for this explanation only; defaults to the learner's
            detail_level: Detail level for this explanation only; defaults to the learner's

        Returns:
            Markdown with related concepts and missing prerequisites
        """
        user = await self.get_or_create_user(user_id)
        style = LearningStyle(learning_style).value if learning_style else user.learning_style
        detail = DetailLevel(detail_level).value if detail_level else user.default_detail_level

        related = await self.overview.related_concepts(concept, user_id)
        gaps = await self.recommendations.find_missing_prerequisites(user_id, [concept])
        missing = gaps[0].missing_prerequisites if gaps else []

        return format_concept_context(concept, style, detail, related, missing)


def to_jsonable(data: Any) -> Any:
    """Dump result records (or lists of them) to JSON-compatible values."""
    if isinstance(data, list):
        return [to_jsonable(item) for item in data]
    if hasattr(data, 'model_dump'):
        return data.model_dump(mode='json')
    return data


def format_learning_context(user: UserEntity,
                            learning_goals: str,
                            concepts: Sequence[ConceptProgress],
                            gaps: Sequence[ConceptGaps],
                            recent: Sequence[LearningEventSummary]) -> str:
    """Markdown learning profile used as context for a mentor prompt."""
    lines = [
        f"# Learning Profile for {user.name}",
        "",
        "## Learning Preferences",
        f"- Preferred learning style: {user.learning_style}",
        f"- Default detail level: {user.default_detail_level}",
        "",
        "## Knowledge Status",
    ]
    if not concepts:
        lines.append("No recorded knowledge of the concepts in this question.")
    for concept in concepts:
        lines += [
            "",
            f"### {concept.name}",
            f"- Proficiency: {concept.proficiency if concept.proficiency is not None else 'Unknown'}/5",
            f"- Knowledge stage: {concept.knowledge_stage or 'Not assessed'}",
            f"- First seen: {concept.first_seen.date().isoformat() if concept.first_seen else 'N/A'}",
            f"- Topics: {', '.join(concept.topics) or 'None'}",
        ]

    lines += ["", "## Knowledge Gaps"]
    gaps = [gap for gap in gaps if gap.has_gaps]
    if not gaps:
        lines.append("No missing prerequisites.")
    for gap in gaps:
        lines += ["", f"### For {gap.concept_name}"]
        for prereq in gap.missing_prerequisites:
            level = prereq.proficiency if prereq.proficiency is not None else "Not learned"
            lines.append(f"- {prereq.name} (Proficiency: {level}/5)")
            if prereq.explanation:
                lines.append(f"  - {prereq.explanation}")

    lines += ["", "## Recent Learning Activities"]
    if not recent:
        lines.append("No recent learning activity.")
    for event in recent:
        lines.append(
            f"- {event.timestamp.strftime('%Y-%m-%d %H:%M')}: {event.event_type} - {', '.join(event.concepts)}"
        )
        if event.details:
            lines.append(f"  - {event.details}")

    lines += ["", "## Learning Goals", learning_goals or "No specific learning goals set."]
    return "\n".join(lines) + "\n"


def format_topic_context(topic: TopicKnowledge) -> str:
    """Markdown section on a learner's standing in one topic."""
    known = sum(1 for concept in topic.concepts if concept.known)
    return "\n".join([
        f"# Topic Context: {topic.name}",
        f"- Category: {topic.category or 'Uncategorized'}",
        f"- Difficulty: {topic.difficulty or 'Not rated'}/5",
        f"- Your current priority: {topic.priority or 'Not set'}/5",
        f"- Related concepts known: {known}/{len(topic.concepts)}",
    ]) + "\n"


def format_learning_path_context(topic: str,
                                 user: UserEntity,
                                 learning_goals: str,
                                 known: Sequence[ConceptProgress],
                                 recommendations: Sequence[Recommendation]) -> str:
    lines = [f"# Creating a Learning Path for {topic}"]

    if known:
        lines += ["", "## Concepts You Already Know"]
        lines += [f"- {concept.name} (Proficiency: {concept.proficiency}/5)" for concept in known]

    if recommendations:
        lines += ["", "## Recommended Next Concepts"]
        for recommendation in recommendations:
            lines.append(f"- {recommendation.name} (Complexity: {recommendation.complexity}/5)")
            if recommendation.short_explanation:
                lines.append(f"  - {recommendation.short_explanation}")

    lines += [
        "",
        "## Your Learning Preferences",
        f"- Learning style: {user.learning_style}",
        f"- Detail level: {user.default_detail_level}",
    ]
    if learning_goals:
        lines.append(f"- Current learning goals: {learning_goals}")
    return "\n".join(lines) + "\n"


def format_concept_context(concept: str,
                           learning_style: str,
                           detail_level: str,
                           related: Optional[RelatedConcepts],
                           missing: Sequence[MissingPrerequisite]) -> str:
    """Markdown context for explaining a concept.

    Known related concepts are listed with the learner's proficiency so an
    explanation can build on them.
    """
    lines = [
        f"# Explain: {concept}",
        "",
        "## Explanation Preferences",
        f"- Learning style: {learning_style}",
        f"- Detail level: {detail_level}",
    ]

    if related is not None and related.all:
        lines += ["", "## Related Concepts"]
        if related.known:
            lines += ["", "### Concepts You Already Know"]
            for rel in related.known:
                lines.append(
                    f"- {rel.name} (Relationship: {rel.relationship_type or 'related'}, "
                    f"Proficiency: {rel.proficiency if rel.proficiency is not None else '?'}/5)"
                )
                if rel.contextual_note:
                    lines.append(f"  - {rel.contextual_note}")
        if related.unknown:
            lines += ["", "### Related Concepts You Haven't Learned Yet"]
            for rel in related.unknown:
                lines.append(f"- {rel.name} (Relationship: {rel.relationship_type or 'related'})")
                if rel.contextual_note:
                    lines.append(f"  - {rel.contextual_note}")

    if missing:
        lines += ["", "## Prerequisites You Might Need"]
        for prereq in missing:
            lines.append(f"- {prereq.name}")
            if prereq.explanation:
                lines.append(f"  - {prereq.explanation}")
    return "\n".join(lines) + "\n"
