"""
Overview and query façade over the knowledge graph.

Read-only views of a learner's knowledge: profile overview, topic and concept
knowledge, related concepts and recent activity. Every call reads fresh from
the store. Absent subjects are reported as None (or an empty list) rather
than raised, so callers can fall back to another view. The learner is
optional where a view makes sense without one.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager, get_neo4j_connection
from mentor_entities import ConceptEntity, TopicEntity


logger = logging.getLogger(__name__)


DEFAULT_RECENT_EVENTS_LIMIT = 10


class OverviewRecord(BaseModel):
    """Result record validated from camelCase graph rows."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ConceptSummary(OverviewRecord):
    name: str
    proficiency: Optional[int] = None
    knowledge_stage: Optional[str] = None


class TrackedTopic(OverviewRecord):
    name: str
    category: Optional[str] = None
    priority: Optional[int] = None
    active: bool = True
    goal: Optional[str] = None


class UserOverview(OverviewRecord):
    """Summary of a learner's profile and knowledge."""

    user_id: str
    name: str
    learning_style: Optional[str] = None
    default_detail_level: Optional[str] = None
    learning_goals: str = ""
    active_topics: List[str] = Field(default_factory=list)
    known_concepts: List[ConceptSummary] = Field(default_factory=list)
    tracked_topics: List[TrackedTopic] = Field(default_factory=list)

    @computed_field
    @property
    def known_concepts_count(self) -> int:
        return len(self.known_concepts)

    @computed_field
    @property
    def tracked_topics_count(self) -> int:
        return len(self.tracked_topics)


class ConceptProgress(OverviewRecord):
    """A concept with the learner's knowledge of it, if any."""

    name: str
    description: Optional[str] = None
    complexity: Optional[int] = None
    short_explanation: Optional[str] = None
    proficiency: Optional[int] = None
    knowledge_stage: Optional[str] = None
    evidence_count: Optional[int] = None
    first_seen: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    topics: List[str] = Field(default_factory=list)

    @property
    def known(self) -> bool:
        return self.proficiency is not None


class TopicKnowledge(OverviewRecord):
    """A topic, the learner's tracking of it and their knowledge of its concepts."""

    name: str
    category: Optional[str] = None
    difficulty: Optional[int] = None
    summary: Optional[str] = None
    tracked: bool = False
    active: Optional[bool] = None
    priority: Optional[int] = None
    goal: Optional[str] = None
    concepts: List[ConceptProgress] = Field(default_factory=list)


class RelatedConcept(OverviewRecord):
    name: str
    relationship_type: Optional[str] = None
    strength: Optional[float] = None
    contextual_note: Optional[str] = None
    direction: str = "outgoing"
    known: bool = False
    proficiency: Optional[int] = None


class RelatedConcepts(OverviewRecord):
    """Concepts related to a source concept, split by whether the learner knows them."""

    source_concept: str
    known: List[RelatedConcept] = Field(default_factory=list)
    unknown: List[RelatedConcept] = Field(default_factory=list)

    @property
    def all(self) -> List[RelatedConcept]:
        return self.known + self.unknown


class LearningEventSummary(OverviewRecord):
    id: str
    timestamp: datetime
    event_type: str
    details: str = ""
    concepts: List[str] = Field(default_factory=list)


class KnowledgeOverview:
    """Read-only queries over a learner's knowledge."""

    def __init__(self,
                 connection: Optional[Neo4jConnectionManager] = None,
                 config: Optional[RuntimeConfig] = None):
        self.config = config or get_config()
        self.connection = connection or get_neo4j_connection()

    async def user_overview(self, user_id: str) -> Optional[UserOverview]:
        """Summarise a learner's profile, or None if they have none."""
        query = """
        MATCH (u:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        OPTIONAL MATCH (lp)-[k:KNOWS]->(c:Concept)
        WITH u, lp, collect(CASE WHEN c IS NULL THEN NULL ELSE {
            name: c.name,
            proficiency: k.proficiency,
            knowledgeStage: k.knowledgeStage
        } END) AS knownConcepts
        OPTIONAL MATCH (lp)-[t:TRACKS]->(topic:Topic)
        WITH u, lp, knownConcepts, collect(CASE WHEN topic IS NULL THEN NULL ELSE {
            name: topic.name,
            category: topic.category,
            priority: t.priority,
            active: t.active,
            goal: t.goal
        } END) AS trackedTopics
        RETURN u.id AS userId,
               u.name AS name,
               u.learningStyle AS learningStyle,
               u.defaultDetailLevel AS defaultDetailLevel,
               lp.learningGoals AS learningGoals,
               knownConcepts,
               trackedTopics
        """
        records = await self.connection.execute_query_async(query, {'user_id': user_id})
        if not records:
            logger.debug(f"No learning profile for {user_id}")
            return None

        record = records[0]
        known = sorted(record['knownConcepts'], key=lambda c: (-(c.get('proficiency') or 0), c['name']))
        tracked = sorted(record['trackedTopics'], key=lambda t: (-(t.get('priority') or 0), t['name']))
        return UserOverview.model_validate({
            **record,
            'learningGoals': record.get('learningGoals') or "",
            'knownConcepts': known,
            'trackedTopics': tracked,
            'activeTopics': [t['name'] for t in tracked if t.get('active')],
        })

    async def topic_knowledge(self, topic_name: str, user_id: Optional[str] = None) -> Optional[TopicKnowledge]:
        """Describe a topic and, given a learner, their knowledge of it."""
        query = """
        MATCH (topic:Topic {name: $topic})
        OPTIONAL MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        OPTIONAL MATCH (lp)-[t:TRACKS]->(topic)
        OPTIONAL MATCH (topic)<-[:BELONGS_TO]-(c:Concept)
        OPTIONAL MATCH (lp)-[k:KNOWS]->(c)
        RETURN topic.name AS name,
               topic.category AS category,
               topic.difficulty AS difficulty,
               topic.summary AS summary,
               t IS NOT NULL AS tracked,
               t.active AS active,
               t.priority AS priority,
               t.goal AS goal,
               collect(DISTINCT CASE WHEN c IS NULL THEN NULL ELSE {
                   name: c.name,
                   description: c.description,
                   complexity: c.complexity,
                   proficiency: k.proficiency,
                   knowledgeStage: k.knowledgeStage,
                   evidenceCount: k.evidenceCount,
                   firstSeen: k.firstSeen,
                   lastUpdated: k.lastUpdated
               } END) AS concepts
        """
        records = await self.connection.execute_query_async(query, {
            'topic': topic_name.strip(),
            'user_id': user_id,
        })
        if not records:
            return None

        record = records[0]
        return TopicKnowledge.model_validate({
            **record,
            'concepts': sorted(record['concepts'], key=lambda c: c['name']),
        })

    async def concept_knowledge(self,
                                concept_names: Sequence[str],
                                user_id: Optional[str] = None) -> List[ConceptProgress]:
        """Describe the named concepts that exist, in the order asked for."""
        names = list(dict.fromkeys(name.strip() for name in concept_names if name and name.strip()))
        if not names:
            return []

        query = """
        MATCH (c:Concept)
        WHERE c.name IN $names
        OPTIONAL MATCH (:User {id: $user_id})-[:HAS]->(:LearningProfile)-[k:KNOWS]->(c)
        OPTIONAL MATCH (c)-[:BELONGS_TO]->(t:Topic)
        RETURN c.name AS name,
               c.description AS description,
               c.complexity AS complexity,
               c.shortExplanation AS shortExplanation,
               k.proficiency AS proficiency,
               k.knowledgeStage AS knowledgeStage,
               k.evidenceCount AS evidenceCount,
               k.firstSeen AS firstSeen,
               k.lastUpdated AS lastUpdated,
               collect(DISTINCT t.name) AS topics
        """
        records = await self.connection.execute_query_async(query, {'names': names, 'user_id': user_id})
        by_name = {record['name']: ConceptProgress.model_validate(record) for record in records}
        return [by_name[name] for name in names if name in by_name]

    async def related_concepts(self, concept_name: str, user_id: Optional[str] = None) -> Optional[RelatedConcepts]:
        """List concepts related to one concept in either direction."""
        query = """
        MATCH (c:Concept {name: $concept})
        OPTIONAL MATCH (c)-[r:RELATED_TO]-(related:Concept)
        OPTIONAL MATCH (:User {id: $user_id})-[:HAS]->(:LearningProfile)-[k:KNOWS]->(related)
        RETURN c.name AS sourceConcept,
               collect(CASE WHEN related IS NULL THEN NULL ELSE {
                   name: related.name,
                   relationshipType: r.relationshipType,
                   strength: r.strength,
                   contextualNote: r.contextualNote,
                   direction: CASE WHEN startNode(r) = c THEN 'outgoing' ELSE 'incoming' END,
                   known: k IS NOT NULL,
                   proficiency: k.proficiency
               } END) AS related
        """
        records = await self.connection.execute_query_async(query, {
            'concept': concept_name.strip(),
            'user_id': user_id,
        })
        if not records:
            return None

        related = sorted(
            (RelatedConcept.model_validate(entry) for entry in records[0]['related']),
            key=lambda r: (-(r.strength or 0.0), r.name),
        )
        return RelatedConcepts(
            source_concept=records[0]['sourceConcept'],
            known=[r for r in related if r.known],
            unknown=[r for r in related if not r.known],
        )

    async def recent_learning_events(self,
                                     user_id: str,
                                     limit: int = DEFAULT_RECENT_EVENTS_LIMIT) -> List[LearningEventSummary]:
        """A learner's most recent learning events, newest first."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")

        query = """
        MATCH (:User {id: $user_id})-[:EXPERIENCED]->(le:LearningEvent)
        OPTIONAL MATCH (le)-[:INVOLVES]->(c:Concept)
        WITH le, collect(DISTINCT c.name) AS concepts
        RETURN le.id AS id,
               le.timestamp AS timestamp,
               le.eventType AS eventType,
               le.details AS details,
               concepts
        ORDER BY le.timestamp DESC, le.id
        LIMIT $limit
        """
        records = await self.connection.execute_query_async(query, {'user_id': user_id, 'limit': int(limit)})
        return [
            LearningEventSummary.model_validate({**record, 'details': record.get('details') or ""})
            for record in records
        ]

    async def identify_concepts_in_text(self, text: str) -> List[str]:
        """Names of stored concepts mentioned in free text, longest first."""
        if not text or not text.strip():
            return []

        records = await self.connection.execute_query_async(
            """
            MATCH (c:Concept)
            WHERE size(c.name) > 0 AND toLower($text) CONTAINS toLower(c.name)
            RETURN c.name AS name
            ORDER BY size(c.name) DESC, name
            """,
            {'text': text}
        )
        return [record['name'] for record in records]

    async def list_topics(self) -> List[TopicEntity]:
        records = await self.connection.execute_query_async(
            "MATCH (t:Topic) RETURN properties(t) AS properties ORDER BY t.name"
        )
        return [TopicEntity.model_validate(record['properties']) for record in records]

    async def list_concepts(self, topic_name: Optional[str] = None) -> List[ConceptEntity]:
        if topic_name:
            query = """
            MATCH (c:Concept)-[:BELONGS_TO]->(:Topic {name: $topic})
            RETURN properties(c) AS properties ORDER BY c.name
            """
        else:
            query = "MATCH (c:Concept) RETURN properties(c) AS properties ORDER BY c.name"
        records = await self.connection.execute_query_async(
            query, {'topic': topic_name.strip() if topic_name else None}
        )
        return [ConceptEntity.model_validate(record['properties']) for record in records]
