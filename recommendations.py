"""
Gap and recommendation engine.

Finds the prerequisites a learner is missing for a set of target concepts and
ranks which concepts the learner should study next. Graph reads return raw
candidate rows; the filtering and scoring policy is applied in Python so it
can be tested without a database.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import logfire
from pydantic import BaseModel, Field

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager, get_neo4j_connection
from mentor_errors import NotFoundError


logger = logging.getLogger(__name__)


# Proficiency at which a prerequisite counts as "working knowledge"
KNOWN_PROFICIENCY_THRESHOLD = 3
# Concepts at or above this proficiency are no longer recommended
RECOMMENDATION_PROFICIENCY_CEILING = 4
DEFAULT_TOPIC_PRIORITY = 3
DEFAULT_COMPLEXITY = 3
RECOMMENDATION_LIMIT = 5


class MissingPrerequisite(BaseModel):
    """A prerequisite the learner does not yet know well enough."""

    name: str
    description: str = ""
    strength: float = 0.5
    explanation: str = ""
    proficiency: Optional[int] = Field(default=None, description="Current proficiency, None if never seen")


class ConceptGaps(BaseModel):
    """Missing prerequisites of one target concept."""

    concept_name: str
    missing_prerequisites: List[MissingPrerequisite] = Field(default_factory=list)

    @property
    def has_gaps(self) -> bool:
        return bool(self.missing_prerequisites)


class Recommendation(BaseModel):
    """A concept recommended for study, with its score."""

    name: str
    description: str = ""
    complexity: int = DEFAULT_COMPLEXITY
    short_explanation: str = ""
    topics: List[str] = Field(default_factory=list)
    topic_priority: int = DEFAULT_TOPIC_PRIORITY
    recommendation_score: int


@dataclass
class CandidateConcept:
    """A concept the learner has not yet reached practicing proficiency in."""
    name: str
    description: str = ""
    complexity: Optional[int] = None
    short_explanation: str = ""
    topics: List[str] = field(default_factory=list)
    active_tracks: Dict[str, Optional[int]] = field(default_factory=dict)
    prerequisite_count: int = 0
    known_prerequisite_count: int = 0

    @property
    def prerequisites_met(self) -> bool:
        return self.prerequisite_count == 0 or self.prerequisite_count == self.known_prerequisite_count

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'CandidateConcept':
        return cls(
            name=record['name'],
            description=record.get('description') or "",
            complexity=record.get('complexity'),
            short_explanation=record.get('shortExplanation') or "",
            topics=sorted(record.get('topics') or []),
            active_tracks={
                track['topic']: track.get('priority')
                for track in record.get('activeTracks') or []
                if track and track.get('topic')
            },
            prerequisite_count=record.get('prereqCount') or 0,
            known_prerequisite_count=record.get('knownPrereqCount') or 0,
        )


def is_missing(proficiency: Optional[int]) -> bool:
    """A prerequisite is missing when never seen or below working knowledge."""
    return proficiency is None or proficiency < KNOWN_PROFICIENCY_THRESHOLD


def rank_candidates(candidates: Sequence[CandidateConcept],
                    topic: Optional[str] = None,
                    has_active_tracks: bool = False,
                    limit: int = RECOMMENDATION_LIMIT) -> List[Recommendation]:
    """Filter, score and order recommendation candidates.

    With a topic, only concepts of that topic are considered. Without one,
    active tracking restricts candidates to tracked topics; a learner who
    tracks nothing gets the whole graph. Score is twice the highest active
    topic priority in scope (3 if none) minus complexity (3 if unset); ties
    go to the alphabetically first name.

    Args:
        candidates: Candidate rows from the graph
        topic: Optional topic filter
        has_active_tracks: Whether the learner actively tracks any topic
        limit: Maximum number of recommendations

    Returns:
        Recommendations, best first
    """
    ranked = []
    for candidate in candidates:
        if not candidate.prerequisites_met:
            continue

        if topic is not None:
            if topic not in candidate.topics:
                continue
            priorities = [p for t, p in candidate.active_tracks.items() if t == topic]
        else:
            if has_active_tracks and not candidate.active_tracks:
                continue
            priorities = list(candidate.active_tracks.values())

        priorities = [p for p in priorities if p is not None]
        topic_priority = max(priorities) if priorities else DEFAULT_TOPIC_PRIORITY
        complexity = candidate.complexity if candidate.complexity is not None else DEFAULT_COMPLEXITY

        ranked.append(Recommendation(
            name=candidate.name,
            description=candidate.description,
            complexity=complexity,
            short_explanation=candidate.short_explanation,
            topics=candidate.topics,
            topic_priority=topic_priority,
            recommendation_score=topic_priority * 2 - complexity,
        ))

    ranked.sort(key=lambda r: (-r.recommendation_score, r.name))
    return ranked[:limit]


class RecommendationEngine:
    """Computes prerequisite gaps and next-concept recommendations."""

    def __init__(self,
                 connection: Optional[Neo4jConnectionManager] = None,
                 config: Optional[RuntimeConfig] = None):
        """Initialize the engine.

        Args:
            connection: Neo4j connection manager
            config: Runtime configuration
        """
        self.config = config or get_config()
        self.connection = connection or get_neo4j_connection()

    async def find_missing_prerequisites(self, user_id: str, concept_names: Sequence[str]) -> List[ConceptGaps]:
        """Find unmet prerequisites for each target concept.

        A learner without a profile is treated as knowing nothing. Target
        concepts without prerequisites (or that do not exist) are omitted.

        Args:
            user_id: Learner id
            concept_names: Target concepts, in the order results should follow

        Returns:
            Per target concept, its missing prerequisites ordered by strength
        """
        names = list(dict.fromkeys(name.strip() for name in concept_names if name and name.strip()))
        if not names:
            return []

        query = """
        UNWIND $concepts AS conceptName
        MATCH (prereq:Concept)-[p:PREREQUISITE_FOR]->(:Concept {name: conceptName})
        OPTIONAL MATCH (:User {id: $user_id})-[:HAS]->(:LearningProfile)-[k:KNOWS]->(prereq)
        RETURN conceptName,
               prereq.name AS name,
               prereq.description AS description,
               p.strength AS strength,
               p.explanation AS explanation,
               k.proficiency AS proficiency
        """
        with logfire.span('find_missing_prerequisites', user_id=user_id, concepts=len(names)):
            records = await self.connection.execute_query_async(query, {
                'user_id': user_id,
                'concepts': names,
            })

        grouped: Dict[str, List[MissingPrerequisite]] = {}
        for record in records:
            missing = grouped.setdefault(record['conceptName'], [])
            if is_missing(record.get('proficiency')):
                missing.append(MissingPrerequisite(
                    name=record['name'],
                    description=record.get('description') or "",
                    strength=record['strength'] if record.get('strength') is not None else 0.5,
                    explanation=record.get('explanation') or "",
                    proficiency=record.get('proficiency'),
                ))

        gaps = []
        for name in names:
            if name not in grouped:
                continue
            missing = sorted(grouped[name], key=lambda m: (-m.strength, m.name))
            gaps.append(ConceptGaps(concept_name=name, missing_prerequisites=missing))

        logger.debug(f"Gap check for {user_id}: {sum(len(g.missing_prerequisites) for g in gaps)} missing")
        return gaps

    async def recommend_next(self, user_id: str, topic: Optional[str] = None) -> List[Recommendation]:
        """Rank the concepts the learner should study next.

        Args:
            user_id: Learner id
            topic: Optional topic the recommendations must belong to

        Returns:
            Up to five recommendations, best first

        Raises:
            NotFoundError: If the learner has no learning profile
        """
        profile_records = await self.connection.execute_query_async(
            """
            MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
            OPTIONAL MATCH (lp)-[tr:TRACKS {active: true}]->(:Topic)
            RETURN lp.id AS profileId, count(tr) AS activeTrackCount
            """,
            {'user_id': user_id}
        )
        if not profile_records:
            raise NotFoundError("LearningProfile", user_id)
        has_active_tracks = profile_records[0]['activeTrackCount'] > 0

        query = """
        MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        MATCH (c:Concept)
        OPTIONAL MATCH (lp)-[k:KNOWS]->(c)
        WITH lp, c, k
        WHERE k IS NULL OR k.proficiency < $ceiling
        OPTIONAL MATCH (c)-[:BELONGS_TO]->(t:Topic)
        OPTIONAL MATCH (lp)-[tr:TRACKS]->(t)
        WITH lp, c,
             collect(DISTINCT t.name) AS topics,
             collect(DISTINCT CASE WHEN tr.active = true
                                   THEN {topic: t.name, priority: tr.priority} END) AS activeTracks
        OPTIONAL MATCH (prereq:Concept)-[:PREREQUISITE_FOR]->(c)
        OPTIONAL MATCH (lp)-[pk:KNOWS]->(prereq)
        RETURN c.name AS name,
               c.description AS description,
               c.complexity AS complexity,
               c.shortExplanation AS shortExplanation,
               topics,
               activeTracks,
               count(DISTINCT prereq) AS prereqCount,
               count(DISTINCT pk) AS knownPrereqCount
        """
        with logfire.span('recommend_next', user_id=user_id, topic=topic):
            records = await self.connection.execute_query_async(query, {
                'user_id': user_id,
                'ceiling': RECOMMENDATION_PROFICIENCY_CEILING,
            })
            candidates = [CandidateConcept.from_record(record) for record in records]
            recommendations = rank_candidates(
                candidates,
                topic=topic.strip() if topic else None,
                has_active_tracks=has_active_tracks,
            )
            logfire.info(
                'recommendations ranked',
                candidates=len(candidates),
                returned=[r.name for r in recommendations],
            )

        return recommendations
