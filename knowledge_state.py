"""
Knowledge state engine.

This module turns observed learning evidence into updates of a learner's
KNOWS edges. Proficiency only ever rises, evidence is counted, notes
accumulate, and the knowledge stage is re-derived from the latest evidence.
Learning a concept also starts (or reactivates) tracking of its topics.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import logfire
from pydantic import BaseModel, Field, field_validator

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager, get_neo4j_connection
from mentor_entities import EntityKind, EventType, KnowledgeStage
from mentor_errors import NotFoundError
from mentor_relationships import (
    KnowsRelationship,
    DEFAULT_TRACK_GOAL,
    DEFAULT_TRACK_PRIORITY,
    INITIAL_CONFIDENCE,
)
from entity_repository import EntityRepository, ensure_exists_statement


logger = logging.getLogger(__name__)


NOTES_SEPARATOR = "\n"


def derive_knowledge_stage(event_type: Optional[EventType], proficiency: int) -> KnowledgeStage:
    """Classify a learner's relationship to a concept from one piece of evidence.

    Args:
        event_type: Kind of evidence, or None when unknown
        proficiency: Proficiency (0-5) carried by the evidence

    Returns:
        The knowledge stage
    """
    if event_type == EventType.LEARNED:
        return KnowledgeStage.AWARE if proficiency <= 2 else KnowledgeStage.LEARNING
    if event_type == EventType.PRACTICED:
        return KnowledgeStage.LEARNING if proficiency <= 3 else KnowledgeStage.PRACTICING
    if event_type == EventType.CONFUSED:
        return KnowledgeStage.LEARNING
    if event_type == EventType.MASTERED:
        return KnowledgeStage.MASTERED

    if proficiency <= 1:
        return KnowledgeStage.AWARE
    if proficiency <= 3:
        return KnowledgeStage.LEARNING
    if proficiency <= 4:
        return KnowledgeStage.PRACTICING
    return KnowledgeStage.MASTERED


class ConceptEvidence(BaseModel):
    """One observed signal about a learner's understanding of a concept."""

    name: str = Field(..., min_length=1, description="Concept name")
    proficiency: int = Field(..., ge=0, le=5, description="Observed proficiency 0-5")
    event_type: Optional[EventType] = Field(default=None, description="Kind of evidence")
    details: str = Field(default="", description="Free-text note appended to the KNOWS edge")

    @field_validator('name')
    @classmethod
    def clean_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Concept name cannot be empty")
        return v

    @field_validator('proficiency', mode='before')
    @classmethod
    def round_proficiency(cls, v: Any) -> int:
        """Analysers may report fractional scores; clamp them onto the 0-5 scale."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return max(0, min(5, int(round(v))))
        return v

    @field_validator('event_type', mode='before')
    @classmethod
    def unknown_event_type(cls, v: Any) -> Any:
        """Event types outside the known set are treated as unset."""
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in {e.value for e in EventType} else None
        return v

    @field_validator('details', mode='before')
    @classmethod
    def clean_details(cls, v: Any) -> str:
        return (v or "").strip()


class ConversationAnalysis(BaseModel):
    """Structured result of analysing a learning conversation."""

    concepts: List[ConceptEvidence] = Field(default_factory=list)
    overall_understanding: float = Field(default=2.5, ge=0.0, le=5.0)
    misconceptions: List[str] = Field(default_factory=list)
    detected_topic: str = Field(default="programming")


@dataclass
class EvidenceResult:
    """Outcome of applying one piece of evidence."""
    knows: KnowsRelationship
    tracked_topics: List[str] = field(default_factory=list)

    @property
    def concept_name(self) -> str:
        return self.knows.concept_name


class KnowledgeStateEngine:
    """Applies learning evidence to a learner's knowledge state."""

    def __init__(self,
                 connection: Optional[Neo4jConnectionManager] = None,
                 repository: Optional[EntityRepository] = None,
                 config: Optional[RuntimeConfig] = None):
        """Initialize the engine.

        Args:
            connection: Neo4j connection manager
            repository: Entity repository used for the audit trail
            config: Runtime configuration
        """
        self.config = config or get_config()
        self.connection = connection or get_neo4j_connection()
        self.repository = repository or EntityRepository(connection=self.connection, config=self.config)

    async def apply_evidence(self, user_id: str, evidence: ConceptEvidence) -> EvidenceResult:
        """Merge one piece of evidence into the learner's KNOWS edge.

        The concept is created if needed; the KNOWS and TRACKS upserts commit
        together in one transaction.

        Args:
            user_id: Learner id
            evidence: Observed evidence

        Returns:
            The resulting knowledge and the topics now tracked

        Raises:
            NotFoundError: If the learner has no learning profile
        """
        stage = derive_knowledge_stage(evidence.event_type, evidence.proficiency)
        _, ensure_parameters = ensure_exists_statement(EntityKind.CONCEPT, evidence.name)

        knows_query = """
        MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        MERGE (c:Concept {name: $concept})
        ON CREATE SET c += $concept_props, c.autoGenerated = true, c.createdAt = datetime()
        MERGE (lp)-[k:KNOWS]->(c)
        ON CREATE SET k.proficiency = $proficiency,
                      k.confidence = $confidence,
                      k.firstSeen = datetime(),
                      k.lastUpdated = datetime(),
                      k.evidenceCount = 1,
                      k.knowledgeStage = $stage,
                      k.notes = $details,
                      k.misconceptions = []
        ON MATCH SET k.proficiency = CASE WHEN k.proficiency >= $proficiency
                                          THEN k.proficiency ELSE $proficiency END,
                     k.evidenceCount = coalesce(k.evidenceCount, 0) + 1,
                     k.lastUpdated = datetime(),
                     k.knowledgeStage = $stage,
                     k.notes = CASE
                         WHEN $details = '' THEN k.notes
                         WHEN coalesce(k.notes, '') = '' THEN $details
                         ELSE k.notes + $separator + $details
                     END
        RETURN c.name AS conceptName, properties(k) AS properties
        """
        tracks_query = """
        MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        MATCH (:Concept {name: $concept})-[:BELONGS_TO]->(t:Topic)
        MERGE (lp)-[r:TRACKS]->(t)
        ON CREATE SET r.since = datetime(),
                      r.active = true,
                      r.priority = $priority,
                      r.goal = $goal
        ON MATCH SET r.active = true
        RETURN t.name AS topic
        ORDER BY topic
        """
        parameters = {
            'user_id': user_id,
            'concept': evidence.name,
            'concept_props': ensure_parameters['props'],
            'proficiency': evidence.proficiency,
            'confidence': INITIAL_CONFIDENCE,
            'stage': stage.value,
            'details': evidence.details,
            'separator': NOTES_SEPARATOR,
            'priority': DEFAULT_TRACK_PRIORITY,
            'goal': DEFAULT_TRACK_GOAL,
        }

        with logfire.span('apply_evidence', user_id=user_id, concept=evidence.name):
            knows_records, track_records = await self.connection.execute_write_async([
                (knows_query, parameters),
                (tracks_query, parameters),
            ])

            if not knows_records:
                raise NotFoundError("LearningProfile", user_id)

            record = knows_records[0]
            knows = KnowsRelationship.model_validate({
                **record['properties'],
                'conceptName': record['conceptName'],
            })
            tracked = [row['topic'] for row in track_records]

            logfire.info(
                'evidence applied',
                concept=evidence.name,
                proficiency=knows.proficiency,
                stage=knows.knowledge_stage,
                evidence_count=knows.evidence_count,
            )

        return EvidenceResult(knows=knows, tracked_topics=tracked)

    async def update_learning_profile(self, user_id: str, analysis: ConversationAnalysis) -> List[EvidenceResult]:
        """Apply every concept of an analysis and record the audit trail.

        Each concept is applied as its own atomic unit, in order. A failure
        part-way leaves the earlier concepts applied.

        Args:
            user_id: Learner id
            analysis: Analysed conversation

        Returns:
            One result per concept
        """
        results = []
        with logfire.span('update_learning_profile', user_id=user_id, concepts=len(analysis.concepts)):
            for evidence in analysis.concepts:
                result = await self.apply_evidence(user_id, evidence)
                await self.repository.record_learning_event(
                    user_id,
                    evidence.name,
                    evidence.event_type or EventType.LEARNED,
                    evidence.details,
                )
                results.append(result)

            await self.repository.touch_user(user_id)

        logger.info(f"Learning profile updated for {user_id} with {len(results)} concepts")
        return results

    async def get_knowledge(self, user_id: str, concept_name: str) -> Optional[KnowsRelationship]:
        """Fetch the learner's KNOWS edge for a concept, if any."""
        records = await self.connection.execute_query_async(
            """
            MATCH (:User {id: $user_id})-[:HAS]->(:LearningProfile)-[k:KNOWS]->(c:Concept {name: $concept})
            RETURN c.name AS conceptName, properties(k) AS properties
            """,
            {'user_id': user_id, 'concept': concept_name.strip()}
        )
        if not records:
            return None
        return KnowsRelationship.model_validate({
            **records[0]['properties'],
            'conceptName': records[0]['conceptName'],
        })
