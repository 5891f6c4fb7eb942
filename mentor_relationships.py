"""
Pydantic relationship models for the mentor knowledge graph.

These models represent the typed edges between curriculum and learner nodes.
Association edges (BELONGS_TO, PREREQUISITE_FOR, RELATED_TO, TRACKS) render
an idempotent, parameterized MERGE statement; KNOWS is written by the
knowledge state engine and modelled here as the record it returns.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mentor_entities import EntityKind, KnowledgeStage


DEFAULT_IMPORTANCE = 0.5
DEFAULT_STRENGTH = 0.5
DEFAULT_TRACK_PRIORITY = 3
DEFAULT_TRACK_GOAL = "Learning"
INITIAL_CONFIDENCE = 0.8


class RelationshipType(str, Enum):
    """Types of relationships in the knowledge graph."""
    HAS = "HAS"
    BELONGS_TO = "BELONGS_TO"
    PREREQUISITE_FOR = "PREREQUISITE_FOR"
    RELATED_TO = "RELATED_TO"
    KNOWS = "KNOWS"
    TRACKS = "TRACKS"
    EXPERIENCED = "EXPERIENCED"
    INVOLVES = "INVOLVES"


class RelatedType(str, Enum):
    """How two related concepts relate to each other."""
    SIMILAR = "similar"
    BUILDS_ON = "builds_on"
    ALTERNATIVE_TO = "alternative_to"
    APPLIED_IN = "applied_in"


class BaseRelationship(BaseModel):
    """Base class for association edges written through the repository."""

    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=True,
    )

    relationship_type: ClassVar[RelationshipType]
    source_kind: ClassVar[EntityKind]
    target_kind: ClassVar[EntityKind]

    source: str = Field(..., description="Key of the source entity")
    target: str = Field(..., description="Key of the target entity")

    @field_validator('source', 'target')
    @classmethod
    def validate_keys(cls, v: str) -> str:
        """Ensure entity keys are not empty."""
        if not v or not v.strip():
            raise ValueError("Entity key cannot be empty")
        return v.strip()

    def edge_properties(self) -> Dict[str, Any]:
        """Edge attributes as stored in the graph (camelCase)."""
        return {
            to_camel(name): value
            for name, value in self.model_dump(exclude={'source', 'target'}).items()
        }

    def to_parameters(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'target': self.target,
            'props': self.edge_properties(),
        }

    def to_cypher_query(self) -> str:
        """Idempotent upsert of this edge; both endpoints must exist."""
        source, target = self.source_kind, self.target_kind
        return f"""
        MATCH (s:{source.label} {{{source.key_property}: $source}})
        MATCH (t:{target.label} {{{target.key_property}: $target}})
        MERGE (s)-[r:{self.relationship_type.value}]->(t)
        SET r += $props
        RETURN properties(r) AS properties
        """


class BelongsToRelationship(BaseRelationship):
    """Concept belongs to a topic."""

    relationship_type: ClassVar[RelationshipType] = RelationshipType.BELONGS_TO
    source_kind: ClassVar[EntityKind] = EntityKind.CONCEPT
    target_kind: ClassVar[EntityKind] = EntityKind.TOPIC

    primary: bool = Field(default=True, description="Whether this is the concept's home topic")
    importance: float = Field(default=DEFAULT_IMPORTANCE, ge=0.0, le=1.0)


class PrerequisiteRelationship(BaseRelationship):
    """Source concept should be known before the target concept."""

    relationship_type: ClassVar[RelationshipType] = RelationshipType.PREREQUISITE_FOR
    source_kind: ClassVar[EntityKind] = EntityKind.CONCEPT
    target_kind: ClassVar[EntityKind] = EntityKind.CONCEPT

    strength: float = Field(default=DEFAULT_STRENGTH, ge=0.0, le=1.0)
    explanation: str = Field(default="")

    @field_validator('target')
    @classmethod
    def validate_not_self(cls, v: str, info) -> str:
        if info.data.get('source') == v.strip():
            raise ValueError("A concept cannot be its own prerequisite")
        return v


class RelatedToRelationship(BaseRelationship):
    """Two concepts are related; queried without regard to direction."""

    relationship_type: ClassVar[RelationshipType] = RelationshipType.RELATED_TO
    source_kind: ClassVar[EntityKind] = EntityKind.CONCEPT
    target_kind: ClassVar[EntityKind] = EntityKind.CONCEPT

    related_type: RelatedType = Field(default=RelatedType.SIMILAR)
    strength: float = Field(default=DEFAULT_STRENGTH, ge=0.0, le=1.0)
    contextual_note: str = Field(default="")

    def edge_properties(self) -> Dict[str, Any]:
        properties = super().edge_properties()
        properties['relationshipType'] = properties.pop('relatedType')
        return properties


class TracksRelationship(BaseRelationship):
    """A learner's engagement with a topic, keyed by user id."""

    relationship_type: ClassVar[RelationshipType] = RelationshipType.TRACKS
    source_kind: ClassVar[EntityKind] = EntityKind.USER
    target_kind: ClassVar[EntityKind] = EntityKind.TOPIC

    active: bool = Field(default=True)
    priority: int = Field(default=DEFAULT_TRACK_PRIORITY, ge=1, le=5)
    goal: str = Field(default=DEFAULT_TRACK_GOAL)

    def to_cypher_query(self) -> str:
        """The edge hangs off the user's learning profile, not the user."""
        return """
        MATCH (:User {id: $source})-[:HAS]->(lp:LearningProfile)
        MATCH (t:Topic {name: $target})
        MERGE (lp)-[r:TRACKS]->(t)
        ON CREATE SET r.since = datetime()
        SET r += $props
        RETURN properties(r) AS properties
        """


class KnowsRelationship(BaseModel):
    """A learner's knowledge of one concept, as stored on the KNOWS edge."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    concept_name: str
    proficiency: int = Field(..., ge=0, le=5)
    confidence: float = Field(default=INITIAL_CONFIDENCE, ge=0.0, le=1.0)
    first_seen: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    evidence_count: int = Field(default=1, ge=1)
    knowledge_stage: KnowledgeStage
    notes: str = Field(default="")
    misconceptions: List[str] = Field(default_factory=list)
