"""
Pydantic entity models for the programming mentor knowledge graph.

These models represent the nodes of the graph: learners and their learning
profiles, the topic/concept curriculum, and the append-only learning events.
Graph properties use camelCase names, so every model dumps by alias when it
is written to Neo4j and validates camelCase records when read back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


PLACEHOLDER_DIFFICULTY = 3
PLACEHOLDER_COMPLEXITY = 3
PLACEHOLDER_CONCEPT_DESCRIPTION = "Auto-generated concept"
PLACEHOLDER_CONCEPT_EXPLANATION = "This concept was automatically created based on learning data"


def utc_now() -> datetime:
    """Timezone-aware current time, comparable with Cypher ``datetime()``."""
    return datetime.now(timezone.utc)


class LearningStyle(str, Enum):
    """How a learner prefers explanations to be presented."""
    VISUAL = "visual"
    CONCEPTUAL = "conceptual"
    PRACTICAL = "practical"
    ANALOGICAL = "analogical"


class DetailLevel(str, Enum):
    """Default depth of explanations for a learner."""
    BEGINNER = "beginner"
    STANDARD = "standard"
    ADVANCED = "advanced"


class TopicCategory(str, Enum):
    """Kinds of topics in the curriculum."""
    LANGUAGE = "language"
    FRAMEWORK = "framework"
    CONCEPT = "concept"
    PARADIGM = "paradigm"


class EventType(str, Enum):
    """Kinds of learning evidence."""
    LEARNED = "learned"
    PRACTICED = "practiced"
    CONFUSED = "confused"
    MASTERED = "mastered"


class KnowledgeStage(str, Enum):
    """Coarse classification of a learner's relationship to a concept."""
    AWARE = "aware"
    LEARNING = "learning"
    PRACTICING = "practicing"
    MASTERED = "mastered"


class EntityKind(str, Enum):
    """Entity kinds addressable by the repository, with their node labels."""
    USER = "user"
    TOPIC = "topic"
    CONCEPT = "concept"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def key_property(self) -> str:
        """Users are keyed by id, curriculum nodes by name."""
        return "id" if self is EntityKind.USER else "name"


class BaseEntity(BaseModel):
    """Base class for all graph entities with common fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        use_enum_values=True,
        extra="ignore",
    )

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique entity identifier")

    def to_properties(self) -> Dict[str, Any]:
        """Node properties as written to Neo4j."""
        return self.model_dump(by_alias=True)


class NamedEntity(BaseEntity):
    """Curriculum node addressed by a unique name."""

    name: str = Field(..., min_length=1, max_length=200, description="Unique display name")

    @field_validator('name')
    @classmethod
    def clean_name(cls, v: str) -> str:
        """Strip surrounding whitespace; names keep their case."""
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        return v


class UserEntity(BaseEntity):
    """A learner."""

    name: str = Field(default="Learner", description="Display name")
    learning_style: LearningStyle = Field(default=LearningStyle.PRACTICAL)
    default_detail_level: DetailLevel = Field(default=DetailLevel.STANDARD)
    created_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)


class LearningProfileEntity(BaseEntity):
    """Aggregate learning state owned by exactly one user."""

    user_id: str = Field(..., description="Owning user id")
    active_topics: List[str] = Field(default_factory=list)
    learning_goals: str = Field(default="")
    last_updated: datetime = Field(default_factory=utc_now)


class TopicEntity(NamedEntity):
    """A programming topic such as a language or paradigm."""

    category: TopicCategory = Field(default=TopicCategory.CONCEPT)
    difficulty: int = Field(default=PLACEHOLDER_DIFFICULTY, ge=1, le=5)
    summary: str = Field(default="")
    prerequisites: List[str] = Field(default_factory=list, description="Names of prerequisite topics")


class ConceptEntity(NamedEntity):
    """A single programming concept."""

    description: str = Field(default="")
    complexity: int = Field(default=PLACEHOLDER_COMPLEXITY, ge=1, le=5)
    short_explanation: str = Field(default="")
    misconceptions: List[str] = Field(default_factory=list)
    use_cases: List[str] = Field(default_factory=list)
    code_example: str = Field(default="")


class LearningEventEntity(BaseEntity):
    """Immutable audit record of one piece of learning evidence."""

    user_id: str
    concept_name: str
    event_type: EventType
    details: str = Field(default="")
    timestamp: datetime = Field(default_factory=utc_now)

    def to_properties(self) -> Dict[str, Any]:
        # The concept is linked by an INVOLVES edge, not stored on the node
        return self.model_dump(by_alias=True, exclude={'concept_name'})


class EntityFactory:
    """Factory class for creating entities with common patterns."""

    @staticmethod
    def placeholder_topic(name: str, category: Optional[TopicCategory] = None) -> TopicEntity:
        """Topic created when referenced by name before it exists."""
        name = name.strip()
        return TopicEntity(
            name=name,
            category=category or TopicCategory.CONCEPT,
            difficulty=PLACEHOLDER_DIFFICULTY,
            summary=f"Auto-generated topic for {name}",
            prerequisites=[],
        )

    @staticmethod
    def placeholder_concept(name: str) -> ConceptEntity:
        """Concept created when referenced by name before it exists."""
        return ConceptEntity(
            name=name,
            description=PLACEHOLDER_CONCEPT_DESCRIPTION,
            complexity=PLACEHOLDER_COMPLEXITY,
            short_explanation=PLACEHOLDER_CONCEPT_EXPLANATION,
            misconceptions=[],
            use_cases=[],
        )

    @staticmethod
    def placeholder_for(kind: EntityKind, name: str) -> NamedEntity:
        """Placeholder entity of the given curriculum kind."""
        if kind is EntityKind.TOPIC:
            return EntityFactory.placeholder_topic(name)
        if kind is EntityKind.CONCEPT:
            return EntityFactory.placeholder_concept(name)
        raise ValueError(f"No placeholder for entity kind '{kind.value}'")

    @staticmethod
    def create_new_user(
        user_id: str,
        name: Optional[str] = None,
        learning_style: Optional[LearningStyle] = None,
        detail_level: Optional[DetailLevel] = None,
    ) -> UserEntity:
        """Create a new user entity with the default preferences."""
        return UserEntity(
            id=user_id,
            name=name or "Learner",
            learning_style=learning_style or LearningStyle.PRACTICAL,
            default_detail_level=detail_level or DetailLevel.STANDARD,
        )

    @staticmethod
    def create_learning_profile(user_id: str) -> LearningProfileEntity:
        """Create the empty profile owned by a new user."""
        return LearningProfileEntity(user_id=user_id)
