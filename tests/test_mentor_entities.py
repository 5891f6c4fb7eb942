"""
Tests for entity and relationship models.
"""

import pytest
from pydantic import ValidationError

from mentor_entities import (
    ConceptEntity,
    DetailLevel,
    EntityFactory,
    EntityKind,
    EventType,
    LearningEventEntity,
    LearningStyle,
    TopicCategory,
    TopicEntity,
    UserEntity,
    PLACEHOLDER_CONCEPT_DESCRIPTION,
    PLACEHOLDER_CONCEPT_EXPLANATION,
)
from mentor_relationships import (
    BelongsToRelationship,
    KnowsRelationship,
    PrerequisiteRelationship,
    RelatedToRelationship,
    RelatedType,
    RelationshipType,
    TracksRelationship,
)


class TestEntities:
    """Test entity validation and serialization."""

    def test_topic_difficulty_range(self):
        TopicEntity(name="Python", difficulty=1)
        TopicEntity(name="Python", difficulty=5)
        with pytest.raises(ValidationError):
            TopicEntity(name="Python", difficulty=6)
        with pytest.raises(ValidationError):
            TopicEntity(name="Python", difficulty=0)

    def test_concept_complexity_range(self):
        with pytest.raises(ValidationError):
            ConceptEntity(name="Recursion", complexity=9)

    def test_names_are_stripped_not_lowercased(self):
        concept = ConceptEntity(name="  Binary Search  ")
        assert concept.name == "Binary Search"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            ConceptEntity(name="   ")

    def test_properties_use_camel_case(self):
        concept = ConceptEntity(name="Recursion", short_explanation="calls itself", use_cases=["trees"])
        properties = concept.to_properties()
        assert properties["shortExplanation"] == "calls itself"
        assert properties["useCases"] == ["trees"]
        assert "short_explanation" not in properties

    def test_enums_stored_as_values(self):
        user = UserEntity(id="u1", learning_style=LearningStyle.VISUAL)
        properties = user.to_properties()
        assert properties["learningStyle"] == "visual"
        assert properties["defaultDetailLevel"] == "standard"

    def test_validate_from_graph_properties(self):
        topic = TopicEntity.model_validate({
            "id": "t1", "name": "Python", "category": "language", "difficulty": 2,
            "summary": "", "prerequisites": [], "autoGenerated": False,
        })
        assert topic.category == "language"
        assert topic.id == "t1"

    def test_event_properties_exclude_concept(self):
        event = LearningEventEntity(user_id="u1", concept_name="Recursion", event_type=EventType.LEARNED)
        properties = event.to_properties()
        assert properties["eventType"] == "learned"
        assert properties["userId"] == "u1"
        assert "conceptName" not in properties

    def test_entity_kind_labels(self):
        assert EntityKind.CONCEPT.label == "Concept"
        assert EntityKind.TOPIC.key_property == "name"
        assert EntityKind.USER.key_property == "id"


class TestEntityFactory:
    """Test placeholder and default entity creation."""

    def test_placeholder_topic(self):
        topic = EntityFactory.placeholder_topic(" Rust ")
        assert topic.name == "Rust"
        assert topic.difficulty == 3
        assert topic.summary == "Auto-generated topic for Rust"
        assert topic.prerequisites == []
        assert topic.category == TopicCategory.CONCEPT.value

    def test_placeholder_topic_with_category(self):
        assert EntityFactory.placeholder_topic("Rust", TopicCategory.LANGUAGE).category == "language"

    def test_placeholder_concept(self):
        concept = EntityFactory.placeholder_concept("Memoization")
        assert concept.description == PLACEHOLDER_CONCEPT_DESCRIPTION
        assert concept.complexity == 3
        assert concept.short_explanation == PLACEHOLDER_CONCEPT_EXPLANATION
        assert concept.misconceptions == []
        assert concept.use_cases == []

    def test_placeholder_for_user_rejected(self):
        with pytest.raises(ValueError):
            EntityFactory.placeholder_for(EntityKind.USER, "u1")

    def test_new_user_defaults(self):
        user = EntityFactory.create_new_user("u1")
        assert user.id == "u1"
        assert user.name == "Learner"
        assert user.learning_style == "practical"
        assert user.default_detail_level == "standard"

    def test_new_user_preferences(self):
        user = EntityFactory.create_new_user("u1", learning_style=LearningStyle.ANALOGICAL,
                                             detail_level=DetailLevel.ADVANCED)
        assert user.learning_style == "analogical"
        assert user.default_detail_level == "advanced"

    def test_learning_profile(self):
        profile = EntityFactory.create_learning_profile("u1")
        assert profile.user_id == "u1"
        assert profile.active_topics == []
        assert profile.learning_goals == ""


class TestRelationships:
    """Test association edge models."""

    def test_belongs_to_defaults(self):
        edge = BelongsToRelationship(source="Recursion", target="Algorithms")
        assert edge.relationship_type == RelationshipType.BELONGS_TO
        assert edge.to_parameters() == {
            "source": "Recursion",
            "target": "Algorithms",
            "props": {"primary": True, "importance": 0.5},
        }

    def test_cypher_is_parameterized_merge(self):
        query = BelongsToRelationship(source="Recursion", target="Algorithms").to_cypher_query()
        assert "MATCH (s:Concept {name: $source})" in query
        assert "MATCH (t:Topic {name: $target})" in query
        assert "MERGE (s)-[r:BELONGS_TO]->(t)" in query
        assert "Recursion" not in query

    def test_strength_range(self):
        with pytest.raises(ValidationError):
            PrerequisiteRelationship(source="Functions", target="Recursion", strength=1.5)

    def test_prerequisite_not_self(self):
        with pytest.raises(ValidationError):
            PrerequisiteRelationship(source="Recursion", target="Recursion")

    def test_related_type_property_name(self):
        edge = RelatedToRelationship(
            source="Recursion", target="Loops",
            related_type=RelatedType.ALTERNATIVE_TO, contextual_note="iterative form",
        )
        props = edge.edge_properties()
        assert props["relationshipType"] == "alternative_to"
        assert props["contextualNote"] == "iterative form"
        assert "relatedType" not in props

    def test_invalid_related_type(self):
        with pytest.raises(ValidationError):
            RelatedToRelationship(source="A", target="B", related_type="opposite_of")

    def test_tracks_hangs_off_profile(self):
        edge = TracksRelationship(source="u1", target="Python")
        assert edge.priority == 3
        assert edge.goal == "Learning"
        query = edge.to_cypher_query()
        assert "(:User {id: $source})-[:HAS]->(lp:LearningProfile)" in query
        assert "ON CREATE SET r.since = datetime()" in query

    def test_tracks_priority_range(self):
        with pytest.raises(ValidationError):
            TracksRelationship(source="u1", target="Python", priority=6)

    def test_blank_keys_rejected(self):
        with pytest.raises(ValidationError):
            BelongsToRelationship(source=" ", target="Algorithms")

    def test_knows_from_graph_properties(self):
        knows = KnowsRelationship.model_validate({
            "conceptName": "Recursion",
            "proficiency": 4,
            "confidence": 0.8,
            "evidenceCount": 2,
            "knowledgeStage": "practicing",
            "notes": "a\nb",
        })
        assert knows.concept_name == "Recursion"
        assert knows.evidence_count == 2
        assert knows.knowledge_stage == "practicing"
