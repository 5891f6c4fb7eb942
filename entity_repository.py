"""
Entity repository for the mentor knowledge graph.

This module creates and looks up learners and curriculum nodes and writes the
association edges between them. Curriculum nodes referenced by name before
they exist are created on demand with placeholder content, so association
writes never fail on a missing topic or concept.
"""

import logging
from typing import Optional, Dict, Any, List, Union

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager, Statement, get_neo4j_connection
from mentor_entities import (
    ConceptEntity,
    DetailLevel,
    EntityFactory,
    EntityKind,
    EventType,
    LearningEventEntity,
    LearningProfileEntity,
    LearningStyle,
    NamedEntity,
    TopicEntity,
    UserEntity,
)
from mentor_errors import NotFoundError
from mentor_relationships import (
    BaseRelationship,
    BelongsToRelationship,
    PrerequisiteRelationship,
    RelatedToRelationship,
    RelatedType,
    DEFAULT_IMPORTANCE,
    DEFAULT_STRENGTH,
    DEFAULT_TRACK_GOAL,
    DEFAULT_TRACK_PRIORITY,
)


logger = logging.getLogger(__name__)


def ensure_exists_statement(kind: EntityKind,
                            name: str,
                            defaults: Optional[Dict[str, Any]] = None) -> Statement:
    """Build the single MERGE statement that guarantees a curriculum node.

    Args:
        kind: Topic or concept
        name: Unique node name
        defaults: Field values (snake_case) overriding the placeholder content

    Returns:
        Cypher statement and parameters
    """
    if kind is EntityKind.USER:
        raise ValueError("Users are created with ensure_user, not by name")

    placeholder = EntityFactory.placeholder_for(kind, name)
    if defaults:
        placeholder = type(placeholder).model_validate({**placeholder.model_dump(), **defaults})

    query = f"""
    MERGE (n:{kind.label} {{name: $name}})
    ON CREATE SET n += $props, n.autoGenerated = $auto_generated, n.createdAt = datetime()
    RETURN n.id AS id
    """
    return query, {
        'name': placeholder.name,
        'props': placeholder.to_properties(),
        'auto_generated': not defaults,
    }


class EntityRepository:
    """Creates, looks up and associates entities in the graph."""

    def __init__(self,
                 connection: Optional[Neo4jConnectionManager] = None,
                 config: Optional[RuntimeConfig] = None):
        """Initialize the repository.

        Args:
            connection: Neo4j connection manager
            config: Runtime configuration
        """
        self.config = config or get_config()
        self.connection = connection or get_neo4j_connection()

    # Curriculum nodes

    async def ensure_exists(self,
                            kind: EntityKind,
                            name: str,
                            defaults: Optional[Dict[str, Any]] = None) -> str:
        """Guarantee a topic or concept with this name exists.

        Args:
            kind: Topic or concept
            name: Unique node name
            defaults: Field values used only if the node has to be created

        Returns:
            Id of the existing or newly created node
        """
        query, parameters = ensure_exists_statement(kind, name, defaults)
        records = await self.connection.execute_query_async(query, parameters)
        return records[0]['id']

    async def exists(self, kind: EntityKind, key: str) -> bool:
        """Check whether an entity exists, by id for users and by name otherwise."""
        query = f"""
        MATCH (n:{kind.label} {{{kind.key_property}: $key}})
        RETURN count(n) > 0 AS exists
        """
        records = await self.connection.execute_query_async(query, {'key': key.strip()})
        return bool(records and records[0]['exists'])

    async def create(self, entity: Union[TopicEntity, ConceptEntity, UserEntity, LearningEventEntity]) -> Any:
        """Create an entity, or fill in the real content of an existing one.

        Topics and concepts are keyed by name: creating one that already
        exists as a placeholder replaces its content and keeps its id.

        Args:
            entity: Entity to create

        Returns:
            The stored entity
        """
        if isinstance(entity, UserEntity):
            await self.ensure_user(entity)
            return await self.get_user(entity.id)
        if isinstance(entity, LearningEventEntity):
            return await self.record_learning_event(
                entity.user_id, entity.concept_name, EventType(entity.event_type), entity.details
            )
        if isinstance(entity, (TopicEntity, ConceptEntity)):
            return await self._upsert_named(entity)
        raise TypeError(f"Unsupported entity type: {type(entity).__name__}")

    async def _upsert_named(self, entity: NamedEntity) -> NamedEntity:
        label = EntityKind.TOPIC.label if isinstance(entity, TopicEntity) else EntityKind.CONCEPT.label
        properties = entity.to_properties()
        content = {key: value for key, value in properties.items() if key not in ('id', 'name')}

        query = f"""
        MERGE (n:{label} {{name: $name}})
        ON CREATE SET n.id = $id, n.createdAt = datetime()
        SET n += $content, n.autoGenerated = false, n.updatedAt = datetime()
        RETURN properties(n) AS properties
        """
        records = await self.connection.execute_query_async(query, {
            'name': entity.name,
            'id': entity.id,
            'content': content,
        })
        logger.info(f"Upserted {label} '{entity.name}'")
        return type(entity).model_validate(records[0]['properties'])

    async def get_topic(self, name: str) -> Optional[TopicEntity]:
        """Fetch a topic by name."""
        records = await self.connection.execute_query_async(
            "MATCH (t:Topic {name: $name}) RETURN properties(t) AS properties",
            {'name': name.strip()}
        )
        return TopicEntity.model_validate(records[0]['properties']) if records else None

    async def get_concept(self, name: str) -> Optional[ConceptEntity]:
        """Fetch a concept by name."""
        records = await self.connection.execute_query_async(
            "MATCH (c:Concept {name: $name}) RETURN properties(c) AS properties",
            {'name': name.strip()}
        )
        return ConceptEntity.model_validate(records[0]['properties']) if records else None

    # Users

    async def ensure_user(self, user: UserEntity) -> bool:
        """Create the user and its learning profile unless they already exist.

        Args:
            user: User to create; its id is the lookup key

        Returns:
            True if the user was created by this call
        """
        profile = EntityFactory.create_learning_profile(user.id)
        query = """
        OPTIONAL MATCH (existing:User {id: $id})
        WITH existing IS NULL AS created
        MERGE (u:User {id: $id})
        ON CREATE SET u += $props
        ON MATCH SET u.lastActive = datetime()
        MERGE (lp:LearningProfile {userId: $id})
        ON CREATE SET lp += $profile
        MERGE (u)-[:HAS]->(lp)
        RETURN created
        """
        records = await self.connection.execute_query_async(query, {
            'id': user.id,
            'props': user.to_properties(),
            'profile': profile.to_properties(),
        })
        created = bool(records and records[0]['created'])
        if created:
            logger.info(f"Created user {user.id} with learning profile")
        return created

    async def user_exists(self, user_id: str) -> bool:
        """Check whether a user exists."""
        return await self.exists(EntityKind.USER, user_id)

    async def get_user(self, user_id: str) -> UserEntity:
        """Fetch a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        records = await self.connection.execute_query_async(
            "MATCH (u:User {id: $id}) RETURN properties(u) AS properties",
            {'id': user_id}
        )
        if not records:
            raise NotFoundError("User", user_id)
        return UserEntity.model_validate(records[0]['properties'])

    async def get_learning_profile(self, user_id: str) -> LearningProfileEntity:
        """Fetch the learning profile owned by a user.

        Raises:
            NotFoundError: If the user has no learning profile
        """
        records = await self.connection.execute_query_async(
            """
            MATCH (:User {id: $id})-[:HAS]->(lp:LearningProfile)
            RETURN properties(lp) AS properties
            """,
            {'id': user_id}
        )
        if not records:
            raise NotFoundError("LearningProfile", user_id)
        return LearningProfileEntity.model_validate(records[0]['properties'])

    async def update_learning_preferences(self,
                                          user_id: str,
                                          learning_style: Optional[LearningStyle] = None,
                                          detail_level: Optional[DetailLevel] = None) -> UserEntity:
        """Change a user's learning style and/or default detail level."""
        changes: Dict[str, Any] = {}
        if learning_style is not None:
            changes['learningStyle'] = LearningStyle(learning_style).value
        if detail_level is not None:
            changes['defaultDetailLevel'] = DetailLevel(detail_level).value

        records = await self.connection.execute_query_async(
            """
            MATCH (u:User {id: $id})
            SET u += $changes, u.lastActive = datetime()
            RETURN properties(u) AS properties
            """,
            {'id': user_id, 'changes': changes}
        )
        if not records:
            raise NotFoundError("User", user_id)
        logger.info(f"Updated learning preferences for {user_id}: {changes}")
        return UserEntity.model_validate(records[0]['properties'])

    async def set_learning_goals(self, user_id: str, goals: str) -> LearningProfileEntity:
        """Replace the free-text learning goals on a user's profile."""
        records = await self.connection.execute_query_async(
            """
            MATCH (:User {id: $id})-[:HAS]->(lp:LearningProfile)
            SET lp.learningGoals = $goals, lp.lastUpdated = datetime()
            RETURN properties(lp) AS properties
            """,
            {'id': user_id, 'goals': goals.strip()}
        )
        if not records:
            raise NotFoundError("LearningProfile", user_id)
        return LearningProfileEntity.model_validate(records[0]['properties'])

    async def touch_user(self, user_id: str) -> None:
        """Stamp the user's last activity and refresh their profile.

        The profile's activeTopics mirror the topics it actively TRACKS.
        """
        await self.connection.execute_query_async(
            """
            MATCH (u:User {id: $id})-[:HAS]->(lp:LearningProfile)
            OPTIONAL MATCH (lp)-[:TRACKS {active: true}]->(t:Topic)
            WITH u, lp, collect(t.name) AS active_topics
            SET lp.activeTopics = active_topics,
                lp.lastUpdated = datetime(),
                u.lastActive = datetime()
            """,
            {'id': user_id}
        )

    # Associations

    async def associate(self, relationship: BaseRelationship) -> Dict[str, Any]:
        """Upsert an association edge, creating missing curriculum endpoints.

        Both endpoint ensures and the edge write commit together.

        Args:
            relationship: Edge to write

        Returns:
            Properties of the stored edge

        Raises:
            NotFoundError: If a user endpoint does not exist
        """
        statements: List[Statement] = []
        for kind, key in ((relationship.source_kind, relationship.source),
                          (relationship.target_kind, relationship.target)):
            if kind is not EntityKind.USER:
                statements.append(ensure_exists_statement(kind, key))
        statements.append((relationship.to_cypher_query(), relationship.to_parameters()))

        results = await self.connection.execute_write_async(statements)
        edge_records = results[-1]
        if not edge_records:
            raise NotFoundError("User", relationship.source)

        logger.debug(
            f"Associated {relationship.source} -[{relationship.relationship_type.value}]-> "
            f"{relationship.target}"
        )
        return edge_records[0]['properties']

    async def associate_concept_with_topic(self,
                                           concept_name: str,
                                           topic_name: str,
                                           primary: bool = True,
                                           importance: float = DEFAULT_IMPORTANCE) -> Dict[str, Any]:
        """Place a concept under a topic."""
        return await self.associate(BelongsToRelationship(
            source=concept_name, target=topic_name, primary=primary, importance=importance
        ))

    async def set_concept_prerequisite(self,
                                       prerequisite_name: str,
                                       concept_name: str,
                                       strength: float = DEFAULT_STRENGTH,
                                       explanation: str = "") -> Dict[str, Any]:
        """Declare that one concept should be known before another."""
        return await self.associate(PrerequisiteRelationship(
            source=prerequisite_name, target=concept_name, strength=strength, explanation=explanation
        ))

    async def relate_concepts(self,
                              concept_name: str,
                              related_name: str,
                              related_type: RelatedType = RelatedType.SIMILAR,
                              strength: float = DEFAULT_STRENGTH,
                              contextual_note: str = "") -> Dict[str, Any]:
        """Link two related concepts."""
        return await self.associate(RelatedToRelationship(
            source=concept_name,
            target=related_name,
            related_type=related_type,
            strength=strength,
            contextual_note=contextual_note,
        ))

    async def set_topic_tracking(self,
                                 user_id: str,
                                 topic_name: str,
                                 active: bool = True,
                                 priority: Optional[int] = None,
                                 goal: Optional[str] = None) -> Dict[str, Any]:
        """Start, stop or reprioritise a learner's tracking of a topic.

        Priority and goal keep their stored values when not given.

        Raises:
            NotFoundError: If the user has no learning profile
            ValueError: If priority is outside 1-5
        """
        if priority is not None and not 1 <= priority <= 5:
            raise ValueError(f"Priority must be between 1 and 5, got {priority}")

        track_query = """
        MATCH (:User {id: $user_id})-[:HAS]->(lp:LearningProfile)
        MATCH (t:Topic {name: $topic})
        MERGE (lp)-[r:TRACKS]->(t)
        ON CREATE SET r.since = datetime(),
                      r.priority = coalesce($priority, $default_priority),
                      r.goal = coalesce($goal, $default_goal)
        SET r.active = $active,
            r.priority = coalesce($priority, r.priority),
            r.goal = coalesce($goal, r.goal)
        RETURN properties(r) AS properties
        """
        results = await self.connection.execute_write_async([
            ensure_exists_statement(EntityKind.TOPIC, topic_name),
            (track_query, {
                'user_id': user_id,
                'topic': topic_name.strip(),
                'active': active,
                'priority': priority,
                'goal': goal,
                'default_priority': DEFAULT_TRACK_PRIORITY,
                'default_goal': DEFAULT_TRACK_GOAL,
            }),
        ])
        if not results[-1]:
            raise NotFoundError("LearningProfile", user_id)
        await self.touch_user(user_id)
        logger.info(f"Tracking of '{topic_name}' for {user_id} set to active={active}")
        return results[-1][0]['properties']

    # Audit trail

    async def record_learning_event(self,
                                    user_id: str,
                                    concept_name: str,
                                    event_type: EventType,
                                    details: str = "") -> LearningEventEntity:
        """Append an immutable learning event for a user and concept.

        Raises:
            NotFoundError: If the user does not exist
        """
        event = LearningEventEntity(
            user_id=user_id,
            concept_name=concept_name.strip(),
            event_type=event_type,
            details=details,
        )
        event_query = """
        MATCH (u:User {id: $user_id})
        MATCH (c:Concept {name: $concept})
        CREATE (e:LearningEvent)
        SET e = $props
        CREATE (u)-[:EXPERIENCED]->(e)
        CREATE (e)-[:INVOLVES]->(c)
        RETURN e.id AS id
        """
        results = await self.connection.execute_write_async([
            ensure_exists_statement(EntityKind.CONCEPT, event.concept_name),
            (event_query, {
                'user_id': user_id,
                'concept': event.concept_name,
                'props': event.to_properties(),
            }),
        ])
        if not results[-1]:
            raise NotFoundError("User", user_id)
        return event
