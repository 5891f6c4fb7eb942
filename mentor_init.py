"""
Database initialization module for the mentor knowledge graph.

This module sets up the Neo4j schema (uniqueness constraints and indexes),
seeds a starter programming curriculum, reports graph statistics and can
reset the database.
"""

import logging
from typing import Any, Dict, Optional

from neo4j.exceptions import Neo4jError
from pydantic import BaseModel

from mentor_config import get_config, RuntimeConfig
from mentor_connection import Neo4jConnectionManager
from mentor_entities import ConceptEntity, TopicCategory, TopicEntity
from mentor_errors import MentorError
from mentor_relationships import RelatedType
from entity_repository import EntityRepository


logger = logging.getLogger(__name__)


# (constraint name, label, property)
CONSTRAINTS = [
    ("user_id_unique", "User", "id"),
    ("learning_profile_id_unique", "LearningProfile", "id"),
    ("learning_profile_user_unique", "LearningProfile", "userId"),
    ("topic_id_unique", "Topic", "id"),
    ("topic_name_unique", "Topic", "name"),
    ("concept_id_unique", "Concept", "id"),
    ("concept_name_unique", "Concept", "name"),
    ("learning_event_id_unique", "LearningEvent", "id"),
]

# (index name, label, property)
INDEXES = [
    ("learning_event_timestamp", "LearningEvent", "timestamp"),
    ("learning_event_user", "LearningEvent", "userId"),
    ("concept_complexity", "Concept", "complexity"),
    ("topic_category", "Topic", "category"),
]


DEFAULT_CURRICULUM: Dict[str, Any] = {
    "topics": [
        {"name": "Python", "category": "language", "difficulty": 2,
         "summary": "General-purpose language favoured for readability and its large ecosystem"},
        {"name": "JavaScript", "category": "language", "difficulty": 2,
         "summary": "The language of the web browser, also used on servers with Node.js"},
        {"name": "Data Structures", "category": "concept", "difficulty": 3,
         "summary": "Ways of organising data for efficient access and modification"},
        {"name": "Algorithms", "category": "concept", "difficulty": 4,
         "summary": "Step-by-step procedures for solving computational problems",
         "prerequisites": ["Data Structures"]},
        {"name": "Functional Programming", "category": "paradigm", "difficulty": 4,
         "summary": "Building programs from pure functions and immutable data"},
        {"name": "Object-Oriented Programming", "category": "paradigm", "difficulty": 3,
         "summary": "Modelling programs as objects that combine state and behaviour"},
    ],
    "concepts": [
        {"name": "Variables", "complexity": 1, "topics": ["Python", "JavaScript"],
         "description": "Named references to values",
         "short_explanation": "A variable gives a name to a value so it can be used later"},
        {"name": "Functions", "complexity": 2, "topics": ["Python", "JavaScript"],
         "description": "Reusable blocks of code that take parameters and return results",
         "short_explanation": "A function packages code under a name so it can be called with inputs"},
        {"name": "Loops", "complexity": 2, "topics": ["Python", "JavaScript"],
         "description": "Repeating a block of code while a condition holds or over a collection",
         "short_explanation": "A loop runs the same code several times"},
        {"name": "Arrays", "complexity": 2, "topics": ["Data Structures", "JavaScript"],
         "description": "Ordered, index-addressable collections of values",
         "short_explanation": "An array stores values in order and lets you access them by position"},
        {"name": "Dictionaries", "complexity": 2, "topics": ["Data Structures", "Python"],
         "description": "Mappings from unique keys to values",
         "short_explanation": "A dictionary looks up values by key instead of by position"},
        {"name": "Recursion", "complexity": 3, "topics": ["Algorithms", "Functional Programming"],
         "description": "A function solving a problem by calling itself on smaller instances",
         "short_explanation": "A recursive function calls itself until it reaches a base case",
         "misconceptions": ["Recursion is always slower than iteration",
                            "A base case is optional"],
         "use_cases": ["Tree traversal", "Divide and conquer algorithms"]},
        {"name": "Higher-Order Functions", "complexity": 3, "topics": ["Functional Programming"],
         "description": "Functions that take or return other functions",
         "short_explanation": "A higher-order function works with functions as values"},
        {"name": "Closures", "complexity": 4, "topics": ["Functional Programming", "JavaScript"],
         "description": "Functions that capture variables from their enclosing scope",
         "short_explanation": "A closure remembers the variables around where it was defined"},
        {"name": "Classes", "complexity": 3, "topics": ["Object-Oriented Programming", "Python"],
         "description": "Blueprints that define the state and behaviour of objects",
         "short_explanation": "A class describes what its objects hold and what they can do"},
        {"name": "Inheritance", "complexity": 3, "topics": ["Object-Oriented Programming"],
         "description": "Deriving a class from another to reuse and specialise behaviour",
         "short_explanation": "A subclass gets the behaviour of its parent class and can change it"},
        {"name": "Sorting Algorithms", "complexity": 4, "topics": ["Algorithms"],
         "description": "Procedures that put a collection into order",
         "short_explanation": "Sorting algorithms differ in speed, memory use and stability"},
        {"name": "Binary Search", "complexity": 3, "topics": ["Algorithms"],
         "description": "Finding an item in sorted data by repeatedly halving the search range",
         "short_explanation": "Binary search discards half of the remaining data at every step"},
    ],
    # (prerequisite, concept, strength, explanation)
    "prerequisites": [
        ("Variables", "Functions", 0.9, "Functions operate on values held in variables"),
        ("Variables", "Loops", 0.8, "Loops update variables on every iteration"),
        ("Functions", "Recursion", 0.9, "Recursion is a function calling itself"),
        ("Functions", "Higher-Order Functions", 0.9, "Functions must be understood before passing them around"),
        ("Functions", "Closures", 0.9, "A closure is a function plus its captured scope"),
        ("Higher-Order Functions", "Closures", 0.6, "Closures are usually returned by higher-order functions"),
        ("Functions", "Classes", 0.7, "Methods are functions attached to a class"),
        ("Classes", "Inheritance", 0.9, "Inheritance relates one class to another"),
        ("Arrays", "Sorting Algorithms", 0.8, "Sorting rearranges the elements of an array"),
        ("Loops", "Sorting Algorithms", 0.7, "Most sorting algorithms iterate over the data"),
        ("Arrays", "Binary Search", 0.8, "Binary search indexes into a sorted array"),
    ],
    # (concept, related concept, type, strength, note)
    "related": [
        ("Recursion", "Loops", "alternative_to", 0.7, "Many recursive solutions can be written iteratively"),
        ("Closures", "Classes", "alternative_to", 0.5, "Both bundle state with behaviour"),
        ("Arrays", "Dictionaries", "similar", 0.6, "Both are general-purpose collections"),
        ("Binary Search", "Recursion", "applied_in", 0.5, "Binary search is naturally expressed recursively"),
        ("Higher-Order Functions", "Functions", "builds_on", 0.8, "Treats functions as ordinary values"),
    ],
}


class KnowledgeGraphStats(BaseModel):
    """Counts of curriculum nodes and edges."""

    concepts: int = 0
    topics: int = 0
    belongs_to: int = 0
    prerequisites: int = 0
    related_to: int = 0


class DatabaseInitializer:
    """Handles schema setup, seeding and maintenance of the graph."""

    def __init__(self,
                 config: Optional[RuntimeConfig] = None,
                 connection: Optional[Neo4jConnectionManager] = None):
        """Initialize with configuration.

        Args:
            config: Runtime configuration, uses global if not provided
            connection: Connection manager, created from the config if not provided
        """
        self.config = config or get_config()
        self.connection_manager = connection or Neo4jConnectionManager(self.config)
        self.repository = EntityRepository(connection=self.connection_manager, config=self.config)
        self._initialized = False

    async def initialize_database(self, force: bool = False, seed: bool = False) -> bool:
        """Create the schema and optionally seed the starter curriculum.

        Args:
            force: Force re-initialization even if already done
            seed: Also load the default curriculum

        Returns:
            True if successful, False otherwise
        """
        if self._initialized and not force:
            logger.info("Database already initialized")
            return True

        try:
            logger.info("Starting database initialization...")
            await self._create_constraints()
            await self._create_indexes()

            if seed:
                await self.seed_curriculum()

            if await self._verify_initialization():
                self._initialized = True
                logger.info("Database initialization completed successfully")
                return True
            logger.error("Database initialization verification failed")
            return False

        except (MentorError, Neo4jError) as e:
            logger.error(f"Database initialization failed: {e}")
            return False

    async def _create_constraints(self):
        """Create uniqueness constraints; MERGE relies on them for atomic upserts."""
        logger.info("Creating constraints...")
        for name, label, property_name in CONSTRAINTS:
            await self.connection_manager.execute_query_async(
                f"CREATE CONSTRAINT {name} IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.{property_name} IS UNIQUE"
            )
            logger.debug(f"Created constraint {name}")

    async def _create_indexes(self):
        """Create lookup indexes."""
        logger.info("Creating indexes...")
        for name, label, property_name in INDEXES:
            await self.connection_manager.execute_query_async(
                f"CREATE INDEX {name} IF NOT EXISTS FOR (n:{label}) ON (n.{property_name})"
            )
            logger.debug(f"Created index {name}")

    async def _verify_initialization(self) -> bool:
        """Verify every expected constraint and index exists."""
        logger.info("Verifying initialization...")
        constraint_names = [name for name, _, _ in CONSTRAINTS]
        index_names = [name for name, _, _ in INDEXES]

        constraints = await self.connection_manager.execute_query_async(
            "SHOW CONSTRAINTS YIELD name WHERE name IN $names RETURN count(*) AS count",
            {'names': constraint_names}
        )
        indexes = await self.connection_manager.execute_query_async(
            "SHOW INDEXES YIELD name WHERE name IN $names RETURN count(*) AS count",
            {'names': index_names}
        )

        if constraints[0]['count'] < len(constraint_names):
            logger.error(f"Only {constraints[0]['count']}/{len(constraint_names)} constraints present")
            return False
        if indexes[0]['count'] < len(index_names):
            logger.error(f"Only {indexes[0]['count']}/{len(index_names)} indexes present")
            return False

        logger.info("All verification checks passed")
        return True

    async def seed_curriculum(self, catalogue: Optional[Dict[str, Any]] = None) -> KnowledgeGraphStats:
        """Load topics, concepts and their relationships. Safe to run repeatedly.

        Args:
            catalogue: Curriculum in the shape of DEFAULT_CURRICULUM

        Returns:
            Graph statistics after seeding
        """
        catalogue = catalogue or DEFAULT_CURRICULUM
        logger.info("Seeding curriculum...")

        for topic in catalogue.get("topics", []):
            await self.repository.create(TopicEntity(
                name=topic["name"],
                category=TopicCategory(topic.get("category", TopicCategory.CONCEPT.value)),
                difficulty=topic.get("difficulty", 3),
                summary=topic.get("summary", ""),
                prerequisites=topic.get("prerequisites", []),
            ))

        for concept in catalogue.get("concepts", []):
            await self.repository.create(ConceptEntity(
                name=concept["name"],
                description=concept.get("description", ""),
                complexity=concept.get("complexity", 3),
                short_explanation=concept.get("short_explanation", ""),
                misconceptions=concept.get("misconceptions", []),
                use_cases=concept.get("use_cases", []),
                code_example=concept.get("code_example", ""),
            ))
            for index, topic_name in enumerate(concept.get("topics", [])):
                await self.repository.associate_concept_with_topic(
                    concept["name"], topic_name, primary=index == 0, importance=0.8 if index == 0 else 0.5
                )

        for prerequisite, concept, strength, explanation in catalogue.get("prerequisites", []):
            await self.repository.set_concept_prerequisite(prerequisite, concept, strength, explanation)

        for concept, related, related_type, strength, note in catalogue.get("related", []):
            await self.repository.relate_concepts(concept, related, RelatedType(related_type), strength, note)

        stats = await self.get_knowledge_graph_stats()
        logger.info(f"Curriculum seeded: {stats.concepts} concepts in {stats.topics} topics")
        return stats

    async def get_knowledge_graph_stats(self) -> KnowledgeGraphStats:
        """Count curriculum nodes and edges; all zeros on an empty graph."""
        records = await self.connection_manager.execute_query_async(
            """
            RETURN COUNT { (:Concept) } AS concepts,
                   COUNT { (:Topic) } AS topics,
                   COUNT { ()-[:BELONGS_TO]->() } AS belongs_to,
                   COUNT { ()-[:PREREQUISITE_FOR]->() } AS prerequisites,
                   COUNT { ()-[:RELATED_TO]->() } AS related_to
            """
        )
        return KnowledgeGraphStats.model_validate(records[0]) if records else KnowledgeGraphStats()

    async def reset_database(self, confirm: bool = False) -> bool:
        """Reset the database (DANGEROUS - deletes all data).

        Args:
            confirm: Must be True to actually perform reset

        Returns:
            True if successful, False otherwise
        """
        if not confirm:
            logger.warning("Database reset requested but not confirmed")
            return False

        logger.warning("RESETTING DATABASE - ALL DATA WILL BE DELETED")

        try:
            await self.connection_manager.execute_query_async("MATCH (n) DETACH DELETE n")
            logger.info("Deleted all nodes and relationships")

            for name, _, _ in CONSTRAINTS:
                await self.connection_manager.execute_query_async(f"DROP CONSTRAINT {name} IF EXISTS")
            for name, _, _ in INDEXES:
                await self.connection_manager.execute_query_async(f"DROP INDEX {name} IF EXISTS")
            logger.info("Dropped constraints and indexes")

            self._initialized = False
            return True

        except (MentorError, Neo4jError) as e:
            logger.error(f"Database reset failed: {e}")
            return False

    async def get_initialization_status(self) -> Dict[str, Any]:
        """Report schema presence and data counts."""
        counts = await self.connection_manager.execute_query_async(
            """
            RETURN COUNT { (:User) } AS users,
                   COUNT { (:LearningEvent) } AS learning_events,
                   COUNT { (:Concept {autoGenerated: true}) } AS placeholder_concepts
            """
        )
        stats = await self.get_knowledge_graph_stats()
        verified = await self._verify_initialization()

        return {
            'initialized': self._initialized or verified,
            'verified': verified,
            'constraints': len(CONSTRAINTS),
            'indexes': len(INDEXES),
            **stats.model_dump(),
            **(counts[0] if counts else {}),
        }

    async def close(self):
        await self.connection_manager.close_async()


async def initialize_database(config: Optional[RuntimeConfig] = None,
                              force: bool = False,
                              seed: bool = False) -> bool:
    """Initialize the database with the given configuration."""
    initializer = DatabaseInitializer(config)
    try:
        return await initializer.initialize_database(force=force, seed=seed)
    finally:
        await initializer.close()


async def seed_curriculum(config: Optional[RuntimeConfig] = None) -> KnowledgeGraphStats:
    """Seed the default curriculum."""
    initializer = DatabaseInitializer(config)
    try:
        return await initializer.seed_curriculum()
    finally:
        await initializer.close()


async def reset_database(config: Optional[RuntimeConfig] = None, confirm: bool = False) -> bool:
    """Reset the database with the given configuration."""
    initializer = DatabaseInitializer(config)
    try:
        return await initializer.reset_database(confirm=confirm)
    finally:
        await initializer.close()


async def get_database_status(config: Optional[RuntimeConfig] = None) -> Dict[str, Any]:
    """Get database status with the given configuration."""
    initializer = DatabaseInitializer(config)
    try:
        return await initializer.get_initialization_status()
    finally:
        await initializer.close()
