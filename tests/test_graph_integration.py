"""
Integration tests against a real Neo4j database.

Run with a disposable database:

    NEO4J_TEST_URI=bolt://localhost:7687 NEO4J_PASSWORD=... pytest -m integration

Every test works on uniquely named nodes and removes them afterwards.
"""

import os
from uuid import uuid4

import pytest
import pytest_asyncio

from entity_repository import EntityRepository
from knowledge_state import ConceptEvidence, KnowledgeStateEngine
from mentor_config import Neo4jConfig, RuntimeConfig
from mentor_connection import Neo4jConnectionManager
from mentor_entities import EntityFactory, EntityKind
from recommendations import RecommendationEngine


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.getenv("NEO4J_TEST_URI"), reason="NEO4J_TEST_URI not set"),
]


@pytest_asyncio.fixture
async def connection():
    config = RuntimeConfig()
    config.neo4j = Neo4jConfig(uri=os.environ["NEO4J_TEST_URI"], connect_retries=1)
    manager = Neo4jConnectionManager(config)
    yield manager
    await manager.close_async()


@pytest_asyncio.fixture
async def graph(connection):
    """Unique name factory; deletes everything created through it."""
    suffix = uuid4().hex[:8]
    names = []

    def name(base):
        names.append(f"{base} {suffix}")
        return names[-1]

    yield name

    await connection.execute_query_async(
        """
        MATCH (n)
        WHERE n.name IN $names OR n.id IN $names OR n.userId IN $names
        OPTIONAL MATCH (n)-[:EXPERIENCED]->(e:LearningEvent)
        DETACH DELETE e, n
        """,
        {'names': names}
    )


@pytest_asyncio.fixture
async def learner(connection, graph):
    repository = EntityRepository(connection=connection, config=connection.config)
    user_id = graph("learner")
    await repository.ensure_user(EntityFactory.create_new_user(user_id))
    return user_id


@pytest.mark.asyncio
async def test_placeholder_is_created_once(connection, graph):
    repository = EntityRepository(connection=connection, config=connection.config)
    name = graph("Memoization")

    first = await repository.ensure_exists(EntityKind.CONCEPT, name)
    second = await repository.ensure_exists(EntityKind.CONCEPT, name)

    assert first == second
    concept = await repository.get_concept(name)
    assert concept.description == "Auto-generated concept"


@pytest.mark.asyncio
async def test_evidence_scenario(connection, graph, learner):
    engine = KnowledgeStateEngine(connection=connection, config=connection.config)
    concept = graph("recursion")

    first = await engine.apply_evidence(learner, ConceptEvidence(
        name=concept, proficiency=2, event_type="learned", details="intro",
    ))
    assert first.knows.proficiency == 2
    assert first.knows.evidence_count == 1
    assert first.knows.knowledge_stage == "aware"

    second = await engine.apply_evidence(learner, ConceptEvidence(
        name=concept, proficiency=1, event_type="practiced", details="fib",
    ))
    assert second.knows.proficiency == 2
    assert second.knows.evidence_count == 2
    assert second.knows.knowledge_stage == "learning"
    assert second.knows.notes == "intro\nfib"
    assert second.knows.first_seen == first.knows.first_seen


@pytest.mark.asyncio
async def test_tracking_reactivated_by_evidence(connection, graph, learner):
    repository = EntityRepository(connection=connection, config=connection.config)
    engine = KnowledgeStateEngine(connection=connection, repository=repository, config=connection.config)
    concept, topic = graph("Loops"), graph("Python")

    await repository.associate_concept_with_topic(concept, topic)
    await engine.apply_evidence(learner, ConceptEvidence(name=concept, proficiency=2))
    await repository.set_topic_tracking(learner, topic, active=False, priority=5)

    result = await engine.apply_evidence(learner, ConceptEvidence(name=concept, proficiency=3))

    assert result.tracked_topics == [topic]
    tracks = await connection.execute_query_async(
        """
        MATCH (:User {id: $user_id})-[:HAS]->(:LearningProfile)-[r:TRACKS]->(:Topic {name: $topic})
        RETURN r.active AS active, r.priority AS priority
        """,
        {'user_id': learner, 'topic': topic}
    )
    assert tracks == [{'active': True, 'priority': 5}]


@pytest.mark.asyncio
async def test_prerequisite_gaps(connection, graph, learner):
    repository = EntityRepository(connection=connection, config=connection.config)
    engine = KnowledgeStateEngine(connection=connection, repository=repository, config=connection.config)
    recommendations = RecommendationEngine(connection=connection, config=connection.config)
    target, prerequisite = graph("A"), graph("B")

    await repository.set_concept_prerequisite(prerequisite, target, strength=0.8)

    [gaps] = await recommendations.find_missing_prerequisites(learner, [target])
    assert [m.name for m in gaps.missing_prerequisites] == [prerequisite]
    assert gaps.missing_prerequisites[0].strength == 0.8

    await engine.apply_evidence(learner, ConceptEvidence(name=prerequisite, proficiency=3))

    [gaps] = await recommendations.find_missing_prerequisites(learner, [target])
    assert gaps.missing_prerequisites == []


@pytest.mark.asyncio
async def test_recommendation_ordering(connection, graph, learner):
    repository = EntityRepository(connection=connection, config=connection.config)
    recommendations = RecommendationEngine(connection=connection, config=connection.config)
    favourite, other = graph("Favourite"), graph("Other")
    easy, hard = graph("Easy concept"), graph("Hard concept")

    await repository.ensure_exists(EntityKind.CONCEPT, easy, {'complexity': 2})
    await repository.ensure_exists(EntityKind.CONCEPT, hard, {'complexity': 4})
    await repository.associate_concept_with_topic(easy, favourite)
    await repository.associate_concept_with_topic(hard, other)
    await repository.set_topic_tracking(learner, favourite, priority=5)
    await repository.set_topic_tracking(learner, other, priority=3)

    ranked = await recommendations.recommend_next(learner)

    assert [r.name for r in ranked] == [easy, hard]
    assert [r.recommendation_score for r in ranked] == [8, 2]


@pytest.mark.asyncio
async def test_association_twice_keeps_one_edge(connection, graph):
    repository = EntityRepository(connection=connection, config=connection.config)
    concept, topic = graph("Closures"), graph("JavaScript")

    await repository.associate_concept_with_topic(concept, topic)
    await repository.associate_concept_with_topic(concept, topic)

    records = await connection.execute_query_async(
        """
        MATCH (:Concept {name: $concept})-[r:BELONGS_TO]->(:Topic {name: $topic})
        RETURN count(r) AS edges
        """,
        {'concept': concept, 'topic': topic}
    )
    assert records == [{'edges': 1}]


@pytest.mark.asyncio
async def test_proficiency_never_drops(connection, graph, learner):
    engine = KnowledgeStateEngine(connection=connection, config=connection.config)
    concept = graph("Generators")

    seen = []
    for proficiency in (4, 1, 3):
        result = await engine.apply_evidence(learner, ConceptEvidence(name=concept, proficiency=proficiency))
        seen.append(result.knows.proficiency)

    assert seen == [4, 4, 4]
    stored = await engine.get_knowledge(learner, concept)
    assert stored.proficiency == 4
    assert stored.evidence_count == 3
