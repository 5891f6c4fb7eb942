"""
Tests for the read-only knowledge overview.
"""

import pytest
from datetime import datetime, timezone

from knowledge_overview import ConceptSummary, KnowledgeOverview, UserOverview


@pytest.fixture
def overview(mock_connection, runtime_config):
    return KnowledgeOverview(connection=mock_connection, config=runtime_config)


class TestUserOverview:

    @pytest.mark.asyncio
    async def test_missing_learner(self, overview):
        assert await overview.user_overview("ghost") is None

    @pytest.mark.asyncio
    async def test_overview_counts_and_ordering(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "userId": "u1",
            "name": "Learner",
            "learningStyle": "practical",
            "defaultDetailLevel": "standard",
            "learningGoals": None,
            "knownConcepts": [
                {"name": "Loops", "proficiency": 2, "knowledgeStage": "aware"},
                {"name": "Functions", "proficiency": 4, "knowledgeStage": "practicing"},
                {"name": "Arrays", "proficiency": 2, "knowledgeStage": "aware"},
            ],
            "trackedTopics": [
                {"name": "Python", "category": "language", "priority": 3, "active": True, "goal": "Learning"},
                {"name": "Rust", "category": "language", "priority": 5, "active": False, "goal": "Learning"},
            ],
        }]

        result = await overview.user_overview("u1")

        assert result.user_id == "u1"
        assert result.learning_goals == ""
        assert [c.name for c in result.known_concepts] == ["Functions", "Arrays", "Loops"]
        assert result.known_concepts_count == 3
        assert result.tracked_topics_count == 2
        assert [t.name for t in result.tracked_topics] == ["Rust", "Python"]
        assert result.active_topics == ["Python"]

    @pytest.mark.asyncio
    async def test_new_learner_has_empty_lists(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "userId": "u1", "name": "Learner", "learningStyle": "practical",
            "defaultDetailLevel": "standard", "learningGoals": "",
            "knownConcepts": [], "trackedTopics": [],
        }]
        result = await overview.user_overview("u1")
        assert result.known_concepts_count == 0
        assert result.active_topics == []

    def test_counts_are_serialized(self):
        result = UserOverview(
            user_id="u1", name="Learner",
            known_concepts=[ConceptSummary(name="Loops", proficiency=2)],
        )

        dumped = result.model_dump(mode="json")
        assert dumped["known_concepts_count"] == 1
        assert dumped["tracked_topics_count"] == 0
        assert result.model_dump(by_alias=True)["knownConceptsCount"] == 1


class TestTopicKnowledge:

    @pytest.mark.asyncio
    async def test_missing_topic(self, overview):
        assert await overview.topic_knowledge("Cobol", "u1") is None

    @pytest.mark.asyncio
    async def test_topic_with_learner(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "name": "Algorithms", "category": "concept", "difficulty": 3, "summary": "",
            "tracked": True, "active": True, "priority": 3, "goal": "Learning",
            "concepts": [
                {"name": "Sorting", "complexity": 3, "proficiency": None},
                {"name": "Recursion", "complexity": 4, "proficiency": 2, "knowledgeStage": "aware",
                 "evidenceCount": 1},
            ],
        }]

        result = await overview.topic_knowledge(" Algorithms ", "u1")

        _, params = mock_connection.execute_query_async.call_args.args
        assert params == {"topic": "Algorithms", "user_id": "u1"}
        assert result.tracked
        assert [c.name for c in result.concepts] == ["Recursion", "Sorting"]
        assert result.concepts[0].known
        assert not result.concepts[1].known

    @pytest.mark.asyncio
    async def test_topic_without_learner(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "name": "Algorithms", "tracked": False, "active": None, "priority": None,
            "goal": None, "concepts": [],
        }]
        result = await overview.topic_knowledge("Algorithms")
        assert not result.tracked
        assert mock_connection.execute_query_async.call_args.args[1]["user_id"] is None


class TestConceptKnowledge:

    @pytest.mark.asyncio
    async def test_keeps_requested_order_and_skips_unknown(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [
            {"name": "Loops", "proficiency": 3, "topics": ["Python"]},
            {"name": "Recursion", "proficiency": None, "topics": ["Algorithms"]},
        ]

        result = await overview.concept_knowledge(["Recursion", "Missing", "Loops"], "u1")

        assert [c.name for c in result] == ["Recursion", "Loops"]
        assert mock_connection.execute_query_async.call_args.args[1]["names"] == ["Recursion", "Missing", "Loops"]

    @pytest.mark.asyncio
    async def test_empty_names(self, overview, mock_connection):
        assert await overview.concept_knowledge([]) == []
        mock_connection.execute_query_async.assert_not_awaited()


class TestRelatedConcepts:

    @pytest.mark.asyncio
    async def test_missing_concept(self, overview):
        assert await overview.related_concepts("Nope") is None

    @pytest.mark.asyncio
    async def test_split_by_knowledge(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "sourceConcept": "Recursion",
            "related": [
                {"name": "Loops", "relationshipType": "alternative_to", "strength": 0.7,
                 "direction": "outgoing", "known": True, "proficiency": 3},
                {"name": "Memoization", "relationshipType": "applied_in", "strength": 0.8,
                 "direction": "incoming", "known": False},
                {"name": "Backtracking", "relationshipType": "applied_in", "strength": 0.8,
                 "direction": "outgoing", "known": False},
            ],
        }]

        result = await overview.related_concepts("Recursion", "u1")

        assert result.source_concept == "Recursion"
        assert [r.name for r in result.known] == ["Loops"]
        assert [r.name for r in result.unknown] == ["Backtracking", "Memoization"]
        assert result.unknown[1].direction == "incoming"
        assert len(result.all) == 3


class TestRecentLearningEvents:

    @pytest.mark.asyncio
    async def test_events(self, overview, mock_connection):
        moment = datetime(2024, 5, 1, tzinfo=timezone.utc)
        mock_connection.execute_query_async.return_value = [
            {"id": "e1", "timestamp": moment, "eventType": "practiced", "details": None,
             "concepts": ["Recursion"]},
        ]

        [event] = await overview.recent_learning_events("u1", limit=3)

        assert event.event_type == "practiced"
        assert event.details == ""
        assert event.concepts == ["Recursion"]
        query, params = mock_connection.execute_query_async.call_args.args
        assert "ORDER BY le.timestamp DESC" in query
        assert params["limit"] == 3

    @pytest.mark.asyncio
    async def test_invalid_limit(self, overview):
        with pytest.raises(ValueError):
            await overview.recent_learning_events("u1", limit=0)


class TestCatalogue:

    @pytest.mark.asyncio
    async def test_identify_concepts_in_text(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [{"name": "Binary Search"}, {"name": "Recursion"}]
        assert await overview.identify_concepts_in_text("Binary search with recursion") == [
            "Binary Search", "Recursion"
        ]

    @pytest.mark.asyncio
    async def test_identify_concepts_in_blank_text(self, overview, mock_connection):
        assert await overview.identify_concepts_in_text("   ") == []
        mock_connection.execute_query_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_concepts_by_topic(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [
            {"properties": {"id": "c1", "name": "Recursion", "complexity": 4}},
        ]
        [concept] = await overview.list_concepts("Algorithms")
        assert concept.name == "Recursion"
        assert mock_connection.execute_query_async.call_args.args[1] == {"topic": "Algorithms"}

    @pytest.mark.asyncio
    async def test_list_topics(self, overview, mock_connection):
        mock_connection.execute_query_async.return_value = [
            {"properties": {"id": "t1", "name": "Python", "category": "language", "difficulty": 2}},
        ]
        [topic] = await overview.list_topics()
        assert topic.category == "language"
