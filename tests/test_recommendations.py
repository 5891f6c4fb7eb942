"""
Tests for gap detection and recommendation ranking.
"""

import pytest

from mentor_errors import NotFoundError
from recommendations import (
    CandidateConcept,
    RecommendationEngine,
    is_missing,
    rank_candidates,
)


@pytest.fixture
def engine(mock_connection, runtime_config):
    return RecommendationEngine(connection=mock_connection, config=runtime_config)


def candidate(name, complexity=3, topics=("Algorithms",), tracks=None, prereqs=0, known=0):
    return CandidateConcept(
        name=name,
        complexity=complexity,
        topics=list(topics),
        active_tracks=dict(tracks or {}),
        prerequisite_count=prereqs,
        known_prerequisite_count=known,
    )


class TestRanking:
    """Test the pure scoring policy."""

    def test_higher_score_ranks_first(self):
        ranked = rank_candidates([
            candidate("Sorting", complexity=4, topics=["Python"], tracks={"Python": 3}),
            candidate("Loops", complexity=2, topics=["Python"], tracks={"Python": 5}),
        ], has_active_tracks=True)

        assert [r.name for r in ranked] == ["Loops", "Sorting"]
        assert ranked[0].recommendation_score == 8
        assert ranked[1].recommendation_score == 2

    def test_ties_break_by_name(self):
        ranked = rank_candidates([candidate("Stacks"), candidate("Queues"), candidate("Heaps")])
        assert [r.name for r in ranked] == ["Heaps", "Queues", "Stacks"]

    def test_defaults_when_untracked(self):
        [recommendation] = rank_candidates([candidate("Closures", complexity=None)])
        assert recommendation.topic_priority == 3
        assert recommendation.complexity == 3
        assert recommendation.recommendation_score == 3

    def test_unmet_prerequisites_excluded(self):
        ranked = rank_candidates([
            candidate("Recursion", prereqs=1, known=0),
            candidate("Functions", prereqs=1, known=1),
        ])
        assert [r.name for r in ranked] == ["Functions"]

    def test_active_tracking_restricts_candidates(self):
        candidates = [
            candidate("Loops", topics=["Python"], tracks={"Python": 3}),
            candidate("Closures", topics=["JavaScript"]),
        ]
        assert [r.name for r in rank_candidates(candidates, has_active_tracks=True)] == ["Loops"]
        assert len(rank_candidates(candidates, has_active_tracks=False)) == 2

    def test_topic_filter(self):
        candidates = [
            candidate("Loops", topics=["Python"], tracks={"Python": 5}),
            candidate("Closures", topics=["JavaScript", "Functional Programming"]),
        ]
        ranked = rank_candidates(candidates, topic="JavaScript", has_active_tracks=True)
        assert [r.name for r in ranked] == ["Closures"]
        assert ranked[0].topic_priority == 3

    def test_topic_filter_uses_that_topics_priority(self):
        ranked = rank_candidates([
            candidate("Closures", topics=["JavaScript", "Python"], tracks={"Python": 5, "JavaScript": 1}),
        ], topic="JavaScript", has_active_tracks=True)
        assert ranked[0].topic_priority == 1

    def test_highest_tracked_priority_wins(self):
        [recommendation] = rank_candidates([
            candidate("Closures", topics=["JavaScript", "Python"], tracks={"Python": 2, "JavaScript": 4}),
        ], has_active_tracks=True)
        assert recommendation.topic_priority == 4

    def test_limit(self):
        ranked = rank_candidates([candidate(f"Concept {i}") for i in range(8)])
        assert len(ranked) == 5

    def test_candidate_from_record(self):
        parsed = CandidateConcept.from_record({
            "name": "Closures",
            "description": None,
            "complexity": 3,
            "shortExplanation": "functions capturing scope",
            "topics": ["Python", "JavaScript"],
            "activeTracks": [{"topic": "Python", "priority": 4}],
            "prereqCount": 1,
            "knownPrereqCount": 1,
        })
        assert parsed.description == ""
        assert parsed.topics == ["JavaScript", "Python"]
        assert parsed.active_tracks == {"Python": 4}
        assert parsed.prerequisites_met

    def test_is_missing(self):
        assert is_missing(None)
        assert is_missing(2)
        assert not is_missing(3)


class TestFindMissingPrerequisites:
    """Test prerequisite gap detection."""

    @pytest.mark.asyncio
    async def test_unknown_prerequisite_is_missing(self, engine, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "conceptName": "A", "name": "B", "description": "b", "strength": 0.8,
            "explanation": "", "proficiency": None,
        }]

        [gaps] = await engine.find_missing_prerequisites("u1", ["A"])

        assert gaps.concept_name == "A"
        assert [m.name for m in gaps.missing_prerequisites] == ["B"]
        assert gaps.missing_prerequisites[0].strength == 0.8
        _, params = mock_connection.execute_query_async.call_args.args
        assert params == {"user_id": "u1", "concepts": ["A"]}

    @pytest.mark.asyncio
    async def test_known_prerequisite_excluded(self, engine, mock_connection):
        mock_connection.execute_query_async.return_value = [{
            "conceptName": "A", "name": "B", "description": "", "strength": 0.8,
            "explanation": "", "proficiency": 3,
        }]

        [gaps] = await engine.find_missing_prerequisites("u1", ["A"])

        assert gaps.missing_prerequisites == []
        assert not gaps.has_gaps

    @pytest.mark.asyncio
    async def test_ordering_and_omissions(self, engine, mock_connection):
        mock_connection.execute_query_async.return_value = [
            {"conceptName": "Recursion", "name": "Loops", "strength": 0.5, "proficiency": 1},
            {"conceptName": "Recursion", "name": "Functions", "strength": 0.9, "proficiency": None},
            {"conceptName": "Closures", "name": "Scope", "strength": 0.7, "proficiency": 2},
        ]

        gaps = await engine.find_missing_prerequisites("u1", ["Closures", "Variables", "Recursion"])

        assert [g.concept_name for g in gaps] == ["Closures", "Recursion"]
        assert [m.name for m in gaps[1].missing_prerequisites] == ["Functions", "Loops"]

    @pytest.mark.asyncio
    async def test_empty_input(self, engine, mock_connection):
        assert await engine.find_missing_prerequisites("u1", ["", "  "]) == []
        mock_connection.execute_query_async.assert_not_awaited()


class TestRecommendNext:
    """Test next-concept recommendations."""

    @pytest.mark.asyncio
    async def test_unknown_learner(self, engine, mock_connection):
        mock_connection.execute_query_async.return_value = []
        with pytest.raises(NotFoundError):
            await engine.recommend_next("ghost")

    @pytest.mark.asyncio
    async def test_ranks_graph_candidates(self, engine, mock_connection):
        mock_connection.execute_query_async.side_effect = [
            [{"profileId": "lp1", "activeTrackCount": 1}],
            [
                {"name": "Sorting", "complexity": 4, "topics": ["Algorithms"],
                 "activeTracks": [{"topic": "Algorithms", "priority": 3}],
                 "prereqCount": 0, "knownPrereqCount": 0},
                {"name": "Loops", "complexity": 2, "topics": ["Python"],
                 "activeTracks": [{"topic": "Python", "priority": 5}],
                 "prereqCount": 0, "knownPrereqCount": 0},
                {"name": "Closures", "complexity": 1, "topics": ["JavaScript"],
                 "activeTracks": [], "prereqCount": 0, "knownPrereqCount": 0},
            ],
        ]

        recommendations = await engine.recommend_next("u1")

        assert [r.name for r in recommendations] == ["Loops", "Sorting"]
        _, params = mock_connection.execute_query_async.call_args.args
        assert params["ceiling"] == 4

    @pytest.mark.asyncio
    async def test_topic_argument_is_stripped(self, engine, mock_connection):
        mock_connection.execute_query_async.side_effect = [
            [{"profileId": "lp1", "activeTrackCount": 0}],
            [{"name": "Closures", "complexity": 3, "topics": ["JavaScript"], "activeTracks": [],
              "prereqCount": 0, "knownPrereqCount": 0}],
        ]
        recommendations = await engine.recommend_next("u1", topic=" JavaScript ")
        assert [r.name for r in recommendations] == ["Closures"]
