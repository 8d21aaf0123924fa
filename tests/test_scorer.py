"""
Tests for detour scoring, the ranked result set and progress tracking.
"""
import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

from mapetite.detours.scorer import DetourScorer, ProgressTracker, ResultSet, rank_key
from mapetite.models import DetourResult, Route

from tests.fakes import DESTINATION, ORIGIN, FakeDirections, make_poi, straight_route


def _result(poi_id: str, total: int, baseline: int = 1200) -> DetourResult:
    return DetourResult(
        poi=make_poi(poi_id, 40.1, -75.0),
        route=straight_route(ORIGIN, DESTINATION, total),
        total_time_s=total,
        added_time_s=max(0, total - baseline),
    )


def _score_all(directions, candidates, baseline_s=1200, batch_size=5, is_current=None):
    scorer = DetourScorer(directions, batch_size=batch_size)
    published: List[Optional[DetourResult]] = []
    results = ResultSet()
    orderings = []

    async def on_result(poi, result):
        published.append(result)
        if result is not None:
            orderings.append([r.poi.id for r in results.upsert(result)])

    attempted = asyncio.run(scorer.score_all(
        ORIGIN, DESTINATION, candidates, baseline_s, on_result, is_current=is_current,
    ))
    return attempted, published, results, orderings


class TestResultSet:
    def test_upsert_replaces_instead_of_duplicating(self):
        results = ResultSet()
        results.upsert(_result("a", 1500))
        ordering = results.upsert(_result("a", 1300))
        assert len(results) == 1
        assert len(ordering) == 1
        assert results.get("a").total_time_s == 1300

    def test_sorted_by_added_then_total(self):
        results = ResultSet()
        results.upsert(_result("slow", 1800))
        results.upsert(_result("free", 1200))
        results.upsert(_result("faster-than-baseline", 1100))
        results.upsert(_result("medium", 1500))

        ordered = results.ordered()
        assert [r.poi.id for r in ordered] == ["faster-than-baseline", "free", "medium", "slow"]
        assert ordered == sorted(ordered, key=rank_key)

    def test_ids_and_lookup(self):
        results = ResultSet()
        results.upsert(_result("a", 1300))
        assert results.ids() == {"a"}
        assert results.get("a").total_time_s == 1300
        assert results.get("b") is None


class TestScoreOne:
    def test_added_time_never_negative(self):
        directions = FakeDirections(baseline_s=1200, detour_s={"shortcut": 1100})
        scorer = DetourScorer(directions)
        result = asyncio.run(scorer.score_one(ORIGIN, DESTINATION, make_poi("shortcut", 40.1, -75.0), 1200))
        assert result.total_time_s == 1100
        assert result.added_time_s == 0

    def test_uses_poi_id_as_waypoint(self):
        directions = FakeDirections()
        scorer = DetourScorer(directions)
        asyncio.run(scorer.score_one(ORIGIN, DESTINATION, make_poi("place-123", 40.1, -75.0), 1200))
        assert directions.calls == [(ORIGIN, DESTINATION, "place-123")]

    def test_failure_returns_none(self):
        directions = FakeDirections(failing={"broken"})
        scorer = DetourScorer(directions)
        assert asyncio.run(scorer.score_one(ORIGIN, DESTINATION, make_poi("broken", 40.1, -75.0), 1200)) is None

    def test_route_without_legs_returns_none(self):
        directions = MagicMock()
        legless = Route(polyline="", path=[ORIGIN, DESTINATION], legs=[])
        directions.get_route = AsyncMock(return_value=legless)
        scorer = DetourScorer(directions)
        assert asyncio.run(scorer.score_one(ORIGIN, DESTINATION, make_poi("x", 40.1, -75.0), 1200)) is None
        directions.get_route.assert_awaited_once_with(ORIGIN, DESTINATION, waypoint="x")


class TestScoreAll:
    def test_zero_added_time_ranked_first(self):
        """Baseline 1200s; candidate A also takes 1200s and ranks first."""
        directions = FakeDirections(baseline_s=1200, detour_s={"A": 1200, "B": 1500, "C": 1320})
        candidates = [make_poi(pid, 40.1, -75.0) for pid in ("B", "C", "A")]

        _, _, results, _ = _score_all(directions, candidates)

        best = results.ordered()[0]
        assert best.poi.id == "A"
        assert best.added_time_s == 0
        assert [r.poi.id for r in results.ordered()] == ["A", "C", "B"]

    def test_publishes_sorted_ordering_on_every_completion(self):
        directions = FakeDirections(detour_s={str(i): 1200 + 100 * (7 - i) for i in range(7)})
        candidates = [make_poi(str(i), 40.1, -75.0) for i in range(7)]

        _, published, results, orderings = _score_all(directions, candidates, batch_size=3)

        assert len(published) == 7
        assert len(orderings) == 7
        assert [len(o) for o in orderings] == list(range(1, 8))
        assert orderings[-1] == [str(i) for i in range(6, -1, -1)]

    def test_failed_candidate_is_omitted(self):
        directions = FakeDirections(failing={"bad"})
        candidates = [make_poi(pid, 40.1, -75.0) for pid in ("ok-1", "bad", "ok-2")]

        attempted, published, results, _ = _score_all(directions, candidates)

        assert attempted == 3
        assert published.count(None) == 1
        assert results.ids() == {"ok-1", "ok-2"}

    def test_bounded_batches(self):
        directions = FakeDirections()
        candidates = [make_poi(str(i), 40.1, -75.0) for i in range(12)]

        _score_all(directions, candidates, batch_size=5)

        assert directions.max_active == 5
        assert len(directions.calls) == 12

    def test_next_batch_waits_for_whole_batch(self):
        directions = FakeDirections()
        candidates = [make_poi(str(i), 40.1, -75.0) for i in range(10)]
        scorer = DetourScorer(directions, batch_size=5)

        async def on_result(poi, result):
            pass

        async def scenario():
            directions.gate = asyncio.Event()
            directions.blocked = asyncio.Event()
            directions.gated = {"0"}
            scoring = asyncio.create_task(
                scorer.score_all(ORIGIN, DESTINATION, candidates, 1200, on_result)
            )
            await directions.blocked.wait()
            for _ in range(10):
                await asyncio.sleep(0)
            started_while_gated = [c[2] for c in directions.calls]
            directions.gate.set()
            attempted = await scoring
            return started_while_gated, attempted

        started_while_gated, attempted = asyncio.run(scenario())

        assert sorted(started_while_gated) == ["0", "1", "2", "3", "4"]
        assert attempted == 10
        assert len(directions.calls) == 10

    def test_stops_when_no_longer_current(self):
        directions = FakeDirections()
        candidates = [make_poi(str(i), 40.1, -75.0) for i in range(10)]
        checks = []

        def is_current():
            checks.append(1)
            return len(checks) == 1

        attempted, published, _, _ = _score_all(directions, candidates, batch_size=4, is_current=is_current)

        assert attempted == 4
        assert len(published) == 4


class TestProgressTracker:
    def test_eta_extrapolates_elapsed_time(self):
        now = [100.0]
        tracker = ProgressTracker(total=10, clock=lambda: now[0])

        now[0] = 104.0
        tracker.complete_one(found_count=1)
        now[0] = 108.0
        progress = tracker.complete_one(found_count=2)

        # 8s for 2 candidates -> 4s each, 8 remaining
        assert progress.completed_count == 2
        assert progress.eta_seconds == 32
        assert progress.found_count == 2
        assert progress.total_candidates == 10

    def test_finished(self):
        tracker = ProgressTracker(total=1, clock=lambda: 0.0)
        progress = tracker.complete_one(found_count=1)
        assert progress.eta_seconds == 0
        assert progress.label == "Found 1 detours"

    def test_nothing_to_score(self):
        progress = ProgressTracker(total=0).snapshot(found_count=0)
        assert progress.eta_seconds == 0
        assert "No detour candidates" in progress.label
