"""
Detour scoring.

Each candidate is scored by asking the directions provider for the
origin -> POI -> destination route and comparing its duration with the
baseline origin -> destination route. Candidates are scored in small
concurrent batches; every completion is handed to the caller immediately so
results can be published while the rest of the pass is still running.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from mapetite.config import get_settings
from mapetite.models import DetourResult, GeoPoint, POI, ScoringProgress
from mapetite.routing.client import DirectionsClient

logger = logging.getLogger(__name__)
settings = get_settings()


def rank_key(result: DetourResult) -> Tuple[int, int]:
    return result.added_time_s, result.total_time_s


class ResultSet:
    """Scored detours keyed by POI id, kept sorted by rank_key."""

    def __init__(self):
        self._by_id: Dict[str, DetourResult] = {}
        self._ordered: List[DetourResult] = []

    def upsert(self, result: DetourResult) -> List[DetourResult]:
        """Insert or replace the result for its POI and return the new ordering."""
        self._by_id[result.poi.id] = result
        self._ordered = sorted(self._by_id.values(), key=rank_key)
        return list(self._ordered)

    def ordered(self) -> List[DetourResult]:
        return list(self._ordered)

    def ids(self) -> Set[str]:
        return set(self._by_id)

    def get(self, poi_id: str) -> Optional[DetourResult]:
        return self._by_id.get(poi_id)

    def __len__(self) -> int:
        return len(self._by_id)


class ProgressTracker:
    """Counts settled candidates and extrapolates the remaining time."""

    def __init__(self, total: int, clock: Callable[[], float] = time.monotonic):
        self.total = total
        self.completed = 0
        self._clock = clock
        self._started = clock()

    def complete_one(self, found_count: int) -> ScoringProgress:
        self.completed += 1
        return self.snapshot(found_count)

    def snapshot(self, found_count: int) -> ScoringProgress:
        remaining = max(0, self.total - self.completed)
        eta = 0
        if self.completed:
            elapsed = self._clock() - self._started
            eta = int(round(elapsed / self.completed * remaining))

        if self.total == 0:
            label = "No detour candidates to score"
        elif remaining:
            label = f"Scoring detours {self.completed}/{self.total}, about {eta}s left"
        else:
            label = f"Found {found_count} detours"

        return ScoringProgress(
            total_candidates=self.total,
            completed_count=self.completed,
            eta_seconds=eta,
            found_count=found_count,
            label=label,
        )


class DetourScorer:
    """Scores detour candidates against a baseline duration."""

    def __init__(self, directions: DirectionsClient, batch_size: Optional[int] = None):
        self.directions = directions
        self.batch_size = max(1, batch_size or settings.scoring_batch_size)

    async def score_one(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        poi: POI,
        baseline_s: int,
    ) -> Optional[DetourResult]:
        """Score a single POI. Upstream failures give None."""
        try:
            route = await self.directions.get_route(origin, destination, waypoint=poi.id)
        except Exception as e:
            logger.warning(f"Detour route via {poi.name!r} ({poi.id}) failed: {e}")
            return None

        if route is None or not route.legs:
            logger.info(f"No detour route via {poi.name!r} ({poi.id})")
            return None

        total = route.total_duration_s
        return DetourResult(
            poi=poi,
            route=route,
            total_time_s=total,
            added_time_s=max(0, total - baseline_s),
        )

    async def score_all(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        candidates: Sequence[POI],
        baseline_s: int,
        on_result: Callable[[POI, Optional[DetourResult]], Awaitable[None]],
        is_current: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Score candidates in batches of `batch_size`.

        Requests within a batch run concurrently; the next batch starts only
        after every request of the current one has settled. `on_result` runs
        as soon as each candidate settles (with None on failure).

        Returns:
            Number of candidates that were attempted.
        """
        attempted = 0

        async def run(poi: POI) -> None:
            result = await self.score_one(origin, destination, poi, baseline_s)
            await on_result(poi, result)

        for start in range(0, len(candidates), self.batch_size):
            if is_current is not None and not is_current():
                logger.info(f"Scoring pass superseded after {attempted} candidates")
                break

            batch = candidates[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(run(p) for p in batch), return_exceptions=True)
            for poi, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Scoring callback failed for {poi.id}: {outcome}")
            attempted += len(batch)

        return attempted
