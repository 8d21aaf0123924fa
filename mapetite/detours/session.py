"""
Per-user detour search session.

A DetourSession owns every piece of mutable state for one user: the baseline
route, the discovered corridor POIs, the ranked result set, scoring progress
and the active filters. Listeners registered with `subscribe` receive an
immutable snapshot after every change.

Each destination search runs under an epoch number. Selecting a new
destination, or changing the corridor width or sampling density, starts a new
epoch; work belonging to an older epoch is dropped before it can touch state.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Coroutine, Dict, List, Optional, Set, Tuple

from mapetite.config import KM_PER_MILE, get_settings
from mapetite.detours.binning import select_candidates
from mapetite.detours.sampler import sample_route
from mapetite.detours.scorer import DetourScorer, ProgressTracker, ResultSet
from mapetite.detours.view import ResultFilters, ResultView, build_view
from mapetite.models import DetourResult, GeoPoint, POI, Route, ScoringProgress
from mapetite.places.aggregator import aggregate_candidates, filter_to_corridor
from mapetite.places.client import PlacesClient, get_places_client
from mapetite.routing.client import DirectionsClient, get_directions_client

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class SessionSnapshot:
    epoch: int
    loading: bool
    origin: Optional[GeoPoint]
    destination: Optional[GeoPoint]
    baseline: Optional[Route]
    discovered_count: int
    results: Tuple[DetourResult, ...] = ()
    progress: ScoringProgress = field(default_factory=ScoringProgress)
    error: Optional[str] = None


Listener = Callable[[SessionSnapshot], None]


class ScoringInProgressError(RuntimeError):
    """Raised when an operation needs the session to be idle."""


class DetourSession:
    """Controller for one user's destination searches."""

    def __init__(
        self,
        places: PlacesClient,
        directions: DirectionsClient,
        corridor_miles: Optional[float] = None,
        sample_spacing_km: Optional[float] = None,
        max_candidates: Optional[int] = None,
        batch_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = str(uuid.uuid4())
        self.places = places
        self.directions = directions
        self.scorer = DetourScorer(directions, batch_size=batch_size)
        self.corridor_miles = _validate_corridor_miles(
            corridor_miles if corridor_miles is not None else settings.corridor_miles
        )
        self.sample_spacing_km = _validate_spacing(
            sample_spacing_km if sample_spacing_km is not None else settings.sample_spacing_km
        )
        self.max_candidates = max_candidates or settings.max_detour_candidates
        self.filters = ResultFilters()

        self.origin: Optional[GeoPoint] = None
        self.destination: Optional[GeoPoint] = None
        self.baseline: Optional[Route] = None
        self.samples: List[GeoPoint] = []
        self.fetched_count = 0
        self.discovered: List[POI] = []
        self.selected: List[POI] = []
        self.results = ResultSet()
        self.progress = ScoringProgress()
        self.loading = False
        self.error: Optional[str] = None

        self._epoch = 0
        self._lock = asyncio.Lock()
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._clock = clock

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def corridor_km(self) -> float:
        return self.corridor_miles * KM_PER_MILE

    # ---- Notification ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            epoch=self._epoch,
            loading=self.loading,
            origin=self.origin,
            destination=self.destination,
            baseline=self.baseline,
            discovered_count=len(self.discovered),
            results=tuple(self.results.ordered()),
            progress=self.progress,
            error=self.error,
        )

    def _publish(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception(f"Session {self.id} listener failed")

    # ---- Filters / view ----

    def set_filters(self, filters: ResultFilters) -> ResultView:
        for value in (filters.min_price, filters.max_price):
            if value is not None and not 0 <= value <= 4:
                raise ValueError(f"Price level must be between 0 and 4, got {value}")
        if (
            filters.min_price is not None
            and filters.max_price is not None
            and filters.min_price > filters.max_price
        ):
            raise ValueError("Minimum price is above maximum price")
        self.filters = filters
        return self.view()

    def view(self) -> ResultView:
        return build_view(self.results.ordered(), self.filters)

    # ---- Passes ----

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def _begin_pass(self) -> int:
        """Invalidate in-flight work. Results stay until a new baseline is usable."""
        self._epoch += 1
        self.loading = True
        self.error = None
        self._publish()
        return self._epoch

    def _reset(self, origin: GeoPoint, destination: GeoPoint, baseline: Route) -> None:
        self.origin = origin
        self.destination = destination
        self.baseline = baseline
        self.samples = []
        self.fetched_count = 0
        self.discovered = []
        self.selected = []
        self.results = ResultSet()
        self.progress = ScoringProgress(label="Searching for restaurants along the route")
        self._publish()

    def _fail(self, message: str) -> None:
        self.loading = False
        self.error = message
        self.progress = replace(self.progress, label=message)
        self._publish()

    async def select_destination(self, origin: Optional[GeoPoint], destination: Optional[GeoPoint]) -> bool:
        """
        Start a new search from `origin` to `destination`.

        Returns True when the pass ran to completion, False when it failed or
        was superseded by a newer one. A failed route lookup keeps the
        previous route and results.
        """
        if origin is None:
            raise ValueError("Current location is unavailable")
        if destination is None:
            raise ValueError("Destination is missing")

        return await self._run_pass(self._begin_pass(), origin, destination)

    async def set_corridor_width(self, miles: float) -> bool:
        """Change the corridor width and, if a destination is set, search again."""
        self.corridor_miles = _validate_corridor_miles(miles)
        return await self._restart()

    async def set_sample_spacing(self, spacing_km: float) -> bool:
        """Change the sampling density and, if a destination is set, search again."""
        self.sample_spacing_km = _validate_spacing(spacing_km)
        return await self._restart()

    async def _restart(self) -> bool:
        if self.origin is None or self.destination is None:
            # Nothing to rerun, but anything still in flight is now stale
            self._epoch += 1
            self.loading = False
            self._publish()
            return False
        return await self._run_pass(self._begin_pass(), self.origin, self.destination)

    async def _run_pass(self, epoch: int, origin: GeoPoint, destination: GeoPoint) -> bool:
        logger.info(
            "detours.pass_started",
            extra={
                "session_id": self.id,
                "epoch": epoch,
                "origin": origin.as_param(),
                "destination": destination.as_param(),
                "corridor_km": round(self.corridor_km, 3),
            },
        )

        try:
            baseline = await self.directions.get_route(origin, destination)
        except Exception as e:
            logger.error(f"Baseline route fetch failed: {e}")
            baseline = None

        if not self._is_current(epoch):
            return False
        if baseline is None or not baseline.legs:
            self._fail("No route found to the destination")
            return False
        if len(baseline.path) < 2:
            self._fail("Route shape is unusable")
            return False

        self._reset(origin, destination, baseline)

        self.samples = sample_route(baseline.path, self.sample_spacing_km)
        fetched = await aggregate_candidates(
            self.places,
            self.samples,
            should_continue=lambda: self._is_current(epoch),
        )
        if not self._is_current(epoch):
            return False

        self.fetched_count = len(fetched)
        self.discovered = filter_to_corridor(fetched, baseline.path, self.corridor_km)
        self._publish()

        candidates: List[POI] = []
        if self.discovered:
            candidates = select_candidates(self.discovered, baseline.path, self.max_candidates)

        await self._score(epoch, candidates)
        return self._is_current(epoch)

    async def load_more(self) -> int:
        """
        Score corridor POIs that have no result yet.

        New results join the existing ones; nothing already scored is
        touched.

        Returns:
            Number of additional candidates scored.
        """
        if self.baseline is None:
            raise ValueError("No route has been selected yet")
        if self.loading:
            raise ScoringInProgressError("A scoring pass is still running")

        epoch = self._epoch
        processed = self.results.ids()
        unprocessed = [p for p in self.discovered if p.id not in processed]
        if not unprocessed:
            return 0

        candidates = select_candidates(unprocessed, self.baseline.path, self.max_candidates)
        self.loading = True
        await self._score(epoch, candidates)
        return len(candidates)

    async def _score(self, epoch: int, candidates: List[POI]) -> None:
        self.selected = list(candidates)
        tracker = ProgressTracker(len(candidates), clock=self._clock)
        self.progress = tracker.snapshot(len(self.results))
        self._publish()

        async def on_result(poi: POI, result: Optional[DetourResult]) -> None:
            async with self._lock:
                if not self._is_current(epoch):
                    return
                if result is not None:
                    self.results.upsert(result)
                self.progress = tracker.complete_one(len(self.results))
                self._publish()

        await self.scorer.score_all(
            self.origin,
            self.destination,
            candidates,
            self.baseline.total_duration_s,
            on_result,
            is_current=lambda: self._is_current(epoch),
        )

        if not self._is_current(epoch):
            return

        self.loading = False
        self.progress = tracker.snapshot(len(self.results))
        self._publish()
        logger.info(
            "detours.pass_finished",
            extra={
                "session_id": self.id,
                "epoch": epoch,
                "candidates": len(candidates),
                "results": len(self.results),
                "best_added_s": self.results.ordered()[0].added_time_s if len(self.results) else None,
            },
        )

    # ---- Background tasks ----

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a pass in the background, keeping a reference until it settles."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Session {self.id} background pass failed: {exc!r}")

    def close(self) -> None:
        self._epoch += 1
        self.loading = False
        # Final snapshot lets open streams finish
        self._publish()
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()


def _validate_corridor_miles(miles: float) -> float:
    if not settings.corridor_min_miles <= miles <= settings.corridor_max_miles:
        raise ValueError(
            f"Corridor width must be between {settings.corridor_min_miles} and "
            f"{settings.corridor_max_miles} miles, got {miles}"
        )
    return float(miles)


def _validate_spacing(spacing_km: float) -> float:
    if spacing_km <= 0:
        raise ValueError(f"Sample spacing must be positive, got {spacing_km}")
    return float(spacing_km)


class SessionStore:
    """In-memory registry of sessions, keyed by session id."""

    def __init__(
        self,
        places: Optional[PlacesClient] = None,
        directions: Optional[DirectionsClient] = None,
    ):
        self._places = places
        self._directions = directions
        self._sessions: Dict[str, DetourSession] = {}

    def new_session(
        self,
        corridor_miles: Optional[float] = None,
        sample_spacing_km: Optional[float] = None,
    ) -> DetourSession:
        """Build a session without registering it (used for one-shot searches)."""
        return DetourSession(
            places=self._places or get_places_client(),
            directions=self._directions or get_directions_client(),
            corridor_miles=corridor_miles,
            sample_spacing_km=sample_spacing_km,
        )

    def create(
        self,
        corridor_miles: Optional[float] = None,
        sample_spacing_km: Optional[float] = None,
    ) -> DetourSession:
        session = self.new_session(corridor_miles, sample_spacing_km)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[DetourSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True


# Singleton
_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get or create the session store singleton."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
