"""
API routes for detour search sessions.
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from mapetite.detours.schemas import (
    CorridorRequest,
    DestinationRequest,
    DetourFilters,
    DetourResultResponse,
    DetourSuggestRequest,
    DetourViewResponse,
    LatLng,
    LoadMoreResponse,
    PassStartedResponse,
    ProgressResponse,
    RouteResponse,
    RouteStepResponse,
    SamplingRequest,
    SessionCreateRequest,
    SessionCreateResponse,
)
from mapetite.detours.session import (
    DetourSession,
    ScoringInProgressError,
    SessionSnapshot,
    SessionStore,
    get_session_store,
)
from mapetite.detours.view import ResultFilters, build_view
from mapetite.models import DetourResult, GeoPoint, Route

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/detours", tags=["detours"])


@router.post("/suggest", response_model=DetourViewResponse)
async def suggest(
    body: DetourSuggestRequest,
    store: SessionStore = Depends(get_session_store),
):
    """
    Run one complete detour search and return the ranked, filtered results.

    The route is sampled, restaurants are collected along it, narrowed to the
    corridor, spread across the route and scored by the travel time a detour
    through each one adds to the direct route.
    """
    try:
        session = store.new_session(
            corridor_miles=body.corridor_miles,
            sample_spacing_km=body.sample_spacing_km,
        )
        session.set_filters(_filters_from_request(body.filters))
        await session.select_destination(_point(body.origin), _point(body.destination))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _view_response(session, include_id=False)


@router.post("/sessions", response_model=SessionCreateResponse)
def create_session(
    body: Optional[SessionCreateRequest] = None,
    store: SessionStore = Depends(get_session_store),
):
    """Create an in-memory search session."""
    body = body or SessionCreateRequest()
    try:
        session = store.create(
            corridor_miles=body.corridor_miles,
            sample_spacing_km=body.sample_spacing_km,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SessionCreateResponse(
        session_id=session.id,
        corridor_miles=session.corridor_miles,
        sample_spacing_km=session.sample_spacing_km,
    )


@router.get("/sessions/{session_id}", response_model=DetourViewResponse)
def get_session_view(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """Current filtered results, progress and baseline route."""
    return _view_response(_get_session(store, session_id))


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    if not store.remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": True}


@router.post("/sessions/{session_id}/destination", response_model=PassStartedResponse)
async def select_destination(
    session_id: str,
    body: DestinationRequest,
    wait: bool = Query(False, description="Wait for scoring to finish before responding"),
    store: SessionStore = Depends(get_session_store),
):
    """
    Start a search towards a new destination.

    Any search still running in this session is superseded: its late
    results are discarded.
    """
    session = _get_session(store, session_id)
    origin, destination = _point(body.origin), _point(body.destination)
    return await _run(session, session.select_destination(origin, destination), wait)


@router.put("/sessions/{session_id}/corridor", response_model=PassStartedResponse)
async def set_corridor(
    session_id: str,
    body: CorridorRequest,
    wait: bool = Query(False),
    store: SessionStore = Depends(get_session_store),
):
    """Change the corridor width (miles) and search again."""
    session = _get_session(store, session_id)
    return await _run(session, session.set_corridor_width(body.corridor_miles), wait)


@router.put("/sessions/{session_id}/sampling", response_model=PassStartedResponse)
async def set_sampling(
    session_id: str,
    body: SamplingRequest,
    wait: bool = Query(False),
    store: SessionStore = Depends(get_session_store),
):
    """Change the route sampling density and search again."""
    session = _get_session(store, session_id)
    return await _run(session, session.set_sample_spacing(body.sample_spacing_km), wait)


@router.post("/sessions/{session_id}/load-more", response_model=LoadMoreResponse)
async def load_more(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """Score corridor restaurants that have not been scored yet."""
    session = _get_session(store, session_id)
    try:
        scored = await session.load_more()
    except ScoringInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return LoadMoreResponse(session_id=session.id, scored=scored)


@router.put("/sessions/{session_id}/filters", response_model=DetourViewResponse)
def set_filters(
    session_id: str,
    body: DetourFilters,
    store: SessionStore = Depends(get_session_store),
):
    """Update keyword/price filters. Results are re-derived locally, never re-queried."""
    session = _get_session(store, session_id)
    try:
        session.set_filters(_filters_from_request(body))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _view_response(session)


@router.get("/sessions/{session_id}/stream")
async def stream_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """
    Stream the session view as newline-delimited JSON.

    One line per published change, ending once the session stops loading.
    """
    session = _get_session(store, session_id)
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = session.subscribe(queue.put_nowait)

    async def events():
        try:
            snap = session.snapshot()
            yield _ndjson(session, snap)
            while snap.loading:
                snap = await queue.get()
                yield _ndjson(session, snap)
        finally:
            unsubscribe()

    return StreamingResponse(events(), media_type="application/x-ndjson")


# ---- Helpers ----

async def _run(session: DetourSession, coro, wait: bool) -> PassStartedResponse:
    if wait:
        try:
            ok = await coro
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return PassStartedResponse(
            session_id=session.id,
            epoch=session.epoch,
            status="finished" if ok else "failed",
        )

    task = session.spawn(coro)
    # Let the pass start so input errors surface here and the new epoch is visible
    await asyncio.sleep(0)
    if task.done() and not task.cancelled() and isinstance(task.exception(), ValueError):
        raise HTTPException(status_code=400, detail=str(task.exception()))
    return PassStartedResponse(session_id=session.id, epoch=session.epoch, status="started")


def _get_session(store: SessionStore, session_id: str) -> DetourSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _point(latlng: LatLng) -> GeoPoint:
    return GeoPoint(latlng.lat, latlng.lng)


def _filters_from_request(body: DetourFilters) -> ResultFilters:
    return ResultFilters(
        keyword=body.keyword,
        min_price=body.min_price,
        max_price=body.max_price,
    )


def _route_response(route: Route) -> RouteResponse:
    steps = [
        RouteStepResponse(
            instruction=step.instruction,
            duration_s=step.duration_s,
            distance_m=step.distance_m,
            end=LatLng(lat=step.end.lat, lng=step.end.lng) if step.end else None,
        )
        for leg in route.legs
        for step in leg.steps
    ]
    return RouteResponse(
        polyline=route.polyline,
        duration_s=route.total_duration_s,
        distance_m=route.total_distance_m,
        steps=steps,
    )


def _result_response(r: DetourResult) -> DetourResultResponse:
    loc = r.poi.location
    return DetourResultResponse(
        poi_id=r.poi.id,
        name=r.poi.name,
        lat=loc.lat if loc else None,
        lng=loc.lng if loc else None,
        address=r.poi.address,
        categories=r.poi.categories,
        price_level=r.poi.price_level,
        rating=r.poi.rating,
        total_time_s=r.total_time_s,
        added_time_s=r.added_time_s,
        total_minutes=round(r.total_time_s / 60),
        added_minutes=round(r.added_time_s / 60, 1),
        route=_route_response(r.route),
    )


def _view_response(
    session: DetourSession,
    snap: Optional[SessionSnapshot] = None,
    include_id: bool = True,
) -> DetourViewResponse:
    snap = snap or session.snapshot()
    view = build_view(snap.results, session.filters)
    progress = snap.progress

    return DetourViewResponse(
        session_id=session.id if include_id else None,
        epoch=snap.epoch,
        loading=snap.loading,
        error=snap.error,
        corridor_miles=session.corridor_miles,
        baseline=_route_response(snap.baseline) if snap.baseline else None,
        discovered_count=snap.discovered_count,
        total_count=view.total_count,
        results=[_result_response(r) for r in view.results],
        category_counts=view.category_counts,
        progress=ProgressResponse(
            total_candidates=progress.total_candidates,
            completed_count=progress.completed_count,
            eta_seconds=progress.eta_seconds,
            found_count=progress.found_count,
            label=progress.label,
        ),
        filters=DetourFilters(
            keyword=session.filters.keyword,
            min_price=session.filters.min_price,
            max_price=session.filters.max_price,
        ),
    )


def _ndjson(session: DetourSession, snap: SessionSnapshot) -> str:
    return json.dumps(_view_response(session, snap).model_dump()) + "\n"
