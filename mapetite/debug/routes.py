"""
Debug endpoint for detour pipeline diagnostics.

Returns counts and small samples from each stage of the
route -> samples -> places -> corridor -> bins -> scores pipeline so operators
can identify where candidates stop flowing for a session.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from mapetite.detours.session import SessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/debug", tags=["debug"])


@router.get("/sessions/{session_id}/pipeline")
def pipeline_health(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """
    Return per-stage counts and samples for one session's current search.

    Use this to diagnose where candidates get lost.
    """
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    route_points = len(session.baseline.path) if session.baseline else 0
    scored_ids = session.results.ids()
    selected_ids = {p.id for p in session.selected}

    # ---- Samples (max 5 each) ----

    sample_points = [
        {"lat": p.lat, "lng": p.lng} for p in session.samples[:5]
    ]
    corridor_sample = [
        {"poi_id": p.id, "name": p.name, "price_level": p.price_level}
        for p in session.discovered[:5]
    ]
    failed_sample = [
        {"poi_id": p.id, "name": p.name}
        for p in session.selected
        if p.id not in scored_ids
    ][:5]

    counts = {
        "route_points": route_points,
        "samples": len(session.samples),
        "fetched": session.fetched_count,
        "corridor": len(session.discovered),
        "selected": len(selected_ids),
        "scored": len(scored_ids),
        "unscored_in_corridor": len([p for p in session.discovered if p.id not in scored_ids]),
    }

    return {
        "session_id": session.id,
        "epoch": session.epoch,
        "loading": session.loading,
        "corridor_km": round(session.corridor_km, 3),
        "sample_spacing_km": session.sample_spacing_km,
        "counts": counts,
        "samples": {
            "sample_points": sample_points,
            "corridor_pois": corridor_sample,
            "selected_without_result": failed_sample,
        },
        "diagnosis": _diagnose(session.baseline is not None, session.loading, counts),
    }


def _diagnose(has_baseline: bool, loading: bool, counts: dict) -> str:
    """Return a human-readable diagnosis of where the pipeline breaks."""
    if not has_baseline:
        if loading:
            return "ROUTING: Baseline route is still being fetched."
        return "NO_BASELINE: No baseline route. Check the destination and Directions API logs."

    if counts["fetched"] == 0:
        if loading:
            return "SEARCHING: Places are still being collected along the route."
        return (
            "NO_PLACES: Places searches returned nothing along the route. "
            "Check GOOGLE_API_KEY and Places API logs."
        )

    if counts["corridor"] == 0:
        return (
            "EMPTY_CORRIDOR: Places were found but none lie within the corridor. "
            "Try widening the corridor or sampling more densely."
        )

    if counts["scored"] == 0 and not loading:
        return (
            "NO_SCORES: Corridor candidates exist but no detour route succeeded. "
            "Check Directions API logs for waypoint errors."
        )

    if loading:
        return "SCORING: Detours are still being scored."

    return "PIPELINE_OK: Candidates are flowing through all stages."
