"""
Tests for the HTTP API, with upstream clients replaced by fakes.
"""
import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from mapetite.config import get_settings
from mapetite.detours.routes import delete_session, stream_session
from mapetite.detours.session import SessionStore, get_session_store
from mapetite.main import app
from mapetite.models import GeoPoint

from tests.fakes import FakeDirections, FakePlaces, make_poi

HEADERS = {"X-API-Key": get_settings().api_key}
NEAR_LNG = -75.005

TRIP = {
    "origin": {"lat": 40.0, "lng": -75.0},
    "destination": {"lat": 40.3, "lng": -75.0},
}

POIS = [
    make_poi("pizza", 40.05, NEAR_LNG, name="Sal's Pizza", price_level=1),
    make_poi("sushi", 40.15, NEAR_LNG, name="Sakura Sushi", price_level=3),
    make_poi("diner", 40.25, NEAR_LNG, name="Roadside Diner"),
    # ~1.93 km off the route
    make_poi("offset", 40.2, -75.02272, name="Hilltop Tacos", price_level=1),
]


@pytest.fixture
def store():
    return SessionStore(
        places=FakePlaces(pois=POIS),
        directions=FakeDirections(baseline_s=1200, detour_s={"pizza": 1320, "sushi": 1200, "diner": 1500, "offset": 1800}),
    )


@pytest.fixture
def client(store):
    app.dependency_overrides[get_session_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, **body):
    resp = client.post("/v1/detours/sessions", json=body, headers=HEADERS)
    assert resp.status_code == 200
    return resp.json()["session_id"]


class TestAuth:
    def test_health_is_open(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_wrong_key(self, client):
        resp = client.post("/v1/detours/sessions", json={}, headers={"X-API-Key": "nope"})
        assert resp.status_code == 401

    def test_missing_key(self, client):
        assert client.post("/v1/detours/sessions", json={}).status_code == 422


class TestSuggest:
    def test_ranked_results(self, client):
        resp = client.post("/v1/detours/suggest", json={**TRIP, "corridor_miles": 1.0}, headers=HEADERS)

        assert resp.status_code == 200
        data = resp.json()
        assert data["session_id"] is None
        assert data["loading"] is False
        assert data["baseline"]["duration_s"] == 1200
        assert [r["poi_id"] for r in data["results"]] == ["sushi", "pizza", "diner"]
        best = data["results"][0]
        assert best["added_time_s"] == 0
        assert best["added_minutes"] == 0
        assert data["results"][1]["added_minutes"] == 2.0
        assert data["progress"]["completed_count"] == 3

    def test_wider_corridor_includes_offset_poi(self, client):
        resp = client.post("/v1/detours/suggest", json={**TRIP, "corridor_miles": 2.0}, headers=HEADERS)
        assert "offset" in {r["poi_id"] for r in resp.json()["results"]}

    def test_filters_applied(self, client):
        body = {**TRIP, "filters": {"keyword": "pizza", "max_price": 2}}
        data = client.post("/v1/detours/suggest", json=body, headers=HEADERS).json()
        assert [r["poi_id"] for r in data["results"]] == ["pizza"]
        assert data["category_counts"]["pizza"] == 1

    def test_corridor_out_of_range(self, client):
        resp = client.post("/v1/detours/suggest", json={**TRIP, "corridor_miles": 9.0}, headers=HEADERS)
        assert resp.status_code == 400

    def test_invalid_coordinates(self, client):
        body = {"origin": {"lat": 120.0, "lng": 0.0}, "destination": TRIP["destination"]}
        assert client.post("/v1/detours/suggest", json=body, headers=HEADERS).status_code == 422


class TestSessions:
    def test_destination_and_view(self, client):
        session_id = _create(client, corridor_miles=1.0)

        resp = client.post(
            f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "finished"
        assert resp.json()["epoch"] == 1

        view = client.get(f"/v1/detours/sessions/{session_id}", headers=HEADERS).json()
        assert view["session_id"] == session_id
        assert [r["poi_id"] for r in view["results"]] == ["sushi", "pizza", "diner"]
        assert view["discovered_count"] == 3

    def test_corridor_change(self, client):
        session_id = _create(client, corridor_miles=1.0)
        client.post(f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS)

        resp = client.put(
            f"/v1/detours/sessions/{session_id}/corridor?wait=true", json={"corridor_miles": 2.0}, headers=HEADERS,
        )
        assert resp.json()["epoch"] == 2

        view = client.get(f"/v1/detours/sessions/{session_id}", headers=HEADERS).json()
        assert view["corridor_miles"] == 2.0
        assert len(view["results"]) == 4

    def test_corridor_out_of_range(self, client):
        session_id = _create(client)
        resp = client.put(
            f"/v1/detours/sessions/{session_id}/corridor", json={"corridor_miles": 0.5}, headers=HEADERS,
        )
        assert resp.status_code == 400

    def test_filters(self, client):
        session_id = _create(client, corridor_miles=1.0)
        client.post(f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS)

        resp = client.put(
            f"/v1/detours/sessions/{session_id}/filters", json={"min_price": 2}, headers=HEADERS,
        )
        assert resp.status_code == 200
        assert [r["poi_id"] for r in resp.json()["results"]] == ["sushi"]
        assert resp.json()["total_count"] == 3

        bad = client.put(
            f"/v1/detours/sessions/{session_id}/filters", json={"min_price": 3, "max_price": 1}, headers=HEADERS,
        )
        assert bad.status_code == 400

    def test_load_more_without_route(self, client):
        session_id = _create(client)
        resp = client.post(f"/v1/detours/sessions/{session_id}/load-more", headers=HEADERS)
        assert resp.status_code == 400

    def test_load_more_nothing_left(self, client):
        session_id = _create(client, corridor_miles=1.0)
        client.post(f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS)
        resp = client.post(f"/v1/detours/sessions/{session_id}/load-more", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["scored"] == 0

    def test_stream_ends_when_idle(self, client):
        session_id = _create(client, corridor_miles=1.0)
        client.post(f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS)

        resp = client.get(f"/v1/detours/sessions/{session_id}/stream", headers=HEADERS)
        lines = [json.loads(line) for line in resp.text.splitlines() if line]
        assert len(lines) == 1
        assert lines[0]["loading"] is False
        assert len(lines[0]["results"]) == 3

    def test_unknown_session(self, client):
        assert client.get("/v1/detours/sessions/missing", headers=HEADERS).status_code == 404
        assert client.delete("/v1/detours/sessions/missing", headers=HEADERS).status_code == 404

    def test_delete(self, client, store):
        session_id = _create(client)
        assert client.delete(f"/v1/detours/sessions/{session_id}", headers=HEADERS).status_code == 200
        assert store.get(session_id) is None


class TestDebugPipeline:
    def test_counts_and_diagnosis(self, client):
        session_id = _create(client, corridor_miles=1.0)
        client.post(f"/v1/detours/sessions/{session_id}/destination?wait=true", json=TRIP, headers=HEADERS)

        data = client.get(f"/v1/debug/sessions/{session_id}/pipeline", headers=HEADERS).json()

        assert data["counts"]["fetched"] == 4
        assert data["counts"]["corridor"] == 3
        assert data["counts"]["scored"] == 3
        assert data["counts"]["unscored_in_corridor"] == 0
        assert data["diagnosis"].startswith("PIPELINE_OK")

    def test_no_baseline(self, client):
        session_id = _create(client)
        data = client.get(f"/v1/debug/sessions/{session_id}/pipeline", headers=HEADERS).json()
        assert data["diagnosis"].startswith("NO_BASELINE")


class TestStreamLifecycle:
    def test_stream_ends_when_session_deleted(self):
        """Deleting a session mid-search releases any open stream."""
        directions = FakeDirections()
        store = SessionStore(places=FakePlaces(pois=POIS), directions=directions)
        session = store.create()

        async def scenario():
            directions.gate = asyncio.Event()
            directions.blocked = asyncio.Event()
            directions.gated = {"pizza"}
            session.spawn(session.select_destination(GeoPoint(40.0, -75.0), GeoPoint(40.3, -75.0)))
            await directions.blocked.wait()

            response = await stream_session(session.id, store)
            lines = []

            async def consume():
                async for chunk in response.body_iterator:
                    lines.append(json.loads(chunk))

            consumer = asyncio.create_task(consume())
            await asyncio.sleep(0)
            delete_session(session.id, store)
            await asyncio.wait_for(consumer, timeout=1)
            return lines

        lines = asyncio.run(scenario())

        assert lines[0]["loading"] is True
        assert lines[-1]["loading"] is False
        assert store.get(session.id) is None
