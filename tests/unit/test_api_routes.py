"""Test the HTTP ingress: routes, status mapping and passcode authorization."""

import pytest
from fastapi.testclient import TestClient

from drink_tracker.api.app import create_app, status_for
from drink_tracker.api.auth import PASSCODE_HEADER
from drink_tracker.core.errors import (
    AlreadySetError,
    DuplicateNameError,
    LockedForWritesError,
    NotFoundError,
    PersistenceError,
    SelfReferenceRejected,
)
from drink_tracker.runtime import build_runtime


@pytest.fixture
def runtime(tracker_settings, sim_clock):
    rt = build_runtime(tracker_settings, clock=sim_clock)
    rt.store.seed_items()
    return rt


@pytest.fixture
def client(runtime):
    # No context manager: lifespan (workers, restore) stays off.
    return TestClient(create_app(runtime))


def _join(client, name, **extra):
    resp = client.post("/api/participants", json={"name": name, **extra})
    assert resp.status_code in (200, 201)
    return resp.json()


class TestStatusMapping:
    @pytest.mark.parametrize(
        "exc, status",
        [
            (SelfReferenceRejected("x"), 400),
            (NotFoundError("item", "x"), 404),
            (DuplicateNameError("item", "x"), 409),
            (AlreadySetError("x"), 409),
            (LockedForWritesError("x"), 403),
            (PersistenceError("x"), 500),
        ],
    )
    def test_status_for(self, exc, status):
        assert status_for(exc) == status


class TestCatalogRoutes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["subscribers"] == 0

    def test_list_drinks(self, client):
        names = [d["name"] for d in client.get("/drinks").json()]
        assert names[:2] == ["Beer", "Wine"]
        assert len(names) == 6

    def test_add_drink_accepts_legacy_key(self, client):
        resp = client.post("/drinks", json={"name": "Mead", "imageUrl": "/img/mead.png"})
        assert resp.status_code == 201
        assert resp.json()["image_ref"] == "/img/mead.png"
        assert resp.json()["color"] == "#8B5CF6"

    def test_duplicate_drink_409(self, client):
        resp = client.post("/drinks", json={"name": "BEER"})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "DuplicateNameError"

    def test_consume(self, client):
        resp = client.post("/consume", json={"drinkName": "beer"})
        assert resp.status_code == 201
        assert resp.json()["item_name"] == "Beer"
        assert client.get("/stats").json()["totals"] == {"Beer": 1}

    def test_consume_unknown_drink_404(self, client):
        resp = client.post("/consume", json={"item_name": "Absinthe"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "item not found: Absinthe", "kind": "NotFoundError"}

    def test_missing_body_field_400(self, client):
        resp = client.post("/consume", json={})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "ValidationError"

    def test_blank_marker_400(self, client):
        resp = client.post("/event", json={"label": "  "})
        assert resp.status_code == 400

    def test_marker(self, client):
        resp = client.post("/event", json={"label": "Cake", "color": "#FFFFFF"})
        assert resp.status_code == 201
        markers = client.get("/stats").json()["window"]["recent_markers"]
        assert [m["label"] for m in markers] == ["Cake"]

    def test_stats_shape(self, client):
        body = client.get("/stats").json()
        assert len(body["window"]["buckets"]) == 60
        assert body["total"] == 0

    def test_history(self, client):
        client.post("/consume", json={"item_name": "Wine"})
        body = client.get("/stats/history").json()
        assert body["totals"] == {"Wine": 1}


class TestParticipantRoutes:
    def test_upsert_status_codes(self, client):
        first = client.post("/api/participants", json={"name": "Alice", "self_estimate": 3})
        second = client.post("/api/participants", json={"name": "alice", "self_estimate": 4})
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["self_estimate"] == 4

    def test_negative_estimate_400(self, client):
        resp = client.post("/api/participants", json={"name": "Alice", "self_estimate": -1})
        assert resp.status_code == 400

    def test_update_estimate(self, client):
        alice = _join(client, "Alice")
        resp = client.put(f"/api/participants/{alice['id']}/estimate", json={"self_estimate": 6})
        assert resp.status_code == 200
        assert resp.json()["self_estimate"] == 6

    def test_update_estimate_unknown_404(self, client):
        resp = client.put("/api/participants/nobody/estimate", json={"self_estimate": 1})
        assert resp.status_code == 404

    def test_prediction_flow(self, client):
        alice = _join(client, "Alice")
        bob = _join(client, "Bob")
        body = {"predictor_id": alice["id"], "target_id": bob["id"], "predicted_drinks": 4}
        assert client.post("/api/predictions", json=body).status_code == 201
        body["predicted_drinks"] = 5
        resp = client.post("/api/predictions", json=body)
        assert resp.status_code == 200
        assert resp.json()["predicted_drinks"] == 5
        assert len(client.get("/api/predictions").json()) == 1

    def test_self_prediction_400(self, client):
        alice = _join(client, "Alice")
        body = {"predictor_id": alice["id"], "target_id": alice["id"], "predicted_drinks": 4}
        resp = client.post("/api/predictions", json=body)
        assert resp.status_code == 400
        assert resp.json()["kind"] == "SelfReferenceRejected"

    def test_locked_prediction_403(self, client):
        alice = _join(client, "Alice")
        bob = _join(client, "Bob")
        assert client.post("/api/predictions/lock", json={"locked": True}).json() == {"locked": True}
        body = {"predictor_id": alice["id"], "target_id": bob["id"], "predicted_drinks": 4}
        resp = client.post("/api/predictions", json=body)
        assert resp.status_code == 403
        assert resp.json()["kind"] == "LockedForWritesError"

    def test_awards(self, client):
        alice = _join(client, "Alice")
        client.post("/consume", json={"item_name": "Beer", "participant_id": alice["id"]})
        awards = client.get("/api/awards").json()
        assert awards[0]["kind"] == "most_consumed"
        assert awards[0]["winners"][0]["name"] == "Alice"


class TestPasscode:
    PASSCODE = "letmein"

    def test_open_until_passcode_set(self, client):
        assert client.get("/api/participants").status_code == 200

    def test_passcode_protects_routes(self, client):
        resp = client.post("/api/passcode", json={"passcode": self.PASSCODE})
        assert resp.status_code == 201

        denied = client.get("/api/participants")
        assert denied.status_code == 401
        assert denied.json()["kind"] == "Unauthorized"

        wrong = client.get("/api/participants", headers={PASSCODE_HEADER: "nope"})
        assert wrong.status_code == 401

        ok = client.get("/api/participants", headers={PASSCODE_HEADER: self.PASSCODE})
        assert ok.status_code == 200

    def test_passcode_write_once(self, client):
        client.post("/api/passcode", json={"passcode": self.PASSCODE})
        resp = client.post("/api/passcode", json={"passcode": "another"})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "AlreadySetError"

    def test_short_passcode_400(self, client):
        assert client.post("/api/passcode", json={"passcode": "ab"}).status_code == 400

    def test_public_routes_stay_open(self, client):
        client.post("/api/passcode", json={"passcode": self.PASSCODE})
        assert client.post("/consume", json={"item_name": "Beer"}).status_code == 201
        assert client.get("/api/awards").status_code == 200

    def test_custom_authorizer(self, runtime):
        client = TestClient(create_app(runtime, authorizer=lambda request: False))
        assert client.get("/api/snapshots").status_code == 401


class TestSnapshotRoutes:
    def test_latest_404_when_none(self, client):
        resp = client.get("/api/snapshot/latest")
        assert resp.status_code == 404

    def test_force_list_download(self, client):
        client.post("/consume", json={"item_name": "Beer"})
        created = client.post("/api/snapshot")
        assert created.status_code == 200
        filename = created.json()["filename"]

        listed = client.get("/api/snapshots").json()
        assert [a["filename"] for a in listed] == [filename]

        download = client.get("/api/snapshot/latest")
        assert download.status_code == 200
        assert filename in download.headers["content-disposition"]
        assert len(download.json()["consumptions"]) == 1

    def test_restore(self, client, runtime):
        client.post("/consume", json={"item_name": "Beer"})
        client.post("/api/snapshot")
        runtime.store.reset()
        assert client.get("/stats").json()["total"] == 0

        resp = client.post("/api/snapshot/restore")
        assert resp.status_code == 200
        assert client.get("/stats").json()["totals"] == {"Beer": 1}

    def test_restore_without_artifacts_404(self, client):
        assert client.post("/api/snapshot/restore").status_code == 404
