"""
Contract tests for the session API.

Exercises api.py endpoints through FastAPI's TestClient with an in-memory
extractor in place of the model backend.
"""

import io
import time

import pandas as pd
import pytest
from fastapi.testclient import TestClient

import api
from wattwise.errors import RateLimited


REAL_BUILD_EXTRACTOR = api.build_extractor

CSV_BOM = (
    "Part Number,Description,Family,Qty\n"
    "R740,PowerEdge R740,Dell R740,2\n"
    "C9300-48P,Catalyst 9300,Cisco Catalyst 9300,1\n"
).encode("utf-8")


@pytest.fixture
def extractor_factory(monkeypatch, fake_extractor):
    """Route session creation to FakeExtractor instances and record them."""
    created = []

    def build(api_key, model, **options):
        extractor = fake_extractor(**options)
        created.append((api_key, model, extractor))
        return extractor

    state = {"options": {}}
    monkeypatch.setattr(api, "build_extractor", lambda key, model: build(key, model, **state["options"]))
    return created, state


@pytest.fixture
def client(extractor_factory, monkeypatch):
    monkeypatch.setattr(api, "UI_YIELD_DELAY", 0)
    api.sessions.clear()
    with TestClient(api.app) as test_client:
        yield test_client
    api.sessions.clear()


def upload(client, content=CSV_BOM, filename="bom.csv", **kwargs):
    return client.post("/sessions", files={"file": (filename, content, "text/csv")}, **kwargs)


def wait_for(client, session_id, condition, timeout=5.0):
    """Poll a session until its snapshot satisfies condition."""
    deadline = time.monotonic() + timeout
    while True:
        snapshot = client.get(f"/sessions/{session_id}").json()
        if condition(snapshot):
            return snapshot
        assert time.monotonic() < deadline, f"session stuck at {snapshot['status']}"
        time.sleep(0.01)


def settled(snapshot):
    return snapshot["status"] in ("COMPLETE", "ERROR") and not snapshot["is_re_estimating"]


@pytest.fixture
def session_id(client):
    response = upload(client)
    assert response.status_code == 202
    session_id = response.json()["session_id"]
    wait_for(client, session_id, settled)
    return session_id


class TestSessionLifecycle:
    """Tests for creating and reading sessions."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_upload_runs_analysis(self, client, extractor_factory):
        created, _ = extractor_factory

        response = upload(client, headers={"X-OpenRouter-Key": "sk-header"}, data={"model": "test/model"})

        assert response.status_code == 202
        body = response.json()
        assert set(body) == {"session_id", "status", "message", "status_url"}
        assert created[0][:2] == ("sk-header", "test/model")

        snapshot = wait_for(client, body["session_id"], settled)
        assert snapshot["status"] == "COMPLETE"
        assert [r["partNumber"] for r in snapshot["results"]] == ["R740", "C9300-48P"]
        assert snapshot["report"]["summary"]["total_max_kw"] == pytest.approx(0.6)
        assert [g["model_family"] for g in snapshot["report"]["groups"]] == ["Dell R740", "Cisco Catalyst 9300"]
        assert snapshot["metadata"]["item_count"] == 2

    def test_failed_analysis_is_reported(self, client, extractor_factory):
        _, state = extractor_factory
        state["options"] = {"error": RateLimited("Rate limit exceeded")}

        session_id = upload(client).json()["session_id"]

        snapshot = wait_for(client, session_id, settled)
        assert snapshot["status"] == "ERROR"
        assert snapshot["error_message"] == "Rate limit exceeded"
        assert snapshot["results"] == []

    def test_rejects_unsupported_file(self, client):
        response = upload(client, content=b"%PDF-1.7", filename="bom.pdf")
        assert response.status_code == 400

    def test_missing_api_key(self, client, monkeypatch):
        monkeypatch.setattr(api, "build_extractor", REAL_BUILD_EXTRACTOR)
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

        response = upload(client)

        assert response.status_code == 400
        assert "API key" in response.json()["detail"]

    def test_unknown_session(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/reset").status_code == 404

    def test_delete(self, client, session_id, extractor_factory):
        created, _ = extractor_factory

        assert client.delete(f"/sessions/{session_id}").status_code == 200

        assert client.get(f"/sessions/{session_id}").status_code == 404
        assert created[0][2].closed is True

    def test_reset(self, client, session_id):
        snapshot = client.post(f"/sessions/{session_id}/reset").json()

        assert snapshot["status"] == "IDLE"
        assert snapshot["results"] == []
        assert snapshot["report"] is None


class TestSessionMutations:
    """Tests for ignore toggles and re-estimation."""

    def test_toggle_ignore(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/items/0/ignore")

        assert response.status_code == 200
        assert response.json()["isIgnored"] is True
        snapshot = client.get(f"/sessions/{session_id}").json()
        assert snapshot["report"]["summary"]["total_max_kw"] == pytest.approx(0.2)

    def test_toggle_ignore_out_of_range(self, client, session_id):
        assert client.post(f"/sessions/{session_id}/items/9/ignore").status_code == 404

    def test_toggle_ignore_requires_complete(self, client, session_id):
        client.post(f"/sessions/{session_id}/reset")
        assert client.post(f"/sessions/{session_id}/items/0/ignore").status_code == 409

    def test_re_estimate_selected(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/re-estimate", json={"indices": [1]})

        assert response.status_code == 202
        results = wait_for(client, session_id, settled)["results"]
        assert results[0]["notes"] == ""
        assert results[1]["notes"] == "re-estimated"
        assert results[1]["maxPowerWatts"] == 250

    def test_re_estimate_all(self, client, session_id):
        assert client.post(f"/sessions/{session_id}/re-estimate-all").status_code == 202

        results = wait_for(client, session_id, settled)["results"]
        assert [r["notes"] for r in results] == ["re-estimated", "re-estimated"]

    def test_re_estimate_invalid_indices(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/re-estimate", json={"indices": [0, 7]})
        assert response.status_code == 400

    def test_re_estimate_empty_selection(self, client, session_id):
        response = client.post(f"/sessions/{session_id}/re-estimate", json={"indices": []})
        assert response.status_code == 422

    def test_re_estimate_requires_complete(self, client, session_id):
        client.post(f"/sessions/{session_id}/reset")
        assert client.post(f"/sessions/{session_id}/re-estimate-all").status_code == 409

    def test_cancel_running_analysis(self, client, extractor_factory):
        _, state = extractor_factory
        state["options"] = {"block": True}
        session_id = upload(client).json()["session_id"]
        wait_for(client, session_id, lambda s: s["progress_message"] == "Analyzing batch 1 of 1...")

        response = client.post(f"/sessions/{session_id}/cancel")

        assert response.status_code == 200
        assert response.json() == {"cancelled": True}
        snapshot = wait_for(client, session_id, lambda s: s["status"] == "IDLE")
        assert snapshot["results"] == []
        assert snapshot["progress_message"] is None
        assert client.get("/health").status_code == 200

    def test_cancel_running_re_estimate(self, client, session_id, extractor_factory):
        created, _ = extractor_factory
        created[0][2].block = True
        client.post(f"/sessions/{session_id}/re-estimate-all")

        assert client.post(f"/sessions/{session_id}/re-estimate-all").status_code == 409
        assert client.post(f"/sessions/{session_id}/cancel").json() == {"cancelled": True}

        snapshot = wait_for(client, session_id, lambda s: not s["is_re_estimating"])
        assert snapshot["status"] == "COMPLETE"
        assert [r["notes"] for r in snapshot["results"]] == ["", ""]
        assert snapshot["notification"] is None

    def test_cancel_when_idle(self, client, session_id):
        assert client.post(f"/sessions/{session_id}/cancel").json() == {"cancelled": False}


class TestExports:
    """Tests for export downloads."""

    def test_excel(self, client, session_id):
        response = client.get(f"/sessions/{session_id}/export.xlsx")

        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]
        df = pd.read_excel(io.BytesIO(response.content))
        assert list(df["Part Number"]) == ["R740", "C9300-48P"]

    def test_html(self, client, session_id):
        response = client.get(f"/sessions/{session_id}/export.html")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Dell R740" in response.text

    def test_export_requires_complete(self, client, session_id):
        client.post(f"/sessions/{session_id}/reset")

        assert client.get(f"/sessions/{session_id}/export.xlsx").status_code == 409
        assert client.get(f"/sessions/{session_id}/export.html").status_code == 409
