"""Test the FastAPI endpoints with the fake browser session."""

import base64
import json

import pytest
from fastapi.testclient import TestClient

from coverage_backend import main
from coverage_backend.orchestrator import JobOrchestrator
from coverage_backend.progress import ProgressEmitter
from fakes import PNG, FakePage, fake_session_factory, make_settings, quiet_humanizer

BODY = {"address": "123 Main St", "carriers": ["AT&T"], "coverageTypes": ["Indoor"]}


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def client(page):
    with TestClient(main.app) as c:
        main._orchestrator = JobOrchestrator(
            make_settings(),
            session_factory=fake_session_factory(page),
            humanizer=quiet_humanizer(),
        )
        yield c


def _frames(text):
    return [json.loads(line[6:]) for line in text.splitlines() if line.startswith("data: ")]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["active_jobs"] == 0


def test_stream_job(client, page):
    r = client.post("/api/automate/stream", json=BODY)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    job_id = r.headers["X-Job-Id"]
    frames = _frames(r.text)

    progress = [f["progress"] for f in frames if "progress" in f]
    assert progress == sorted(progress)
    final = frames[-1]
    assert final["final"] is True
    assert final["success"] is True
    assert len(final["screenshots"]) == 1
    shot = final["screenshots"][0]
    assert "INDOOR" in shot["filename"] and "123_Main_St" in shot["filename"]
    assert base64.b64decode(shot["buffer"]) == PNG
    assert page.closed == 1

    status = client.get(f"/api/automate/status/{job_id}").json()
    assert status["status"] == "completed"
    assert status["outcome"] == "success"
    assert status["progress"] == 100
    assert status["screenshots"] == 1


@pytest.mark.parametrize("address", ["", "   "])
def test_blank_address_rejected_before_launch(client, page, address):
    r = client.post("/api/automate/stream", json={**BODY, "address": address})
    assert r.status_code == 400
    assert r.json()["detail"] == "Address is required"
    assert page.launched == 0


def test_unknown_view_mode_is_422(client, page):
    r = client.post("/api/automate/stream", json={**BODY, "coverageTypes": ["Underground"]})
    assert r.status_code == 422
    assert page.launched == 0


def test_blocking_endpoint_returns_result(client):
    r = client.post("/api/automate", json={**BODY, "coverageTypes": ["Indoor", "Outdoor"]})
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["partial"] is False
    assert [s["filename"].split("_")[1] for s in data["screenshots"]] == ["INDOOR", "OUTDOOR"]


def test_blocking_endpoint_auth_failure_is_401(client, page):
    page.login_succeeds = False
    r = client.post("/api/automate", json=BODY)
    assert r.status_code == 401
    assert r.json()["success"] is False
    assert r.json()["screenshots"] == []


def test_stream_auth_failure_frames(client, page):
    page.login_succeeds = False
    frames = _frames(client.post("/api/automate/stream", json=BODY).text)

    assert frames[-2]["status"] == "error"
    assert frames[-1] == {
        "final": True,
        "success": False,
        "partial": False,
        "requested": 1,
        "screenshots": [],
        "warnings": [],
        "error": "Login failed, portal is still on the login page",
        "errorKind": "authentication_failed",
    }


def test_unknown_job_status_is_404(client):
    assert client.get("/api/automate/status/nope").status_code == 404


def test_queue_is_empty_after_jobs_finish(client):
    client.post("/api/automate", json=BODY)
    queue = client.get("/api/queue").json()
    assert queue["active"] == []
    assert queue["waiting"] == []
    assert queue["max_concurrent_jobs"] == 2


def test_queue_lists_active_and_waiting_jobs(client, monkeypatch):
    running = ProgressEmitter("run1")
    queued = ProgressEmitter("wait1")
    main._registry.track("run1", running)
    main._registry.track("wait1", queued)
    running.update(45, "Selecting carriers")
    queued.update(0, "Waiting for a free browser slot (position 1)")
    monkeypatch.setattr(main._orchestrator, "queue_snapshot",
                        lambda: {"active": ["run1"], "waiting": ["wait1", "gone"]})

    queue = client.get("/api/queue").json()

    assert [job["job_id"] for job in queue["active"]] == ["run1"]
    assert queue["active"][0]["progress"] == 45
    assert queue["active"][0]["step"] == "Selecting carriers"
    assert queue["waiting"][0]["job_id"] == "wait1"
    assert queue["waiting"][0]["position"] == 1
    assert queue["waiting"][0]["step"] == "Waiting for a free browser slot (position 1)"
    assert queue["waiting"][1] == {"job_id": "gone", "position": 2}
