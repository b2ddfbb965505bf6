import logging
from datetime import datetime, timedelta, timezone

from cloudrun.cycle_health_service import MAX_LIMIT, create_app
from utils.firestore_handle import FirestoreHandleProvider

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _client(provider, clock=lambda: NOW):
    app = create_app(provider=provider, clock=clock)
    app.testing = True
    return app.test_client()


def test_post_analyzes_and_persists(fake_provider, fake_db):
    client = _client(fake_provider)
    resp = client.post(
        "/api/cycle-health",
        json={"cycleId": "c1", "articlesProcessed": 60, "feedsProcessed": 4, "feedsSucceeded": 4,
              "averageQualityScore": 82},
    )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["cycle_id"] == "c1"
    assert body["status"] == "healthy"
    assert body["timestamp"] == NOW.isoformat()
    assert resp.headers["Cache-Control"] == "no-store"
    assert len(fake_db.collection("cycle_health_v2").docs) == 1


def test_post_rejects_non_object(fake_provider):
    resp = _client(fake_provider).post("/api/cycle-health", json=[1, 2, 3])
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_post_rejects_non_numeric_counter(fake_provider, fake_db):
    resp = _client(fake_provider).post("/api/cycle-health", json={"articlesProcessed": "lots"})
    assert resp.status_code == 400
    assert fake_db.collection("cycle_health_v2").docs == []


def test_get_lists_recent_with_age(fake_provider):
    clock = {"now": NOW - timedelta(hours=2)}
    client = _client(fake_provider, clock=lambda: clock["now"])
    client.post("/api/cycle-health", json={"cycleId": "older"})
    clock["now"] = NOW - timedelta(minutes=5)
    client.post("/api/cycle-health", json={"cycleId": "newer"})
    clock["now"] = NOW

    resp = client.get("/api/cycle-health?limit=5")
    assert resp.status_code == 200
    items = resp.get_json()["items"]
    assert [(i["cycle_id"], i["age"]) for i in items] == [("newer", "5m ago"), ("older", "2h ago")]
    assert items[0]["status"] == "critical"


def test_get_rejects_bad_limit(fake_provider):
    resp = _client(fake_provider).get("/api/cycle-health?limit=abc")
    assert resp.status_code == 400


def test_get_reports_init_failure_as_500(broken_provider):
    resp = _client(broken_provider).get("/api/cycle-health")
    assert resp.status_code == 500
    assert "credentials" in resp.get_json()["error"]


def test_healthz(broken_provider):
    resp = _client(broken_provider).get("/healthz")
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "OK"


class _RecordingMonitor:
    def __init__(self):
        self.limits = []

    def recent(self, limit):
        self.limits.append(limit)
        return []

    def analyze(self, metrics):
        raise RuntimeError("firestore quota exceeded")


def test_post_rejects_infinite_counter(fake_provider, fake_db):
    resp = _client(fake_provider).post(
        "/api/cycle-health",
        data='{"articlesProcessed": 1e400}',
        content_type="application/json",
    )
    assert resp.status_code == 400
    assert "finite" in resp.get_json()["error"]
    assert fake_db.collection("cycle_health_v2").docs == []


def test_get_limit_defaults_and_clamps(fake_provider):
    monitor = _RecordingMonitor()
    app = create_app(provider=fake_provider, monitor=monitor, clock=lambda: NOW)
    client = app.test_client()

    for query in ("", "?limit=500", "?limit=0", "?limit=-5", "?limit=7"):
        assert client.get(f"/api/cycle-health{query}").status_code == 200

    assert monitor.limits == [20, MAX_LIMIT, 1, 1, 7]
    assert MAX_LIMIT == 100


def test_post_unexpected_error_is_500(fake_provider, caplog):
    app = create_app(provider=fake_provider, monitor=_RecordingMonitor(), clock=lambda: NOW)
    with caplog.at_level(logging.ERROR):
        resp = app.test_client().post("/api/cycle-health", json={"articlesProcessed": 10})

    assert resp.status_code == 500
    assert resp.get_json() == {"error": "firestore quota exceeded"}
    assert "cycle-health analyze error" in caplog.text


def test_provider_shared_across_requests(fake_db):
    calls = []

    def factory(project):
        calls.append(project)
        return fake_db

    provider = FirestoreHandleProvider(factory=factory, project="feeds")
    app = create_app(provider=provider, clock=lambda: NOW)
    client = app.test_client()
    client.post("/api/cycle-health", json={"cycleId": "c1"})
    client.post("/api/cycle-health", json={"cycleId": "c2"})
    client.get("/api/cycle-health")

    assert app.config["FIRESTORE_PROVIDER"] is provider
    assert calls == ["feeds"]
    assert len(fake_db.collection("cycle_health_v2").docs) == 2
