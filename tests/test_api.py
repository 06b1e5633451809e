from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from api.main import app
from services.acquisition_orchestrator import SessionOutcome
from services.confidence import ConfidenceLevel, NarrativeTemplate
from services.errors import AcquisitionError, FailureKind
from services.history_store import HistoryStore
from services.progress_tracker import ProgressTracker, SessionPhase
from state.artwork_schema import ArtworkRecord, HistoryEntry, NarrationBundle

BUNDLE = NarrationBundle(
    title="The Night Watch",
    artist="Rembrandt van Rijn",
    year="1642",
    narration="A militia company steps out of the shadows.",
    confidence=0.88,
    recognized=True,
)


class StubOrchestrator:
    def __init__(self, outcome):
        self.outcome = outcome
        self.tracker = ProgressTracker()
        self.cache_client = SimpleNamespace(is_configured=False)
        self.speech = None
        self.calls = []

    async def run(self, image_bytes, session_id=None, owner="default"):
        self.calls.append((image_bytes, session_id, owner))
        self.tracker.start_session(self.outcome.session_id, owner)
        self.tracker.update_session(self.outcome.session_id, phase=SessionPhase.READY, bundle=self.outcome.bundle)
        return self.outcome


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path)


def _client(outcome, store):
    # Lifespan is not entered, so state is wired by hand
    app.state.orchestrator = StubOrchestrator(outcome)
    app.state.history_store = store
    return TestClient(app)


def _success():
    return SessionOutcome(
        session_id="s-1",
        bundle=BUNDLE,
        level=ConfidenceLevel.HIGH,
        template=NarrativeTemplate.FULL,
        from_cache=True,
    )


def _upload(data=b"jpeg-bytes"):
    return {"image": ("photo.jpg", data, "image/jpeg")}


def test_recognition_success(store):
    client = _client(_success(), store)

    response = client.post("/recognition/", files=_upload(), data={"owner": "visitor-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["bundle"]["title"] == "The Night Watch"
    assert body["confidence_level"] == "high"
    assert body["template"] == "full"
    assert body["from_cache"] is True
    assert app.state.orchestrator.calls == [(b"jpeg-bytes", None, "visitor-1")]


def test_recognition_timeout_maps_to_504(store):
    outcome = SessionOutcome(
        session_id="s-2",
        provisional=ArtworkRecord(title="The Night Watch", artist="Rembrandt van Rijn"),
        error=AcquisitionError(FailureKind.TIMEOUT),
    )
    client = _client(outcome, store)

    response = client.post("/recognition/", files=_upload())

    assert response.status_code == 504
    body = response.json()
    assert body["status"] == "failed"
    assert body["failure_kind"] == "timeout"
    assert body["provisional"]["title"] == "The Night Watch"


def test_recognition_missing_key_maps_to_503(store):
    outcome = SessionOutcome(session_id="s-3", error=AcquisitionError(FailureKind.API_KEY_MISSING))
    response = _client(outcome, store).post("/recognition/", files=_upload())

    assert response.status_code == 503
    assert "API key" in response.json()["message"]


def test_empty_upload_is_rejected(store):
    client = _client(_success(), store)

    response = client.post("/recognition/", files=_upload(b""))

    assert response.status_code == 400
    assert app.state.orchestrator.calls == []


def test_progress_endpoint(store):
    client = _client(_success(), store)
    client.post("/recognition/", files=_upload())

    response = client.get("/recognition/s-1")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["phase"] == "ready"
    assert data["bundle"]["artist"] == "Rembrandt van Rijn"


def test_progress_unknown_session(store):
    assert _client(_success(), store).get("/recognition/missing").status_code == 404


def _history_entry(title):
    return HistoryEntry(artwork=ArtworkRecord(title=title, artist="Rembrandt van Rijn"), narration="...")


def test_history_listing_and_deletion(store):
    store.append(_history_entry("The Night Watch"))
    store.append(_history_entry("Self-Portrait with Two Circles"))
    client = _client(_success(), store)

    listing = client.get("/history/").json()
    assert listing["count"] == 2
    assert listing["entries"][0]["artwork"]["title"] == "Self-Portrait with Two Circles"

    deleted = client.delete("/history/1")
    assert deleted.status_code == 200
    assert [e.artwork.title for e in store.load_all()] == ["Self-Portrait with Two Circles"]

    assert client.delete("/history/5").status_code == 404

    assert client.delete("/history/").json() == {"status": "cleared"}
    assert store.load_all() == []


def test_unreadable_history_is_500(tmp_path):
    (tmp_path / "history.json").write_text('{"version": 2, "entries": [{"schema_version": 9}]}', encoding="utf-8")
    client = _client(_success(), HistoryStore(tmp_path))

    assert client.get("/history/").status_code == 500


def test_health(store):
    body = _client(_success(), store).get("/health").json()
    assert body == {"status": "ok", "backend_cache": False, "speech": False}
