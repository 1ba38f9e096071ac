"""Tests for the FastAPI supervisor endpoints."""

import pytest
from fastapi.testclient import TestClient

from bot_kernel.api.app import create_app
from bot_kernel.history.store import RunHistoryStore
from bot_kernel.models.history import FinishReason, RunRecord
from bot_kernel.models.priority import Priority
from tests.fakes import make_session


@pytest.fixture
def sessions():
    first, _, _, _ = make_session()
    second, _, _, _ = make_session()
    second.name = "bot2"
    first.name = "bot1"
    return {"bot1": first, "bot2": second}


@pytest.fixture
def history():
    store = RunHistoryStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def client(sessions, history):
    """Create a test client over fake sessions."""
    return TestClient(create_app(sessions=sessions, history=history))


class TestSessionEndpoints:
    def test_list_sessions(self, client):
        response = client.get("/sessions")
        assert response.status_code == 200
        assert response.json() == [
            {"name": "bot1", "active_priority": "normal", "stopped": False},
            {"name": "bot2", "active_priority": "normal", "stopped": False},
        ]

    def test_session_detail(self, client, sessions):
        session = sessions["bot1"]
        handle = session.for_priority(Priority.HIGH)
        handle.set_last_action("item_pickup")
        handle.set_last_step("pickup_item")
        session.current_game.blacklist(17)

        response = client.get("/sessions/bot1")
        assert response.status_code == 200
        data = response.json()
        assert data["debug"] == {"high": {"last_action": "item_pickup", "last_step": "pickup_item"}}
        assert data["current_game"]["blacklisted_items"] == 1
        assert data["current_game"]["is_picking_items"] is False
        assert data["area_id"] == 0

    def test_unknown_session(self, client):
        response = client.get("/sessions/nope")
        assert response.status_code == 404

    def test_pause_and_resume(self, client, sessions):
        response = client.post("/sessions/bot1/pause")
        assert response.status_code == 200
        assert response.json() == {"name": "bot1", "action": "pause", "requested": True}
        assert sessions["bot1"].arbitrator.active == Priority.PAUSE

        client.post("/sessions/bot1/resume")
        assert sessions["bot1"].arbitrator.active == Priority.NORMAL

    def test_stop_is_final(self, client, sessions):
        response = client.post("/sessions/bot2/stop")
        assert response.status_code == 200
        assert sessions["bot2"].is_stopped

        assert client.post("/sessions/bot2/resume").status_code == 409
        assert client.post("/sessions/bot2/pause").status_code == 409
        assert client.get("/sessions").json()[1]["stopped"] is True


class TestHistoryEndpoints:
    def _record(self, history, run_name, reason=FinishReason.OK, session="bot1"):
        history.append(RunRecord(
            session=session, run_name=run_name, reason=reason, duration_seconds=10.0,
        ))

    def test_recent_history(self, client, history):
        self._record(history, "andariel")
        self._record(history, "mephisto")
        self._record(history, "baal")

        response = client.get("/history", params={"limit": 2})
        assert response.status_code == 200
        assert [r["run_name"] for r in response.json()] == ["mephisto", "baal"]

    def test_filter_by_reason_and_session(self, client, history):
        self._record(history, "andariel", FinishReason.DIED)
        self._record(history, "mephisto", FinishReason.DIED, session="bot2")
        self._record(history, "baal")

        died = client.get("/history", params={"reason": "died"}).json()
        assert [r["run_name"] for r in died] == ["andariel", "mephisto"]

        bot2_died = client.get("/history", params={"reason": "died", "session": "bot2"}).json()
        assert [r["run_name"] for r in bot2_died] == ["mephisto"]

    def test_invalid_reason_rejected(self, client):
        assert client.get("/history", params={"reason": "bored"}).status_code == 422

    def test_non_positive_limit_rejected(self, client, history):
        self._record(history, "andariel")
        assert client.get("/history", params={"limit": 0}).status_code == 422
        assert client.get("/history", params={"limit": -1}).status_code == 422
        assert len(client.get("/history", params={"limit": 1}).json()) == 1

    def test_verify(self, client, history):
        self._record(history, "andariel")
        assert client.get("/history/verify").json() == {"valid": True, "count": 1}
