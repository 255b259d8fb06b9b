import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from chatsync.chat import ChatSession
from chatsync.conversation.models import Project
from chatsync.gate import StaticSessionGate
from chatsync.llm.completion import CompletionService
from chatsync.llm.projects import ProjectCatalog
from chatsync.server.dependencies import set_chat_session
from chatsync.store.errors import Unavailable
from chatsync.sync.coordinator import SyncCoordinator
from chatsync.sync.migration import MigrationCoordinator
from chatsync.sync.state import MigrationLatch, SyncClock, SyncStateStore


@pytest.fixture
def client(tmp_path, primary, secondary):
    state = SyncStateStore(tmp_path / "state.json")
    llm = FakeListChatModel(responses=["pong [PROJECT:CLOS]", "second reply"])
    catalog = ProjectCatalog([Project(name="CLOS", description="life os", status="active", tags=("ios",))])
    session = ChatSession(
        StaticSessionGate("user-1"),
        primary,
        secondary,
        MigrationCoordinator(primary, MigrationLatch(state), secondary=secondary),
        SyncCoordinator(primary, secondary, SyncClock(state)),
        CompletionService(llm, catalog),
        background_sync=False,
    )
    set_chat_session(session)

    from chatsync.server.app import app

    with TestClient(app) as test_client:
        yield test_client

    set_chat_session(None)


def test_conversation_flow(client: TestClient):
    response = client.get("/api/conversation")
    assert response.status_code == 200
    assert response.json()["user_id"] == "user-1"
    assert response.json()["messages"] == []

    response = client.post("/api/conversation/messages", json={"content": "ping"})
    assert response.status_code == 201
    body = response.json()
    reply = body["reply"]
    assert reply["content"] == "pong"
    assert reply["author"] == "assistant"
    assert reply["projects"][0]["name"] == "CLOS"
    assert len(body["conversation"]["active_path"]) == 2
    first_user_id = body["conversation"]["active_path"][0]

    response = client.post(f"/api/conversation/messages/{first_user_id}/select")
    assert response.status_code == 200
    assert response.json()["active_id"] == first_user_id

    response = client.post("/api/conversation/messages", json={"content": "again"})
    state = response.json()["conversation"]
    assert len(state["messages"]) == 4
    assert len(state["active_path"]) == 3
    assert state["active_path"][0] == first_user_id
    assert reply["id"] not in state["active_path"]

    response = client.delete(f"/api/conversation/messages/{reply['id']}")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert len(client.get("/api/conversation").json()["messages"]) == 3


def test_blank_message_is_rejected(client: TestClient):
    response = client.post("/api/conversation/messages", json={"content": "   "})
    assert response.status_code == 422


def test_selecting_unknown_message_keeps_state(client: TestClient):
    client.post("/api/conversation/messages", json={"content": "ping"})
    before = client.get("/api/conversation").json()

    response = client.post("/api/conversation/messages/missing/select")

    assert response.status_code == 200
    assert response.json()["active_id"] == before["active_id"]
    assert response.json()["active_path"] == before["active_path"]


def test_delete_reaches_stores_for_messages_outside_the_tree(client: TestClient, primary, secondary, make_message):
    primary.rows["stored-only"] = make_message("stored-only")
    secondary.rows["stored-only"] = make_message("stored-only")

    response = client.delete("/api/conversation/messages/stored-only")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert "stored-only" not in primary.rows
    assert "stored-only" not in secondary.rows
    assert client.delete("/api/conversation/messages/never-existed").status_code == 200


def test_sync_endpoint_reports_result(client: TestClient, primary):
    response = client.post("/api/conversation/sync")
    assert response.status_code == 200
    assert response.json()["failures"] == 0
    assert response.json()["last_sync_at"] is not None

    primary.fail_with = Unavailable("offline")
    response = client.post("/api/conversation/sync")
    assert response.status_code == 503
    assert response.json()["detail"].startswith("Sync failed")
