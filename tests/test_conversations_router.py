from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from funnelchat.main import app
from funnelchat.routers import conversations as conversations_router
from funnelchat.services.platform_client import DeliveryResult
from funnelchat.services.transition_service import TransitionController
from tests.conftest import EXPERIENCE_ID, FUNNEL_ID, OTHER_EXPERIENCE_ID, USER_ID

HEADERS = {"X-Experience-Id": EXPERIENCE_ID}


@pytest.fixture
def messenger():
    messenger = Mock()
    messenger.send.return_value = DeliveryResult.delivered("msg_1")
    return messenger


@pytest.fixture
def client(engine, messenger):
    app.dependency_overrides[conversations_router.get_engine] = lambda: engine
    app.dependency_overrides[conversations_router.get_transition_controller] = lambda: TransitionController(
        engine, messenger
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestStartConversation:
    def test_start(self, client):
        response = client.post(
            "/conversations", json={"funnel_id": FUNNEL_ID, "external_user_id": USER_ID}, headers=HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["conversation"]["current_block_id"] == "start"
        assert data["conversation"]["path"] == ["start"]
        assert data["bot_message"].startswith("Welcome!")

    def test_requires_tenant_header(self, client):
        response = client.post("/conversations", json={"funnel_id": FUNNEL_ID, "external_user_id": USER_ID})
        assert response.status_code == 422

    def test_unknown_funnel(self, client):
        response = client.post(
            "/conversations",
            json={"funnel_id": "44444444-4444-4444-4444-444444444444", "external_user_id": USER_ID},
            headers=HEADERS,
        )
        assert response.status_code == 404


class TestProcessMessage:
    def test_advances(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(
            f"/conversations/{conversation.id}/messages", json={"content": "tell me more"}, headers=HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["next_block_id"] == "info"
        assert data["escalation_level"] == 0
        assert data["phase_transition"] is None

    def test_phase_transition_serialized(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(
            f"/conversations/{conversation.id}/messages", json={"content": "show me the value"}, headers=HEADERS
        )

        assert response.json()["phase_transition"] == {"from_phase": "PHASE1", "to_phase": "PHASE2"}

    def test_escalation_is_success(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(f"/conversations/{conversation.id}/messages", json={"content": "purple"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["escalation_level"] == 1

    def test_wrong_tenant_is_404(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(
            f"/conversations/{conversation.id}/messages",
            json={"content": "tell me more"},
            headers={"X-Experience-Id": OTHER_EXPERIENCE_ID},
        )

        assert response.status_code == 404

    def test_closed_conversation_is_422(self, client, fake_db):
        conversation = fake_db.add_conversation(None, status="closed")

        response = client.post(f"/conversations/{conversation.id}/messages", json={"content": "hi"}, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "conversation_closed"

    def test_storage_failure_is_503_without_details(self, client, fake_db):
        conversation = fake_db.add_conversation("start")
        fake_db.fail_on.add("commit")

        response = client.post(
            f"/conversations/{conversation.id}/messages", json={"content": "tell me more"}, headers=HEADERS
        )

        assert response.status_code == 503
        assert response.json()["detail"] == conversations_router.MSG_STORAGE_UNAVAILABLE


class TestNavigate:
    def test_navigate(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(
            f"/conversations/{conversation.id}/navigate", json={"option_text": "Tell me more"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["next_block_id"] == "info"

    def test_unknown_option(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(
            f"/conversations/{conversation.id}/navigate", json={"option_text": "purple"}, headers=HEADERS
        )

        assert response.status_code == 422


class TestGetConversation:
    def test_get(self, client, fake_db):
        conversation = fake_db.add_conversation("start")
        client.post(f"/conversations/{conversation.id}/messages", json={"content": "tell me more"}, headers=HEADERS)

        response = client.get(f"/conversations/{conversation.id}", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["conversation"]["current_block_id"] == "info"
        assert [m["role"] for m in data["messages"]] == ["user", "bot"]

    def test_missing(self, client):
        response = client.get("/conversations/unknown", headers=HEADERS)
        assert response.status_code == 404


class TestTransitions:
    def test_transition(self, client, fake_db):
        conversation = fake_db.add_conversation("value_1")

        response = client.post(
            f"/conversations/{conversation.id}/transition", json={"stage_name": "OFFER"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["block_id"] == "offer_1"

    def test_empty_stage_is_422(self, client, fake_db):
        conversation = fake_db.add_conversation("value_1")

        response = client.post(
            f"/conversations/{conversation.id}/transition", json={"stage_name": "FOLLOW_UP"}, headers=HEADERS
        )

        assert response.status_code == 422

    def test_complete_transition(self, client, fake_db, messenger):
        conversation = fake_db.add_conversation("value_1")

        response = client.post(
            f"/conversations/{conversation.id}/complete-transition",
            json={"message_template": "Chat: [LINK_TO_PRIVATE_CHAT]"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["block_id"] == "exp_1"
        assert data["message"].endswith(f"/chat/{conversation.id}")
        messenger.send.assert_called_once()

    def test_delivery_failure_is_502(self, client, fake_db, messenger):
        messenger.send.return_value = DeliveryResult.failed("blocked")
        conversation = fake_db.add_conversation("value_1")

        response = client.post(
            f"/conversations/{conversation.id}/complete-transition",
            json={"message_template": "Hello"},
            headers=HEADERS,
        )

        assert response.status_code == 502
        assert response.json()["detail"]["block_id"] == "exp_1"
        assert fake_db.conversations[conversation.id].current_block_id == "exp_1"


class TestStatusChanges:
    def test_abandon(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(f"/conversations/{conversation.id}/abandon", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["conversation"]["status"] == "abandoned"

    def test_close(self, client, fake_db):
        conversation = fake_db.add_conversation("start")

        response = client.post(f"/conversations/{conversation.id}/close", headers=HEADERS)

        assert response.json()["conversation"]["status"] == "closed"

    def test_close_twice_is_422(self, client, fake_db):
        conversation = fake_db.add_conversation("start", status="closed")

        response = client.post(f"/conversations/{conversation.id}/close", headers=HEADERS)

        assert response.status_code == 422
