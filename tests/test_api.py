"""
Tests for API endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from bridgesync.api.main import create_app
from bridgesync.config import AdminConfig
from bridgesync.models.matrix import MatrixEvent
from bridgesync.services.user_sync import MemberStateResult

from factories import make_link, make_member

GHOST = "@_discord_u1:localhost"


def ghost_member_event(event_id="$a", content=None, state_key=GHOST):
    return {
        "event_id": event_id,
        "type": "m.room.member",
        "room_id": "!room:localhost",
        "sender": state_key,
        "state_key": state_key,
        "origin_server_ts": 1700000000000,
        "content": content if content is not None else {"membership": "join", "displayname": "alice#1234"},
    }


@pytest.fixture
def on_member_state(bridge):
    handler = AsyncMock()
    bridge.on_member_state = handler
    return handler


def test_ping_endpoint(test_client: TestClient):
    """Test ping endpoint."""
    response = test_client.get("/api/ping")
    assert response.status_code == 200
    assert "message" in response.json()


def test_health_check(test_client: TestClient):
    """Test health check endpoint."""
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_transaction_requires_token(test_client: TestClient):
    response = test_client.put("/_matrix/app/v1/transactions/1", json={"events": []})
    assert response.status_code == 401


def test_transaction_rejects_wrong_token(test_client: TestClient):
    response = test_client.put("/_matrix/app/v1/transactions/1?access_token=wrong", json={"events": []})
    assert response.status_code == 403
    assert response.json()["detail"]["errcode"] == "M_FORBIDDEN"


def test_transaction_accepts_bearer_token(test_client: TestClient, on_member_state):
    response = test_client.put(
        "/_matrix/app/v1/transactions/1",
        json={"events": []},
        headers={"Authorization": "Bearer hs-token"}
    )
    assert response.status_code == 200
    assert response.json() == {}


def test_ghost_member_event_is_dispatched(test_client: TestClient, on_member_state):
    response = test_client.put(
        "/_matrix/app/v1/transactions/1?access_token=hs-token",
        json={"events": [ghost_member_event()]}
    )

    assert response.status_code == 200
    on_member_state.assert_awaited_once()
    event, delay_ms = on_member_state.await_args.args
    assert isinstance(event, MatrixEvent)
    assert event.event_id == "$a"
    assert event.state_key == GHOST
    assert delay_ms == 0


def test_bridge_written_member_event_is_ignored(test_client: TestClient, on_member_state):
    content = {"membership": "join", "displayname": "Ali", "uk.half-shot.discord.member": {"id": "u1"}}

    test_client.put(
        "/_matrix/app/v1/transactions/1?access_token=hs-token",
        json={"events": [ghost_member_event(content=content)]}
    )

    on_member_state.assert_not_awaited()


def test_other_events_are_ignored(test_client: TestClient, on_member_state):
    events = [
        ghost_member_event(state_key="@someone:example.org"),
        ghost_member_event(content={"membership": "leave"}),
        {"type": "m.room.message", "room_id": "!room:localhost", "sender": "@someone:example.org",
         "content": {"body": "hi"}},
    ]

    response = test_client.put("/_matrix/app/v1/transactions/1?access_token=hs-token", json={"events": events})

    assert response.status_code == 200
    on_member_state.assert_not_awaited()


def test_repeated_transaction_is_not_reprocessed(test_client: TestClient, on_member_state):
    for _ in range(2):
        response = test_client.put(
            "/_matrix/app/v1/transactions/42?access_token=hs-token",
            json={"events": [ghost_member_event()]}
        )
        assert response.status_code == 200

    assert on_member_state.await_count == 1


def test_later_event_in_transaction_supersedes_earlier(test_client: TestClient, bridge, user_store, room_store,
                                                       room_service, remote):
    user_store.link_users(GHOST, "u1")
    room_store.upsert_link(make_link())
    remote.fetch_member.return_value = make_member()
    bridge.config.limits.member_state_delay_ms = 50
    results = {}
    handle_member_state = bridge.on_member_state

    async def recording(event, delay_ms=None):
        results[event.event_id] = await handle_member_state(event, delay_ms)
        return results[event.event_id]

    bridge.on_member_state = recording
    events = [
        ghost_member_event("$a"),
        ghost_member_event("$b", content={"membership": "join", "displayname": "alice#1234 (new)"}),
    ]

    response = test_client.put("/_matrix/app/v1/transactions/1?access_token=hs-token", json={"events": events})

    assert response.status_code == 200
    assert results == {"$a": MemberStateResult.SUPERSEDED, "$b": MemberStateResult.APPLIED}
    member_writes = [
        awaited for awaited in room_service.send_state_event.await_args_list if awaited.args[1] == "m.room.member"
    ]
    assert len(member_writes) == 1


def test_bridge_bot_member_event_is_ignored(test_client: TestClient, on_member_state):
    test_client.put(
        "/_matrix/app/v1/transactions/1?access_token=hs-token",
        json={"events": [ghost_member_event(state_key="@_discord_bot:localhost")]}
    )

    on_member_state.assert_not_awaited()


def test_unset_hs_token_rejects_everything(test_config, bridge):
    config = test_config.model_copy(deep=True)
    config.bridge.hs_token = ""
    client = TestClient(create_app(config, bridge))

    response = client.put("/_matrix/app/v1/transactions/1?access_token=", json={"events": []})

    assert response.status_code == 403


def test_admin_router_not_mounted_when_disabled(test_config, bridge):
    config = test_config.model_copy(update={"admin": AdminConfig(enabled=False)})
    client = TestClient(create_app(config, bridge))

    response = client.get("/admin/links", auth=("admin", "admin123"))

    assert response.status_code == 404
