"""
Tests for the bridge event-handler surface.
"""

import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from bridgesync.models.matrix import MatrixEvent

from factories import make_channel, make_guild, make_link, make_member, make_user


def database_down():
    return OperationalError("SELECT user_links", {}, Exception("db down"))


@pytest.mark.asyncio
@pytest.mark.parametrize("entry_point", ["on_update_guild_member", "on_add_guild_member"])
async def test_member_handlers_survive_user_store_failure(bridge, room_store, room_service, remote, entry_point):
    member = make_member()
    remote.get_guild.return_value = make_guild(members=[member])
    room_store.upsert_link(make_link())

    with patch.object(bridge.user_store, "get_user_link", side_effect=database_down()):
        await getattr(bridge, entry_point)(member)

    member_writes = [
        awaited for awaited in room_service.send_state_event.await_args_list if awaited.args[1] == "m.room.member"
    ]
    assert member_writes == []


@pytest.mark.asyncio
async def test_apply_state_to_room_reports_store_failure(bridge):
    state = bridge.user_sync.get_user_state_for_guild_member(make_member())

    with patch.object(bridge.user_store, "get_user_link", side_effect=database_down()):
        assert await bridge.user_sync.apply_state_to_room(state, "!room:localhost", "g1") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("entry_point, reconciler, method, argument", [
    ("on_channel_update", "channel_sync", "on_channel_update", make_channel()),
    ("on_guild_update", "channel_sync", "on_guild_update", make_guild()),
    ("on_channel_delete", "channel_sync", "on_channel_delete", make_channel()),
    ("on_guild_delete", "channel_sync", "on_guild_delete", make_guild()),
    ("on_user_update", "user_sync", "on_user_update", make_user()),
    ("on_add_guild_member", "user_sync", "on_add_guild_member", make_member()),
    ("on_remove_guild_member", "user_sync", "on_remove_guild_member", make_member()),
    ("on_update_guild_member", "user_sync", "on_update_guild_member", make_member()),
])
async def test_entry_points_log_instead_of_raising(bridge, entry_point, reconciler, method, argument):
    with patch.object(getattr(bridge, reconciler), method, side_effect=RuntimeError("boom")) as handler:
        await getattr(bridge, entry_point)(argument)

    handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_ensure_channel_state_reports_failure(bridge):
    with patch.object(bridge.channel_sync, "ensure_channel_state", side_effect=RuntimeError("boom")):
        assert await bridge.ensure_channel_state(make_channel()) is False


@pytest.mark.asyncio
async def test_member_state_failure_yields_no_result(bridge):
    event = MatrixEvent(event_id="$a", type="m.room.member", room_id="!room:localhost",
                        sender="@_discord_u1:localhost", state_key="@_discord_u1:localhost",
                        content={"membership": "join"})

    with patch.object(bridge.user_sync, "on_member_state", side_effect=RuntimeError("boom")):
        assert await bridge.on_member_state(event, 0) is None


def test_is_ghost(bridge):
    assert bridge.is_ghost("@_discord_u1:localhost") is True
    assert bridge.is_ghost("@_discord_bot:localhost") is False
    assert bridge.is_ghost("@alice:localhost") is False
