"""
Mirrors Discord users onto their Matrix ghosts: global profile, per-guild
nicknames and room membership.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple
import asyncio
import logging

from pydantic import BaseModel, Field

from ..config import Config
from ..models.matrix import MatrixEvent
from ..models.records import UserLink
from ..models.remote import MemberRole, RemoteGuild, RemoteGuildMember, RemoteUser
from ..utils import KeyedLock
from .discord import RemotePlatform, RemotePlatformError
from .media import upload_content_from_url
from .room_service import RoomService, RoomServiceError
from .room_store import RoomStore
from .user_store import UserStore

logger = logging.getLogger(__name__)

MEMBER_STATE_NAMESPACE = "uk.half-shot.discord.member"


class MemberStateResult(str, Enum):
    """Outcome of on_member_state."""
    APPLIED = "applied"
    SUPERSEDED = "newer_state_event_arrived"
    USER_NOT_FOUND = "user_not_found"
    MEMBER_NOT_FOUND = "channel_or_member_not_found"


class UserState(BaseModel):
    """Profile changes to push to a ghost. None means "leave untouched"."""
    id: str
    mx_user_id: str
    create_user: bool = False
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    avatar_id: Optional[str] = None
    remove_avatar: bool = False


class GuildMemberState(BaseModel):
    """What a ghost's m.room.member event looks like in the rooms of one guild."""
    id: str
    mx_user_id: str
    display_name: str
    username: str
    bot: bool = False
    display_color: Optional[int] = None
    roles: List[MemberRole] = Field(default_factory=list)


class UserSync:
    """User-level reconciler between Discord and Matrix."""

    def __init__(self, config: Config, room_service: RoomService, user_store: UserStore,
                 room_store: RoomStore, remote: RemotePlatform):
        self.config = config
        self.room_service = room_service
        self.user_store = user_store
        self.room_store = room_store
        self.remote = remote
        self._user_locks = KeyedLock()
        # (room_id, state_key) -> latest m.room.member event received
        self._state_hold: Dict[Tuple[str, str], MatrixEvent] = {}

    async def on_user_update(self, user: RemoteUser) -> None:
        async with self._user_locks.hold(user.id):
            try:
                state = await self.get_user_update_state(user)
                await self.apply_state_to_profile(state)
            except Exception as e:
                logger.error(f"Failed to update profile of user {user.id}: {e}")

    async def get_user_update_state(self, user: RemoteUser) -> UserState:
        logger.debug(f"State update requested for {user.id}")
        state = UserState(id=user.id, mx_user_id=self.config.bridge.ghost_user_id(user.id))
        display_name = user.tag

        stored = self.user_store.get_user_link(user.id)
        if stored is None:
            logger.debug(f"Could not find user {user.id} in the user store")
            state.create_user = True
            state.display_name = display_name
            state.avatar_url = user.avatar_url
            state.avatar_id = user.avatar
            return state

        if stored.display_name != display_name:
            logger.debug(f"User {user.id} display name should be updated")
            state.display_name = display_name

        if stored.avatar_url != user.avatar_url:
            logger.debug(f"User {user.id} avatar should be updated")
            if user.avatar_url is not None:
                state.avatar_url = user.avatar_url
                state.avatar_id = user.avatar
            else:
                state.remove_avatar = stored.avatar_url is not None
        return state

    async def apply_state_to_profile(self, state: UserState) -> None:
        if state.create_user:
            logger.info(f"Creating new user {state.mx_user_id}")
            user = self.user_store.link_users(state.mx_user_id, state.id)
        else:
            user = self.user_store.get_user_link(state.id) or UserLink(
                matrix_user_id=state.mx_user_id, remote_user_id=state.id
            )

        updated = False
        try:
            if state.display_name is not None:
                logger.debug(f"Updating display name for {state.mx_user_id} to \"{state.display_name}\"")
                await self.room_service.set_display_name(state.mx_user_id, state.display_name)
                user.display_name = state.display_name
                updated = True

            if state.avatar_url is not None:
                logger.debug(f"Updating avatar for {state.mx_user_id} to \"{state.avatar_url}\"")
                mxc_url = await upload_content_from_url(
                    self.room_service, state.avatar_url, state.avatar_id, user_id=state.mx_user_id
                )
                await self.room_service.set_avatar_url(state.mx_user_id, mxc_url)
                user.avatar_url = state.avatar_url
                user.avatar_url_mxc = mxc_url
                updated = True

            if state.remove_avatar:
                logger.debug(f"Clearing avatar for {state.mx_user_id}")
                await self.room_service.set_avatar_url(state.mx_user_id, None)
                user.avatar_url = None
                user.avatar_url_mxc = None
                updated = True
        finally:
            if updated:
                self.user_store.set_user_link(user)

        if updated:
            await self.update_state_for_guilds(user)

    async def update_state_for_guilds(self, user: UserLink) -> None:
        """Re-push the member state of a user into the rooms of every guild they are in."""
        logger.info(f"Got update for {user.remote_user_id}.")
        for guild in await self.remote.get_guilds():
            member = guild.get_member(user.remote_user_id)
            if member is None:
                continue
            logger.info(f"Updating user {user.remote_user_id} in guild {guild.id}.")
            state = self.get_user_state_for_guild_member(member)
            rooms = self.get_room_ids_from_guild(guild, member)
            await asyncio.gather(*(self.apply_state_to_room(state, room_id, guild.id) for room_id in rooms))

    def get_user_state_for_guild_member(self, member: RemoteGuildMember) -> GuildMemberState:
        return GuildMemberState(
            id=member.id,
            mx_user_id=self.config.bridge.ghost_user_id(member.id),
            display_name=member.display_name,
            username=member.user.tag,
            bot=member.user.bot,
            display_color=member.display_color,
            roles=[role.model_copy() for role in member.roles],
        )

    async def apply_state_to_room(self, state: GuildMemberState, room_id: str, guild_id: Optional[str] = None) -> bool:
        """
        Write the ghost's m.room.member event in one room.

        The event is sent as the ghost itself. When the ghost is not allowed
        to (typically because it is not in the room) the bridge bot invites it
        and the write is retried once. Returns whether the state was written;
        failures are logged, never raised.
        """
        logger.info(f"Applying new room state for {state.mx_user_id} to {room_id}")
        if not state.display_name:
            return False

        try:
            user = self.user_store.get_user_link(state.id) or UserLink(
                matrix_user_id=state.mx_user_id, remote_user_id=state.id
            )
        except Exception as e:
            logger.error(f"Failed to look up user {state.id} for member state in {room_id}: {e}")
            return False

        content = {
            "avatar_url": user.avatar_url_mxc,
            "displayname": state.display_name,
            "membership": "join",
            MEMBER_STATE_NAMESPACE: {
                "bot": state.bot,
                "displayColor": state.display_color,
                "id": state.id,
                "roles": [role.model_dump() for role in state.roles],
                "username": state.username,
            },
        }

        try:
            await self._send_member_state(room_id, state, content)
        except RoomServiceError as e:
            if not e.is_forbidden:
                logger.error(f"Failed to set member state of {state.mx_user_id} in {room_id}: {e}")
                return False
            logger.info(f"User {state.mx_user_id} not in room {room_id}, inviting")
            try:
                await self.room_service.invite(room_id, state.mx_user_id)
                await self._send_member_state(room_id, state, content)
            except RoomServiceError as retry_error:
                logger.error(f"Failed to join {state.mx_user_id} to {room_id}: {retry_error}")
                return False

        if guild_id and user.guild_nicks.get(guild_id) != state.display_name:
            user.guild_nicks[guild_id] = state.display_name
            try:
                self.user_store.set_user_link(user)
            except Exception as e:
                logger.error(f"Failed to store nick of {state.id} in guild {guild_id}: {e}")
        return True

    async def _send_member_state(self, room_id: str, state: GuildMemberState, content: dict) -> None:
        await self.room_service.send_state_event(
            room_id, "m.room.member", state.mx_user_id, content, user_id=state.mx_user_id
        )

    async def join_room(self, member: RemoteGuildMember, room_id: str) -> bool:
        state = self.get_user_state_for_guild_member(member)
        logger.info(f"Joining {state.id} in {room_id}")
        return await self.apply_state_to_room(state, room_id, member.guild_id)

    def get_room_ids_from_guild(self, guild: RemoteGuild, member: Optional[RemoteGuildMember] = None) -> List[str]:
        """
        Rooms bridged to the guild.

        With a member, only rooms of text channels that member can see.
        """
        if member is None:
            return _unique_rooms(self.room_store.get_links_by_guild(guild.id))
        rooms = []
        for channel in guild.channels:
            if channel.type != "text" or member.id not in channel.member_ids:
                continue
            rooms.extend(self.room_store.get_links_by_channel(channel.id))
        return _unique_rooms(rooms)

    async def on_add_guild_member(self, member: RemoteGuildMember) -> None:
        logger.info(f"Joining {member.id} to all rooms for guild {member.guild_id}")
        await self.on_user_update(member.user)
        await self.on_update_guild_member(member, do_join=True)

    async def on_remove_guild_member(self, member: RemoteGuildMember) -> None:
        # A kick, ban or leave all look the same from Discord
        logger.info(f"Leaving {member.id} from all rooms for guild {member.guild_id}")
        ghost = self.config.bridge.ghost_user_id(member.id)
        try:
            rooms = _unique_rooms(self.room_store.get_links_by_guild(member.guild_id))
        except Exception as e:
            logger.error(f"Failed to look up rooms of guild {member.guild_id}: {e}")
            return
        results = await asyncio.gather(
            *(self.room_service.leave(room_id, user_id=ghost) for room_id in rooms),
            return_exceptions=True
        )
        failed = [room_id for room_id, result in zip(rooms, results) if isinstance(result, Exception)]
        if failed:
            logger.warning(f"{ghost} failed to leave {len(failed)} room(s): {', '.join(failed)}")

    async def on_update_guild_member(self, member: RemoteGuildMember, do_join: bool = False) -> None:
        """Push member state to the rooms the member can see and leave every other room of the guild."""
        logger.info(f"Got update for {member.id} ({member.user.username}).")
        try:
            state = self.get_user_state_for_guild_member(member)
            guild = await self.remote.get_guild(member.guild_id)
            want_rooms = self.get_room_ids_from_guild(guild, member) if guild else []
            all_rooms = _unique_rooms(self.room_store.get_links_by_guild(member.guild_id))
        except Exception as e:
            logger.error(f"Failed to resolve rooms for {member.id} in guild {member.guild_id}: {e}")
            return
        leave_rooms = [room_id for room_id in all_rooms if room_id not in want_rooms]

        if do_join:
            await asyncio.gather(*(self.join_room(member, room_id) for room_id in want_rooms))
        else:
            await asyncio.gather(*(self.apply_state_to_room(state, room_id, member.guild_id) for room_id in want_rooms))

        results = await asyncio.gather(
            *(self.room_service.leave(room_id, user_id=state.mx_user_id) for room_id in leave_rooms),
            return_exceptions=True
        )
        for room_id, result in zip(leave_rooms, results):
            if isinstance(result, Exception):
                logger.debug(f"{state.mx_user_id} could not leave {room_id}, probably not in room: {result}")

    async def on_member_state(self, event: MatrixEvent, delay_ms: Optional[int] = None) -> MemberStateResult:
        """
        Re-apply the Discord nickname after a ghost's m.room.member changed.

        Events for the same room and user are debounced: only the last one
        received within the delay is processed, earlier ones are SUPERSEDED.
        """
        if delay_ms is None:
            delay_ms = self.config.limits.member_state_delay_ms
        if not await self._member_state_lock(event, delay_ms):
            return MemberStateResult.SUPERSEDED

        logger.debug(f"m.room.member was updated for {event.state_key}, checking if nickname needs updating.")
        users = self.user_store.get_user_links_by_matrix_id(event.state_key or "")
        if not users:
            logger.warning(f"Got member update for {event.state_key}, but no user is linked in the store")
            return MemberStateResult.USER_NOT_FOUND
        remote_user_id = users[0].remote_user_id

        member = None
        for link in self.room_store.get_links_by_matrix_room(event.room_id):
            if not link.guild_id:
                continue
            try:
                member = await self.remote.fetch_member(link.guild_id, remote_user_id)
            except RemotePlatformError as e:
                logger.warning(f"Failed to fetch member {remote_user_id} of guild {link.guild_id}: {e}")
            if member is not None:
                break
        if member is None:
            logger.warning(f"Got member update for {event.room_id}, but no channel or guild member could be found.")
            return MemberStateResult.MEMBER_NOT_FOUND

        state = self.get_user_state_for_guild_member(member)
        await self.apply_state_to_room(state, event.room_id, member.guild_id)
        return MemberStateResult.APPLIED

    async def _member_state_lock(self, event: MatrixEvent, delay_ms: int) -> bool:
        key = (event.room_id, event.state_key or "")
        self._state_hold[key] = event
        await asyncio.sleep(max(delay_ms, 0) / 1000)
        if self._state_hold.get(key) is not event:
            logger.debug(f"Newer m.room.member event arrived for {key[1]} in {key[0]}, skipping {event.event_id}")
            return False
        del self._state_hold[key]
        return True


def _unique_rooms(links) -> List[str]:
    rooms = []
    for link in links:
        if link.matrix_room_id and link.matrix_room_id not in rooms:
            rooms.append(link.matrix_room_id)
    return rooms
