"""
Keeps Matrix room name, topic and avatar in line with their Discord channels,
and tears rooms down when channels disappear.
"""

from typing import List, Optional
import asyncio
import logging

from pydantic import BaseModel, Field

from ..config import Config, ChannelDeleteOptions
from ..models.records import ChannelLink, Provisioning
from ..models.remote import RemoteChannel, RemoteGuild
from ..utils import KeyedLock, OnceCache, apply_pattern_string
from .media import upload_content_from_url
from .room_service import RoomService, RoomServiceError
from .room_store import RoomStore

logger = logging.getLogger(__name__)

POWER_LEVEL_MESSAGE_TALK = 50


class LinkNotFoundError(Exception):
    """No Matrix room is bridged to the channel."""


class SingleChannelState(BaseModel):
    """
    Changes to push to one linked room.

    None means "leave untouched". remove_icon and icon_url are never both set.
    """
    link: ChannelLink
    name: Optional[str] = None
    topic: Optional[str] = None
    icon_url: Optional[str] = None
    icon_id: Optional[str] = None
    remove_icon: bool = False

    @property
    def room_id(self) -> str:
        return self.link.matrix_room_id

    @property
    def has_changes(self) -> bool:
        return (self.name is not None or self.topic is not None
                or self.icon_url is not None or self.remove_icon)


class ChannelState(BaseModel):
    """Update plan for every room bridged to one channel."""
    channel_id: str
    rooms: List[SingleChannelState] = Field(default_factory=list)
    icon_mxc_url: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return any(room.has_changes for room in self.rooms)


class ChannelSync:
    """Channel-level reconciler between Discord and Matrix."""

    def __init__(self, config: Config, room_service: RoomService, room_store: RoomStore):
        self.config = config
        self.room_service = room_service
        self.room_store = room_store
        self._channel_locks = KeyedLock()

    async def on_channel_update(self, channel: RemoteChannel) -> None:
        if channel.type != "text":
            return
        async with self._channel_locks.hold(channel.id):
            try:
                state = await self.get_channel_update_state(channel)
                await self.apply_state_to_channel(state, OnceCache())
            except Exception as e:
                logger.error(f"Failed to update rooms for channel {channel.id}: {e}")

    async def on_guild_update(self, guild: RemoteGuild, force: bool = False) -> None:
        """
        Reconcile every text channel of a guild.

        One upload cache is shared by the whole pass, and a channel that did
        not resolve an avatar of its own starts from the previous channel's.
        """
        logger.debug(f"Got guild update for guild {guild.id}")
        states: List[ChannelState] = []
        for channel in guild.channels:
            if channel.type != "text":
                continue
            try:
                states.append(await self.get_channel_update_state(channel, force))
            except Exception as e:
                logger.error(f"Failed to get channel state for {channel.id}: {e}")

        icon_cache: OnceCache[str] = OnceCache()
        icon_mxc_url: Optional[str] = None
        for state in states:
            state.icon_mxc_url = state.icon_mxc_url or icon_mxc_url
            async with self._channel_locks.hold(state.channel_id):
                try:
                    await self.apply_state_to_channel(state, icon_cache)
                except Exception as e:
                    logger.error(f"Failed to update rooms for channel {state.channel_id}: {e}")
            icon_mxc_url = state.icon_mxc_url

    async def ensure_channel_state(self, channel: RemoteChannel) -> None:
        """Push name and topic regardless of what was stored, for manual repair."""
        async with self._channel_locks.hold(channel.id):
            state = await self.get_channel_update_state(channel, force_update=True)
            logger.info(f"Ensuring state of channel {state.channel_id} is correct")
            await self.apply_state_to_channel(state, OnceCache())

    async def get_room_ids_from_channel(self, channel: RemoteChannel) -> List[str]:
        links = self.room_store.get_links_by_channel(channel.id)
        if not links:
            logger.debug(f"Couldn't find room(s) for channel {channel.id}")
            raise LinkNotFoundError(f"No rooms bridged to channel {channel.id}")
        return [link.matrix_room_id for link in links]

    async def get_alias_from_channel(self, channel: RemoteChannel) -> Optional[str]:
        """
        Best alias to refer to a channel from Matrix.

        A canonical alias set by room admins wins over one in the bridge
        namespace; with neither, the bridge alias is computed from the guild.
        """
        try:
            room_ids = await self.get_room_ids_from_channel(channel)
        except LinkNotFoundError:
            room_ids = []

        fallback_alias = None
        for room_id in room_ids:
            try:
                alias = (await self.room_service.get_state_event(room_id, "m.room.canonical_alias")).get("alias")
            except RoomServiceError:
                continue
            if not alias:
                continue
            if not self.config.bridge.is_namespaced_alias(alias):
                return alias
            fallback_alias = alias

        if fallback_alias:
            return fallback_alias
        if not channel.guild_id:
            return None
        return self.config.bridge.room_alias(f"discord_{channel.guild_id}_{channel.id}")

    async def get_channel_update_state(self, channel: RemoteChannel, force_update: bool = False) -> ChannelState:
        """Work out what each room bridged to channel needs; an unbridged channel yields an empty plan."""
        logger.debug(f"State update request for {channel.id}")
        state = ChannelState(channel_id=channel.id)

        links = self.room_store.get_links_by_channel(channel.id)
        if not links:
            logger.debug(f"Could not find any rooms for channel {channel.id} in the room store")
            return state

        name = apply_pattern_string(self.config.channel.name_pattern, {
            "name": "#" + channel.name,
            "guild": channel.guild_name or "",
        })
        topic = channel.topic or ""
        icon_url = channel.icon_url

        for link in links:
            room = SingleChannelState(link=link)
            attributes = link.attributes

            if link.policy.update_name and (force_update or attributes.name != name):
                logger.debug(f"Room {link.matrix_room_id} name should be updated")
                room.name = name

            if link.policy.update_topic and (force_update or attributes.topic != topic):
                logger.debug(f"Room {link.matrix_room_id} topic should be updated")
                room.topic = topic

            # Never forced, so a forced pass does not re-upload every avatar
            if link.policy.update_icon and attributes.icon_url != icon_url:
                logger.debug(f"Room {link.matrix_room_id} icon should be updated")
                if icon_url is not None:
                    room.icon_url = icon_url
                    room.icon_id = channel.guild_icon
                else:
                    room.remove_icon = attributes.icon_url is not None

            state.rooms.append(room)
        return state

    async def apply_state_to_channel(self, state: ChannelState, icon_cache: Optional[OnceCache] = None) -> None:
        """Apply a plan; a failure in one room is logged and does not stop the others."""
        if icon_cache is None:
            icon_cache = OnceCache()
        rooms = [room for room in state.rooms if room.has_changes]
        results = await asyncio.gather(
            *(self._apply_state_to_room(state, room, icon_cache) for room in rooms),
            return_exceptions=True
        )
        for room, result in zip(rooms, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to update room {room.room_id} (link {room.link.id}) "
                             f"for channel {state.channel_id}: {result}")

    async def _apply_state_to_room(self, state: ChannelState, room: SingleChannelState, icon_cache: OnceCache) -> None:
        link = room.link
        room_id = link.matrix_room_id
        updated = False
        try:
            if room.name is not None:
                logger.debug(f"Updating name for {room_id} to \"{room.name}\"")
                await self.room_service.set_room_name(room_id, room.name)
                link.attributes.name = room.name
                updated = True

            if room.topic is not None:
                logger.debug(f"Updating topic for {room_id} to \"{room.topic}\"")
                await self.room_service.set_room_topic(room_id, room.topic)
                link.attributes.topic = room.topic
                updated = True

            if room.icon_url is not None and room.icon_id is not None:
                logger.debug(f"Updating icon for {room_id} to \"{room.icon_url}\"")
                if state.icon_mxc_url is None:
                    state.icon_mxc_url = await icon_cache.get(
                        room.icon_id,
                        lambda: upload_content_from_url(self.room_service, room.icon_url, room.icon_id)
                    )
                await self.room_service.set_room_avatar(room_id, state.icon_mxc_url)
                link.attributes.icon_url = room.icon_url
                link.attributes.icon_url_mxc = state.icon_mxc_url
                updated = True

            if room.remove_icon:
                logger.debug(f"Clearing icon for {room_id}")
                await self.room_service.set_room_avatar(room_id, None)
                link.attributes.icon_url = None
                link.attributes.icon_url_mxc = None
                updated = True
        finally:
            # Whatever was pushed is recorded, even if a later push failed
            if updated:
                self.room_store.upsert_link(link)

    async def on_channel_delete(self, channel: RemoteChannel) -> None:
        if channel.type != "text":
            logger.info(f"Channel {channel.id} was deleted but isn't a text channel, so ignoring.")
            return
        logger.info(f"Channel {channel.id} has been deleted.")
        links = self.room_store.get_links_by_channel(channel.id)
        if not links:
            logger.warning(f"Couldn't find rooms for deleted channel {channel.id}")
            return

        async with self._channel_locks.hold(channel.id):
            results = await asyncio.gather(
                *(self._handle_channel_deletion_for_room(channel, link) for link in links),
                return_exceptions=True
            )
        for link, result in zip(links, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to delete channel {channel.id} from room {link.matrix_room_id}: {result}")

    async def on_guild_delete(self, guild: RemoteGuild) -> None:
        for channel in guild.channels:
            try:
                await self.on_channel_delete(channel)
            except Exception as e:
                logger.error(f"Failed to delete channel {channel.id} of guild {guild.id}: {e}")

    async def on_unbridge(self, channel: RemoteChannel, room_id: str) -> None:
        """Unlink one room from channel: ghosts leave, name and topic stay as they are."""
        links = [link for link in self.room_store.get_links_by_matrix_room(room_id) if link.channel_id == channel.id]
        if not links:
            logger.warning(f"Room {room_id} is not bridged to channel {channel.id}")
            return
        options = self.config.channel.delete_options.model_copy(update={
            "name_prefix": None,
            "topic_prefix": None,
            "ghosts_leave": True,
        })
        try:
            await self._handle_channel_deletion_for_room(channel, links[0], options)
            logger.info(f"Channel {channel.id} has been unbridged from {room_id}.")
        except Exception as e:
            logger.error(f"Failed to unbridge channel {channel.id} from room {room_id}: {e}")

    async def _handle_channel_deletion_for_room(self, channel: RemoteChannel, link: ChannelLink,
                                                options: Optional[ChannelDeleteOptions] = None) -> None:
        room_id = link.matrix_room_id
        options = options or self.config.channel.delete_options
        logger.info(f"Deleting channel {channel.id} from {room_id}.")
        try:
            if options.ghosts_leave:
                try:
                    await self._ghosts_leave(channel, room_id)
                except Exception as e:
                    logger.error(f"Failed to make ghosts leave {room_id}: {e}")

            if options.name_prefix:
                try:
                    name = await self.room_service.get_state_event(room_id, "m.room.name")
                    await self.room_service.set_room_name(room_id, options.name_prefix + (name.get("name") or ""))
                except Exception as e:
                    logger.error(f"Failed to set name of room {room_id}: {e}")

            if options.topic_prefix:
                try:
                    topic = await self.room_service.get_state_event(room_id, "m.room.topic")
                    await self.room_service.set_room_topic(room_id, options.topic_prefix + (topic.get("topic") or ""))
                except Exception as e:
                    logger.error(f"Failed to set topic of room {room_id}: {e}")

            if link.provisioning is Provisioning.AUTO:
                await self._lock_down_room(link, options)
        finally:
            self.room_store.remove_links_by_matrix_room(room_id)

    async def _ghosts_leave(self, channel: RemoteChannel, room_id: str) -> None:
        ghosts = [self.config.bridge.ghost_user_id(member_id) for member_id in channel.member_ids]
        results = await asyncio.gather(
            *(self.room_service.leave(room_id, user_id=ghost) for ghost in ghosts),
            return_exceptions=True
        )
        for ghost, result in zip(ghosts, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to make {ghost} leave {room_id}: {result}")
            else:
                logger.debug(f"{ghost} left {room_id}.")

    async def _lock_down_room(self, link: ChannelLink, options: ChannelDeleteOptions) -> None:
        """Destructive policies; only ever applied to rooms the bridge created itself."""
        room_id = link.matrix_room_id

        if options.unset_room_alias:
            try:
                alias = self.config.bridge.room_alias(link.remote_room_id)
                try:
                    canonical_alias = await self.room_service.get_state_event(room_id, "m.room.canonical_alias")
                except RoomServiceError:
                    canonical_alias = {}
                if canonical_alias.get("alias") == alias:
                    await self.room_service.send_state_event(room_id, "m.room.canonical_alias", "", {})
                await self.room_service.delete_alias(alias)
            except Exception as e:
                logger.error(f"Couldn't remove alias of {room_id}: {e}")

        if options.unlist_from_directory:
            try:
                await self.room_service.set_directory_visibility(room_id, "private")
            except Exception as e:
                logger.error(f"Couldn't remove {room_id} from room directory: {e}")

        if options.set_invite_only:
            try:
                await self.room_service.send_state_event(room_id, "m.room.join_rules", "", {"join_rule": "invite"})
            except Exception as e:
                logger.error(f"Couldn't set {room_id} to invite only: {e}")

        if options.disable_messaging:
            try:
                power_levels = await self.room_service.get_state_event(room_id, "m.room.power_levels")
                power_levels["events_default"] = POWER_LEVEL_MESSAGE_TALK
                await self.room_service.send_state_event(room_id, "m.room.power_levels", "", power_levels)
            except Exception as e:
                logger.error(f"Couldn't disable messaging for {room_id}: {e}")
