"""
Wires the stores, collaborators and reconcilers together and exposes the
event-handler surface the ingestion layer calls into.
"""

from typing import Optional
import logging

from sqlalchemy.orm import sessionmaker

from ..config import Config
from ..models.matrix import MatrixEvent
from ..models.remote import RemoteChannel, RemoteGuild, RemoteGuildMember, RemoteUser
from .channel_sync import ChannelSync
from .discord import DiscordPlatform, RemotePlatform
from .matrix import MatrixRoomService
from .provisioner import Provisioner
from .room_service import RoomService
from .room_store import RoomStore
from .user_store import UserStore
from .user_sync import MemberStateResult, UserSync

logger = logging.getLogger(__name__)


class Bridge:
    """
    Event-handler surface of the bridge.

    None of the on_* methods raise: every failure is logged and the next
    event is processed normally.
    """

    def __init__(self, config: Config, room_service: RoomService, remote: RemotePlatform,
                 room_store: RoomStore, user_store: UserStore):
        self.config = config
        self.room_service = room_service
        self.remote = remote
        self.room_store = room_store
        self.user_store = user_store
        self.channel_sync = ChannelSync(config, room_service, room_store)
        self.user_sync = UserSync(config, room_service, user_store, room_store, remote)
        self.provisioner = Provisioner(room_store, self.channel_sync, config.limits.room_count)

    @classmethod
    def from_config(cls, config: Config, session_factory: sessionmaker) -> "Bridge":
        """Build a bridge talking to the configured homeserver and Discord."""
        lifetime = config.store.cache_lifetime_seconds
        return cls(
            config,
            MatrixRoomService(config.bridge.homeserver_url, config.bridge.as_token),
            DiscordPlatform(config.discord.bot_token, config.discord.api_base),
            RoomStore(session_factory, lifetime),
            UserStore(session_factory, lifetime),
        )

    async def on_channel_update(self, channel: RemoteChannel) -> None:
        try:
            await self.channel_sync.on_channel_update(channel)
        except Exception as e:
            logger.error(f"Failed to handle update of channel {channel.id}: {e}")

    async def on_guild_update(self, guild: RemoteGuild) -> None:
        try:
            await self.channel_sync.on_guild_update(guild)
        except Exception as e:
            logger.error(f"Failed to handle update of guild {guild.id}: {e}")

    async def on_channel_delete(self, channel: RemoteChannel) -> None:
        try:
            await self.channel_sync.on_channel_delete(channel)
        except Exception as e:
            logger.error(f"Failed to handle deletion of channel {channel.id}: {e}")

    async def on_guild_delete(self, guild: RemoteGuild) -> None:
        try:
            await self.channel_sync.on_guild_delete(guild)
        except Exception as e:
            logger.error(f"Failed to handle deletion of guild {guild.id}: {e}")

    async def ensure_channel_state(self, channel: RemoteChannel) -> bool:
        try:
            await self.channel_sync.ensure_channel_state(channel)
            return True
        except Exception as e:
            logger.error(f"Failed to ensure state of channel {channel.id}: {e}")
            return False

    async def on_user_update(self, user: RemoteUser) -> None:
        try:
            await self.user_sync.on_user_update(user)
        except Exception as e:
            logger.error(f"Failed to handle update of user {user.id}: {e}")

    async def on_add_guild_member(self, member: RemoteGuildMember) -> None:
        try:
            await self.user_sync.on_add_guild_member(member)
        except Exception as e:
            logger.error(f"Failed to add member {member.id} to guild {member.guild_id}: {e}")

    async def on_remove_guild_member(self, member: RemoteGuildMember) -> None:
        try:
            await self.user_sync.on_remove_guild_member(member)
        except Exception as e:
            logger.error(f"Failed to remove member {member.id} from guild {member.guild_id}: {e}")

    async def on_update_guild_member(self, member: RemoteGuildMember) -> None:
        try:
            await self.user_sync.on_update_guild_member(member)
        except Exception as e:
            logger.error(f"Failed to update member {member.id} of guild {member.guild_id}: {e}")

    async def on_member_state(self, event: MatrixEvent, delay_ms: Optional[int] = None) -> Optional[MemberStateResult]:
        try:
            result = await self.user_sync.on_member_state(event, delay_ms)
        except Exception as e:
            logger.error(f"Failed to handle member state of {event.state_key} in {event.room_id}: {e}")
            return None
        logger.debug(f"Member state of {event.state_key} in {event.room_id}: {result.value}")
        return result

    def is_ghost(self, user_id: Optional[str]) -> bool:
        return self.config.bridge.is_ghost_user_id(user_id)
