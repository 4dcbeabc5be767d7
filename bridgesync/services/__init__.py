"""
Services for the bridgesync system.
"""

from .room_service import RoomService, RoomServiceError
from .matrix import MatrixRoomService
from .discord import RemotePlatform, DiscordPlatform, RemotePlatformError
from .room_store import RoomStore
from .user_store import UserStore
from .channel_sync import ChannelSync, ChannelState, SingleChannelState, LinkNotFoundError
from .user_sync import UserSync, UserState, GuildMemberState, MemberStateResult
from .provisioner import Provisioner, ProvisioningError
from .bridge import Bridge

__all__ = [
    "RoomService", "RoomServiceError", "MatrixRoomService",
    "RemotePlatform", "DiscordPlatform", "RemotePlatformError",
    "RoomStore", "UserStore",
    "ChannelSync", "ChannelState", "SingleChannelState", "LinkNotFoundError",
    "UserSync", "UserState", "GuildMemberState", "MemberStateResult",
    "Provisioner", "ProvisioningError",
    "Bridge",
]
