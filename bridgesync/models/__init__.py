"""
Database models and records for bridgesync.
"""

from .room_link import RoomLinkRow
from .user_link import UserLinkRow, GuildNickRow
from .records import ChannelLink, LinkAttributes, LinkPolicy, Provisioning, UserLink
from .remote import RemoteUser, RemoteGuildMember, RemoteChannel, RemoteGuild, MemberRole
from .matrix import MatrixEvent

__all__ = [
    "RoomLinkRow", "UserLinkRow", "GuildNickRow",
    "ChannelLink", "LinkAttributes", "LinkPolicy", "Provisioning", "UserLink",
    "RemoteUser", "RemoteGuildMember", "RemoteChannel", "RemoteGuild", "MemberRole",
    "MatrixEvent",
]
