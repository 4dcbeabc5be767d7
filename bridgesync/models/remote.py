"""
Read-only snapshots of Discord objects.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

CDN_BASE_URL = "https://cdn.discordapp.com"


def cdn_image_url(kind: str, owner_id: str, image_hash: Optional[str]) -> Optional[str]:
    """Resolve a Discord image hash to its CDN URL; hashes starting with a_ are animated."""
    if not image_hash:
        return None
    extension = "gif" if image_hash.startswith("a_") else "png"
    return f"{CDN_BASE_URL}/{kind}/{owner_id}/{image_hash}.{extension}"


class RemoteUser(BaseModel):
    """Discord user."""
    id: str
    username: str
    discriminator: str = "0"
    avatar: Optional[str] = None
    bot: bool = False

    @property
    def tag(self) -> str:
        return f"{self.username}#{self.discriminator}"

    @property
    def avatar_url(self) -> Optional[str]:
        return cdn_image_url("avatars", self.id, self.avatar)


class MemberRole(BaseModel):
    """Role as shown in the member state of a ghost."""
    name: str
    color: int = 0
    position: int = 0


class RemoteGuildMember(BaseModel):
    """A user within one guild."""
    user: RemoteUser
    guild_id: str
    nick: Optional[str] = None
    roles: List[MemberRole] = Field(default_factory=list)
    display_color: Optional[int] = None

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def display_name(self) -> str:
        return self.nick or self.user.username


class RemoteChannel(BaseModel):
    """Discord channel together with the guild fields the sync needs."""
    id: str
    name: str
    topic: Optional[str] = None
    type: str = "text"
    guild_id: Optional[str] = None
    guild_name: Optional[str] = None
    guild_icon: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)

    @property
    def icon_url(self) -> Optional[str]:
        if not self.guild_id:
            return None
        return cdn_image_url("icons", self.guild_id, self.guild_icon)


class RemoteGuild(BaseModel):
    """Discord guild with its channels and members."""
    id: str
    name: str
    icon: Optional[str] = None
    channels: List[RemoteChannel] = Field(default_factory=list)
    members: List[RemoteGuildMember] = Field(default_factory=list)

    def get_member(self, user_id: str) -> Optional[RemoteGuildMember]:
        for member in self.members:
            if member.id == user_id:
                return member
        return None
