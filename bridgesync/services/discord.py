"""
Discord side of the bridge: read-only snapshots of guilds, channels and members.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, List, Optional
import asyncio
import logging
import requests

from ..models.remote import RemoteChannel, RemoteGuild, RemoteGuildMember, RemoteUser, MemberRole

logger = logging.getLogger(__name__)

CHANNEL_TYPES = {
    0: "text",
    2: "voice",
    4: "category",
    5: "news",
}

MEMBER_PAGE_LIMIT = 1000
GUILD_PAGE_LIMIT = 200


class RemotePlatformError(Exception):
    """Discord could not be queried."""


class RemotePlatform(ABC):
    """Abstract source of Discord snapshots."""

    @abstractmethod
    async def get_guilds(self) -> List[RemoteGuild]:
        """All guilds the bridge bot is in."""
        pass

    @abstractmethod
    async def get_guild(self, guild_id: str) -> Optional[RemoteGuild]:
        """A guild with its channels and members, or None if unknown."""
        pass

    @abstractmethod
    async def get_channel(self, channel_id: str) -> Optional[RemoteChannel]:
        """A channel, or None if unknown."""
        pass

    @abstractmethod
    async def fetch_member(self, guild_id: str, user_id: str) -> Optional[RemoteGuildMember]:
        """A guild member, or None if the user is not in the guild."""
        pass


class DiscordPlatform(RemotePlatform):
    """
    Discord REST implementation.

    Channel membership is approximated by guild membership; permission
    overwrites are not evaluated.
    """

    def __init__(self, bot_token: str, api_base: str = "https://discord.com/api/v10", timeout: int = 10):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET a Discord resource; None on 404."""
        try:
            response = requests.get(
                f"{self.api_base}{path}",
                headers={"Authorization": f"Bot {self.bot_token}"},
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"HTTP error fetching Discord {path}: {e}")
            raise RemotePlatformError(str(e)) from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(f"Discord API error for {path}: {response.status_code} {response.text}")
            raise RemotePlatformError(f"Discord API returned {response.status_code} for {path}")
        return response.json()

    async def _fetch(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await asyncio.to_thread(self._get, path, params)

    async def _fetch_pages(self, path: str, limit: int, cursor: Callable[[Dict[str, Any]], str]) -> List[Dict[str, Any]]:
        """Follow the after= cursor of a paginated list until a short page comes back."""
        items: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"limit": limit}
        while True:
            page = await self._fetch(path, dict(params)) or []
            items.extend(page)
            if len(page) < limit:
                return items
            params["after"] = cursor(page[-1])

    async def get_guilds(self) -> List[RemoteGuild]:
        partials = await self._fetch_pages("/users/@me/guilds", GUILD_PAGE_LIMIT, lambda guild: guild["id"])
        guilds = []
        for partial in partials:
            guild = await self.get_guild(partial["id"])
            if guild is not None:
                guilds.append(guild)
        return guilds

    async def get_guild(self, guild_id: str) -> Optional[RemoteGuild]:
        data = await self._fetch(f"/guilds/{guild_id}")
        if data is None:
            return None
        roles = {role["id"]: role for role in data.get("roles", [])}
        members = [
            _parse_member(guild_id, member, roles)
            for member in await self._fetch_pages(
                f"/guilds/{guild_id}/members", MEMBER_PAGE_LIMIT, lambda member: member["user"]["id"]
            )
        ]
        member_ids = [member.id for member in members]
        channels = [
            _parse_channel(channel, data, member_ids)
            for channel in await self._fetch(f"/guilds/{guild_id}/channels") or []
        ]
        return RemoteGuild(
            id=guild_id,
            name=data.get("name", ""),
            icon=data.get("icon"),
            channels=channels,
            members=members,
        )

    async def get_channel(self, channel_id: str) -> Optional[RemoteChannel]:
        data = await self._fetch(f"/channels/{channel_id}")
        if data is None:
            return None
        guild_id = data.get("guild_id")
        if not guild_id:
            return _parse_channel(data, None, [])
        guild = await self.get_guild(guild_id)
        if guild is None:
            return _parse_channel(data, None, [])
        for channel in guild.channels:
            if channel.id == channel_id:
                return channel
        return None

    async def fetch_member(self, guild_id: str, user_id: str) -> Optional[RemoteGuildMember]:
        data = await self._fetch(f"/guilds/{guild_id}/members/{user_id}")
        if data is None:
            return None
        guild = await self._fetch(f"/guilds/{guild_id}") or {}
        roles = {role["id"]: role for role in guild.get("roles", [])}
        return _parse_member(guild_id, data, roles)


def _parse_user(data: Dict[str, Any]) -> RemoteUser:
    return RemoteUser(
        id=data["id"],
        username=data.get("username", ""),
        discriminator=data.get("discriminator") or "0",
        avatar=data.get("avatar"),
        bot=bool(data.get("bot", False)),
    )


def _parse_member(guild_id: str, data: Dict[str, Any], roles: Dict[str, Dict[str, Any]]) -> RemoteGuildMember:
    member_roles = [
        MemberRole(name=roles[role_id].get("name", ""), color=roles[role_id].get("color", 0),
                   position=roles[role_id].get("position", 0))
        for role_id in data.get("roles", []) if role_id in roles
    ]
    # Highest coloured role decides the display colour, as in the Discord client
    coloured = sorted((role for role in member_roles if role.color), key=lambda role: role.position, reverse=True)
    return RemoteGuildMember(
        user=_parse_user(data["user"]),
        guild_id=guild_id,
        nick=data.get("nick"),
        roles=member_roles,
        display_color=coloured[0].color if coloured else None,
    )


def _parse_channel(data: Dict[str, Any], guild: Optional[Dict[str, Any]], member_ids: List[str]) -> RemoteChannel:
    return RemoteChannel(
        id=data["id"],
        name=data.get("name") or "",
        topic=data.get("topic"),
        type=CHANNEL_TYPES.get(data.get("type"), "unknown"),
        guild_id=guild.get("id") if guild else None,
        guild_name=guild.get("name") if guild else None,
        guild_icon=guild.get("icon") if guild else None,
        member_ids=list(member_ids),
    )
