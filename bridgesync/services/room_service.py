"""
Abstract base class for the Matrix side of the bridge.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

ERRCODE_FORBIDDEN = "M_FORBIDDEN"


class RoomServiceError(Exception):
    """A Matrix command was rejected or could not be delivered."""

    def __init__(self, message: str, errcode: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.errcode = errcode
        self.status = status

    @property
    def is_forbidden(self) -> bool:
        return self.errcode == ERRCODE_FORBIDDEN

    def __str__(self):
        base = super().__str__()
        if self.errcode:
            return f"{self.errcode}: {base}"
        return base


class RoomService(ABC):
    """
    Commands the bridge issues against Matrix rooms and profiles.

    Every method that takes user_id acts as that user (a ghost); without it
    the bridge bot is used.
    """

    @abstractmethod
    async def send_state_event(self, room_id: str, event_type: str, state_key: str, content: Dict[str, Any], user_id: Optional[str] = None) -> None:
        """Send a state event to a room."""
        pass

    @abstractmethod
    async def get_state_event(self, room_id: str, event_type: str, state_key: str = "") -> Dict[str, Any]:
        """Read the content of a state event."""
        pass

    @abstractmethod
    async def delete_alias(self, alias: str) -> None:
        """Remove an alias mapping."""
        pass

    @abstractmethod
    async def set_directory_visibility(self, room_id: str, visibility: str) -> None:
        """Publish ("public") or hide ("private") a room in the room directory."""
        pass

    @abstractmethod
    async def invite(self, room_id: str, target_user_id: str) -> None:
        """Invite a user to a room as the bridge bot."""
        pass

    @abstractmethod
    async def join(self, room_id: str, user_id: Optional[str] = None) -> None:
        """Join a room."""
        pass

    @abstractmethod
    async def leave(self, room_id: str, user_id: Optional[str] = None) -> None:
        """Leave a room."""
        pass

    @abstractmethod
    async def set_display_name(self, user_id: str, display_name: str) -> None:
        """Set a ghost's global display name."""
        pass

    @abstractmethod
    async def set_avatar_url(self, user_id: str, mxc_url: Optional[str]) -> None:
        """Set or clear a ghost's global avatar."""
        pass

    @abstractmethod
    async def upload_content(self, data: bytes, content_type: str, filename: Optional[str] = None, user_id: Optional[str] = None) -> str:
        """Upload media and return its mxc:// handle."""
        pass

    async def set_room_name(self, room_id: str, name: str) -> None:
        await self.send_state_event(room_id, "m.room.name", "", {"name": name})

    async def set_room_topic(self, room_id: str, topic: str) -> None:
        await self.send_state_event(room_id, "m.room.topic", "", {"topic": topic})

    async def set_room_avatar(self, room_id: str, mxc_url: Optional[str]) -> None:
        """Set the room avatar, or clear it when mxc_url is None."""
        content = {"url": mxc_url} if mxc_url else {}
        await self.send_state_event(room_id, "m.room.avatar", "", content)
