"""
Operator-driven bridging of existing Matrix rooms to Discord channels.
"""

from typing import Optional
import asyncio
import logging

from ..models.records import ChannelLink, LinkAttributes, Provisioning
from ..models.remote import RemoteChannel
from .channel_sync import ChannelSync
from .room_store import RoomStore

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """The requested bridge operation cannot be performed."""


class Provisioner:
    """Creates and removes manually provisioned (plumbed) links."""

    def __init__(self, room_store: RoomStore, channel_sync: ChannelSync, room_limit: int = -1):
        self.room_store = room_store
        self.channel_sync = channel_sync
        self.room_limit = room_limit

    def room_count_limit_reached(self, limit: Optional[int] = None) -> bool:
        """Whether no further rooms may be bridged; a negative limit means unlimited."""
        if limit is None:
            limit = self.room_limit
        return limit >= 0 and self.room_store.count_links() >= limit

    def bridge_room(self, channel: RemoteChannel, room_id: str) -> ChannelLink:
        """
        Plumb room_id into channel.

        The room keeps its own name, topic and avatar: a plumbed link never
        lets the bridge overwrite them.
        """
        if not channel.guild_id:
            raise ProvisioningError(f"Channel {channel.id} is not a guild channel")
        if any(link.channel_id == channel.id for link in self.room_store.get_links_by_matrix_room(room_id)):
            raise ProvisioningError(f"Room {room_id} is already bridged to channel {channel.id}")
        if self.room_count_limit_reached():
            raise ProvisioningError("Room limit reached, no more rooms can be bridged")

        link = ChannelLink(
            remote_room_id=f"discord_{channel.guild_id}_{channel.id}_bridged",
            guild_id=channel.guild_id,
            channel_id=channel.id,
            attributes=LinkAttributes(channel_type="text"),
            provisioning=Provisioning.MANUAL,
        )
        return self.room_store.link_rooms(room_id, link)

    async def unbridge_channel(self, channel: RemoteChannel, room_id: Optional[str] = None) -> None:
        """Unbridge one room, or every room when room_id is None, from a plumbed channel."""
        links = self.room_store.get_links_by_channel(channel.id, plumbed=True)
        if not links:
            raise ProvisioningError("Channel is not bridged")

        if room_id is not None:
            if all(link.matrix_room_id != room_id for link in links):
                raise ProvisioningError(f"Room {room_id} is not bridged to channel {channel.id}")
            rooms = [room_id]
        else:
            rooms = [link.matrix_room_id for link in links]

        results = await asyncio.gather(
            *(self.channel_sync.on_unbridge(channel, room) for room in rooms),
            return_exceptions=True
        )
        for room, result in zip(rooms, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to cleanly unbridge {channel.id} from {room}: {result}")

        if room_id is None:
            for remote_room_id in {link.remote_room_id for link in links if link.remote_room_id}:
                self.room_store.remove_links_by_remote_room(remote_room_id)
