"""
Room link model: one Matrix room bridged to one Discord channel.
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime, UniqueConstraint
from datetime import datetime

from .base import Base


class RoomLinkRow(Base):
    """Persistent room <-> channel association plus last-synced channel attributes."""

    __tablename__ = "room_links"

    id = Column(String, primary_key=True)
    matrix_room_id = Column(String, nullable=True, index=True)
    remote_room_id = Column(String, nullable=True, index=True)  # discord_<guild>_<channel>[_bridged]
    guild_id = Column(String, nullable=True, index=True)
    channel_id = Column(String, nullable=True, index=True)

    # Last values pushed to the Matrix room, not the current Discord values
    name = Column(Text, nullable=True)
    topic = Column(Text, nullable=True)
    icon_url = Column(Text, nullable=True)
    icon_url_mxc = Column(Text, nullable=True)
    channel_type = Column(String, nullable=True)

    update_name = Column(Boolean, default=False, nullable=False)
    update_topic = Column(Boolean, default=False, nullable=False)
    update_icon = Column(Boolean, default=False, nullable=False)
    plumbed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('matrix_room_id', 'channel_id', name='uq_room_links_room_channel'),
    )

    def __repr__(self):
        return f"<RoomLinkRow(id='{self.id}', matrix_room_id='{self.matrix_room_id}', channel_id='{self.channel_id}')>"
