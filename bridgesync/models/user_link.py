"""
User link models: Discord users and their Matrix ghosts.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from datetime import datetime

from .base import Base


class UserLinkRow(Base):
    """Persistent Matrix ghost <-> Discord user association with last-synced profile."""

    __tablename__ = "user_links"

    id = Column(Integer, primary_key=True, index=True)
    matrix_user_id = Column(String, nullable=False, index=True)
    remote_user_id = Column(String, nullable=False, index=True)
    display_name = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    avatar_url_mxc = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('matrix_user_id', 'remote_user_id', name='uq_user_links_pair'),
    )

    def __repr__(self):
        return f"<UserLinkRow(id={self.id}, matrix_user_id='{self.matrix_user_id}', remote_user_id='{self.remote_user_id}')>"


class GuildNickRow(Base):
    """Last nickname pushed for a user in the rooms of one guild."""

    __tablename__ = "user_guild_nicks"

    remote_user_id = Column(String, primary_key=True)
    guild_id = Column(String, primary_key=True)
    nick = Column(Text, nullable=True)

    def __repr__(self):
        return f"<GuildNickRow(remote_user_id='{self.remote_user_id}', guild_id='{self.guild_id}')>"
