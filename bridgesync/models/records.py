"""
Detached link records handed out by the stores.

The stores never return ORM rows; reconcilers mutate these records and hand
them back for an upsert.
"""

import uuid
from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, Field


class Provisioning(str, Enum):
    """How a link came to exist."""
    AUTO = "auto"  # created by alias resolution
    MANUAL = "manual"  # plumbed by an operator, exempt from destructive deletion policies


class LinkAttributes(BaseModel):
    """Last channel attributes successfully pushed to the Matrix room."""
    name: Optional[str] = None
    topic: Optional[str] = None
    icon_url: Optional[str] = None
    icon_url_mxc: Optional[str] = None
    channel_type: Optional[str] = None


class LinkPolicy(BaseModel):
    """Which attributes the bridge may overwrite on the Matrix room."""
    update_name: bool = False
    update_topic: bool = False
    update_icon: bool = False


class ChannelLink(BaseModel):
    """A Matrix room bridged to a Discord channel."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    matrix_room_id: Optional[str] = None
    remote_room_id: Optional[str] = None
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None
    attributes: LinkAttributes = Field(default_factory=LinkAttributes)
    policy: LinkPolicy = Field(default_factory=LinkPolicy)
    provisioning: Provisioning = Provisioning.AUTO

    @property
    def plumbed(self) -> bool:
        return self.provisioning is Provisioning.MANUAL


class UserLink(BaseModel):
    """A Discord user and the Matrix ghost that mirrors it."""
    matrix_user_id: str
    remote_user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    avatar_url_mxc: Optional[str] = None
    guild_nicks: Dict[str, str] = Field(default_factory=dict)
