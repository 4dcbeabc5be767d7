"""
Admin API endpoints for inspecting and repairing links.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from typing import Optional
import logging
import secrets

from pydantic import BaseModel

from ..config import get_config
from ..models.remote import RemoteChannel
from ..services.bridge import Bridge
from ..services.discord import RemotePlatformError
from ..services.provisioner import ProvisioningError
from .appservice import get_bridge

logger = logging.getLogger(__name__)

admin_router = APIRouter()
security = HTTPBasic()


class BridgeRequest(BaseModel):
    room_id: str


def verify_admin_credentials(credentials: HTTPBasicCredentials) -> bool:
    """Verify admin credentials."""
    config = get_config()

    if not config.admin.enabled:
        return False

    if not config.admin.username or not config.admin.password:
        return False

    return (
        secrets.compare_digest(credentials.username.encode(), config.admin.username.encode()) and
        secrets.compare_digest(credentials.password.encode(), config.admin.password.encode())
    )


def require_admin(credentials: HTTPBasicCredentials = Depends(security)) -> None:
    if not verify_admin_credentials(credentials):
        raise HTTPException(status_code=401, detail="Invalid credentials")


async def resolve_channel(bridge: Bridge, channel_id: str) -> RemoteChannel:
    try:
        channel = await bridge.remote.get_channel(channel_id)
    except RemotePlatformError as e:
        logger.error(f"Failed to fetch channel {channel_id}: {e}")
        raise HTTPException(status_code=502, detail="Discord is unavailable")
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


@admin_router.get("/links")
async def list_links(
    guild_id: Optional[str] = None,
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """List room links, optionally for one guild."""
    if guild_id:
        links = bridge.room_store.get_links_by_guild(guild_id)
    else:
        links = bridge.room_store.get_all_links()
    return {
        "links": [
            {**link.model_dump(mode="json"), "plumbed": link.plumbed}
            for link in links
        ]
    }


@admin_router.get("/links/count")
async def count_links(
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """Number of bridged rooms and whether the room limit is reached."""
    return {
        "count": bridge.room_store.count_links(),
        "limit": bridge.config.limits.room_count,
        "limit_reached": bridge.provisioner.room_count_limit_reached(),
    }


@admin_router.post("/channels/{channel_id}/ensure")
async def ensure_channel(
    channel_id: str,
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """Force-push name and topic of a channel to all of its rooms."""
    channel = await resolve_channel(bridge, channel_id)
    if not await bridge.ensure_channel_state(channel):
        raise HTTPException(status_code=500, detail="Failed to update channel state")
    return {"status": "success", "channel_id": channel_id}


@admin_router.get("/channels/{channel_id}/alias")
async def channel_alias(
    channel_id: str,
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """Alias Matrix users should use to join a channel."""
    channel = await resolve_channel(bridge, channel_id)
    alias = await bridge.channel_sync.get_alias_from_channel(channel)
    if alias is None:
        raise HTTPException(status_code=404, detail="Channel has no alias")
    return {"channel_id": channel_id, "alias": alias}


@admin_router.post("/channels/{channel_id}/bridge")
async def bridge_channel(
    channel_id: str,
    request: BridgeRequest,
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """Plumb an existing Matrix room into a channel."""
    channel = await resolve_channel(bridge, channel_id)
    try:
        link = bridge.provisioner.bridge_room(channel, request.room_id)
    except ProvisioningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Bridged {request.room_id} to channel {channel_id}")
    return {"status": "success", "link_id": link.id, "remote_room_id": link.remote_room_id}


@admin_router.delete("/channels/{channel_id}")
async def unbridge_channel(
    channel_id: str,
    room_id: Optional[str] = None,
    _: None = Depends(require_admin),
    bridge: Bridge = Depends(get_bridge)
):
    """Unbridge one room, or every plumbed room, from a channel."""
    channel = await resolve_channel(bridge, channel_id)
    try:
        await bridge.provisioner.unbridge_channel(channel, room_id)
    except ProvisioningError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "success", "channel_id": channel_id}
