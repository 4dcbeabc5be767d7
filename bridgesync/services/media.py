"""
Fetching remote images and re-hosting them on the homeserver.
"""

from typing import NamedTuple, Optional
import asyncio
import logging
import requests

from .room_service import RoomService

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 30


class DownloadedFile(NamedTuple):
    data: bytes
    content_type: str


class MediaDownloadError(Exception):
    """The remote image could not be fetched."""


def download_file(url: str, timeout: int = DOWNLOAD_TIMEOUT) -> DownloadedFile:
    """Download url, returning its bytes and content type."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"HTTP error downloading {url}: {e}")
        raise MediaDownloadError(f"Failed to download {url}: {e}") from e
    content_type = response.headers.get("Content-Type", "application/octet-stream")
    return DownloadedFile(response.content, content_type)


async def upload_content_from_url(room_service: RoomService, url: str, filename: Optional[str] = None,
                                  user_id: Optional[str] = None) -> str:
    """Download url and upload it to Matrix, returning the mxc:// handle."""
    downloaded = await asyncio.to_thread(download_file, url)
    logger.debug(f"Downloaded {len(downloaded.data)} bytes from {url}")
    return await room_service.upload_content(downloaded.data, downloaded.content_type, filename, user_id=user_id)
