"""
Matrix client-server API implementation of the room service.
"""

from typing import Dict, Any, Optional
from urllib.parse import quote
import asyncio
import logging
import requests

from .room_service import RoomService, RoomServiceError

logger = logging.getLogger(__name__)

CLIENT_API_PREFIX = "/_matrix/client/v3"
MEDIA_API_PREFIX = "/_matrix/media/v3"


class MatrixRoomService(RoomService):
    """
    Talks to the homeserver as an application service.

    Requests are blocking and run in a worker thread so the event loop keeps
    serving other reconciliations. Ghosts are impersonated with the user_id
    query parameter.
    """

    def __init__(self, homeserver_url: str, as_token: str, timeout: int = 30):
        self.homeserver_url = homeserver_url.rstrip("/")
        self.as_token = as_token
        self.timeout = timeout

    def _request(self, method: str, path: str, user_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None, data: Optional[bytes] = None,
                 headers: Optional[Dict[str, str]] = None, prefix: str = CLIENT_API_PREFIX) -> Dict[str, Any]:
        url = f"{self.homeserver_url}{prefix}{path}"
        query = dict(params or {})
        if user_id:
            query["user_id"] = user_id
        request_headers = {"Authorization": f"Bearer {self.as_token}"}
        if headers:
            request_headers.update(headers)

        try:
            logger.debug(f"Matrix {method} {path} as {user_id or 'bridge bot'}")
            response = requests.request(
                method,
                url,
                params=query,
                json=json,
                data=data,
                headers=request_headers,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"HTTP error calling Matrix {method} {path}: {e}")
            raise RoomServiceError(str(e)) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise RoomServiceError(
                body.get("error") or response.text or f"HTTP {response.status_code}",
                errcode=body.get("errcode"),
                status=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            return {}

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def send_state_event(self, room_id: str, event_type: str, state_key: str, content: Dict[str, Any], user_id: Optional[str] = None) -> None:
        path = f"/rooms/{quote(room_id, safe='')}/state/{quote(event_type, safe='')}/{quote(state_key, safe='')}"
        await self._call("PUT", path, user_id=user_id, json=content)

    async def get_state_event(self, room_id: str, event_type: str, state_key: str = "") -> Dict[str, Any]:
        path = f"/rooms/{quote(room_id, safe='')}/state/{quote(event_type, safe='')}/{quote(state_key, safe='')}"
        return await self._call("GET", path)

    async def delete_alias(self, alias: str) -> None:
        await self._call("DELETE", f"/directory/room/{quote(alias, safe='')}")

    async def set_directory_visibility(self, room_id: str, visibility: str) -> None:
        await self._call("PUT", f"/directory/list/room/{quote(room_id, safe='')}", json={"visibility": visibility})

    async def invite(self, room_id: str, target_user_id: str) -> None:
        await self._call("POST", f"/rooms/{quote(room_id, safe='')}/invite", json={"user_id": target_user_id})

    async def join(self, room_id: str, user_id: Optional[str] = None) -> None:
        await self._call("POST", f"/join/{quote(room_id, safe='')}", user_id=user_id, json={})

    async def leave(self, room_id: str, user_id: Optional[str] = None) -> None:
        await self._call("POST", f"/rooms/{quote(room_id, safe='')}/leave", user_id=user_id, json={})

    async def set_display_name(self, user_id: str, display_name: str) -> None:
        await self._call("PUT", f"/profile/{quote(user_id, safe='')}/displayname", user_id=user_id,
                         json={"displayname": display_name})

    async def set_avatar_url(self, user_id: str, mxc_url: Optional[str]) -> None:
        await self._call("PUT", f"/profile/{quote(user_id, safe='')}/avatar_url", user_id=user_id,
                         json={"avatar_url": mxc_url or ""})

    async def upload_content(self, data: bytes, content_type: str, filename: Optional[str] = None, user_id: Optional[str] = None) -> str:
        params = {"filename": filename} if filename else None
        result = await self._call("POST", "/upload", user_id=user_id, params=params, data=data,
                                  headers={"Content-Type": content_type}, prefix=MEDIA_API_PREFIX)
        content_uri = result.get("content_uri")
        if not content_uri:
            raise RoomServiceError("Upload response did not contain a content_uri")
        logger.info(f"Uploaded {len(data)} bytes as {content_uri}")
        return content_uri
