"""
Matrix events as delivered by the homeserver.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class MatrixEvent(BaseModel):
    """A single Matrix event from an application service transaction."""
    event_id: str = ""
    type: str
    room_id: str
    sender: Optional[str] = None
    state_key: Optional[str] = None
    origin_server_ts: int = 0
    content: Dict[str, Any] = Field(default_factory=dict)
