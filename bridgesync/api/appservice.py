"""
Matrix application service push API.

The homeserver pushes transactions to PUT /_matrix/app/v1/transactions/{txn_id}.
Only m.room.member updates of ghosts are of interest here: they are handed
to the member state debounce so guild nicknames survive global profile
changes.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from typing import Any, Dict, List, Optional
import asyncio
import logging
import secrets

from pydantic import ValidationError

from ..config import get_config
from ..models.matrix import MatrixEvent
from ..services.bridge import Bridge
from ..services.user_sync import MEMBER_STATE_NAMESPACE
from ..utils import TimedCache

logger = logging.getLogger(__name__)

# The homeserver retries a transaction until it is acknowledged
TRANSACTION_MEMORY_SECONDS = 3600.0

appservice_router = APIRouter()


def get_bridge(request: Request) -> Bridge:
    """Bridge instance of the running app - FastAPI dependency."""
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not initialized")
    return bridge


def get_transaction_cache(request: Request) -> TimedCache:
    cache = getattr(request.app.state, "transactions", None)
    if cache is None:
        cache = TimedCache(TRANSACTION_MEMORY_SECONDS)
        request.app.state.transactions = cache
    return cache


def verify_hs_token(request: Request, access_token: Optional[str] = None) -> None:
    """Check the homeserver token, from the query string or a Bearer header."""
    token = access_token
    authorization = request.headers.get("Authorization", "")
    if token is None and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]

    if token is None:
        raise HTTPException(status_code=401, detail={"errcode": "M_UNAUTHORIZED", "error": "Missing token"})
    expected = get_config().bridge.hs_token
    if not expected or not secrets.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail={"errcode": "M_FORBIDDEN", "error": "Bad token"})


def is_member_state_update(bridge: Bridge, event: Dict[str, Any]) -> bool:
    """
    Ghost membership events worth re-checking.

    Events carrying the bridge's own member namespace were written by the
    bridge and are skipped, otherwise every write would trigger another.
    """
    if event.get("type") != "m.room.member" or not bridge.is_ghost(event.get("state_key")):
        return False
    content = event.get("content") or {}
    return content.get("membership") == "join" and MEMBER_STATE_NAMESPACE not in content


async def dispatch_member_states(bridge: Bridge, events: List[MatrixEvent], delay_ms: int) -> None:
    """Handle the member events of one transaction side by side, so a later event can supersede an earlier one."""
    await asyncio.gather(*(bridge.on_member_state(event, delay_ms) for event in events))


@appservice_router.put("/transactions/{txn_id}")
async def push_transaction(
    txn_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_hs_token),
    bridge: Bridge = Depends(get_bridge),
    transactions: TimedCache = Depends(get_transaction_cache)
):
    """Accept a transaction of events from the homeserver."""
    if txn_id in transactions:
        logger.debug(f"Transaction {txn_id} already processed")
        return {}

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail={"errcode": "M_NOT_JSON", "error": "Invalid JSON"})

    events = body.get("events", []) if isinstance(body, dict) else []
    logger.debug(f"Received transaction {txn_id} with {len(events)} event(s)")

    member_events = []
    for raw_event in events:
        if not is_member_state_update(bridge, raw_event):
            continue
        try:
            event = MatrixEvent(**raw_event)
        except ValidationError as e:
            logger.warning(f"Skipping malformed event in transaction {txn_id}: {e}")
            continue
        member_events.append(event)

    if member_events:
        background_tasks.add_task(dispatch_member_states, bridge, member_events,
                                  bridge.config.limits.member_state_delay_ms)

    transactions.set(txn_id, True)
    return {}
