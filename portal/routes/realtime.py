"""
Campaign events over WebSocket.

Clients authenticate with the session token (bearer header, session cookie
or ``?token=``), then subscribe to the campaigns they may see. CS
connections receive every event of their tenant without subscribing.
"""
import asyncio
import contextlib
import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..auth import can_access_campaign, get_session_token, is_principal_active, verify_session
from ..database import get_db
from ..errors import InvalidOrExpiredToken, PortalError
from ..logging_config import realtime_logger
from ..realtime import Connection, RealtimeHub
from ..repository import CampaignRepository
from ..tenancy import lookup_tenant, request_host

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHORIZED = 4001
CLOSE_TENANT_MISMATCH = 4003


def _parse_message(frame: dict):
    """Return ``(type, campaign_id)`` from a text or binary frame, or raise ValueError."""
    raw = frame.get("text")
    if raw is None:
        raw = (frame.get("bytes") or b"").decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("message must be an object")
    message_type = data.get("type")
    campaign_id = data.get("campaignId")
    if message_type not in ("subscribe", "unsubscribe"):
        raise ValueError("unknown message type")
    if not isinstance(campaign_id, int) or isinstance(campaign_id, bool):
        raise ValueError("campaignId must be an integer")
    return message_type, campaign_id


async def _pump(websocket: WebSocket, connection: Connection):
    """Single writer: everything sent to the client goes through the queue."""
    while True:
        message = await connection.queue.get()
        await websocket.send_json(message)


@router.websocket("/ws")
async def campaign_events(websocket: WebSocket, db: Session = Depends(get_db)):
    hub: RealtimeHub = websocket.app.state.hub
    repo = CampaignRepository(db)
    await websocket.accept()

    token = get_session_token(websocket) or websocket.query_params.get("token")
    try:
        user = verify_session(token)
        active = await run_in_threadpool(is_principal_active, repo, user)
        if not active:
            raise InvalidOrExpiredToken("inactive")
    except InvalidOrExpiredToken as e:
        realtime_logger.warning("WebSocket rejected", reason=e.reason)
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="Unauthorized")
        return

    try:
        tenant = await run_in_threadpool(lookup_tenant, db, request_host(websocket.headers))
    except PortalError:
        tenant = None
    if tenant is None or tenant.id != user.tenant_id:
        realtime_logger.warning("WebSocket tenant mismatch", tenant_id=user.tenant_id)
        await websocket.close(code=CLOSE_TENANT_MISMATCH, reason="Tenant mismatch")
        return

    connection = hub.register(user, tenant.id)
    connection.queue.put_nowait({"type": "connected", "connectionId": connection.id})
    writer = asyncio.create_task(_pump(websocket, connection))
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            try:
                message_type, campaign_id = _parse_message(frame)
            except ValueError:
                connection.queue.put_nowait({"type": "error", "message": "Invalid message"})
                continue

            if message_type == "unsubscribe":
                hub.unsubscribe(connection, campaign_id)
                connection.queue.put_nowait({"type": "unsubscribed", "campaignId": campaign_id})
                continue

            campaign = await run_in_threadpool(repo.get_campaign, tenant.id, campaign_id)
            allowed = await run_in_threadpool(can_access_campaign, repo, user, campaign)
            if not allowed:
                connection.queue.put_nowait({"type": "error", "message": "Not authorized"})
                continue
            hub.subscribe(connection, campaign_id)
            connection.queue.put_nowait({"type": "subscribed", "campaignId": campaign_id})
    except WebSocketDisconnect:
        pass
    finally:
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await writer
        hub.unregister(connection)
