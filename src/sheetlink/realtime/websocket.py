"""WebSocket endpoints — live sheet changes and job progress.

Learn: Each connection is bound to exactly one channel by its URL:
- /ws/sheets/{sheet_id} → sheet_update messages from webhooks
- /ws/jobs/{job_id}     → job_status messages from the job queue

The subscription is held by an `async with` block, so however the
connection ends (client close, network drop, server shutdown) it is
removed from the broadcaster exactly once.

The read loop only answers pings — all real traffic is server → client,
queued on the subscription so it arrives in order.
"""

import json
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from sheetlink.api.deps import get_services
from sheetlink.events.types import (
    ERROR,
    JOB_STATUS,
    PING,
    PONG,
    SUBSCRIBED,
    job_channel,
)
from sheetlink.realtime.broadcaster import Subscription
from sheetlink.services.container import Services

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws/sheets/{sheet_id}")
async def sheet_websocket(
    websocket: WebSocket,
    sheet_id: str,
    services: Services = Depends(get_services),
):
    """Stream sheet_update messages for one sheet."""
    await websocket.accept()
    log = logger.bind(sheet_id=sheet_id)
    log.info("ws.sheet_connected")

    async with services.broadcaster.subscription(sheet_id, websocket) as sub:
        # Through the outbox, so the ack precedes any sheet_update
        sub.send({"type": SUBSCRIBED, "sheetId": sheet_id})
        await _client_loop(websocket, sub)

    log.info("ws.sheet_disconnected")


@router.websocket("/ws/jobs/{job_id}")
async def job_websocket(
    websocket: WebSocket,
    job_id: str,
    services: Services = Depends(get_services),
):
    """Stream job_status messages for one job, starting with its current state."""
    await websocket.accept()

    # Subscribe before reading the job so no transition slips in between
    async with services.broadcaster.subscription(job_channel(job_id), websocket) as sub:
        job = await services.jobs.get_status(job_id)
        if job is None:
            await websocket.send_json({"type": ERROR, "error": "Job not found"})
            await websocket.close(code=4404)
            return
        sub.send({"type": JOB_STATUS, "jobId": job_id, "job": job.to_dict()})
        await _client_loop(websocket, sub)


async def _client_loop(websocket: WebSocket, sub: Subscription) -> None:
    """Read until the client goes away, answering pings through the outbox."""
    try:
        while websocket.application_state == WebSocketState.CONNECTED:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == PING:
                sub.send({
                    "type": PONG,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
    except WebSocketDisconnect:
        pass
