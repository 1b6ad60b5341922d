"""WebSocket transport for event-bus rooms."""

import asyncio
import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.dependencies.auth import user_from_token
from app.errors import AppError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

JOINABLE_PREFIXES = ("product:",)


async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        message = await queue.get()
        await websocket.send_text(json.dumps(message, default=str))


@router.websocket("/ws")
async def events(websocket: WebSocket, token: str = Query(...)):
    """Stream room events. Clients start in ``user:<id>`` and may join product rooms."""
    ctx = websocket.app.state.ctx
    try:
        async with ctx.session_factory() as db:
            user = await user_from_token(db, ctx, token)
    except AppError as e:
        logger.info("Rejected websocket connection: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    sub = ctx.events.subscribe(f"user:{user.id}")
    sender = asyncio.create_task(_pump(websocket, sub.queue))
    try:
        while True:
            command = await websocket.receive_json()
            action = command.get("action") if isinstance(command, dict) else None
            room = command.get("room") if isinstance(command, dict) else None
            if action not in ("join", "leave") or not isinstance(room, str) or not room.startswith(JOINABLE_PREFIXES):
                await websocket.send_json({"event": "error", "data": {"message": "Unsupported command"}})
                continue
            if action == "join":
                ctx.events.join(sub, room)
            else:
                ctx.events.leave(sub, room)
            await websocket.send_json({"event": action, "data": {"room": room}})
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        ctx.events.unsubscribe(sub)
        logger.debug("WebSocket closed for user %s", user.id)
