"""
Order Service — Realtime gateway (WebSocket)

  ws://<host>/ws?token=<jwt>      (or Authorization: Bearer <jwt>)

The credential is checked once, before the handshake is accepted; a bad or
missing token is refused with 1008. An accepted connection joins the broadcast
group of its restaurant and receives every event published there until it
disconnects. Push only: anything the client sends is ignored.
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from jose import JWTError

from order_service.core.security import Principal, principal_from_token
from order_service.realtime.hub import CLOSE, BroadcastHub, Connection

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


def _extract_token(websocket: WebSocket) -> str | None:
    auth_header = websocket.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return websocket.query_params.get("token")


def _authenticate(websocket: WebSocket) -> Principal | None:
    token = _extract_token(websocket)
    if not token:
        return None
    try:
        return principal_from_token(token)
    except JWTError as exc:
        logger.info("Rejected realtime connection: %s", exc)
        return None


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _send_loop(websocket: WebSocket, connection: Connection) -> None:
    while True:
        message = await connection.next_message()
        if message is CLOSE:
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Client too slow")
            return
        await websocket.send_json(message)


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    principal = _authenticate(websocket)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: BroadcastHub = websocket.app.state.hub
    connection = Connection(principal)
    # Join before accepting so no event published after the handshake is missed
    hub.join(connection)
    sender = receiver = None
    try:
        await websocket.accept()
        logger.info("Realtime connection opened: user=%s restaurant=%s", principal.user_id, principal.restaurant_id)
        sender = asyncio.create_task(_send_loop(websocket, connection))
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Realtime connection for user %s failed: %s", principal.user_id, exc)
    finally:
        for task in (sender, receiver):
            if task is not None:
                task.cancel()
        hub.leave(connection)
        logger.info("Realtime connection closed: user=%s restaurant=%s", principal.user_id, principal.restaurant_id)
