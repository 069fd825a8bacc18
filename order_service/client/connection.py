"""
Order Service — Realtime connection manager (client side)

Owns at most one WebSocket to ``/ws`` and feeds every frame it receives into
an OrdersCache. ``status`` follows:

  disconnected → connecting → connected → disconnected | error

Calling ``connect`` while connected drops the old socket first.
"""
import asyncio
import json
import logging
from enum import Enum

import httpx
from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosedError, WebSocketException

from order_service.client.reconcile import OrdersCache

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class RealtimeConnection:
    def __init__(self, url: str, cache: OrdersCache, connector=None):
        self.url = url
        self.cache = cache
        self.status = ConnectionStatus.DISCONNECTED
        self.error: str | None = None
        self._connector = connector or ws_connect
        self._socket = None
        self._reader: asyncio.Task | None = None

    @property
    def socket(self):
        return self._socket

    def _url_with_token(self, token: str) -> str:
        return str(httpx.URL(self.url).copy_merge_params({"token": token}))

    async def connect(self, token: str) -> bool:
        """Open the socket and start reading. Returns False (and sets ``error``) on failure."""
        await self._close_current()
        self.status = ConnectionStatus.CONNECTING
        self.error = None
        try:
            socket = await self._connector(self._url_with_token(token))
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self.status = ConnectionStatus.ERROR
            self.error = str(exc) or exc.__class__.__name__
            logger.warning("Realtime connect to %s failed: %s", self.url, self.error)
            return False

        self._socket = socket
        self.status = ConnectionStatus.CONNECTED
        self._reader = asyncio.create_task(self._read(socket))
        logger.info("Realtime connected to %s", self.url)
        return True

    async def disconnect(self) -> None:
        await self._close_current()
        self.status = ConnectionStatus.DISCONNECTED
        self.error = None

    async def _close_current(self) -> None:
        socket, reader = self._socket, self._reader
        self._socket = self._reader = None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if socket is not None:
            await socket.close()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
            self.cache.apply(frame["event"], frame["data"])
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.warning("Dropping malformed realtime frame: %s", exc)

    async def _read(self, socket) -> None:
        try:
            async for raw in socket:
                self._dispatch(raw)
        except ConnectionClosedError as exc:
            if self._socket is socket:
                self.status = ConnectionStatus.ERROR
                self.error = str(exc)
                self._socket = None
            logger.warning("Realtime connection lost: %s", exc)
            return
        if self._socket is socket:
            self.status = ConnectionStatus.DISCONNECTED
            self._socket = None
