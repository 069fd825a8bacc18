"""
Order Service — In-process broadcast groups

One group per restaurant: restaurant_id → set of live connections. A
connection joins exactly one group when it is accepted and leaves it on
disconnect. ``publish`` is the single dispatch point for a group: it enqueues
the frame on every member's queue synchronously, so each member sees events in
publish order. Each connection drains its own bounded queue; a member that
falls QUEUE_MAX frames behind is marked overflowed and gets closed.

Fan-out across several processes is out of scope.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any

from prometheus_client import Counter, Gauge

from order_service.core.config import get_settings
from order_service.core.security import Principal

settings = get_settings()
logger = logging.getLogger(__name__)

realtime_connections = Gauge("realtime_connections", "Open realtime connections")
realtime_events_published = Counter(
    "realtime_events_published_total", "Events published to broadcast groups", ["event"]
)
realtime_overflows = Counter("realtime_queue_overflows_total", "Connections dropped for falling behind")

# Sentinel telling the sender loop to stop
CLOSE = None


class Connection:
    """A single accepted client and its outbound queue."""

    def __init__(self, principal: Principal, maxsize: int | None = None):
        self.principal = principal
        self.queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(
            maxsize=maxsize or settings.REALTIME_QUEUE_MAX
        )
        self.overflowed = False
        self._loop = asyncio.get_running_loop()

    @property
    def group(self) -> str:
        return self.principal.restaurant_id

    def enqueue(self, message: dict[str, Any]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._put(message)
        else:
            self._loop.call_soon_threadsafe(self._put, message)

    def _put(self, message: dict[str, Any] | None) -> None:
        if self.overflowed:
            return
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.overflowed = True
            realtime_overflows.inc()
            logger.warning(
                "Realtime queue full for user %s (restaurant %s), dropping connection",
                self.principal.user_id, self.group,
            )
            while not self.queue.empty():
                self.queue.get_nowait()
            self.queue.put_nowait(CLOSE)

    async def next_message(self) -> dict[str, Any] | None:
        return await self.queue.get()


class BroadcastHub:
    def __init__(self):
        self._groups: dict[str, set[Connection]] = defaultdict(set)

    def join(self, connection: Connection) -> None:
        self._groups[connection.group].add(connection)
        realtime_connections.inc()
        logger.debug(
            "Connection joined restaurant:%s (%d members)",
            connection.group, len(self._groups[connection.group]),
        )

    def leave(self, connection: Connection) -> None:
        members = self._groups.get(connection.group)
        if not members or connection not in members:
            return
        members.discard(connection)
        realtime_connections.dec()
        if not members:
            del self._groups[connection.group]

    def group_size(self, restaurant_id: str) -> int:
        return len(self._groups.get(restaurant_id, ()))

    def publish(self, restaurant_id: str, event: str, data: dict[str, Any]) -> int:
        """Send ``event`` to every member of the restaurant's group. Returns the member count."""
        members = list(self._groups.get(restaurant_id, ()))
        frame = {"event": event, "data": data}
        for connection in members:
            connection.enqueue(frame)
        realtime_events_published.labels(event=event).inc()
        logger.debug("Emitted %s to restaurant:%s (%d members)", event, restaurant_id, len(members))
        return len(members)
