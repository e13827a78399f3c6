"""
Realtime fan-out of campaign events to WebSocket connections.

One hub per process, created at startup and passed to whatever publishes.
``publish`` is safe to call from request worker threads and from the event
loop: every connection owns a queue on its own loop, and delivery only
schedules a put on that loop. A connection that went away is skipped, never
surfaced to the publisher.
"""
import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from .logging_config import realtime_logger
from .workflow.states import PortalType


@dataclass
class CampaignEvent:
    tenant_id: int
    campaign_id: int
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "campaign_event",
            "tenantId": self.tenant_id,
            "campaignId": self.campaign_id,
            "eventType": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


@dataclass(eq=False)
class Connection:
    """A live client: who it is, its tenant, and the campaigns it follows."""
    user: Any  # AuthUser
    tenant_id: int
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    subscriptions: Set[int] = field(default_factory=set)
    id: str = field(default_factory=lambda: f"ws_{uuid.uuid4().hex[:8]}")

    def wants(self, event: CampaignEvent) -> bool:
        if event.tenant_id != self.tenant_id:
            return False
        # CS sees every campaign of its tenant without subscribing
        return self.user.portal_type == PortalType.CS or event.campaign_id in self.subscriptions

    def deliver(self, message: Dict[str, Any]):
        if self.loop.is_closed():
            raise RuntimeError("connection loop closed")
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)


class RealtimeHub:
    """Registry of live connections and the broadcast entry point."""

    def __init__(self):
        self._connections: Set[Connection] = set()
        self._lock = threading.Lock()

    def register(self, user, tenant_id: int, loop: Optional[asyncio.AbstractEventLoop] = None) -> Connection:
        connection = Connection(
            user=user,
            tenant_id=tenant_id,
            loop=loop or asyncio.get_running_loop(),
            queue=asyncio.Queue(),
        )
        with self._lock:
            self._connections.add(connection)
        realtime_logger.info(
            "Client connected",
            connection_id=connection.id,
            tenant_id=tenant_id,
            portal_type=user.portal_type.value,
        )
        return connection

    def unregister(self, connection: Connection):
        with self._lock:
            self._connections.discard(connection)
        realtime_logger.info("Client disconnected", connection_id=connection.id)

    def subscribe(self, connection: Connection, campaign_id: int):
        with self._lock:
            connection.subscriptions.add(campaign_id)

    def unsubscribe(self, connection: Connection, campaign_id: int):
        with self._lock:
            connection.subscriptions.discard(campaign_id)

    def publish(self, event: CampaignEvent) -> int:
        """Fan ``event`` out to entitled connections. Returns how many got it."""
        with self._lock:
            targets: List[Connection] = [c for c in self._connections if c.wants(event)]

        message = event.to_message()
        delivered = 0
        for connection in targets:
            try:
                connection.deliver(message)
                delivered += 1
            except Exception as e:
                realtime_logger.warning(
                    "Dropped event for connection",
                    connection_id=connection.id,
                    event_type=event.event_type,
                    error_message=str(e),
                )
        return delivered

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)
