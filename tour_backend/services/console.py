import logging
from typing import Dict, Optional, Set

import tornado.websocket

from tour_backend.models import ConsoleNotificationMessage, Notification

logger = logging.getLogger(__name__)


class ConsoleBroadcaster:
    """Notification sink that forwards every delivered notification to the connected console sockets."""

    def __init__(self):
        self.clients: Dict[tornado.websocket.WebSocketHandler, Optional[Set[str]]] = {}

    def add(self, client: tornado.websocket.WebSocketHandler):
        self.clients[client] = None

    def discard(self, client: tornado.websocket.WebSocketHandler):
        self.clients.pop(client, None)

    def set_filter(self, client: tornado.websocket.WebSocketHandler, kinds: Optional[Set[str]]):
        if client in self.clients:
            self.clients[client] = kinds

    async def __call__(self, notification: Notification):
        message = ConsoleNotificationMessage(
            kind=notification.kind.value,
            priority=notification.priority.value,
            payload=notification.payload,
            timestamp=notification.created_at.isoformat(),
        ).model_dump_json()
        for client, kinds in list(self.clients.items()):
            if kinds is not None and notification.kind.value not in kinds:
                continue
            try:
                await client.write_message(message)
            except tornado.websocket.WebSocketClosedError:
                self.clients.pop(client, None)
