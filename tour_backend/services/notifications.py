"""
Notification bus.

Services emit domain events with ``emit`` (synchronous, never blocks, never
raises on delivery problems). A single consumer task applies the enabled switch
and hands each notification to every registered sink. Alerting sinks are added
with ``throttled=True`` and only see the first notification per kind and
subject within that kind's throttle window; the other sinks receive every
event. A sink failure is logged and does not reach the emitter or the other
sinks, so tour state transitions never depend on delivery.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from tour_backend.models import Notification, NotificationKind
from tour_backend.models.notifications import THROTTLE_MINUTES

logger = logging.getLogger(__name__)

Sink = Callable[[Notification], Awaitable[None]]

SUBJECT_FIELDS = ("instance_id", "robot_name")


def throttle_key(notification: Notification) -> Tuple[NotificationKind, Optional[str]]:
    for field in SUBJECT_FIELDS:
        subject = notification.payload.get(field)
        if subject is not None:
            return notification.kind, str(subject)
    return notification.kind, None


class NotificationBus:
    def __init__(
        self,
        enabled: bool = True,
        throttle_minutes: Optional[Dict[NotificationKind, float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.enabled = enabled
        self.throttle_minutes = dict(THROTTLE_MINUTES if throttle_minutes is None else throttle_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._queue: "asyncio.Queue[Optional[Notification]]" = asyncio.Queue()
        self._sinks: List[Tuple[str, Sink, bool]] = []
        self._last_alerted: Dict[Tuple[NotificationKind, Optional[str]], datetime] = {}
        self._consumer: Optional[asyncio.Task] = None

    def add_sink(self, name: str, sink: Sink, throttled: bool = False):
        self._sinks.append((name, sink, throttled))

    def emit(self, kind: Union[NotificationKind, str], payload: Optional[Dict[str, Any]] = None) -> Notification:
        notification = Notification(kind=NotificationKind(kind), payload=payload or {})
        self._queue.put_nowait(notification)
        return notification

    def start(self):
        if self._consumer is None:
            self._consumer = asyncio.ensure_future(self._run())

    async def stop(self):
        if self._consumer is None:
            return
        self._queue.put_nowait(None)
        await self._consumer
        self._consumer = None

    async def drain(self):
        """Wait until everything emitted so far has been delivered (or dropped)."""
        await self._queue.join()

    async def _run(self):
        while True:
            notification = await self._queue.get()
            try:
                if notification is None:
                    return
                await self.deliver(notification)
            finally:
                self._queue.task_done()

    def _throttled(self, notification: Notification) -> bool:
        """Check the alert window for this kind and subject, opening a new one when it has elapsed."""
        window = self.throttle_minutes.get(notification.kind, 0)
        if not window:
            return False
        key = throttle_key(notification)
        now = self._clock()
        last = self._last_alerted.get(key)
        if last is not None and now - last < timedelta(minutes=window):
            return True
        self._last_alerted[key] = now
        return False

    async def deliver(self, notification: Notification) -> bool:
        if not self.enabled:
            logger.debug(f"Notification {notification.kind.value} not delivered: notifications disabled")
            return False
        throttled = self._throttled(notification)
        if throttled:
            logger.debug(f"Notification {notification.kind.value} throttled for alerting sinks")
        for name, sink, alerting in self._sinks:
            if alerting and throttled:
                continue
            try:
                await sink(notification)
            except Exception:
                logger.exception(f"Notification sink '{name}' failed for {notification.kind.value}")
        return True


async def log_sink(notification: Notification):
    logger.info(
        f"[{notification.priority.value}] {notification.kind.value}: {notification.payload}"
    )
