"""
Transport link to the robot's rosbridge endpoint.

One instance per process. The link owns the WebSocket client connection, the
topic -> handler table and the reconnect timer; it knows nothing about what
the topics carry (see ``RobotTelemetry`` and ``RobotController``).
"""

import asyncio
import inspect
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from tornado.httpclient import HTTPClientError
from tornado.ioloop import IOLoop, PeriodicCallback
from tornado.iostream import StreamClosedError
from tornado.websocket import WebSocketClosedError, WebSocketError, websocket_connect

from tour_backend.errors import InvalidInput, NotConnected
from tour_backend.models import (
    CallServiceFrame,
    InboundPublish,
    InboundServiceResponse,
    InboundSetLevel,
    InboundStatus,
    NotificationKind,
    PublishFrame,
    SubscribeFrame,
    UnsubscribeFrame,
    decode_inbound,
)
from tour_backend.models.messages import OutboundFrame

logger = logging.getLogger(__name__)

TOPICS_SERVICE = "/rosapi/topics"
CONNECT_TIMEOUT = 10.0

Handler = Callable[[Dict[str, Any]], Any]
CONNECT_ERRORS = (OSError, HTTPClientError, WebSocketError, StreamClosedError, asyncio.TimeoutError)


class TransportLink:
    def __init__(
        self,
        url: str,
        notifier,
        reconnect_interval: float = 30.0,
        connector: Optional[Callable[..., Any]] = None,
    ):
        self.url = url
        self.notifier = notifier
        self.reconnect_interval = reconnect_interval
        self._connector = connector or websocket_connect
        self._connection = None
        self._connecting = False
        self._lost_connection = False
        self.connected = False
        self.last_ping: Optional[datetime] = None
        self.topics: List[str] = []
        self.subscribers: Dict[str, Handler] = {}
        self._standing: Dict[str, Tuple[Handler, Optional[str]]] = {}
        self._connect_listeners: List[Callable[[], Any]] = []
        self._topic_listeners: List[Callable[[List[str]], Any]] = []
        self._reconnect_timer: Optional[PeriodicCallback] = None
        self._request_ids = itertools.count(1)

    # -- lifecycle ---------------------------------------------------------

    def start(self):
        """Connect now and keep retrying on a fixed interval while disconnected."""
        if self._reconnect_timer is None:
            self._reconnect_timer = PeriodicCallback(self._reconnect_tick, self.reconnect_interval * 1000)
            self._reconnect_timer.start()
        IOLoop.current().add_callback(self._reconnect_tick)

    async def _reconnect_tick(self):
        if self.connected or self._connecting:
            return
        logger.info(f"Attempting to connect to robot bridge at {self.url}")
        await self.connect()

    async def connect(self) -> bool:
        if self.connected or self._connecting:
            return self.connected
        self._connecting = True
        try:
            connection = await self._connector(
                self.url,
                connect_timeout=CONNECT_TIMEOUT,
                on_message_callback=self._on_raw_message,
            )
        except CONNECT_ERRORS as exc:
            logger.warning(f"Could not reach robot bridge at {self.url}: {exc}")
            return False
        finally:
            self._connecting = False

        self._connection = connection
        self.connected = True
        self.last_ping = None
        logger.info(f"Connected to robot bridge at {self.url}")
        if self._lost_connection:
            self._lost_connection = False
            self.notifier.emit(NotificationKind.ROBOT_RECONNECTED, {"url": self.url})

        self.refresh_topics()
        for topic, (handler, message_type) in self._standing.items():
            self.subscribe(topic, handler, message_type)
        for listener in self._connect_listeners:
            self._invoke(listener)
        return True

    def shutdown(self):
        if self._reconnect_timer is not None:
            self._reconnect_timer.stop()
            self._reconnect_timer = None
        connection = self._connection
        # Deliberate close: flip state first so the close callback is not reported as a drop.
        self.connected = False
        self._connection = None
        self.subscribers.clear()
        if connection is not None:
            connection.close()
            logger.info("Disconnected from robot bridge")

    def _handle_disconnect(self, reason: str):
        was_connected = self.connected
        self.connected = False
        self._connection = None
        self.subscribers.clear()
        if not was_connected:
            return
        self._lost_connection = True
        logger.warning(f"Robot bridge connection lost: {reason}")
        self.notifier.emit(NotificationKind.ROBOT_DISCONNECTED, {"url": self.url, "reason": reason})

    # -- listeners -----------------------------------------------------------

    def on_connected(self, listener: Callable[[], Any]):
        self._connect_listeners.append(listener)

    def on_topics(self, listener: Callable[[List[str]], Any]):
        self._topic_listeners.append(listener)

    def add_standing_subscription(self, topic: str, handler: Handler, message_type: Optional[str] = None):
        """Subscription re-issued on every (re)connect."""
        self._standing[topic] = (handler, message_type)
        if self.connected:
            self.subscribe(topic, handler, message_type)

    # -- outbound ------------------------------------------------------------

    def _send(self, frame: OutboundFrame):
        if not self.connected or self._connection is None:
            raise NotConnected()
        try:
            future = self._connection.write_message(frame.model_dump_json(exclude_none=True))
        except WebSocketClosedError:
            self._handle_disconnect("write on closed connection")
            raise NotConnected()
        if future is not None:
            future.add_done_callback(self._on_write_done)

    def _on_write_done(self, future):
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        logger.warning(f"Bridge write failed: {exc}")
        if isinstance(exc, (WebSocketClosedError, StreamClosedError)):
            self._handle_disconnect("write failed")

    def publish(self, topic: str, payload: Union[BaseModel, Dict[str, Any]]):
        msg = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
        self._send(PublishFrame(topic=topic, msg=msg))
        logger.debug(f"Published to {topic}: {msg}")

    def subscribe(self, topic: str, handler: Handler, message_type: Optional[str] = None):
        self._send(SubscribeFrame(topic=topic, type=message_type))
        self.subscribers[topic] = handler

    def unsubscribe(self, topic: str):
        handler = self.subscribers.pop(topic, None)
        if handler is None or not self.connected:
            return
        self._send(UnsubscribeFrame(topic=topic))
        logger.info(f"Unsubscribed from {topic}")

    def refresh_topics(self):
        if not self.connected:
            return
        self._send(CallServiceFrame(service=TOPICS_SERVICE, id=f"topics-{next(self._request_ids)}"))

    # -- inbound -------------------------------------------------------------

    def _on_raw_message(self, raw: Optional[Union[str, bytes]]):
        if raw is None:
            self._handle_disconnect("connection closed")
            return
        try:
            frame = decode_inbound(raw)
        except InvalidInput as exc:
            logger.warning(f"Rejected bridge frame: {exc.message}")
            return
        self._dispatch(frame)

    def _dispatch(self, frame):
        if isinstance(frame, InboundPublish):
            self.last_ping = datetime.now(timezone.utc)
            handler = self.subscribers.get(frame.topic)
            if handler is not None:
                self._invoke(handler, frame.msg)
        elif isinstance(frame, InboundServiceResponse):
            if frame.service == TOPICS_SERVICE:
                self.topics = list((frame.values or {}).get("topics") or [])
                logger.info(f"{len(self.topics)} bridge topics available")
                for listener in self._topic_listeners:
                    self._invoke(listener, self.topics)
            else:
                logger.debug(f"Unhandled service response from {frame.service}")
        elif isinstance(frame, InboundSetLevel):
            logger.debug("Bridge log level applied")
        elif isinstance(frame, InboundStatus):
            logger.info(f"Bridge status [{frame.level}]: {frame.msg}")
        else:
            raise TypeError(f"Unhandled bridge frame type {type(frame).__name__}")

    def _invoke(self, callback: Callable[..., Any], *args):
        try:
            result = callback(*args)
        except Exception:
            logger.exception(f"Bridge callback {getattr(callback, '__name__', callback)} failed")
            return
        if inspect.isawaitable(result):
            asyncio.ensure_future(result).add_done_callback(self._log_callback_failure)

    @staticmethod
    def _log_callback_failure(task: "asyncio.Future"):
        if not task.cancelled() and task.exception() is not None:
            logger.error("Bridge callback failed", exc_info=task.exception())

    # -- introspection -------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "rosbridge_url": self.url,
            "last_ping": self.last_ping.isoformat() if self.last_ping else None,
            "topics_count": len(self.topics),
            "active_subscribers": len(self.subscribers),
        }
