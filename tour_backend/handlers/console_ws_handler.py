import json
from typing import Any, Dict, Optional

import tornado.websocket
from jose import JWTError
from jose.exceptions import ExpiredSignatureError
from pydantic import ValidationError

from tour_backend.handlers.base import extract_token
from tour_backend.models import ConsoleSubscribeMessage
from tour_backend.services.container import Services


class ConsoleWebSocketHandler(tornado.websocket.WebSocketHandler):
    """Live notification feed for the technician console."""

    def initialize(self, services: Services):
        self.services = services
        self.jwt_payload: Optional[Dict[str, Any]] = None

    def check_origin(self, origin: str) -> bool:
        # Allow cross-origin WebSocket connections (lock down in production).
        return True

    def open(self):
        if not self._authenticate():
            return
        self.services.console.add(self)

    def on_message(self, message: str):
        try:
            payload = json.loads(message)
        except json.JSONDecodeError:
            return
        if not isinstance(payload, dict) or payload.get("type") != "subscribe":
            return
        try:
            subscribe = ConsoleSubscribeMessage.model_validate(payload)
        except ValidationError:
            return
        kinds = set(subscribe.kinds) if subscribe.kinds is not None else None
        self.services.console.set_filter(self, kinds)

    def on_close(self):
        self.services.console.discard(self)

    def _authenticate(self) -> bool:
        token = extract_token(self)
        if not token:
            self.close(code=4001, reason="missing token")
            return False
        try:
            self.jwt_payload = self.services.jwt_service.decode_token(token)
            return True
        except ExpiredSignatureError:
            self.close(code=4001, reason="token expired")
            return False
        except JWTError:
            self.close(code=4003, reason="invalid token")
            return False
        except RuntimeError as exc:
            self.close(code=4003, reason=str(exc))
            return False
