import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar

import tornado.web
from jose import JWTError
from jose.exceptions import ExpiredSignatureError
from pydantic import BaseModel, ValidationError

from tour_backend.errors import InvalidInput, TourBackendError
from tour_backend.services.container import Services
from tour_backend.services.jwt_service import Principal

logger = logging.getLogger(__name__)

OPERATOR_ROLES = ("admin", "technician")

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_token(handler: tornado.web.RequestHandler) -> Optional[str]:
    auth_header = handler.request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return handler.get_argument("token", default=None)


class BaseHandler(tornado.web.RequestHandler):
    """JSON request handler that renders domain errors as ``{"success": false, "error": ...}``."""

    def initialize(self, services: Services):
        self.services = services
        self.principal: Optional[Principal] = None

    @property
    def coordinator(self):
        return self.services.coordinator

    def set_default_headers(self):
        self.set_header("Content-Type", "application/json")

    def write_json(self, payload: Any, status: int = 200):
        self.set_status(status)
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        self.finish(json.dumps(payload, default=str))

    def json_body(self) -> Dict[str, Any]:
        if not self.request.body:
            return {}
        try:
            body = json.loads(self.request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidInput("Request body must be valid JSON")
        if not isinstance(body, dict):
            raise InvalidInput("Request body must be a JSON object")
        return body

    def parse_body(self, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(self.json_body())
        except ValidationError as exc:
            raise InvalidInput(
                "Invalid request body",
                details=exc.errors(include_url=False, include_context=False),
            )

    def authenticate(self, *roles: str) -> Principal:
        token = extract_token(self)
        if not token:
            raise tornado.web.HTTPError(401, log_message="missing token")
        try:
            claims = self.services.jwt_service.decode_token(token)
        except ExpiredSignatureError:
            raise tornado.web.HTTPError(401, log_message="token expired")
        except JWTError:
            raise tornado.web.HTTPError(401, log_message="invalid token")
        except RuntimeError as exc:
            raise tornado.web.HTTPError(500, log_message=str(exc))
        principal = self.services.jwt_service.principal(claims)
        if not principal.has_role(*roles):
            raise tornado.web.HTTPError(403, log_message="insufficient role")
        self.principal = principal
        return principal

    def log_exception(self, typ, value, tb):
        if isinstance(value, TourBackendError):
            logger.info(f"{self.request.method} {self.request.path}: {type(value).__name__}: {value.message}")
            return
        super().log_exception(typ, value, tb)

    def write_error(self, status_code: int, **kwargs):
        exc = kwargs.get("exc_info", (None, None, None))[1]
        if isinstance(exc, TourBackendError):
            self.set_status(exc.status_code)
            self.finish(json.dumps(exc.to_dict(), default=str))
            return
        if isinstance(exc, tornado.web.HTTPError) and exc.log_message:
            message = exc.log_message
        else:
            message = self._reason
        self.finish(json.dumps({"success": False, "error": message}))
