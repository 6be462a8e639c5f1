import base64
import os
from binascii import Error as BinasciiError
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError


@dataclass(frozen=True)
class Principal:
    subject: str
    role: Optional[str] = None
    user_id: Optional[int] = None

    def has_role(self, *roles: str) -> bool:
        return not roles or self.role in roles


class JWTAuthService:
    """Bearer token verification for the operator/technician endpoints and the console socket."""

    def __init__(self):
        self.algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        # HS256 uses JWT_SECRET, RSA variants use JWT_CERTIFICATE
        self.secret = os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY")
        self.public_key = self._load_key(os.getenv("JWT_CERTIFICATE"))

    def decode_token(self, token: str) -> Dict[str, Any]:
        if self.algorithm == "HS256":
            if not self.secret:
                raise RuntimeError("JWT_SECRET/SECRET_KEY is not configured")
            key = self.secret
        else:
            if not self.public_key:
                raise RuntimeError("JWT_CERTIFICATE is not configured")
            key = self.public_key
        return jwt.decode(token, key, algorithms=[self.algorithm])

    def try_decode(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return self.decode_token(token)
        except (JWTError, ExpiredSignatureError, RuntimeError):
            return None

    @staticmethod
    def principal(claims: Dict[str, Any]) -> Principal:
        subject = str(claims.get("sub", ""))
        raw_id = claims.get("user_id", claims.get("id", subject))
        try:
            user_id = int(raw_id)
        except (TypeError, ValueError):
            user_id = None
        return Principal(subject=subject, role=claims.get("role"), user_id=user_id)

    def _load_key(self, raw_value: Optional[str]) -> Optional[str]:
        """
        Return a PEM key string, decoding base64 input when necessary.
        Accepts either raw PEM text or a base64-encoded PEM.
        """
        if not raw_value:
            return raw_value
        if "BEGIN" in raw_value and "END" in raw_value:
            return raw_value
        try:
            return base64.b64decode(raw_value).decode("utf-8")
        except (BinasciiError, UnicodeDecodeError):
            return raw_value
