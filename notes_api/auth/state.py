import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional, Tuple

from notes_api.errors import AuthError


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def decode_came_from(param: Optional[str]) -> Optional[str]:
    """Decode the URL-safe base64 ``came_from`` login parameter, ignoring garbage."""
    if not param:
        return None
    try:
        return _b64decode(param).decode("utf-8") or None
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


@dataclass
class LoginState:
    """Data carried through the provider round trip in the OAuth ``state`` parameter."""

    came_from: Optional[str] = None

    def encode(self, nonce: str) -> str:
        payload = {"nonce": nonce, "came_from": self.came_from}
        return _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    @classmethod
    def decode(cls, param: Optional[str]) -> Tuple["LoginState", str]:
        if not param:
            raise AuthError("state is missing")
        try:
            payload = json.loads(_b64decode(param))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise AuthError(f"state is invalid: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("nonce"), str):
            raise AuthError("state is invalid: no nonce")
        came_from = payload.get("came_from")
        if came_from is not None and not isinstance(came_from, str):
            raise AuthError("state is invalid: bad came_from")
        return cls(came_from=came_from), payload["nonce"]
