"""Set-active-event operation behind ``POST /api/broadcast/set-active-event``."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .loader import BroadcastStoreError, DataStore

logger = logging.getLogger(__name__)

TOKEN_HEADER = "x-broadcast-admin-token"
EVENT_ID_FIELDS = ("active_event_id", "eventId", "event_id")


@dataclass
class BroadcastResult:
    status_code: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _failure(status_code: int, error: str, details: str | None = None) -> BroadcastResult:
    payload: Dict[str, Any] = {"ok": False, "error": error}
    if details:
        payload["details"] = details
    return BroadcastResult(status_code=status_code, payload=payload)


def extract_token(headers: Mapping[str, str], body: Mapping[str, Any]) -> Optional[str]:
    """Header token (``Bearer`` prefix optional) wins over the body ``token`` field."""
    lowered = {str(key).lower(): value for key, value in headers.items()}
    header_token = lowered.get(TOKEN_HEADER)
    if not header_token:
        authorization = (lowered.get("authorization") or "").strip()
        if authorization.startswith("Bearer "):
            authorization = authorization[len("Bearer "):].strip()
        header_token = authorization or None
    token = header_token or body.get("token")
    if not isinstance(token, str) or not token:
        return None
    return token


def extract_event_id(body: Mapping[str, Any]) -> Optional[str]:
    for key in EVENT_ID_FIELDS:
        value = body.get(key)
        if isinstance(value, bool) or not isinstance(value, (str, int)) or not value:
            continue
        return str(value)
    return None


def set_active_event(
    store: DataStore,
    headers: Mapping[str, str],
    body: Mapping[str, Any] | None,
    expected_token: str | None,
) -> BroadcastResult:
    body = body if isinstance(body, Mapping) else {}

    if not expected_token:
        return _failure(500, "Server missing BROADCAST_ADMIN_TOKEN")

    token = extract_token(headers, body)
    if not token or not hmac.compare_digest(token.encode(), expected_token.encode()):
        logger.warning("Rejected set-active-event request with invalid admin token")
        return _failure(401, "Invalid admin token")

    event_id = extract_event_id(body)
    if not event_id:
        return _failure(400, "Missing active_event_id / eventId in request body")

    try:
        store.set_active_event(event_id)
    except BroadcastStoreError as exc:
        return _failure(500, exc.message, exc.details)
    except RuntimeError as exc:
        return _failure(500, str(exc))

    return BroadcastResult(status_code=200, payload={"ok": True, "active_event_id": event_id})
