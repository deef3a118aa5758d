from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from menu_negotiation.schemas import Audience

TOKEN_KEYS = ("token", "t")
REQUEST_ID_KEYS = ("rid", "requestId")
AUDIENCE_KEYS = ("view", "aud")


@dataclass(frozen=True)
class RequestContext:
    request_id: Optional[str]
    token: Optional[str]
    audience: Optional[Audience]


def _first(source: Optional[Mapping[str, Any]], keys: tuple[str, ...]) -> Optional[str]:
    if not source:
        return None
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _audience(raw: Optional[str]) -> Optional[Audience]:
    if not raw:
        return None
    try:
        return Audience(raw.lower())
    except ValueError:
        return None


def parse_request_context(
    query: Optional[Mapping[str, Any]],
    body: Optional[Mapping[str, Any]] = None,
    path_request_id: Optional[str] = None,
    default_audience: Optional[Audience] = None,
) -> RequestContext:
    """Resolve request id, token and audience.

    The body wins over the query string for the token; a request id in the
    path wins over both. ``token``/``t`` and ``rid``/``requestId`` are
    interchangeable.
    """
    token = _first(body, TOKEN_KEYS) or _first(query, TOKEN_KEYS)
    request_id = (path_request_id or "").strip() or _first(body, REQUEST_ID_KEYS) or _first(query, REQUEST_ID_KEYS)
    audience = _audience(_first(query, AUDIENCE_KEYS)) or default_audience
    return RequestContext(request_id=request_id, token=token, audience=audience)
