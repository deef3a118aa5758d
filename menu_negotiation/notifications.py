from __future__ import annotations

from typing import Optional, Protocol
from urllib.parse import urlencode

import structlog

from menu_negotiation.config import settings
from menu_negotiation.schemas import Audience
from menu_negotiation.tokens import LinkInfo

logger = structlog.get_logger(__name__)

LINK_PATHS = {
    Audience.OWNER: "/menu/dono",
    Audience.CLIENT: "/menu/proposta",
}


def build_link_url(audience: Audience, request_id: str, token: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}{LINK_PATHS[audience]}?{urlencode({'rid': request_id, 't': token})}"


class LinkNotifier(Protocol):
    def send_link(
        self,
        audience: Audience,
        recipient: Optional[str],
        request_id: str,
        link: LinkInfo,
        reason: str,
    ) -> None: ...


class LogLinkNotifier:
    """Stands in for the mailer: records that a link would have gone out."""

    def send_link(
        self,
        audience: Audience,
        recipient: Optional[str],
        request_id: str,
        link: LinkInfo,
        reason: str,
    ) -> None:
        if not recipient:
            logger.warning("link_not_sent", request_id=request_id, audience=audience.value, reason=reason)
            return
        logger.info(
            "link_sent",
            request_id=request_id,
            audience=audience.value,
            recipient=recipient,
            path=LINK_PATHS[audience],
            expires_at=link.expires_at.isoformat(),
            reason=reason,
        )
