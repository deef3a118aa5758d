"""Signed, audience-scoped access links for a menu request.

A token is ``<claims>.<signature>``: base64url JSON claims (request id,
audience, issue time, nonce) and an HMAC-SHA256 over them. The signature
proves we minted it; the ``menu_request_link`` row decides whether it is
still the live link for that audience and when it expires.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import structlog
from sqlalchemy.orm import Session

from menu_negotiation.config import settings
from menu_negotiation.errors import REASON_FORBIDDEN, AccessDenied, ErrorKind
from menu_negotiation.models import MenuRequestLink
from menu_negotiation.schemas import Audience

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class TokenStatus(str, Enum):
    OK = "OK"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    INVALID = "INVALID"


@dataclass(frozen=True)
class LinkInfo:
    token: str
    expires_at: datetime
    opened_at_last: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: MenuRequestLink) -> "LinkInfo":
        return cls(
            token=row.token,
            expires_at=as_utc(row.expires_at),
            opened_at_last=as_utc(row.opened_at_last),
        )

    def as_dict(self) -> dict:
        return {
            "token": self.token,
            "expiresAt": self.expires_at.isoformat(),
            "openedAtLast": self.opened_at_last.isoformat() if self.opened_at_last else None,
        }


@dataclass(frozen=True)
class TokenCheck:
    status: TokenStatus
    audience: Optional[Audience] = None

    @property
    def ok(self) -> bool:
        return self.status == TokenStatus.OK

    def to_error(self) -> AccessDenied:
        if self.status == TokenStatus.EXPIRED:
            return AccessDenied("Este link expirou. Solicite um novo link.", kind=ErrorKind.EXPIRED)
        if self.status == TokenStatus.REVOKED:
            return AccessDenied("Este link foi substituído por um mais recente.", kind=ErrorKind.REVOKED)
        return AccessDenied("Link inválido para esta página.", reason=REASON_FORBIDDEN)


def live_link(db: Session, request_id: str, audience: Audience) -> Optional[MenuRequestLink]:
    return (
        db.query(MenuRequestLink)
        .filter(
            MenuRequestLink.request_id == request_id,
            MenuRequestLink.audience == audience.value,
            MenuRequestLink.revoked_at.is_(None),
        )
        .order_by(MenuRequestLink.id.desc())
        .first()
    )


class LinkAuthority:
    def __init__(
        self,
        secret: str,
        ttl_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret.encode("utf-8")
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    def _signature(self, body: str) -> str:
        digest = hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest)

    def mint(self, request_id: str, audience: Audience, issued_at: datetime) -> str:
        claims = {
            "rid": request_id,
            "aud": audience.value,
            "iat": int(issued_at.timestamp()),
            "n": secrets.token_urlsafe(12),
        }
        body = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._signature(body)}"

    def claims(self, token: Optional[str]) -> Optional[dict]:
        """Decoded claims of a token we signed, or None."""
        body, _, signature = str(token or "").strip().partition(".")
        if not body or not signature:
            return None
        try:
            expected = self._signature(body).encode("ascii")
            if not hmac.compare_digest(signature.encode("utf-8"), expected):
                return None
        except UnicodeError:
            return None
        try:
            data = json.loads(_b64decode(body))
        except (ValueError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def audience_of(self, token: Optional[str]) -> Optional[Audience]:
        data = self.claims(token)
        if not data:
            return None
        try:
            return Audience(data.get("aud"))
        except ValueError:
            return None

    def issue(self, db: Session, request_id: str, audience: Audience) -> LinkInfo:
        issued_at = self.clock()
        row = MenuRequestLink(
            request_id=request_id,
            audience=audience.value,
            token=self.mint(request_id, audience, issued_at),
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
        )
        db.add(row)
        db.flush()
        logger.info("link_issued", request_id=request_id, audience=audience.value)
        return LinkInfo.from_row(row)

    def revoke(self, db: Session, request_id: str, audience: Audience) -> int:
        now = self.clock()
        revoked = 0
        rows = (
            db.query(MenuRequestLink)
            .filter(
                MenuRequestLink.request_id == request_id,
                MenuRequestLink.audience == audience.value,
                MenuRequestLink.revoked_at.is_(None),
            )
            .all()
        )
        for row in rows:
            row.revoked_at = now
            revoked += 1
        db.flush()
        return revoked

    def regenerate(self, db: Session, request_id: str, audience: Audience) -> LinkInfo:
        """Replace the live link for one audience; the other audience is untouched.

        Runs inside the caller's transaction, so the old token stops working
        exactly when the new one starts.
        """
        self.revoke(db, request_id, audience)
        info = self.issue(db, request_id, audience)
        logger.info("link_regenerated", request_id=request_id, audience=audience.value)
        return info

    def verify(
        self,
        db: Session,
        request_id: str,
        token: Optional[str],
        audience: Audience,
        touch: bool = True,
    ) -> TokenCheck:
        data = self.claims(token)
        if not data or data.get("rid") != request_id or data.get("aud") != audience.value:
            logger.info("token_rejected", request_id=request_id, audience=audience.value, status="INVALID")
            return TokenCheck(TokenStatus.INVALID)

        row = (
            db.query(MenuRequestLink)
            .filter(
                MenuRequestLink.request_id == request_id,
                MenuRequestLink.token == str(token).strip(),
            )
            .first()
        )
        if row is None:
            return TokenCheck(TokenStatus.INVALID)
        if row.revoked_at is not None:
            logger.info("token_rejected", request_id=request_id, audience=audience.value, status="REVOKED")
            return TokenCheck(TokenStatus.REVOKED, audience)

        now = self.clock()
        if now >= as_utc(row.expires_at):
            logger.info("token_rejected", request_id=request_id, audience=audience.value, status="EXPIRED")
            return TokenCheck(TokenStatus.EXPIRED, audience)

        if touch:
            row.opened_at_last = now
            db.flush()
        return TokenCheck(TokenStatus.OK, audience)


link_authority = LinkAuthority(settings.link_secret, settings.link_ttl_days)
