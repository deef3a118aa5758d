from __future__ import annotations

import threading
import zlib
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from menu_negotiation.models import MenuQuoteVersion, MenuRequest, MenuRequestEvent, Tenant
from menu_negotiation.schemas import Audience, CartItem, EventType, MenuRequestCreate, QuoteStatus, RequestStatus
from menu_negotiation.tokens import LinkInfo, as_utc, live_link

_LOCK_STRIPES = [threading.Lock() for _ in range(64)]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


@contextmanager
def request_lock(request_id: str) -> Iterator[None]:
    """Serialise writers of one request inside this process.

    Row locks (``FOR UPDATE``) cover other processes on PostgreSQL; SQLite
    ignores them, so this is what keeps single-process deployments and tests
    serialisable.
    """
    stripe = _LOCK_STRIPES[zlib.crc32(request_id.encode("utf-8")) % len(_LOCK_STRIPES)]
    with stripe:
        yield


class MenuRequestRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def tenant(self, tenant_id: int) -> Optional[Tenant]:
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None or tenant.status != "ACTIVE":
            return None
        return tenant

    def create(self, payload: MenuRequestCreate) -> MenuRequest:
        now = _now()
        request = MenuRequest(
            id=f"mr_{uuid4().hex}",
            tenant_id=payload.company_id,
            status=RequestStatus.SUBMITTED.value,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            customer_company_name=payload.customer_company_name,
            customer_cnpj=payload.customer_cnpj,
            notes=payload.notes,
            uf=payload.uf,
            city=payload.city,
            flow=payload.flow.value,
            items=[item.dump() for item in payload.items],
            created_at=now,
            updated_at=now,
        )
        self.db.add(request)
        self.db.flush()
        self.append_event(request, EventType.REQUEST_SUBMITTED, {"items": len(payload.items)})
        return request

    def get(self, request_id: str) -> Optional[MenuRequest]:
        return self.db.get(MenuRequest, request_id)

    def get_for_update(self, request_id: str) -> Optional[MenuRequest]:
        return (
            self.db.query(MenuRequest)
            .filter(MenuRequest.id == request_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def items(self, request: MenuRequest) -> list[CartItem]:
        return [CartItem.model_validate(raw) for raw in (request.items or [])]

    def events(self, request_id: str) -> list[MenuRequestEvent]:
        return (
            self.db.query(MenuRequestEvent)
            .filter(MenuRequestEvent.request_id == request_id)
            .order_by(MenuRequestEvent.seq)
            .all()
        )

    def append_event(self, request: MenuRequest, event_type: EventType, meta: Optional[dict] = None) -> MenuRequestEvent:
        last = (
            self.db.query(MenuRequestEvent)
            .filter(MenuRequestEvent.request_id == request.id)
            .order_by(MenuRequestEvent.seq.desc())
            .first()
        )
        at = _now()
        if last is not None and as_utc(last.at) > at:
            at = as_utc(last.at)
        event = MenuRequestEvent(
            request_id=request.id,
            seq=(last.seq + 1) if last is not None else 1,
            event_type=event_type.value,
            at=at,
            meta=meta or None,
        )
        self.db.add(event)
        request.updated_at = at
        self.db.flush()
        return event

    def versions(self, request_id: str) -> list[MenuQuoteVersion]:
        return (
            self.db.query(MenuQuoteVersion)
            .filter(MenuQuoteVersion.request_id == request_id)
            .order_by(MenuQuoteVersion.version)
            .all()
        )

    def current_version(self, request: MenuRequest) -> Optional[MenuQuoteVersion]:
        if not request.current_quote_version:
            return None
        return (
            self.db.query(MenuQuoteVersion)
            .filter(
                MenuQuoteVersion.request_id == request.id,
                MenuQuoteVersion.version == request.current_quote_version,
            )
            .first()
        )

    def add_version(self, request: MenuRequest, version: int, draft: dict, totals: dict) -> MenuQuoteVersion:
        row = MenuQuoteVersion(
            request_id=request.id,
            version=version,
            status=QuoteStatus.SENT.value,
            draft=draft,
            totals=totals,
            created_at=_now(),
        )
        self.db.add(row)
        request.current_quote_version = version
        self.db.flush()
        return row

    def links(self, request_id: str) -> dict[Audience, Optional[LinkInfo]]:
        result: dict[Audience, Optional[LinkInfo]] = {}
        for audience in Audience:
            row = live_link(self.db, request_id, audience)
            result[audience] = LinkInfo.from_row(row) if row else None
        return result

    def to_record(self, request: MenuRequest, view: Audience) -> dict:
        """Serialise a request for one audience.

        The client view never carries the owner's link.
        """
        links = self.links(request.id)
        visible = [Audience.CLIENT, Audience.OWNER] if view == Audience.OWNER else [Audience.CLIENT]
        return {
            "id": request.id,
            "companyId": request.tenant_id,
            "createdAt": _iso(request.created_at),
            "updatedAt": _iso(request.updated_at),
            "status": request.status,
            "customerName": request.customer_name,
            "customerEmail": request.customer_email,
            "customerPhone": request.customer_phone,
            "customerCompanyName": request.customer_company_name,
            "customerCnpj": request.customer_cnpj,
            "notes": request.notes,
            "uf": request.uf,
            "city": request.city,
            "flow": request.flow,
            "items": list(request.items or []),
            "events": [
                {"type": e.event_type, "at": _iso(e.at), "meta": e.meta}
                for e in self.events(request.id)
            ],
            "quotes": [version_to_dict(v) for v in self.versions(request.id)],
            "currentQuoteVersion": request.current_quote_version,
            "links": {
                audience.value: links[audience].as_dict() if links[audience] else None
                for audience in visible
            },
        }


def version_to_dict(row: MenuQuoteVersion) -> dict:
    return {
        "version": row.version,
        "createdAt": _iso(row.created_at),
        "status": row.status,
        "draft": row.draft,
        "totals": row.totals,
        "rejectReason": row.reject_reason,
        "openedAt": _iso(row.opened_at),
    }
