from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from menu_negotiation.config import settings
from menu_negotiation.context import parse_request_context
from menu_negotiation.contract import ContractRenderer, PdfContractRenderer
from menu_negotiation.db import Base, SessionLocal, engine
from menu_negotiation.errors import ERROR_TITLES, REASON_VALIDATION, ErrorKind, Failure, Result, http_status_for
from menu_negotiation.logs import configure_logging
from menu_negotiation.models import MenuRequest, Tenant
from menu_negotiation.notifications import LinkNotifier, LogLinkNotifier
from menu_negotiation.schemas import (
    ApproveQuoteIn,
    Audience,
    MenuRequestCreate,
    PreviewIn,
    RegenerateLinkIn,
    RejectQuoteIn,
    RequestStatus,
    SendQuoteIn,
    TokenBody,
)
from menu_negotiation.tokens import LinkAuthority, link_authority
from menu_negotiation.workflow import MenuRequestWorkflow


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if settings.create_tables_on_startup:
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Menu Negotiation", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return JSONResponse(
        status_code=422,
        content={
            "detail": {
                "kind": ErrorKind.GENERIC.value,
                "reason": REASON_VALIDATION,
                "title": ERROR_TITLES[ErrorKind.GENERIC],
                "message": "; ".join(problems) or "Dados inválidos.",
            }
        },
    )


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_link_authority() -> LinkAuthority:
    return link_authority


def get_notifier() -> LinkNotifier:
    return LogLinkNotifier()


def get_contract_renderer() -> ContractRenderer:
    return PdfContractRenderer()


def get_workflow(
    db: Session = Depends(get_db),
    authority: LinkAuthority = Depends(get_link_authority),
    notifier: LinkNotifier = Depends(get_notifier),
    renderer: ContractRenderer = Depends(get_contract_renderer),
) -> MenuRequestWorkflow:
    return MenuRequestWorkflow(db, authority=authority, notifier=notifier, renderer=renderer)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _paginate_by_id(query, model, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    if cursor is not None:
        query = query.filter(model.id > cursor)
    rows = query.order_by(model.id).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = rows[limit - 1].id
        rows = rows[:limit]
    return rows, next_cursor


def _paginate_by_offset(query, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    offset = cursor or 0
    rows = query.offset(offset).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = offset + limit
        rows = rows[:limit]
    return rows, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


def _unwrap(result: Result) -> Any:
    if isinstance(result, Failure):
        raise HTTPException(
            status_code=http_status_for(result),
            detail={
                "kind": result.kind.value,
                "reason": result.reason,
                "title": ERROR_TITLES[result.kind],
                "message": result.message,
            },
        )
    return result.value


def _token_fields(payload: Optional[TokenBody]) -> dict:
    if payload is None:
        return {}
    return {"token": payload.token, "t": payload.t}


@app.get("/", tags=["health"])
def root() -> dict:
    return {"data": {"service": "menu-negotiation"}, "meta": _meta()}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


class TenantCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Outdoor Paulista",
                "owner_email": "comercial@outdoorpaulista.com.br",
                "agency_markup_percent": 20,
                "is_active": True,
            }
        }
    }
    name: str
    owner_email: Optional[str] = None
    agency_markup_percent: Optional[float] = Field(default=None, ge=0, le=500)
    is_active: bool = True


def _tenant_data(tenant: Tenant) -> dict:
    return {
        "tenant_id": tenant.id,
        "name": tenant.name,
        "status": tenant.status,
        "owner_email": tenant.owner_email,
        "agency_markup_percent": float(tenant.agency_markup_percent) if tenant.agency_markup_percent is not None else None,
        "created_at": tenant.created_at.isoformat(),
    }


@app.post("/api/v1/tenants", tags=["Tenants"])
def create_tenant(payload: TenantCreate, db: Session = Depends(get_db)) -> dict:
    tenant = Tenant(
        name=payload.name,
        status="ACTIVE" if payload.is_active else "INACTIVE",
        owner_email=payload.owner_email,
        agency_markup_percent=payload.agency_markup_percent,
        created_at=_now(),
    )
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return {"data": _tenant_data(tenant), "meta": _meta()}


@app.get("/api/v1/tenants/{tenant_id}", tags=["Tenants"])
def get_tenant(tenant_id: int, db: Session = Depends(get_db)) -> dict:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="tenant not found")
    return {"data": _tenant_data(tenant), "meta": _meta()}


@app.get("/api/v1/tenants", tags=["Tenants"])
def list_tenants(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Tenant)
    if status is not None:
        query = query.filter(Tenant.status == status)
    tenants, next_cursor = _paginate_by_id(query, Tenant, limit, cursor)
    return {"data": [_tenant_data(tenant) for tenant in tenants], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/tenants/{tenant_id}/menu-requests", tags=["Tenants"])
def list_menu_requests(
    tenant_id: int,
    status: Optional[RequestStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    if not db.get(Tenant, tenant_id):
        raise HTTPException(status_code=404, detail="tenant not found")
    query = db.query(MenuRequest).filter(MenuRequest.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(MenuRequest.status == status.value)
    query = query.order_by(MenuRequest.created_at.desc(), MenuRequest.id)
    requests, next_cursor = _paginate_by_offset(query, limit, cursor)
    data = [
        {
            "request_id": request.id,
            "status": request.status,
            "customer_name": request.customer_name,
            "flow": request.flow,
            "items": len(request.items or []),
            "current_quote_version": request.current_quote_version,
            "created_at": request.created_at.isoformat(),
            "updated_at": request.updated_at.isoformat(),
        }
        for request in requests
    ]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/public/menu/request", tags=["Public menu"])
def submit_menu_request(
    payload: MenuRequestCreate,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    return {"data": _unwrap(workflow.submit(payload)), "meta": _meta()}


@app.get("/public/menu/request", tags=["Public menu"])
@app.get("/public/menu/request/{request_id}", tags=["Public menu"])
def get_menu_request(
    request: Request,
    request_id: Optional[str] = None,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, path_request_id=request_id)
    return {"data": _unwrap(workflow.open_request(ctx.request_id, ctx.token, ctx.audience)), "meta": _meta()}


@app.api_route("/public/menu/quote/{request_id}/preview", methods=["GET", "POST"], tags=["Public menu"])
def preview_quote(
    request: Request,
    request_id: str,
    payload: Optional[PreviewIn] = None,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, _token_fields(payload), request_id, Audience.OWNER)
    draft = payload.draft if payload is not None else None
    result = workflow.preview(ctx.request_id, ctx.token, draft)
    return {"data": _unwrap(result), "meta": _meta()}


@app.post("/public/menu/quote/{request_id}/send", tags=["Public menu"])
def send_quote(
    request: Request,
    request_id: str,
    payload: SendQuoteIn,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, _token_fields(payload), request_id, Audience.OWNER)
    return {"data": _unwrap(workflow.send_quote(ctx.request_id, ctx.token, payload.draft)), "meta": _meta()}


@app.post("/public/menu/quote/{request_id}/reject", tags=["Public menu"])
def reject_quote(
    request: Request,
    request_id: str,
    payload: RejectQuoteIn,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, _token_fields(payload), request_id, Audience.CLIENT)
    return {"data": _unwrap(workflow.reject(ctx.request_id, ctx.token, payload.reason)), "meta": _meta()}


@app.post("/public/menu/quote/{request_id}/approve", tags=["Public menu"])
def approve_quote(
    request: Request,
    request_id: str,
    payload: Optional[ApproveQuoteIn] = None,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, _token_fields(payload), request_id, Audience.CLIENT)
    return {"data": _unwrap(workflow.approve(ctx.request_id, ctx.token)), "meta": _meta()}


@app.post("/public/menu/link/{request_id}/regenerate", tags=["Public menu"])
def regenerate_link(
    request: Request,
    request_id: str,
    payload: RegenerateLinkIn,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> dict:
    ctx = parse_request_context(request.query_params, _token_fields(payload), request_id)
    return {"data": _unwrap(workflow.regenerate_link(ctx.request_id, ctx.token, payload.aud)), "meta": _meta()}


@app.get("/public/menu/contract/{request_id}", tags=["Public menu"])
def download_contract(
    request: Request,
    request_id: str,
    workflow: MenuRequestWorkflow = Depends(get_workflow),
) -> Response:
    ctx = parse_request_context(request.query_params, path_request_id=request_id)
    contract = _unwrap(workflow.contract(ctx.request_id, ctx.token))
    return Response(
        content=contract.content,
        media_type=contract.media_type,
        headers={"Content-Disposition": f'attachment; filename="{contract.filename}"'},
    )
