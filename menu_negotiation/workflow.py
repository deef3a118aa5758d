from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from menu_negotiation import state_machine
from menu_negotiation.contract import ContractDocument, ContractFile, ContractRenderer, PdfContractRenderer
from menu_negotiation.errors import (
    REASON_CONFLICT,
    REASON_FORBIDDEN,
    AccessDenied,
    ErrorKind,
    Failure,
    MenuError,
    Ok,
    RequestNotFound,
    Result,
    TransitionRejected,
)
from menu_negotiation.models import MenuRequest
from menu_negotiation.notifications import LinkNotifier, LogLinkNotifier, build_link_url
from menu_negotiation.pricing import compute_totals
from menu_negotiation.repository import MenuRequestRepository, request_lock
from menu_negotiation.schemas import (
    Audience,
    EventType,
    MenuRequestCreate,
    QuoteDraft,
    QuoteStatus,
    RequestStatus,
)
from menu_negotiation.tokens import LinkAuthority, as_utc, link_authority

logger = structlog.get_logger(__name__)

NOT_FOUND_MESSAGE = "Solicitação não encontrada."


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MenuRequestWorkflow:
    def __init__(
        self,
        db: Session,
        authority: LinkAuthority = link_authority,
        notifier: Optional[LinkNotifier] = None,
        renderer: Optional[ContractRenderer] = None,
    ) -> None:
        self.db = db
        self.repo = MenuRequestRepository(db)
        self.authority = authority
        self.notifier = notifier or LogLinkNotifier()
        self.renderer = renderer or PdfContractRenderer()

    def _run(self, operation: str, request_id: Optional[str], action: Callable[[], object]) -> Result:
        try:
            return Ok(action())
        except MenuError as exc:
            self.db.rollback()
            logger.info(
                "menu_operation_refused",
                operation=operation,
                request_id=request_id,
                kind=exc.kind.value,
                reason=exc.reason,
            )
            return Failure.from_error(exc)
        except IntegrityError:
            self.db.rollback()
            logger.warning("menu_operation_conflict", operation=operation, request_id=request_id)
            return Failure(
                ErrorKind.GENERIC,
                "Outra alteração foi registrada ao mesmo tempo. Recarregue e tente novamente.",
                reason=REASON_CONFLICT,
            )

    def _authorize(
        self,
        request_id: Optional[str],
        token: Optional[str],
        audience: Audience,
        for_update: bool = False,
        touch: bool = True,
    ) -> MenuRequest:
        if not token:
            raise AccessDenied("Este link precisa do token de acesso.", kind=ErrorKind.MISSING_TOKEN)
        request = None
        if request_id:
            request = self.repo.get_for_update(request_id) if for_update else self.repo.get(request_id)
        if request is None:
            raise RequestNotFound(NOT_FOUND_MESSAGE)
        check = self.authority.verify(self.db, request.id, token, audience, touch=touch)
        if not check.ok:
            raise check.to_error()
        return request

    def _caller_audience(self, token: Optional[str]) -> Audience:
        if not token:
            raise AccessDenied("Este link precisa do token de acesso.", kind=ErrorKind.MISSING_TOKEN)
        audience = self.authority.audience_of(token)
        if audience is None:
            raise AccessDenied("Link inválido para esta página.", reason=REASON_FORBIDDEN)
        return audience

    def _recipient(self, request: MenuRequest, audience: Audience) -> Optional[str]:
        if audience == Audience.CLIENT:
            return request.customer_email
        tenant = self.repo.tenant(request.tenant_id)
        return tenant.owner_email if tenant else None

    def submit(self, payload: MenuRequestCreate) -> Result[dict]:
        def action() -> dict:
            tenant = self.repo.tenant(payload.company_id)
            if tenant is None:
                raise RequestNotFound("Empresa não encontrada.")
            state_machine.validate_submission(payload)
            request = self.repo.create(payload)
            owner_link = self.authority.issue(self.db, request.id, Audience.OWNER)
            client_link = self.authority.issue(self.db, request.id, Audience.CLIENT)
            request_id, customer_email = request.id, request.customer_email
            self.db.commit()
            logger.info(
                "menu_request_submitted",
                request_id=request_id,
                tenant_id=tenant.id,
                items=len(payload.items),
                flow=payload.flow.value,
            )
            self.notifier.send_link(Audience.OWNER, tenant.owner_email, request_id, owner_link, "request_submitted")
            self.notifier.send_link(Audience.CLIENT, customer_email, request_id, client_link, "request_submitted")
            return {"requestId": request_id}

        return self._run("submit", None, action)

    def open_request(self, request_id: Optional[str], token: Optional[str], view: Optional[Audience]) -> Result[dict]:
        """Load a request for one audience, recording that it was opened.

        Without an explicit ``view`` the audience is read from the token.
        """

        def action() -> dict:
            audience = view or self._caller_audience(token)
            with request_lock(request_id or ""):
                request = self._authorize(request_id, token, audience, for_update=True)
                if audience == Audience.OWNER:
                    if request.status != RequestStatus.APPROVED.value:
                        next_status = state_machine.owner_open(request.status)
                        if next_status is not None:
                            request.status = next_status.value
                            self.repo.append_event(request, EventType.OWNER_OPENED)
                            logger.info("owner_opened", request_id=request.id)
                else:
                    current = self.repo.current_version(request)
                    if current is not None and current.status == QuoteStatus.SENT.value and current.opened_at is None:
                        current.opened_at = _now()
                        self.repo.append_event(request, EventType.QUOTE_OPENED, {"version": current.version})
                        logger.info("quote_opened", request_id=request.id, version=current.version)
                record = self.repo.to_record(request, audience)
                self.db.commit()
            return record

        return self._run("open_request", request_id, action)

    def preview(self, request_id: Optional[str], token: Optional[str], draft: QuoteDraft) -> Result[dict]:
        """Totals for an unsent draft; nothing is written."""

        def action() -> dict:
            request = self._authorize(request_id, token, Audience.OWNER, touch=False)
            totals = compute_totals(self.repo.items(request), draft)
            return {"totals": totals.as_dict()}

        return self._run("preview", request_id, action)

    def send_quote(self, request_id: Optional[str], token: Optional[str], draft: QuoteDraft) -> Result[dict]:
        def action() -> dict:
            with request_lock(request_id or ""):
                request = self._authorize(request_id, token, Audience.OWNER, for_update=True)
                next_status = state_machine.send_quote(request.status)
                items = self.repo.items(request)
                draft_ok = state_machine.validate_draft(items, draft)
                totals = compute_totals(items, draft_ok).as_dict()
                version = state_machine.next_version(v.version for v in self.repo.versions(request.id))
                self.repo.add_version(request, version, draft_ok.dump(), totals)
                request.status = next_status.value
                self.repo.append_event(request, EventType.QUOTE_SENT, {"version": version})
                client_link = self.repo.links(request.id)[Audience.CLIENT]
                rid, customer_email = request.id, request.customer_email
                self.db.commit()
            logger.info("quote_sent", request_id=rid, version=version, total=totals["total"])
            if client_link is not None:
                self.notifier.send_link(Audience.CLIENT, customer_email, rid, client_link, "quote_sent")
            return {"version": version, "totals": totals}

        return self._run("send_quote", request_id, action)

    def approve(self, request_id: Optional[str], token: Optional[str]) -> Result[dict]:
        def action() -> dict:
            with request_lock(request_id or ""):
                request = self._authorize(request_id, token, Audience.CLIENT, for_update=True)
                current = self.repo.current_version(request)
                state_machine.approve(request.status, current.status if current else None)
                current.status = QuoteStatus.APPROVED.value
                request.status = RequestStatus.APPROVED.value
                self.repo.append_event(request, EventType.QUOTE_APPROVED, {"version": current.version})
                rid, version = request.id, current.version
                self.db.commit()
            logger.info("quote_approved", request_id=rid, version=version)
            return {"status": RequestStatus.APPROVED.value, "version": version}

        return self._run("approve", request_id, action)

    def reject(self, request_id: Optional[str], token: Optional[str], reason: Optional[str] = None) -> Result[dict]:
        def action() -> dict:
            reason_text = str(reason or "").strip() or None
            with request_lock(request_id or ""):
                request = self._authorize(request_id, token, Audience.CLIENT, for_update=True)
                current = self.repo.current_version(request)
                next_status = state_machine.reject(request.status, current.status if current else None)
                current.status = QuoteStatus.REJECTED.value
                current.reject_reason = reason_text
                request.status = next_status.value
                meta = {"version": current.version}
                if reason_text:
                    meta["reason"] = reason_text
                self.repo.append_event(request, EventType.QUOTE_REJECTED, meta)
                rid, version = request.id, current.version
                self.db.commit()
            logger.info("quote_rejected", request_id=rid, version=version)
            return {"status": RequestStatus.REVISION_REQUESTED.value, "version": version}

        return self._run("reject", request_id, action)

    def regenerate_link(self, request_id: Optional[str], token: Optional[str], target: Audience) -> Result[dict]:
        """Replace one audience's link; the caller proves access with its own token.

        The owner may replace either link, the client only its own.
        """

        def action() -> dict:
            caller = self._caller_audience(token)
            if caller == Audience.CLIENT and target == Audience.OWNER:
                raise AccessDenied("Somente o responsável pode gerar um novo link de gestão.", reason=REASON_FORBIDDEN)
            with request_lock(request_id or ""):
                request = self._authorize(request_id, token, caller, for_update=True)
                link = self.authority.regenerate(self.db, request.id, target)
                self.repo.append_event(request, EventType.LINK_REGENERATED, {"aud": target.value})
                recipient = self._recipient(request, target)
                rid = request.id
                self.db.commit()
            self.notifier.send_link(target, recipient, rid, link, "link_regenerated")
            return {
                "aud": target.value,
                "link": {**link.as_dict(), "url": build_link_url(target, rid, link.token)},
            }

        return self._run("regenerate_link", request_id, action)

    def contract(self, request_id: Optional[str], token: Optional[str]) -> Result[ContractFile]:
        """Render the approved version; either audience may download it."""

        def action() -> ContractFile:
            audience = self._caller_audience(token)
            request = self._authorize(request_id, token, audience)
            if request.status != RequestStatus.APPROVED.value:
                raise TransitionRejected("O contrato fica disponível após a aprovação da proposta.")
            current = self.repo.current_version(request)
            approved_at = None
            for event in self.repo.events(request.id):
                if event.event_type == EventType.QUOTE_APPROVED.value:
                    approved_at = as_utc(event.at)
            tenant = self.repo.tenant(request.tenant_id)
            document = ContractDocument(
                request_id=request.id,
                company_name=tenant.name if tenant else "",
                customer_name=request.customer_name,
                customer_email=request.customer_email,
                customer_phone=request.customer_phone,
                customer_company_name=request.customer_company_name,
                customer_cnpj=request.customer_cnpj,
                version=current.version,
                approved_at=approved_at,
                items=self.repo.items(request),
                draft=QuoteDraft.model_validate(current.draft),
                totals=current.totals,
            )
            content = self.renderer.render(document)
            self.db.commit()
            logger.info("contract_rendered", request_id=request.id, version=current.version, size=len(content))
            return ContractFile(document.filename, self.renderer.media_type, content)

        return self._run("contract", request_id, action)
