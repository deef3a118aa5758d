"""Negotiation lifecycle of a menu request.

    SUBMITTED -> IN_REVIEW -> QUOTE_SENT -> APPROVED
                                  |  ^
                                  v  |
                          REVISION_REQUESTED

Every guard looks at the state as it is *after* the request row was locked
and either returns the next status or raises; nothing is written here.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from menu_negotiation.errors import DraftInvalid, RequestLocked, SubmissionInvalid, TransitionRejected
from menu_negotiation.pricing import matches_target
from menu_negotiation.schemas import (
    AppliesTo,
    CartItem,
    DiscountScope,
    MenuRequestCreate,
    QuoteDraft,
    QuoteStatus,
    RequestStatus,
)

EMAIL_SHAPE = re.compile(r".+@.+\..+")
MIN_PHONE_DIGITS = 10


def phone_digits(raw: Optional[str]) -> str:
    return re.sub(r"\D+", "", str(raw or ""))


def is_valid_email(raw: Optional[str]) -> bool:
    return bool(EMAIL_SHAPE.fullmatch(str(raw or "").strip()))


def _parse_status(status: str | RequestStatus) -> RequestStatus:
    return status if isinstance(status, RequestStatus) else RequestStatus(str(status))


def ensure_not_locked(status: str | RequestStatus) -> None:
    if _parse_status(status) == RequestStatus.APPROVED:
        raise RequestLocked("Proposta aprovada: a solicitação está travada.")


def validate_submission(payload: MenuRequestCreate) -> None:
    if not payload.items:
        raise SubmissionInvalid("Seu carrinho está vazio.")
    if not payload.customer_name:
        raise SubmissionInvalid("Informe seu nome.")
    if len(phone_digits(payload.customer_phone)) < MIN_PHONE_DIGITS:
        raise SubmissionInvalid("Informe um WhatsApp/telefone válido.")
    if not is_valid_email(payload.customer_email):
        raise SubmissionInvalid("Informe um e-mail válido.")

    seen_keys: set[tuple[str, str]] = set()
    seen_ids: set[str] = set()
    for item in payload.items:
        key = item.selection_key()
        if key in seen_keys:
            raise SubmissionInvalid(f"Item repetido no carrinho: {item.point_id}/{item.unit_id or '-'}.")
        if item.id in seen_ids:
            raise SubmissionInvalid(f"Identificador de item repetido: {item.id}.")
        seen_keys.add(key)
        seen_ids.add(item.id)


def _has_amount(percent: Optional[float], fixed: Optional[float]) -> bool:
    return (percent is not None and percent > 0) or (fixed is not None and fixed > 0)


def validate_draft(items: Iterable[CartItem], draft: QuoteDraft) -> QuoteDraft:
    """Check a draft before it is frozen into a version.

    Returns the draft with FACE/POINT discounts forced to apply to the base.
    """
    items = list(items)
    normalized = []
    seen_ids: set[str] = set()
    for discount in draft.discounts:
        if discount.id in seen_ids:
            raise DraftInvalid(f"Desconto repetido: {discount.id}.")
        seen_ids.add(discount.id)
        if not _has_amount(discount.percent, discount.fixed):
            raise DraftInvalid(f"Desconto {discount.id} precisa de percentual ou valor fixo positivo.")
        if discount.scope == DiscountScope.GENERAL:
            if discount.target_id is not None:
                raise DraftInvalid(f"Desconto geral {discount.id} não aceita alvo.")
            normalized.append(discount)
            continue
        if not any(matches_target(item, discount.scope, discount.target_id) for item in items):
            raise DraftInvalid(f"Desconto {discount.id} aponta para um item fora do carrinho.")
        normalized.append(discount.model_copy(update={"applies_to": AppliesTo.BASE}))

    for gift in draft.gifts:
        if not any(matches_target(item, gift.scope, gift.target_id) for item in items):
            raise DraftInvalid(f"Bonificação {gift.id} aponta para um item fora do carrinho.")

    for line in [*draft.services, *draft.costs]:
        if not str(line.name or "").strip():
            raise DraftInvalid("Toda linha de serviço ou custo precisa de um nome.")
        if line.value < 0:
            raise DraftInvalid(f"Valor negativo em '{line.name}'.")

    return draft.model_copy(update={"discounts": normalized})


def owner_open(status: str | RequestStatus) -> Optional[RequestStatus]:
    """Status after the owner opens the request, or None when unchanged."""
    status = _parse_status(status)
    ensure_not_locked(status)
    if status == RequestStatus.SUBMITTED:
        return RequestStatus.IN_REVIEW
    return None


def send_quote(status: str | RequestStatus) -> RequestStatus:
    ensure_not_locked(status)
    return RequestStatus.QUOTE_SENT


def next_version(existing: Iterable[int]) -> int:
    return max(existing, default=0) + 1


def approve(status: str | RequestStatus, current_version_status: Optional[str]) -> RequestStatus:
    status = _parse_status(status)
    ensure_not_locked(status)
    if status != RequestStatus.QUOTE_SENT or current_version_status is None:
        raise TransitionRejected("Não há proposta enviada aguardando resposta.")
    if current_version_status == QuoteStatus.APPROVED.value:
        raise RequestLocked("Esta versão já foi aprovada.")
    return RequestStatus.APPROVED


def reject(status: str | RequestStatus, current_version_status: Optional[str]) -> RequestStatus:
    status = _parse_status(status)
    ensure_not_locked(status)
    if status != RequestStatus.QUOTE_SENT or current_version_status != QuoteStatus.SENT.value:
        raise TransitionRejected("Não há proposta enviada aguardando resposta.")
    return RequestStatus.REVISION_REQUESTED
