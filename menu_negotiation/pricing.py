"""Quote totals.

``compute_totals`` is the single pricing function behind both the live
preview and the figures frozen into a sent quote version, so it must stay
free of I/O, clocks and randomness. It never raises: missing or malformed
numbers count as zero.

Applied discounts run in a fixed order: every FACE/POINT discount in input
order, then every GENERAL discount in input order. Each one is measured
against what is still left of its scope when it runs, and can take at most
that remainder.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from menu_negotiation.schemas import (
    AppliedDiscount,
    AppliesTo,
    CartItem,
    DiscountScope,
    ItemSnapshot,
    Promotion,
    QuoteDraft,
    ServiceLine,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")
MANUAL_SERVICE_NAME = "Serviço manual"


def _money(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    if not number.is_finite():
        return ZERO
    return number


def _positive(value: Any) -> Decimal:
    return max(ZERO, _money(value))


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _reduction(amount: Decimal, percent: Any, fixed: Any) -> Decimal:
    """What a percent/fixed pair takes off ``amount``, capped at ``amount``."""
    if amount <= ZERO:
        return ZERO
    raw = amount * _positive(percent) / HUNDRED + _positive(fixed)
    return _round(min(amount, raw))


def promotion_active(promo: Optional[Promotion], at: Optional[datetime]) -> bool:
    if promo is None or promo.show_in_media_kit is False:
        return False
    if at is None:
        return True
    for bound, is_start in ((promo.starts_at, True), (promo.ends_at, False)):
        if not bound:
            continue
        try:
            moment = datetime.fromisoformat(str(bound).replace("Z", "+00:00"))
        except ValueError:
            continue
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        if is_start and at < moment:
            return False
        if not is_start and at > moment:
            return False
    return True


def apply_promotion(value: Any, promo: Optional[Promotion], at: Optional[datetime] = None) -> Decimal:
    base = _positive(value)
    if not promotion_active(promo, at):
        return base
    discount_value = _money(promo.discount_value)
    if discount_value <= ZERO:
        return base
    if str(promo.discount_type or "").upper() == "PERCENT":
        pct = min(HUNDRED, discount_value)
        return max(ZERO, base * (1 - pct / HUNDRED))
    return max(ZERO, base - discount_value)


def _first_rate(*candidates: Optional[float]) -> Decimal:
    for candidate in candidates:
        rate = _positive(candidate)
        if rate > ZERO:
            return rate
    return ZERO


def reference_price(item: CartItem, at: Optional[datetime] = None) -> Decimal:
    """Rental price of one cart item for its whole duration.

    Up to a week is billed at the weekly rate when there is one; otherwise
    the monthly rate is prorated by 30-day months (never below one month),
    falling back to prorating the weekly rate.
    """
    snap: ItemSnapshot = item.snapshot
    promo = snap.effective_promotion
    month = apply_promotion(
        _first_rate(snap.price_month, snap.unit_price_month, snap.point_base_price_month, snap.base_price_month),
        promo,
        at,
    )
    week = apply_promotion(
        _first_rate(snap.price_week, snap.unit_price_week, snap.point_base_price_week, snap.base_price_week),
        promo,
        at,
    )
    days = Decimal(item.duration.total_days)

    if days <= 7 and week > ZERO:
        price = week
    elif month > ZERO:
        price = month * max(Decimal(1), days / 30)
    elif week > ZERO:
        price = week * max(Decimal(1), days / 7)
    else:
        price = ZERO
    return _round(price)


def matches_target(item: CartItem, scope: Any, target_id: Optional[str]) -> bool:
    if not target_id:
        return False
    scope = getattr(scope, "value", scope)
    if scope == "FACE":
        return target_id in (item.unit_id, item.id)
    if scope == "POINT":
        return target_id == item.point_id
    return False


@dataclass
class LineTotals:
    gross: Decimal = ZERO
    line_discount: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.gross - self.line_discount


@dataclass(frozen=True)
class AppliedContribution:
    id: str
    scope: str
    target_id: Optional[str]
    applies_to: str
    label: str
    amount: Decimal

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "targetId": self.target_id,
            "appliesTo": self.applies_to,
            "label": self.label,
            "amount": float(self.amount),
        }


@dataclass(frozen=True)
class ItemPrice:
    item_id: str
    point_id: str
    unit_id: Optional[str]
    days: int
    reference_price: Decimal
    discount: Decimal

    def as_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "pointId": self.point_id,
            "unitId": self.unit_id,
            "days": self.days,
            "referencePrice": float(self.reference_price),
            "discount": float(self.discount),
        }


@dataclass(frozen=True)
class Totals:
    base: Decimal
    services: Decimal
    costs: Decimal
    discount: Decimal
    total: Decimal
    services_line_discount: Decimal = ZERO
    costs_line_discount: Decimal = ZERO
    applied_discounts: tuple[AppliedContribution, ...] = ()
    items: tuple[ItemPrice, ...] = ()

    @property
    def services_net(self) -> Decimal:
        return self.services - self.services_line_discount

    @property
    def costs_net(self) -> Decimal:
        return self.costs - self.costs_line_discount

    def as_dict(self) -> dict:
        return {
            "base": float(self.base),
            "services": float(self.services),
            "costs": float(self.costs),
            "discount": float(self.discount),
            "total": float(self.total),
            "breakdown": {
                "servicesLineDiscount": float(self.services_line_discount),
                "costsLineDiscount": float(self.costs_line_discount),
                "servicesNet": float(self.services_net),
                "costsNet": float(self.costs_net),
                "appliedDiscounts": [c.as_dict() for c in self.applied_discounts],
                "items": [i.as_dict() for i in self.items],
            },
        }


def _sum_lines(lines: Iterable[ServiceLine]) -> LineTotals:
    totals = LineTotals()
    for line in lines:
        value = _positive(line.value)
        totals.gross += value
        totals.line_discount += _reduction(value, line.discount_percent, line.discount_fixed)
    return totals


def _service_lines(draft: QuoteDraft) -> list[ServiceLine]:
    lines = list(draft.services)
    if _positive(draft.manual_service_value) > ZERO:
        lines.append(ServiceLine(name=MANUAL_SERVICE_NAME, value=draft.manual_service_value))
    return lines


def _ordered(discounts: Iterable[AppliedDiscount]) -> list[AppliedDiscount]:
    discounts = list(discounts)
    scoped = [d for d in discounts if d.scope != DiscountScope.GENERAL]
    general = [d for d in discounts if d.scope == DiscountScope.GENERAL]
    return scoped + general


def _take_from_items(remaining: dict[str, Decimal], item_ids: list[str], amount: Decimal) -> None:
    for item_id in item_ids:
        if amount <= ZERO:
            return
        taken = min(remaining[item_id], amount)
        remaining[item_id] -= taken
        amount -= taken


def _take_proportionally(
    remaining: dict[str, Decimal],
    amount: Decimal,
    item_ids: Optional[list[str]] = None,
) -> None:
    """Spread a reduction over items (all of them by default) by their remaining share."""
    ids = [item_id for item_id in (remaining if item_ids is None else item_ids) if remaining[item_id] > ZERO]
    pool = sum((remaining[item_id] for item_id in ids), ZERO)
    if pool <= ZERO or amount <= ZERO:
        return
    left = amount
    for index, item_id in enumerate(ids):
        if index == len(ids) - 1:
            share = left
        else:
            share = _round(amount * remaining[item_id] / pool)
        share = min(share, remaining[item_id], left)
        remaining[item_id] -= share
        left -= share
    if left > ZERO:
        _take_from_items(remaining, ids, left)


def compute_totals(
    items: Iterable[CartItem],
    draft: Optional[QuoteDraft],
    at: Optional[datetime] = None,
) -> Totals:
    """Price a draft against the cart it quotes.

    ``at`` only decides whether a dated catalog promotion counts; leave it
    as ``None`` to honour whatever promotion the item snapshot carries.
    """
    draft = draft or QuoteDraft()
    items = list(items or [])

    prices: dict[str, Decimal] = {}
    for item in items:
        prices[item.id] = reference_price(item, at)
    base = sum(prices.values(), ZERO)
    remaining_items = dict(prices)

    services = _sum_lines(_service_lines(draft))
    costs = _sum_lines(draft.costs)
    remaining_services = services.net

    contributions: list[AppliedContribution] = []
    for discount in _ordered(draft.discounts):
        applies_to = discount.applies_to
        if discount.scope == DiscountScope.GENERAL:
            remaining_base = sum(remaining_items.values(), ZERO)
            if applies_to == AppliesTo.BASE:
                amount = _reduction(remaining_base, discount.percent, discount.fixed)
                _take_proportionally(remaining_items, amount)
            elif applies_to == AppliesTo.SERVICES:
                amount = _reduction(remaining_services, discount.percent, discount.fixed)
                remaining_services -= amount
            else:
                pool = remaining_base + remaining_services
                amount = _reduction(pool, discount.percent, discount.fixed)
                from_base = _round(amount * remaining_base / pool) if pool > ZERO else ZERO
                from_base = min(from_base, remaining_base)
                from_services = min(amount - from_base, remaining_services)
                from_base = amount - from_services
                _take_proportionally(remaining_items, from_base)
                remaining_services -= from_services
        else:
            applies_to = AppliesTo.BASE
            targets = [i.id for i in items if matches_target(i, discount.scope, discount.target_id)]
            scope_remaining = sum((remaining_items[t] for t in targets), ZERO)
            amount = _reduction(scope_remaining, discount.percent, discount.fixed)
            _take_proportionally(remaining_items, amount, targets)

        contributions.append(
            AppliedContribution(
                id=discount.id,
                scope=discount.scope.value,
                target_id=discount.target_id,
                applies_to=applies_to.value,
                label=discount.label,
                amount=amount,
            )
        )

    applied_total = sum((c.amount for c in contributions), ZERO)
    discount_total = services.line_discount + costs.line_discount + applied_total
    total = max(ZERO, base + services.gross + costs.gross - discount_total)

    item_prices = tuple(
        ItemPrice(
            item_id=item.id,
            point_id=item.point_id,
            unit_id=item.unit_id,
            days=item.duration.total_days,
            reference_price=prices[item.id],
            discount=prices[item.id] - remaining_items[item.id],
        )
        for item in items
    )

    return Totals(
        base=_round(base),
        services=_round(services.gross),
        costs=_round(costs.gross),
        discount=_round(discount_total),
        total=_round(total),
        services_line_discount=_round(services.line_discount),
        costs_line_discount=_round(costs.line_discount),
        applied_discounts=tuple(contributions),
        items=item_prices,
    )

