"""Prospect cart kept in a pluggable key-value store.

The cart lives wherever the caller's ``KeyValueStore`` puts it (browser
storage behind an API, Redis, a dict in tests). Stored carts written by older
clients (a bare list, or ``durationDays`` without parts) are normalised on
read, and unusable entries are dropped.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol
from uuid import uuid4

from pydantic import ValidationError

from menu_negotiation.durations import days_to_duration_parts, normalize_duration_parts
from menu_negotiation.pricing import promotion_active
from menu_negotiation.schemas import CartItem, DurationParts, Promotion

CART_STORAGE_KEY = "menu_cart"
CART_FORMAT_VERSION = 2
MAX_AGENCY_MARKUP_PERCENT = 500


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _first_set(*values: Any) -> Any:
    return next((v for v in values if v is not None), None)


def apply_agency_markup(value: Any, percent: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    try:
        pct = float(percent)
    except (TypeError, ValueError):
        pct = 0.0
    pct = max(0.0, min(MAX_AGENCY_MARKUP_PERCENT, pct)) if math.isfinite(pct) else 0.0
    if pct <= 0:
        return number
    return round(number * (1 + pct / 100), 2)


def is_same_selection(item: CartItem, point_id: str, unit_id: Optional[str]) -> bool:
    return item.point_id == point_id and (item.unit_id or "") == (unit_id or "")


def normalize_item(raw: Any) -> Optional[CartItem]:
    if not isinstance(raw, dict):
        return None
    try:
        return CartItem.model_validate(raw)
    except ValidationError:
        return None


def effective_promotion(unit: Optional[Mapping], point: Optional[Mapping]) -> Optional[dict]:
    raw = None
    if unit:
        raw = unit.get("effectivePromotion") or unit.get("promotion")
    if raw is None and point:
        raw = point.get("promotion")
    if not isinstance(raw, dict):
        return None
    promo = Promotion.model_validate(raw)
    return raw if promotion_active(promo, datetime.now(timezone.utc)) else None


def build_snapshot(point: Mapping, unit: Optional[Mapping], markup_percent: float = 0) -> dict:
    """Denormalised copy of the catalog entry as the prospect saw it."""
    unit = unit or {}

    def priced(value: Any) -> Optional[float]:
        if value is None:
            return None
        return apply_agency_markup(value, markup_percent)

    street = ", ".join(v for v in (_clean(point.get("addressStreet")), _clean(point.get("addressNumber"))) if v)
    address_line = " • ".join(v for v in (street, _clean(point.get("addressDistrict"))) if v)
    promotion = effective_promotion(unit, point)

    return {
        "pointName": _clean(point.get("name")) or "Ponto",
        "pointType": point.get("type"),
        "addressLine": address_line or None,
        "city": _clean(point.get("addressCity")) or None,
        "state": _clean(point.get("addressState")) or None,
        "imageUrl": unit.get("imageUrl") or point.get("mainImageUrl") or None,
        "unitLabel": _clean(unit.get("label")) or None,
        "unitType": unit.get("unitType"),
        "priceMonth": priced(_first_set(unit.get("priceMonth"), point.get("basePriceMonth"))),
        "priceWeek": priced(_first_set(unit.get("priceWeek"), point.get("basePriceWeek"))),
        "pointBasePriceMonth": priced(point.get("basePriceMonth")),
        "pointBasePriceWeek": priced(point.get("basePriceWeek")),
        "unitPriceMonth": priced(unit.get("priceMonth")),
        "unitPriceWeek": priced(unit.get("priceWeek")),
        "productionCosts": point.get("productionCosts"),
        "effectivePromotion": promotion,
    }


class CartStore:
    def __init__(
        self,
        store: KeyValueStore,
        key: str = CART_STORAGE_KEY,
        markup_percent: float = 0,
        id_factory: Callable[[], str] = lambda: f"mc_{uuid4().hex[:12]}",
    ) -> None:
        self.store = store
        self.key = key
        self.markup_percent = markup_percent
        self.id_factory = id_factory

    def read(self) -> list[CartItem]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
        if isinstance(parsed, dict):
            raw_items = parsed.get("items")
        else:
            raw_items = parsed
        if not isinstance(raw_items, list):
            return []
        items = []
        for entry in raw_items:
            item = normalize_item(entry)
            if item is not None:
                items.append(item)
        return items

    def write(self, items: list[CartItem]) -> None:
        payload = {
            "version": CART_FORMAT_VERSION,
            "updatedAt": _now_iso(),
            "items": [item.dump() for item in items],
        }
        self.store.set(self.key, json.dumps(payload))

    def count(self) -> int:
        return len(self.read())

    def add(
        self,
        point: Mapping,
        unit: Optional[Mapping] = None,
        duration: Optional[Mapping] = None,
        duration_days: Optional[int] = None,
    ) -> tuple[bool, CartItem]:
        """Add one point (or one of its units) to the cart.

        Returns ``(False, existing_item)`` when the same point/unit pair is
        already there; the cart is left as it was.
        """
        items = self.read()
        point_id = _clean(point.get("id"))
        unit_id = _clean(unit.get("id")) if unit else None
        unit_id = unit_id or None

        for item in items:
            if is_same_selection(item, point_id, unit_id):
                return False, item

        parts = normalize_duration_parts(duration) if duration else days_to_duration_parts(duration_days)
        item = CartItem(
            id=self.id_factory(),
            point_id=point_id,
            unit_id=unit_id,
            duration=DurationParts(**parts),
            added_at=_now_iso(),
            snapshot=build_snapshot(point, unit, self.markup_percent),
        )
        items.append(item)
        self.write(items)
        return True, item

    def remove(self, item_id: str) -> None:
        self.write([item for item in self.read() if item.id != item_id])

    def update_duration(self, item_id: str, duration: Mapping) -> None:
        parts = DurationParts(**normalize_duration_parts(duration))
        items = [
            item.model_copy(update={"duration": parts, "duration_days": parts.total_days}) if item.id == item_id else item
            for item in self.read()
        ]
        self.write(items)

    def apply_duration_to_all(self, duration: Mapping) -> None:
        parts = DurationParts(**normalize_duration_parts(duration))
        self.write(
            [item.model_copy(update={"duration": parts, "duration_days": parts.total_days}) for item in self.read()]
        )

    def clear(self) -> None:
        self.write([])
