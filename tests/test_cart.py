import json

from menu_negotiation.cart import (
    CART_STORAGE_KEY,
    CartStore,
    InMemoryStore,
    apply_agency_markup,
    build_snapshot,
)

POINT = {
    "id": "pt_1",
    "name": "Av. Paulista 1000",
    "type": "OUTDOOR",
    "addressStreet": "Av. Paulista",
    "addressNumber": "1000",
    "addressDistrict": "Bela Vista",
    "addressCity": "São Paulo",
    "addressState": "SP",
    "basePriceMonth": 8500,
    "basePriceWeek": 2500,
}
UNIT = {"id": "un_1", "label": "Face A", "priceMonth": 9000}


def _store() -> CartStore:
    ids = iter(f"mc_{n}" for n in range(1, 100))
    return CartStore(InMemoryStore(), id_factory=lambda: next(ids))


def test_add_keeps_one_entry_per_selection() -> None:
    cart = _store()
    added, item = cart.add(POINT, UNIT, duration={"months": 2})
    assert added
    assert item.duration.months == 2
    assert item.duration_days == 60

    added_again, existing = cart.add(POINT, UNIT)
    assert not added_again
    assert existing.id == item.id

    added_point, _ = cart.add(POINT)
    assert added_point
    assert cart.count() == 2


def test_snapshot_is_captured_at_add_time() -> None:
    cart = _store()
    _, item = cart.add(POINT, UNIT)
    snap = item.snapshot
    assert snap.point_name == "Av. Paulista 1000"
    assert snap.unit_label == "Face A"
    assert snap.address_line == "Av. Paulista, 1000 • Bela Vista"
    assert snap.price_month == 9000
    assert snap.price_week == 2500
    assert snap.point_base_price_month == 8500


def test_duration_updates_and_removal() -> None:
    cart = _store()
    _, first = cart.add(POINT, UNIT)
    _, second = cart.add(POINT)
    assert first.duration_days == 30

    cart.update_duration(first.id, {"years": 1})
    items = {item.id: item for item in cart.read()}
    assert items[first.id].duration_days == 365
    assert items[second.id].duration_days == 30

    cart.apply_duration_to_all({"days": 14})
    assert [item.duration_days for item in cart.read()] == [14, 14]

    cart.remove(first.id)
    assert [item.id for item in cart.read()] == [second.id]

    cart.clear()
    assert cart.read() == []


def test_legacy_and_broken_storage_is_normalised() -> None:
    legacy = [
        {"id": "mc_1", "pointId": "pt_1", "unitId": "", "durationDays": 45, "snapshot": {"mediaPointName": "Antigo"}},
        {"id": "", "pointId": "pt_2"},
        "junk",
    ]
    cart = CartStore(InMemoryStore({CART_STORAGE_KEY: json.dumps(legacy)}))
    items = cart.read()
    assert len(items) == 1
    assert items[0].unit_id is None
    assert items[0].duration.model_dump() == {"years": 0, "months": 1, "days": 15}
    assert items[0].snapshot.point_name == "Antigo"

    assert CartStore(InMemoryStore({CART_STORAGE_KEY: "{not json"})).read() == []


def test_written_format() -> None:
    store = InMemoryStore()
    cart = CartStore(store, id_factory=lambda: "mc_1")
    cart.add(POINT, UNIT)
    stored = json.loads(store.get(CART_STORAGE_KEY))
    assert stored["version"] == 2
    assert stored["items"][0]["pointId"] == "pt_1"
    assert stored["items"][0]["unitId"] == "un_1"


def test_agency_markup() -> None:
    assert apply_agency_markup(1000, 20) == 1200
    assert apply_agency_markup(1000, 900) == 6000
    assert apply_agency_markup(1000, -5) == 1000
    assert apply_agency_markup("abc", 10) is None

    snapshot = build_snapshot(POINT, UNIT, markup_percent=10)
    assert snapshot["priceMonth"] == 9900
    assert snapshot["pointBasePriceMonth"] == 9350

    cart = CartStore(InMemoryStore(), markup_percent=10)
    _, item = cart.add(POINT)
    assert item.snapshot.price_month == 9350


def test_promotion_follows_the_unit_then_the_point() -> None:
    promo = {"discountType": "PERCENT", "discountValue": 10}
    point = {**POINT, "promotion": promo}
    assert build_snapshot(point, UNIT)["effectivePromotion"] == promo
    hidden = {**promo, "showInMediaKit": False}
    assert build_snapshot(point, {**UNIT, "effectivePromotion": hidden})["effectivePromotion"] is None
