import pytest

from menu_negotiation import state_machine
from menu_negotiation.errors import DraftInvalid, RequestLocked, SubmissionInvalid, TransitionRejected
from menu_negotiation.schemas import AppliesTo, CartItem, MenuRequestCreate, QuoteDraft, RequestStatus

ITEMS = [
    CartItem.model_validate({"id": "mc_1", "pointId": "pt_1", "unitId": "un_1", "snapshot": {"priceMonth": 1000}}),
    CartItem.model_validate({"id": "mc_2", "pointId": "pt_2", "snapshot": {"priceMonth": 500}}),
]


def _submission(**fields) -> MenuRequestCreate:
    payload = {
        "companyId": 1,
        "customerName": "Maria",
        "customerEmail": "maria@example.com",
        "customerPhone": "+55 (11) 98888-7777",
        "items": [item.dump() for item in ITEMS],
    }
    payload.update(fields)
    return MenuRequestCreate.model_validate(payload)


def test_owner_open() -> None:
    assert state_machine.owner_open(RequestStatus.SUBMITTED) == RequestStatus.IN_REVIEW
    for status in ("IN_REVIEW", "QUOTE_SENT", "REVISION_REQUESTED"):
        assert state_machine.owner_open(status) is None
    with pytest.raises(RequestLocked):
        state_machine.owner_open("APPROVED")


def test_send_quote_allowed_until_approved() -> None:
    for status in ("SUBMITTED", "IN_REVIEW", "QUOTE_SENT", "REVISION_REQUESTED"):
        assert state_machine.send_quote(status) == RequestStatus.QUOTE_SENT
    with pytest.raises(RequestLocked):
        state_machine.send_quote("APPROVED")


def test_next_version() -> None:
    assert state_machine.next_version([]) == 1
    assert state_machine.next_version([1, 3, 2]) == 4


def test_approve_guards() -> None:
    assert state_machine.approve("QUOTE_SENT", "SENT") == RequestStatus.APPROVED
    with pytest.raises(TransitionRejected):
        state_machine.approve("REVISION_REQUESTED", "REJECTED")
    with pytest.raises(TransitionRejected):
        state_machine.approve("IN_REVIEW", None)
    with pytest.raises(RequestLocked):
        state_machine.approve("QUOTE_SENT", "APPROVED")
    with pytest.raises(RequestLocked):
        state_machine.approve("APPROVED", "APPROVED")


def test_reject_guards() -> None:
    assert state_machine.reject("QUOTE_SENT", "SENT") == RequestStatus.REVISION_REQUESTED
    with pytest.raises(TransitionRejected) as excinfo:
        state_machine.reject("QUOTE_SENT", "REJECTED")
    assert not isinstance(excinfo.value, RequestLocked)
    with pytest.raises(RequestLocked):
        state_machine.reject("APPROVED", "APPROVED")


def test_submission_checks() -> None:
    state_machine.validate_submission(_submission())

    with pytest.raises(SubmissionInvalid):
        state_machine.validate_submission(_submission(items=[]))
    with pytest.raises(SubmissionInvalid):
        state_machine.validate_submission(_submission(customerName="   "))
    with pytest.raises(SubmissionInvalid):
        state_machine.validate_submission(_submission(customerPhone="98888-777"))
    with pytest.raises(SubmissionInvalid):
        state_machine.validate_submission(_submission(customerEmail="maria@example"))

    duplicate = ITEMS[0].dump() | {"id": "mc_9"}
    with pytest.raises(SubmissionInvalid):
        state_machine.validate_submission(_submission(items=[ITEMS[0].dump(), duplicate]))


def test_contact_helpers() -> None:
    assert state_machine.phone_digits("+55 (11) 98888-7777") == "5511988887777"
    assert state_machine.is_valid_email(" ana@empresa.com.br ")
    assert not state_machine.is_valid_email("ana@empresa")


def _draft(**fields) -> QuoteDraft:
    return QuoteDraft.model_validate(fields)


def test_scoped_discounts_apply_to_base() -> None:
    draft = _draft(discounts=[{"id": "d1", "scope": "FACE", "targetId": "un_1", "percent": 5, "appliesTo": "ALL"}])
    checked = state_machine.validate_draft(ITEMS, draft)
    assert checked.discounts[0].applies_to == AppliesTo.BASE

    by_item_id = _draft(discounts=[{"id": "d1", "scope": "FACE", "targetId": "mc_2", "fixed": 50}])
    assert state_machine.validate_draft(ITEMS, by_item_id).discounts[0].target_id == "mc_2"


@pytest.mark.parametrize(
    "fields",
    [
        {"discounts": [{"id": "d1", "scope": "GENERAL", "targetId": "un_1", "percent": 5}]},
        {"discounts": [{"id": "d1", "scope": "FACE", "targetId": None, "percent": 5}]},
        {"discounts": [{"id": "d1", "scope": "POINT", "targetId": "pt_404", "percent": 5}]},
        {"discounts": [{"id": "d1", "scope": "GENERAL"}]},
        {"discounts": [{"id": "d1", "scope": "GENERAL", "percent": 0, "fixed": 0}]},
        {"discounts": [{"id": "d1", "scope": "GENERAL", "percent": 5}, {"id": "d1", "scope": "GENERAL", "fixed": 5}]},
        {"gifts": [{"id": "g1", "scope": "POINT", "targetId": "pt_404"}]},
        {"services": [{"name": " ", "value": 10}]},
        {"costs": [{"name": "Lona", "value": -10}]},
    ],
)
def test_invalid_drafts(fields) -> None:
    with pytest.raises(DraftInvalid):
        state_machine.validate_draft(ITEMS, _draft(**fields))
