from menu_negotiation.context import parse_request_context
from menu_negotiation.durations import (
    days_to_duration_parts,
    duration_parts_to_days,
    format_duration_parts,
    normalize_duration_parts,
)
from menu_negotiation.notifications import build_link_url
from menu_negotiation.schemas import Audience, MenuFlow


def test_aliases_resolve_the_same_way() -> None:
    short = parse_request_context({"rid": "mr_1", "t": "tok"})
    long = parse_request_context({"requestId": "mr_1", "token": "tok"})
    assert short == long
    assert short.request_id == "mr_1"
    assert short.token == "tok"
    assert short.audience is None


def test_precedence() -> None:
    ctx = parse_request_context(
        {"rid": "mr_query", "token": "query-token", "view": "OWNER"},
        body={"token": "body-token", "requestId": "mr_body"},
        path_request_id="mr_path",
    )
    assert ctx.request_id == "mr_path"
    assert ctx.token == "body-token"
    assert ctx.audience == Audience.OWNER

    ctx = parse_request_context({"t": "  ", "aud": "nobody"}, body={"t": None}, default_audience=Audience.CLIENT)
    assert ctx.token is None
    assert ctx.request_id is None
    assert ctx.audience == Audience.CLIENT


def test_link_urls() -> None:
    url = build_link_url(Audience.OWNER, "mr_1", "abc.def", base_url="https://midia.example.com/")
    assert url == "https://midia.example.com/menu/dono?rid=mr_1&t=abc.def"
    assert "/menu/proposta?" in build_link_url(Audience.CLIENT, "mr_1", "abc.def", base_url="https://x")


def test_duration_conversions() -> None:
    assert duration_parts_to_days({"years": 1, "months": 2, "days": 3}) == 428
    assert duration_parts_to_days({}) == 1
    assert duration_parts_to_days({"years": 500}) == 36500
    assert normalize_duration_parts({"years": -1, "months": "2", "days": 3.7}) == {"years": 0, "months": 2, "days": 3}
    assert days_to_duration_parts(400) == {"years": 1, "months": 1, "days": 5}
    assert days_to_duration_parts(None) == {"years": 0, "months": 1, "days": 0}
    assert days_to_duration_parts("nope") == {"years": 0, "months": 1, "days": 0}


def test_duration_labels() -> None:
    assert format_duration_parts({"years": 1, "months": 2}) == "1 ano, 2 meses"
    assert format_duration_parts({"months": 1, "days": 1}) == "1 mês, 1 dia"
    assert format_duration_parts({"days": 15}) == "15 dias"


def test_flow_parsing() -> None:
    assert MenuFlow.parse("Agency") == MenuFlow.AGENCY
    assert MenuFlow.parse("promotions") == MenuFlow.PROMOTIONS
    assert MenuFlow.parse(None) == MenuFlow.DEFAULT
    assert MenuFlow.parse("other") == MenuFlow.DEFAULT
