from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from menu_negotiation.db import Base
from menu_negotiation.errors import ErrorKind, Failure, http_status_for
from menu_negotiation.schemas import Audience
from menu_negotiation.tokens import LinkAuthority, TokenStatus, live_link


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_issue_and_verify(db) -> None:
    clock = Clock()
    authority = LinkAuthority("secret", ttl_days=30, clock=clock)
    link = authority.issue(db, "mr_1", Audience.CLIENT)
    assert link.expires_at == clock.now + timedelta(days=30)
    assert authority.audience_of(link.token) == Audience.CLIENT

    clock.now += timedelta(hours=2)
    check = authority.verify(db, "mr_1", link.token, Audience.CLIENT)
    assert check.ok
    assert check.audience == Audience.CLIENT

    authority.verify(db, "mr_1", link.token, Audience.CLIENT, touch=False)
    db.commit()

    row = live_link(db, "mr_1", Audience.CLIENT)
    assert row.opened_at_last.replace(tzinfo=timezone.utc) == clock.now


def test_expired_after_ttl(db) -> None:
    clock = Clock()
    authority = LinkAuthority("secret", ttl_days=30, clock=clock)
    link = authority.issue(db, "mr_1", Audience.OWNER)

    clock.now += timedelta(days=29, hours=23)
    assert authority.verify(db, "mr_1", link.token, Audience.OWNER).ok

    clock.now += timedelta(hours=2)
    check = authority.verify(db, "mr_1", link.token, Audience.OWNER)
    assert check.status == TokenStatus.EXPIRED
    assert check.to_error().kind == ErrorKind.EXPIRED


def test_regenerate_revokes_previous_token(db) -> None:
    authority = LinkAuthority("secret")
    old_client = authority.issue(db, "mr_1", Audience.CLIENT)
    owner = authority.issue(db, "mr_1", Audience.OWNER)

    new_client = authority.regenerate(db, "mr_1", Audience.CLIENT)
    assert new_client.token != old_client.token

    check = authority.verify(db, "mr_1", old_client.token, Audience.CLIENT)
    assert check.status == TokenStatus.REVOKED
    assert check.to_error().kind == ErrorKind.REVOKED
    assert authority.verify(db, "mr_1", new_client.token, Audience.CLIENT).ok
    assert authority.verify(db, "mr_1", owner.token, Audience.OWNER).ok


@pytest.mark.parametrize(
    "mutate",
    [
        lambda token: token[:-2] + ("AA" if not token.endswith("AA") else "BB"),
        lambda token: "x" + token,
        lambda token: token.split(".")[0],
        lambda token: "",
        lambda token: "abc.\u00e9",
        lambda token: "\u00e9.abc",
        lambda token: token.split(".")[0] + ".\u00e9" + token.split(".")[1],
    ],
)
def test_tampered_tokens_are_invalid(db, mutate) -> None:
    authority = LinkAuthority("secret")
    link = authority.issue(db, "mr_1", Audience.CLIENT)
    check = authority.verify(db, "mr_1", mutate(link.token), Audience.CLIENT)
    assert check.status == TokenStatus.INVALID


def test_token_is_bound_to_request_audience_and_secret(db) -> None:
    authority = LinkAuthority("secret")
    link = authority.issue(db, "mr_1", Audience.CLIENT)

    assert authority.verify(db, "mr_2", link.token, Audience.CLIENT).status == TokenStatus.INVALID
    assert authority.verify(db, "mr_1", link.token, Audience.OWNER).status == TokenStatus.INVALID
    assert LinkAuthority("other").verify(db, "mr_1", link.token, Audience.CLIENT).status == TokenStatus.INVALID
    assert LinkAuthority("other").audience_of(link.token) is None


def test_invalid_token_maps_to_forbidden(db) -> None:
    authority = LinkAuthority("secret")
    assert authority.claims("not-a-token") is None
    check = authority.verify(db, "mr_1", "not-a-token", Audience.CLIENT)
    failure = Failure.from_error(check.to_error())
    assert failure.kind == ErrorKind.GENERIC
    assert failure.reason == "FORBIDDEN"
    assert http_status_for(failure) == 403
    assert http_status_for(Failure(ErrorKind.MISSING_TOKEN, "sem token")) == 401
    assert http_status_for(Failure(ErrorKind.REVOKED, "revogado")) == 410
    assert http_status_for(Failure(ErrorKind.NOT_FOUND, "nada")) == 404


@pytest.mark.parametrize("token", ["abc.é", "é.abc", "abc.\ud800", "ção"])
def test_non_ascii_tokens_have_no_audience(db, token) -> None:
    authority = LinkAuthority("secret")
    assert authority.claims(token) is None
    assert authority.audience_of(token) is None
    assert authority.verify(db, "mr_1", token, Audience.OWNER).status == TokenStatus.INVALID
