"""Tests for the identity session context."""
import pytest

from core.identity import Identity, SessionContext
from services.exceptions import UnauthenticatedError

ALICE = Identity(uid="uid-alice", email="alice@example.com")


def test__session__starts_signed_out() -> None:
    session = SessionContext()
    assert session.identity is None
    assert not session.is_authenticated
    with pytest.raises(UnauthenticatedError):
        session.require_identity()


def test__sign_in__sets_identity_and_notifies() -> None:
    session = SessionContext()
    seen: list[Identity | None] = []
    session.add_listener(seen.append)

    session.sign_in(ALICE)

    assert session.identity == ALICE
    assert session.require_identity() == ALICE
    assert seen == [ALICE]


def test__sign_out__clears_identity_and_notifies_once() -> None:
    """Signing out twice only notifies on the real transition."""
    session = SessionContext(ALICE)
    seen: list[Identity | None] = []
    session.add_listener(seen.append)

    session.sign_out()
    session.sign_out()

    assert session.identity is None
    assert seen == [None]


def test__add_listener__remove_stops_notifications() -> None:
    session = SessionContext()
    seen: list[Identity | None] = []
    remove = session.add_listener(seen.append)

    remove()
    remove()
    session.sign_in(ALICE)

    assert seen == []


def test__identity__is_immutable() -> None:
    with pytest.raises(AttributeError):
        ALICE.uid = "other"  # type: ignore[misc]
