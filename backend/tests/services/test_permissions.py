"""Tests for the permission resolver."""
from datetime import UTC, datetime

import pytest

from core.identity import Identity
from schemas.note import AccessLevel, Collaborator, CollaboratorPermission, NoteDocument
from services.permissions import (
    can_delete,
    can_edit,
    can_manage_collaborators,
    can_read,
    can_write_fields,
    resolve_for_identity,
    resolve_permission,
)

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def make_note(*collaborators: Collaborator, owner: str = "uid-owner") -> NoteDocument:
    """Build a note document with the given collaborators."""
    return NoteDocument(
        id="note-1",
        owner=owner,
        owner_email="owner@example.com",
        collaborators=list(collaborators),
        collaborator_emails=[c.email for c in collaborators],
        created_at=NOW,
        updated_at=NOW,
    )


def collaborator(email: str, permission: str, uid: str | None = None) -> Collaborator:
    """Build a collaborator entry."""
    return Collaborator(email=email, uid=uid, permission=permission, added_at=NOW)


def test__resolve_permission__owner_by_uid() -> None:
    """The owner's uid resolves to owner regardless of email."""
    note = make_note()
    assert resolve_permission(note, "uid-owner", None) == AccessLevel.OWNER
    assert resolve_permission(note, "uid-owner", "someone-else@example.com") == AccessLevel.OWNER


def test__resolve_permission__owner_email_alone_is_not_ownership() -> None:
    """Ownership is decided by uid only."""
    note = make_note()
    assert resolve_permission(note, "uid-other", "owner@example.com") == AccessLevel.NONE


def test__resolve_permission__collaborator_matched_by_email() -> None:
    """A collaborator added before their uid was known matches by email."""
    note = make_note(collaborator("bob@x.com", "viewer"))
    assert resolve_permission(note, None, "bob@x.com") == AccessLevel.VIEWER
    assert resolve_permission(note, "uid-bob", "bob@x.com") == AccessLevel.VIEWER


def test__resolve_permission__collaborator_matched_by_uid() -> None:
    """A collaborator entry carrying a uid matches even if the email changed."""
    note = make_note(collaborator("bob@x.com", "editor", uid="uid-bob"))
    assert resolve_permission(note, "uid-bob", "bob@new.com") == AccessLevel.EDITOR


def test__resolve_permission__returns_entry_permission() -> None:
    """The matching entry's permission literal is returned."""
    note = make_note(
        collaborator("viewer@example.com", "viewer"),
        collaborator("editor@example.com", "editor"),
    )
    assert resolve_permission(note, "u1", "viewer@example.com") == AccessLevel.VIEWER
    assert resolve_permission(note, "u2", "editor@example.com") == AccessLevel.EDITOR


def test__resolve_permission__stranger_is_none() -> None:
    """No ownership and no entry resolves to none."""
    note = make_note(collaborator("bob@x.com", "editor"))
    assert resolve_permission(note, "uid-carol", "carol@example.com") == AccessLevel.NONE


def test__resolve_permission__unauthenticated_is_none() -> None:
    """Without identity nothing matches, even entries without a uid."""
    note = make_note(collaborator("bob@x.com", "editor"))
    assert resolve_permission(note, None, None) == AccessLevel.NONE


def test__resolve_permission__is_deterministic() -> None:
    """Same inputs always give the same answer."""
    note = make_note(collaborator("bob@x.com", "editor", uid="uid-bob"))
    results = {resolve_permission(note, "uid-bob", "bob@x.com") for _ in range(10)}
    assert results == {AccessLevel.EDITOR}


@pytest.mark.parametrize("uid", ["uid-owner", "uid-bob", "uid-carol", None])
@pytest.mark.parametrize("email", ["owner@example.com", "bob@x.com", "carol@example.com", None])
def test__resolve_permission__total_and_owner_iff_uid_matches(
    uid: str | None,
    email: str | None,
) -> None:
    """Every input yields one of the four levels, and owner exactly when the uid matches."""
    note = make_note(collaborator("bob@x.com", "viewer"))
    level = resolve_permission(note, uid, email)
    assert level in set(AccessLevel)
    assert (level == AccessLevel.OWNER) == (uid == note.owner)


def test__resolve_for_identity__none_identity() -> None:
    """Signed-out viewers have no access."""
    assert resolve_for_identity(make_note(), None) == AccessLevel.NONE


def test__resolve_for_identity__uses_uid_and_email() -> None:
    """Identity fields are passed through to the resolver."""
    note = make_note(collaborator("bob@x.com", CollaboratorPermission.EDITOR))
    bob = Identity(uid="uid-bob", email="bob@x.com")
    assert resolve_for_identity(note, bob) == AccessLevel.EDITOR


@pytest.mark.parametrize(
    ("level", "read", "edit", "manage", "delete"),
    [
        (AccessLevel.OWNER, True, True, True, True),
        (AccessLevel.EDITOR, True, True, False, False),
        (AccessLevel.VIEWER, True, False, False, False),
        (AccessLevel.NONE, False, False, False, False),
    ],
)
def test__capabilities__per_level(
    level: AccessLevel,
    read: bool,
    edit: bool,
    manage: bool,
    delete: bool,
) -> None:
    """Capability helpers follow the access hierarchy."""
    assert can_read(level) is read
    assert can_edit(level) is edit
    assert can_manage_collaborators(level) is manage
    assert can_delete(level) is delete


def test__can_write_fields__editor_limited_to_content_group() -> None:
    """Editors can write title/content/pinned but never the roster."""
    assert can_write_fields(AccessLevel.EDITOR, {"title", "content"})
    assert can_write_fields(AccessLevel.EDITOR, {"pinned"})
    assert not can_write_fields(AccessLevel.EDITOR, {"collaborators", "collaborator_emails"})
    assert can_write_fields(AccessLevel.OWNER, {"collaborators", "collaborator_emails"})
    assert not can_write_fields(AccessLevel.VIEWER, {"content"})


def test__can_write_fields__empty_write_is_rejected() -> None:
    """A write naming no fields is never authorized."""
    assert not can_write_fields(AccessLevel.OWNER, set())
