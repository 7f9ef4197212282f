"""
Store-side authorization rules.

These checks run inside the note store on every read, query, write and delete,
independently of the client-side gating in the sync engine. They are expressed
through the same resolver so the two can never disagree.
"""
from core.identity import Identity
from schemas.note import AccessLevel, NoteDocument
from services.exceptions import AccessDeniedError, UnauthenticatedError
from services.permissions import (
    can_delete,
    can_read,
    can_write_fields,
    resolve_for_identity,
)


def require_actor(actor: Identity | None, operation: str) -> Identity:
    """Every store operation requires an identity."""
    if actor is None:
        raise UnauthenticatedError(f"Must be signed in to {operation}")
    return actor


def check_read(note: NoteDocument, actor: Identity | None) -> AccessLevel:
    """
    Allow reading a note when the actor has any access.

    Returns:
        The resolved access level.

    Raises:
        AccessDeniedError: If the actor has no access.
    """
    level = resolve_for_identity(note, actor)
    if not can_read(level):
        raise AccessDeniedError("read", note.id)
    return level


def check_update(note: NoteDocument, actor: Identity | None, fields: set[str]) -> AccessLevel:
    """
    Allow a partial update when every field is writable at the actor's level.

    Raises:
        AccessDeniedError: If any field is outside the actor's writable set.
    """
    level = resolve_for_identity(note, actor)
    if not can_write_fields(level, fields):
        raise AccessDeniedError(f"update {', '.join(sorted(fields))}", note.id)
    return level


def check_delete(note: NoteDocument, actor: Identity | None) -> None:
    """Only the owner may delete."""
    if not can_delete(resolve_for_identity(note, actor)):
        raise AccessDeniedError("delete", note.id)


def check_owner_query(owner_uid: str, actor: Identity | None) -> None:
    """Listing notes by owner is only allowed for that owner."""
    actor = require_actor(actor, "list notes")
    if actor.uid != owner_uid:
        raise AccessDeniedError("list notes owned by another user")


def check_shared_query(email: str, actor: Identity | None) -> None:
    """Listing notes shared with an email is only allowed for that email's holder."""
    actor = require_actor(actor, "list shared notes")
    if actor.email is None or actor.email != email:
        raise AccessDeniedError("list notes shared with another user")
