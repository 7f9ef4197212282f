"""
Permission resolution for notes.

The resolver is pure: it derives a viewer's effective access level from the
note's ownership and collaborator data alone. It gates every local mutation in
the sync engine and is mirrored exactly by the store rules.
"""
from core.identity import Identity
from schemas.note import AccessLevel, NoteDocument

# Fields each access level may write through update_fields
CONTENT_FIELDS = frozenset({"title", "content", "pinned"})
ROSTER_FIELDS = frozenset({"collaborators", "collaborator_emails"})

EDITABLE_FIELDS: dict[AccessLevel, frozenset[str]] = {
    AccessLevel.OWNER: CONTENT_FIELDS | ROSTER_FIELDS,
    AccessLevel.EDITOR: CONTENT_FIELDS,
    AccessLevel.VIEWER: frozenset(),
    AccessLevel.NONE: frozenset(),
}


def resolve_permission(
    note: NoteDocument,
    viewer_uid: str | None,
    viewer_email: str | None,
) -> AccessLevel:
    """
    Resolve the effective access level of a viewer on a note.

    Ownership is decided by uid only. A collaborator entry matches by email, or
    by uid when the entry carries one (entries added before the viewer's uid was
    known only match by email).

    Args:
        note: The note to check.
        viewer_uid: Identity-provider uid, or None when unauthenticated.
        viewer_email: The viewer's email, or None.

    Returns:
        Exactly one of owner, editor, viewer, none.
    """
    if viewer_uid is not None and note.owner == viewer_uid:
        return AccessLevel.OWNER

    for collaborator in note.collaborators:
        email_match = viewer_email is not None and collaborator.email == viewer_email
        uid_match = (
            viewer_uid is not None
            and collaborator.uid is not None
            and collaborator.uid == viewer_uid
        )
        if email_match or uid_match:
            return AccessLevel(collaborator.permission.value)

    return AccessLevel.NONE


def resolve_for_identity(note: NoteDocument, identity: Identity | None) -> AccessLevel:
    """Resolve the access level for an optional signed-in identity."""
    if identity is None:
        return AccessLevel.NONE
    return resolve_permission(note, identity.uid, identity.email)


def can_read(level: AccessLevel) -> bool:
    """Any resolved access allows reading."""
    return level != AccessLevel.NONE


def can_edit(level: AccessLevel) -> bool:
    """Owners and editors may change title, content and pinned."""
    return level in (AccessLevel.OWNER, AccessLevel.EDITOR)


def can_manage_collaborators(level: AccessLevel) -> bool:
    """Only the owner changes the roster."""
    return level == AccessLevel.OWNER


def can_delete(level: AccessLevel) -> bool:
    """Only the owner deletes a note."""
    return level == AccessLevel.OWNER


def can_write_fields(level: AccessLevel, fields: set[str] | frozenset[str]) -> bool:
    """Check that every field in a write is editable at this access level."""
    return bool(fields) and set(fields) <= EDITABLE_FIELDS[level]
