"""
Collaborator roster operations.

Both operations are read-modify-write over a single note: read the current
roster, compute the new one, write `collaborators` and `collaborator_emails`
back together. There is no concurrency token, so two owners' clients editing
the roster at the same moment can lose one change (last writer wins, the same
policy as content edits).
"""
import logging

from core.identity import SessionContext
from models.base import utc_now
from schemas.note import Collaborator, CollaboratorPermission, NoteDocument, NoteFieldsUpdate
from schemas.validators import normalize_email
from services.exceptions import AccessDeniedError
from services.note_store import NoteStore
from services.permissions import can_manage_collaborators, resolve_for_identity
from services.store_rules import require_actor

logger = logging.getLogger(__name__)


def project_emails(existing: list[str], collaborators: list[Collaborator]) -> list[str]:
    """
    Rebuild the email projection for a roster.

    Keeps the order of emails already indexed, drops emails no longer on the
    roster, and appends new ones, each exactly once.
    """
    roster = [c.email for c in collaborators]
    wanted = set(roster)
    emails = []
    for email in [*existing, *roster]:
        if email in wanted and email not in emails:
            emails.append(email)
    return emails


class RosterManager:
    """Adds, updates and removes collaborators on notes owned by the session's identity."""

    def __init__(self, store: NoteStore, session: SessionContext) -> None:
        self._store = store
        self._session = session

    async def _read_for_owner(self, note_id: str, operation: str) -> NoteDocument:
        identity = require_actor(self._session.identity, operation)
        note = await self._store.get_once(identity, note_id)
        if not can_manage_collaborators(resolve_for_identity(note, identity)):
            raise AccessDeniedError(operation, note_id)
        return note

    async def upsert_collaborator(
        self,
        note_id: str,
        email: str,
        permission: CollaboratorPermission,
        uid: str | None = None,
    ) -> NoteDocument:
        """
        Add a collaborator, or change the permission of an existing one.

        An existing entry keeps its position, `added_at` and `uid` (a missing
        uid is filled in when one is given). A new entry is appended with
        `added_at` set to now.

        Returns:
            The note as written.

        Raises:
            ValueError: If the email is malformed or belongs to the owner.
            NoteNotFoundError: If the note is missing at read or write time.
            AccessDeniedError: If the signed-in user isn't the owner.
        """
        email = normalize_email(email)
        permission = CollaboratorPermission(permission)
        note = await self._read_for_owner(note_id, "manage collaborators")
        if note.owner_email and email == note.owner_email:
            raise ValueError("The owner cannot be added as a collaborator")

        collaborators = list(note.collaborators)
        for index, existing in enumerate(collaborators):
            if existing.email == email:
                collaborators[index] = existing.model_copy(
                    update={"permission": permission, "uid": existing.uid or uid},
                )
                break
        else:
            collaborators.append(
                Collaborator(email=email, uid=uid, permission=permission, added_at=utc_now()),
            )

        emails = project_emails(note.collaborator_emails, collaborators)
        written = await self._store.update_fields(
            self._session.identity,
            note_id,
            NoteFieldsUpdate(collaborators=collaborators, collaborator_emails=emails),
        )
        logger.info("Collaborator %s set to %s on note %s", email, permission, note_id)
        return written

    async def remove_collaborator(self, note_id: str, email: str) -> NoteDocument:
        """
        Remove a collaborator by email.

        Removing an email that isn't on the roster succeeds without writing.

        Returns:
            The note after removal (unchanged if the email was absent).
        """
        email = email.strip()
        note = await self._read_for_owner(note_id, "manage collaborators")
        if note.find_collaborator(email) is None and email not in note.collaborator_emails:
            return note

        collaborators = [c for c in note.collaborators if c.email != email]
        emails = project_emails(note.collaborator_emails, collaborators)
        written = await self._store.update_fields(
            self._session.identity,
            note_id,
            NoteFieldsUpdate(collaborators=collaborators, collaborator_emails=emails),
        )
        logger.info("Collaborator %s removed from note %s", email, note_id)
        return written
