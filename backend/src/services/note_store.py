"""
Document store for notes.

Implements the store contract the sync core depends on: one-shot reads,
creation, partial-field updates, deletion, and live queries (by id, by owner,
and by collaborator email) delivered as change-feed subscriptions. Every
operation is checked against the store rules for the acting identity.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.identity import Identity
from models.base import ensure_utc, utc_now
from models.note import Note, NoteCollaboratorEmail
from schemas.note import Collaborator, NoteCreate, NoteDocument, NoteFieldsUpdate
from services import store_rules
from services.change_feed import ChangeBroker, Subscription
from services.exceptions import NoteNotFoundError, TransientIOError

logger = logging.getLogger(__name__)


class QueryKind(StrEnum):
    """Live query shapes supported by the store."""

    BY_ID = "by_id"
    OWNED_BY = "owned_by"
    SHARED_WITH = "shared_with"


@dataclass(frozen=True)
class NoteQuery:
    """
    A live query. List queries are always ordered by `updated_at` descending.
    """

    kind: QueryKind
    value: str

    @classmethod
    def by_id(cls, note_id: str) -> "NoteQuery":
        """A single note."""
        return cls(QueryKind.BY_ID, note_id)

    @classmethod
    def owned_by(cls, uid: str) -> "NoteQuery":
        """Notes whose owner equals the uid."""
        return cls(QueryKind.OWNED_BY, uid)

    @classmethod
    def shared_with(cls, email: str) -> "NoteQuery":
        """Notes whose collaborator emails contain the email."""
        return cls(QueryKind.SHARED_WITH, email)

    def __str__(self) -> str:
        return f"{self.kind}={self.value}"


def to_document(note: Note) -> NoteDocument:
    """Convert a Note row into the document schema."""
    return NoteDocument(
        id=note.id,
        title=note.title or "",
        content=note.content or "",
        owner=note.owner,
        owner_email=note.owner_email or "",
        owner_name=note.owner_name or "",
        collaborators=[Collaborator.model_validate(c) for c in note.collaborators or []],
        collaborator_emails=note.collaborator_emails,
        pinned=bool(note.pinned),
        created_at=ensure_utc(note.created_at),
        updated_at=ensure_utc(note.updated_at),
    )


class NoteStore:
    """
    SQLAlchemy-backed note store with change feeds.

    Each operation runs in its own session and commits before returning; the
    change is then published to the broker so live subscriptions (including
    the writer's own) re-evaluate.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: ChangeBroker | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.broker = broker or ChangeBroker()
        # Serializes writes from this process; SQLite permits one writer at a time
        self._write_lock = asyncio.Lock()

    # --- One-shot operations ---

    async def get_once(self, actor: Identity | None, note_id: str) -> NoteDocument:
        """
        Read a note once.

        Raises:
            NoteNotFoundError: If the note doesn't exist.
            AccessDeniedError: If the actor has no access to it.
            TransientIOError: On database failure.
        """
        store_rules.require_actor(actor, "read notes")
        try:
            async with self._session_factory() as session:
                note = await session.get(Note, note_id)
                if note is None:
                    raise NoteNotFoundError(note_id)
                document = to_document(note)
        except SQLAlchemyError as e:
            raise TransientIOError("read", str(e)) from e
        store_rules.check_read(document, actor)
        return document

    async def create(self, actor: Identity | None, data: NoteCreate) -> str:
        """
        Create a note owned by the actor.

        Returns:
            The id assigned to the new note.
        """
        actor = store_rules.require_actor(actor, "create notes")
        now = utc_now()
        note = Note(
            title=data.title,
            content=data.content,
            owner=actor.uid,
            owner_email=actor.email or "",
            owner_name=actor.display_name or "",
            collaborators=[],
            pinned=data.pinned,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._write_lock, self._session_factory() as session:
                session.add(note)
                await session.commit()
                note_id = note.id
        except SQLAlchemyError as e:
            raise TransientIOError("create", str(e)) from e
        logger.info("Created note %s for uid=%s", note_id, actor.uid)
        await self.broker.publish(note_id)
        return note_id

    async def update_fields(
        self,
        actor: Identity | None,
        note_id: str,
        fields: NoteFieldsUpdate | dict[str, Any],
    ) -> NoteDocument:
        """
        Merge the named fields into a note and stamp a fresh `updated_at`.

        Fields not named are left untouched. `updated_at` never moves backwards.

        Returns:
            The note as written.

        Raises:
            NoteNotFoundError: If the note doesn't exist.
            AccessDeniedError: If any field is outside the actor's writable set.
            TransientIOError: On database failure.
        """
        store_rules.require_actor(actor, "update notes")
        update = fields if isinstance(fields, NoteFieldsUpdate) else NoteFieldsUpdate(**fields)
        changed = update.field_group()
        if not changed:
            raise ValueError("No fields to update")
        try:
            async with self._write_lock, self._session_factory() as session:
                note = await session.get(Note, note_id)
                if note is None:
                    raise NoteNotFoundError(note_id)
                store_rules.check_update(to_document(note), actor, changed)
                self._apply(note, update)
                note.updated_at = max(utc_now(), ensure_utc(note.updated_at))
                await session.commit()
                document = to_document(note)
        except SQLAlchemyError as e:
            raise TransientIOError("update", str(e)) from e
        logger.debug("Updated note %s fields=%s", note_id, sorted(changed))
        await self.broker.publish(note_id)
        return document

    @staticmethod
    def _apply(note: Note, update: NoteFieldsUpdate) -> None:
        data = update.model_dump(exclude_unset=True)
        if "title" in data:
            note.title = data["title"]
        if "content" in data:
            note.content = data["content"]
        if "pinned" in data:
            note.pinned = data["pinned"]
        if "collaborators" in data:
            note.collaborators = [
                c.model_dump(by_alias=True, mode="json") for c in update.collaborators or []
            ]
            note.set_collaborator_emails(list(update.collaborator_emails or []))

    async def delete(self, actor: Identity | None, note_id: str) -> None:
        """
        Delete a note outright, revoking every collaborator's access.

        Raises:
            NoteNotFoundError: If the note doesn't exist.
            AccessDeniedError: If the actor isn't the owner.
        """
        store_rules.require_actor(actor, "delete notes")
        try:
            async with self._write_lock, self._session_factory() as session:
                note = await session.get(Note, note_id)
                if note is None:
                    raise NoteNotFoundError(note_id)
                store_rules.check_delete(to_document(note), actor)
                await session.delete(note)
                await session.commit()
        except SQLAlchemyError as e:
            raise TransientIOError("delete", str(e)) from e
        logger.info("Deleted note %s", note_id)
        await self.broker.publish(note_id)

    # --- Live queries ---

    def subscribe(self, actor: Identity | None, query: NoteQuery) -> Subscription:
        """
        Start a live query.

        Authorization failures are delivered as an `ErrorEvent` on the
        subscription rather than raised, like any other feed failure.
        """
        if query.kind == QueryKind.BY_ID:
            def is_relevant(note_id: str) -> bool:
                return note_id == query.value
        else:
            # Membership of list queries can change on any write
            def is_relevant(note_id: str) -> bool:
                return True

        async def evaluate() -> list[NoteDocument]:
            return await self.run_query(actor, query)

        return Subscription(self.broker, evaluate, is_relevant, str(query)).start()

    async def run_query(self, actor: Identity | None, query: NoteQuery) -> list[NoteDocument]:
        """
        Evaluate a query once, applying the store rules.

        A by-id query for a missing note returns an empty list.
        """
        if query.kind == QueryKind.OWNED_BY:
            store_rules.check_owner_query(query.value, actor)
            statement = (
                select(Note)
                .where(Note.owner == query.value)
                .order_by(Note.updated_at.desc())
            )
        elif query.kind == QueryKind.SHARED_WITH:
            store_rules.check_shared_query(query.value, actor)
            statement = (
                select(Note)
                .join(NoteCollaboratorEmail, NoteCollaboratorEmail.note_id == Note.id)
                .where(NoteCollaboratorEmail.email == query.value)
                .order_by(Note.updated_at.desc())
            )
        else:
            store_rules.require_actor(actor, "read notes")
            statement = select(Note).where(Note.id == query.value)

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                documents = [to_document(note) for note in result.scalars().unique()]
        except SQLAlchemyError as e:
            raise TransientIOError("query", str(e)) from e

        if query.kind == QueryKind.BY_ID:
            for document in documents:
                store_rules.check_read(document, actor)
        return documents
