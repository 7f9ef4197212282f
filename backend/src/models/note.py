"""Note model for storing shared notes and their collaborator roster."""
from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin


class Note(Base, UUIDv7Mixin, TimestampMixin):
    """
    Note model - one row per shared document.

    The collaborator roster is stored as a JSON list in insertion order. Its
    email projection lives in `note_collaborator_emails` so that "shared with me"
    is a plain equality join on every SQL backend.
    """

    __tablename__ = "notes"

    # id provided by UUIDv7Mixin
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    owner: Mapped[str] = mapped_column(
        String(255),
        index=True,
        comment="Identity-provider uid of the owner; never reassigned",
    )
    owner_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    collaborators: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    collaborator_email_rows: Mapped[list["NoteCollaboratorEmail"]] = relationship(
        back_populates="note",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="NoteCollaboratorEmail.position",
    )

    @property
    def collaborator_emails(self) -> list[str]:
        """Denormalized list of collaborator emails."""
        return [row.email for row in self.collaborator_email_rows]

    def set_collaborator_emails(self, emails: list[str]) -> None:
        """Replace the email projection, reusing rows that are still present."""
        existing = {row.email: row for row in self.collaborator_email_rows}
        rows = []
        for position, email in enumerate(emails):
            row = existing.get(email) or NoteCollaboratorEmail(email=email)
            row.position = position
            rows.append(row)
        self.collaborator_email_rows = rows


class NoteCollaboratorEmail(Base):
    """One row per (note, collaborator email): the queryable side of the roster."""

    __tablename__ = "note_collaborator_emails"

    note_id: Mapped[str] = mapped_column(
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    email: Mapped[str] = mapped_column(String(255), primary_key=True, index=True)
    position: Mapped[int] = mapped_column(default=0)

    note: Mapped[Note] = relationship(back_populates="collaborator_email_rows")
