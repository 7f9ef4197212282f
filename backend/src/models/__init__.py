"""SQLAlchemy models."""
from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.note import Note, NoteCollaboratorEmail

__all__ = [
    "Base",
    "Note",
    "NoteCollaboratorEmail",
    "TimestampMixin",
    "UUIDv7Mixin",
]
