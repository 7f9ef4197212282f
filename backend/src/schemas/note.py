"""Pydantic schemas for notes and their embedded collaborators."""
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from schemas.validators import normalize_email, validate_content_length, validate_title_length


class CollaboratorPermission(StrEnum):
    """Permission granted to a collaborator on a shared note."""

    VIEWER = "viewer"
    EDITOR = "editor"


class AccessLevel(StrEnum):
    """Effective access a viewer has on a note."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"
    NONE = "none"


class _DocumentModel(BaseModel):
    """Base for stored-document schemas: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Collaborator(_DocumentModel):
    """A collaborator entry embedded in a note, keyed by email."""

    email: str
    uid: str | None = None
    permission: CollaboratorPermission
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        """Normalize and validate the collaborator email."""
        return normalize_email(v)


class NoteDocument(_DocumentModel):
    """
    Authoritative note record as delivered by the store.

    `collaborator_emails` is a denormalized projection of `collaborators[*].email`
    kept for membership queries; the two are always written together.
    """

    id: str
    title: str = ""
    content: str = ""
    owner: str
    owner_email: str = ""
    owner_name: str = ""
    collaborators: list[Collaborator] = Field(default_factory=list)
    collaborator_emails: list[str] = Field(default_factory=list)
    pinned: bool = False
    created_at: datetime
    updated_at: datetime

    def find_collaborator(self, email: str) -> Collaborator | None:
        """Return the collaborator entry for an email, if any."""
        for collaborator in self.collaborators:
            if collaborator.email == email:
                return collaborator
        return None


class NoteCreate(BaseModel):
    """Schema for creating a new note. Owner fields come from the creating identity."""

    title: str = "Untitled Note"
    content: str = ""
    pinned: bool = False

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str) -> str:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("content")
    @classmethod
    def check_content_length(cls, v: str) -> str:
        """Validate content length."""
        return validate_content_length(v)


class NoteFieldsUpdate(BaseModel):
    """
    Partial update of the mutable note fields.

    Only fields that are explicitly set are written (use `model_dump(exclude_unset=True)`).
    `owner`, the owner snapshot, `created_at` and `updated_at` are never client-writable.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    content: str | None = None
    pinned: bool | None = None
    collaborators: list[Collaborator] | None = None
    collaborator_emails: list[str] | None = None

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str | None) -> str | None:
        """Validate title length (if provided)."""
        return validate_title_length(v)

    @field_validator("content")
    @classmethod
    def check_content_length(cls, v: str | None) -> str | None:
        """Validate content length (if provided)."""
        return validate_content_length(v)

    @model_validator(mode="after")
    def check_roster_fields_together(self) -> "NoteFieldsUpdate":
        """
        Require the roster and its email projection to be written together and to agree.
        """
        fields = self.model_fields_set
        has_roster = "collaborators" in fields
        has_emails = "collaborator_emails" in fields
        if has_roster != has_emails:
            raise ValueError("collaborators and collaborator_emails must be updated together")
        if has_roster:
            roster_emails = [c.email for c in self.collaborators or []]
            if len(set(roster_emails)) != len(roster_emails):
                raise ValueError("collaborators must contain at most one entry per email")
            emails = self.collaborator_emails or []
            if len(set(emails)) != len(emails) or set(emails) != set(roster_emails):
                raise ValueError("collaborator_emails must equal the set of collaborator emails")
        return self

    def field_group(self) -> set[str]:
        """Names of the fields this update writes."""
        return set(self.model_fields_set)


class NoteSnapshot(BaseModel):
    """The title/content pair committed by an editor, used to tell echoes from foreign edits."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    content: str = ""
