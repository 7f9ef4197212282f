"""Schemas for share links."""
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from schemas.note import AccessLevel


class ShareMode(StrEnum):
    """Mode requested by a share link."""

    VIEW = "view"
    EDIT = "edit"


class ShareLink(BaseModel):
    """A parsed share link."""

    model_config = ConfigDict(frozen=True)

    note_id: str
    mode: ShareMode = ShareMode.VIEW


class ShareAccess(BaseModel):
    """
    Outcome of visiting a share link.

    `can_edit` is only true for owners and editors who requested edit mode;
    `downgraded` marks an edit request served read-only.
    """

    model_config = ConfigDict(frozen=True)

    level: AccessLevel
    requested_mode: ShareMode
    can_read: bool
    can_edit: bool
    downgraded: bool = False
