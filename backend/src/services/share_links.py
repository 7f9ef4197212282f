"""Share links: `{base}/share/{note_id}?mode=view|edit`."""
from urllib.parse import parse_qs, quote, unquote, urlparse

from core.config import get_settings
from core.identity import Identity, SessionContext
from schemas.note import AccessLevel, NoteDocument
from schemas.share_link import ShareAccess, ShareLink, ShareMode
from services.note_store import NoteStore
from services.permissions import can_edit, can_read, resolve_for_identity
from services.sync_engine import NoteSyncEngine

SHARE_PATH_PREFIX = "/share/"


def build_share_link(note_id: str, mode: ShareMode, base_url: str | None = None) -> str:
    """Build the share URL for a note."""
    base = (base_url or get_settings().share_base_url).rstrip("/")
    return f"{base}{SHARE_PATH_PREFIX}{quote(note_id, safe='')}?mode={ShareMode(mode).value}"


def parse_share_link(url: str) -> ShareLink:
    """
    Parse a share URL.

    A missing or unrecognized mode is treated as view.

    Raises:
        ValueError: If the URL doesn't point at a shared note.
    """
    parsed = urlparse(url)
    path = parsed.path
    if not path.startswith(SHARE_PATH_PREFIX):
        raise ValueError(f"Not a share link: {url}")
    note_id = unquote(path[len(SHARE_PATH_PREFIX):].strip("/"))
    if not note_id or "/" in note_id:
        raise ValueError(f"Share link has no note id: {url}")

    requested = parse_qs(parsed.query).get("mode", [ShareMode.VIEW.value])[0]
    try:
        mode = ShareMode(requested)
    except ValueError:
        mode = ShareMode.VIEW
    return ShareLink(note_id=note_id, mode=mode)


def resolve_share_access(
    note: NoteDocument,
    identity: Identity | None,
    mode: ShareMode,
) -> ShareAccess:
    """
    Decide what a visitor of a share link may do.

    Edit capability needs both an owner/editor permission and edit mode; an
    edit request from a viewer is served read-only. A visitor with no access
    (including an unauthenticated one) gets nothing: the link never grants
    access by itself.
    """
    level = resolve_for_identity(note, identity)
    editable = can_edit(level) and mode == ShareMode.EDIT
    return ShareAccess(
        level=level,
        requested_mode=mode,
        can_read=can_read(level),
        can_edit=editable,
        downgraded=mode == ShareMode.EDIT and level == AccessLevel.VIEWER,
    )


def open_share_link(
    store: NoteStore,
    session: SessionContext,
    url: str,
    debounce_seconds: float | None = None,
) -> NoteSyncEngine:
    """
    Start a sync engine for the note a share link points at, in the link's mode.

    The visitor's own permission still decides everything: a viewer following an
    edit link gets a read-only engine, and a visitor without access ends up in
    the errored state.
    """
    link = parse_share_link(url)
    engine = NoteSyncEngine(
        store,
        session,
        link.note_id,
        mode=link.mode,
        debounce_seconds=debounce_seconds,
    )
    return engine.subscribe()
