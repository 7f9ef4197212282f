"""
Live collection of every note the signed-in user can see.

Two independent subscriptions feed the collection: notes the user owns, and
notes whose collaborator emails contain the user's email. Their union is
deduplicated by id and ordered most-recently-updated first.
"""
import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from core.config import get_settings
from core.identity import Identity, SessionContext
from schemas.note import NoteCreate, NoteDocument
from services.change_feed import ErrorEvent, Subscription
from services.exceptions import NoteSyncError
from services.note_store import NoteQuery, NoteStore
from services.store_rules import require_actor

logger = logging.getLogger(__name__)


class Feed(StrEnum):
    """The two feeds merged into the collection."""

    OWNED = "owned"
    SHARED = "shared"


@dataclass
class FeedState:
    """Latest delivery from one feed."""

    notes: list[NoteDocument] = field(default_factory=list)
    loaded: bool = False
    error: NoteSyncError | None = None


def merge_note_feeds(*feeds: Iterable[NoteDocument]) -> list[NoteDocument]:
    """
    Union note lists by id and sort by `updated_at` descending.

    A note present in several feeds is kept once. Ties keep feed delivery order.
    """
    seen: set[str] = set()
    merged: list[NoteDocument] = []
    for notes in feeds:
        for note in notes:
            if note.id in seen:
                continue
            seen.add(note.id)
            merged.append(note)
    merged.sort(key=lambda note: note.updated_at, reverse=True)
    return merged


ChangeCallback = Callable[["NoteCollection"], None]


class NoteCollection:
    """
    Aggregates the owned and shared feeds for the session's identity.

    `loading` stays true until both feeds delivered at least one event, success
    or error. A failing feed contributes nothing but never blanks the other.
    The collection follows the session: signing in or out rebuilds the feeds.
    """

    def __init__(self, store: NoteStore, session: SessionContext) -> None:
        self._store = store
        self._session = session
        self._feeds: dict[Feed, FeedState] = {}
        self._subscriptions: list[Subscription] = []
        self._consumers: list[asyncio.Task] = []
        self._loaded = asyncio.Event()
        self._listeners: list[ChangeCallback] = []
        self._remove_session_listener: Callable[[], None] | None = None
        self._started = False

    # --- Observers ---

    def add_listener(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call `callback(collection)` after every feed delivery."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    # --- Lifecycle ---

    def start(self) -> "NoteCollection":
        """Open the feeds for the current identity and follow session changes."""
        if self._started:
            return self
        self._started = True
        self._remove_session_listener = self._session.add_listener(self._on_identity_change)
        self._open_feeds(self._session.identity)
        return self

    def stop(self) -> None:
        """Close both feeds and stop following the session."""
        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None
        self._close_feeds()
        self._started = False

    async def __aenter__(self) -> "NoteCollection":
        return self.start()

    async def __aexit__(self, *exc: object) -> None:
        self.stop()

    def _on_identity_change(self, identity: Identity | None) -> None:
        self._close_feeds()
        self._open_feeds(identity)
        self._notify()

    def _open_feeds(self, identity: Identity | None) -> None:
        self._loaded = asyncio.Event()
        if identity is None or not identity.email:
            # Nothing to load without a uid and an email to match shares against
            self._feeds = {}
            self._loaded.set()
            return

        self._feeds = {Feed.OWNED: FeedState(), Feed.SHARED: FeedState()}
        queries = {
            Feed.OWNED: NoteQuery.owned_by(identity.uid),
            Feed.SHARED: NoteQuery.shared_with(identity.email),
        }
        for feed, query in queries.items():
            subscription = self._store.subscribe(identity, query)
            self._subscriptions.append(subscription)
            self._consumers.append(
                asyncio.create_task(self._consume(feed, self._feeds[feed], subscription)),
            )

    def _close_feeds(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        for consumer in self._consumers:
            consumer.cancel()
        self._subscriptions = []
        self._consumers = []

    async def _consume(self, feed: Feed, state: FeedState, subscription: Subscription) -> None:
        async for event in subscription:
            if isinstance(event, ErrorEvent):
                logger.warning("Error fetching %s notes: %s", feed, event.error)
                state.notes = []
                state.error = event.error
            else:
                state.notes = list(event.notes)
                state.error = None
            state.loaded = True
            if all(s.loaded for s in self._feeds.values()):
                self._loaded.set()
            self._notify()

    # --- View ---

    @property
    def loading(self) -> bool:
        """True until both feeds have delivered at least once."""
        return not self._loaded.is_set()

    async def wait_until_loaded(self, timeout: float | None = None) -> None:
        """Wait until `loading` becomes false."""
        await asyncio.wait_for(self._loaded.wait(), timeout)

    @property
    def notes(self) -> list[NoteDocument]:
        """Merged, deduplicated view, most recently updated first."""
        owned = self._feeds.get(Feed.OWNED, FeedState())
        shared = self._feeds.get(Feed.SHARED, FeedState())
        return merge_note_feeds(owned.notes, shared.notes)

    @property
    def pinned_notes(self) -> list[NoteDocument]:
        """Pinned notes in merged order."""
        return [note for note in self.notes if note.pinned]

    @property
    def unpinned_notes(self) -> list[NoteDocument]:
        """Unpinned notes in merged order."""
        return [note for note in self.notes if not note.pinned]

    @property
    def feed_errors(self) -> dict[Feed, NoteSyncError]:
        """Errors of feeds that failed."""
        return {feed: state.error for feed, state in self._feeds.items() if state.error is not None}

    # --- Mutations ---

    async def create_note(self, title: str | None = None) -> str:
        """
        Create an empty note owned by the signed-in user.

        Returns:
            The new note's id.

        Raises:
            UnauthenticatedError: If nobody is signed in.
        """
        identity = require_actor(self._session.identity, "create notes")
        data = NoteCreate(title=title if title is not None else get_settings().default_note_title)
        return await self._store.create(identity, data)

    async def update_note(self, note_id: str, **fields: Any) -> NoteDocument:
        """Write the given fields with a fresh `updated_at`."""
        return await self._store.update_fields(self._session.identity, note_id, fields)

    async def delete_note(self, note_id: str) -> None:
        """Delete a note (owner only)."""
        await self._store.delete(self._session.identity, note_id)

    async def toggle_pin(self, note_id: str, current_pinned: bool) -> NoteDocument:
        """Flip the pinned flag."""
        return await self.update_note(note_id, pinned=not current_pinned)
