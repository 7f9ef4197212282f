"""
Live replica of a single note with debounced last-writer-wins commits.

The engine keeps three views of a note:

- `note`: the authoritative copy, replaced on every change-feed snapshot.
- the working copy (`title`, `content`): what the local editor shows and edits.
- `last_committed`: exactly what this engine last wrote, used to tell the echo
  of our own write apart from a foreign edit.

Local edits update the working copy immediately and (re)arm a single debounce
timer; when it fires the whole title and content are written in one update.
While a commit is pending or in flight incoming snapshots refresh `note` but
never touch the working copy. Once idle, any incoming title/content that
differs from `last_committed` replaces the working copy outright: the last
writer to commit wins and concurrent edits are not merged.
"""
import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum

from core.config import get_settings
from core.identity import Identity, SessionContext
from schemas.note import AccessLevel, NoteDocument, NoteSnapshot
from schemas.share_link import ShareMode
from services import permissions
from services.change_feed import ChangeEvent, ErrorEvent, Subscription
from services.exceptions import (
    AccessDeniedError,
    InvalidStateError,
    NoteNotFoundError,
    NoteSyncError,
    TransientIOError,
    UnauthenticatedError,
)
from services.note_store import NoteQuery, NoteStore

logger = logging.getLogger(__name__)


class SubscriptionState(StrEnum):
    """Lifecycle of an engine's change-feed subscription."""

    UNSUBSCRIBED = "unsubscribed"
    SYNCING = "syncing"
    LIVE = "live"
    ERRORED = "errored"


class SaveStatus(StrEnum):
    """Autosave indicator for the working copy."""

    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"


class ConflictPolicy(StrEnum):
    """How concurrent edits from different clients are reconciled."""

    # Whole title+content replacement; the later commit overwrites the earlier one
    LAST_WRITER_WINS = "last_writer_wins"


ChangeCallback = Callable[["NoteSyncEngine"], None]


class NoteSyncEngine:
    """
    Keeps one note in sync for one client.

    Usage:
        engine = NoteSyncEngine(store, session, note_id)
        engine.subscribe()
        await engine.wait_until_ready()
        engine.edit_content("Hello")
        ...
        engine.unsubscribe()
    """

    conflict_policy = ConflictPolicy.LAST_WRITER_WINS

    def __init__(
        self,
        store: NoteStore,
        session: SessionContext,
        note_id: str,
        mode: ShareMode = ShareMode.EDIT,
        debounce_seconds: float | None = None,
    ) -> None:
        if not note_id:
            raise ValueError("note_id is required")
        self._store = store
        self._session = session
        self.note_id = note_id
        self.mode = mode
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None
            else get_settings().debounce_seconds
        )

        self.state = SubscriptionState.UNSUBSCRIBED
        self.note: NoteDocument | None = None
        self.permission = AccessLevel.NONE
        self.error: NoteSyncError | None = None

        self.title = ""
        self.content = ""
        self.last_committed = NoteSnapshot()
        self.save_status = SaveStatus.IDLE
        self.last_error: NoteSyncError | ValueError | None = None
        self.commit_count = 0

        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._commits: set[asyncio.Task] = set()
        self._queued = 0
        self._commit_lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._closed = False
        self._listeners: list[ChangeCallback] = []
        self._remove_session_listener: Callable[[], None] | None = None

    # --- Observers ---

    def add_listener(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call `callback(engine)` after every state, working-copy or status change."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    # --- Derived state ---

    @property
    def can_edit(self) -> bool:
        """Whether local edits are accepted right now."""
        return (
            self.state == SubscriptionState.LIVE
            and permissions.can_edit(self.permission)
            and self.mode == ShareMode.EDIT
        )

    @property
    def has_pending_commit(self) -> bool:
        """A debounce timer is armed or a commit is being written."""
        return (
            self._timer is not None
            or bool(self._commits)
            or self._queued > 0
            or self._commit_lock.locked()
        )

    @property
    def has_unsaved_changes(self) -> bool:
        """The working copy differs from what was last committed."""
        return self.working_copy != self.last_committed

    @property
    def working_copy(self) -> NoteSnapshot:
        """The locally edited title and content."""
        return NoteSnapshot(title=self.title, content=self.content)

    # --- Subscription lifecycle ---

    def subscribe(self) -> "NoteSyncEngine":
        """
        Start following the note.

        Raises:
            InvalidStateError: If the engine was already subscribed (engines are single use).
        """
        if self._closed or self.state != SubscriptionState.UNSUBSCRIBED:
            raise InvalidStateError(f"Engine for note {self.note_id} cannot subscribe again")
        self.state = SubscriptionState.SYNCING
        self._subscription = self._store.subscribe(
            self._session.identity, NoteQuery.by_id(self.note_id),
        )
        self._consumer = asyncio.create_task(self._consume(self._subscription))
        self._remove_session_listener = self._session.add_listener(self._on_identity_change)
        self._notify()
        return self

    async def wait_until_ready(self, timeout: float | None = None) -> SubscriptionState:
        """Wait for the first snapshot or error, then return the resulting state."""
        await asyncio.wait_for(self._ready.wait(), timeout)
        return self.state

    def unsubscribe(self) -> None:
        """
        Stop following the note.

        Detaches the change feed and cancels the debounce timer synchronously,
        so no stale commit can be issued afterwards. A write already in flight
        completes but its outcome no longer touches the engine.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        self._detach()
        self.state = SubscriptionState.UNSUBSCRIBED
        self._ready.set()
        logger.debug("Engine for note %s unsubscribed", self.note_id)
        self._notify()
        self._listeners.clear()

    close = unsubscribe

    async def __aenter__(self) -> "NoteSyncEngine":
        if self.state == SubscriptionState.UNSUBSCRIBED and not self._closed:
            self.subscribe()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.unsubscribe()

    def _detach(self) -> None:
        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None

    def _on_identity_change(self, identity: Identity | None) -> None:
        """The feed was opened for the previous identity; a new one must reopen the note."""
        if self._closed:
            return
        self._detach()
        if identity is None:
            self._enter_error(UnauthenticatedError())
        else:
            self._enter_error(AccessDeniedError("read", self.note_id))

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            if self._closed:
                return
            self._handle_event(event)

    def _handle_event(self, event: ChangeEvent) -> None:
        if isinstance(event, ErrorEvent):
            self._enter_error(event.error)
            return

        document = event.note
        if document is None:
            # Deleted (or never existed): indistinguishable from lost access for the view
            self._enter_error(NoteNotFoundError(self.note_id))
            return

        permission = permissions.resolve_for_identity(document, self._session.identity)
        if not permissions.can_read(permission):
            self._enter_error(AccessDeniedError("read", self.note_id))
            return

        self.note = document
        self.permission = permission

        if self.state == SubscriptionState.SYNCING:
            self.state = SubscriptionState.LIVE
            self.title = document.title
            self.content = document.content
            self.last_committed = NoteSnapshot(title=document.title, content=document.content)
            self._ready.set()
        elif not self.has_pending_commit:
            self._apply_remote(document)
        self._notify()

    def _apply_remote(self, document: NoteDocument) -> None:
        incoming = NoteSnapshot(title=document.title, content=document.content)
        if incoming == self.last_committed:
            return
        logger.debug("Foreign edit on note %s replaces working copy", self.note_id)
        self.title = document.title
        self.content = document.content
        self.last_committed = incoming

    def _enter_error(self, error: NoteSyncError) -> None:
        self._cancel_timer()
        self.state = SubscriptionState.ERRORED
        self.error = error
        self.permission = AccessLevel.NONE
        if self.save_status == SaveStatus.SAVING and not self.has_pending_commit:
            self.save_status = SaveStatus.IDLE
        self._ready.set()
        logger.info("Note %s unavailable: %s", self.note_id, error)
        self._notify()

    # --- Local edits ---

    def edit_title(self, title: str) -> None:
        """Apply a local title change and schedule a commit."""
        self.edit(title=title)

    def edit_content(self, content: str) -> None:
        """Apply a local content change and schedule a commit."""
        self.edit(content=content)

    def edit(self, title: str | None = None, content: str | None = None) -> None:
        """
        Apply a local change to the working copy and (re)arm the debounce timer.

        Raises:
            AccessDeniedError: If the current identity can't edit (viewer, no
                access, read-only share mode, or the note isn't live).
        """
        if not self.can_edit:
            raise AccessDeniedError("edit", self.note_id)
        if title is not None:
            self.title = title
        if content is not None:
            self.content = content
        self.save_status = SaveStatus.SAVING
        self._arm_timer()
        self._notify()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        task = asyncio.create_task(self._commit())
        self._commits.add(task)
        task.add_done_callback(self._commits.discard)

    async def flush(self) -> None:
        """Commit pending edits now instead of waiting for the debounce timer."""
        if self._timer is not None:
            self._cancel_timer()
            await self._commit()
        elif self._commits:
            await asyncio.gather(*self._commits)

    async def retry(self) -> None:
        """
        Explicitly re-send the working copy, e.g. after a failed save.

        Raises:
            AccessDeniedError: If the current identity can't edit.
        """
        if not self.can_edit:
            raise AccessDeniedError("edit", self.note_id)
        self._cancel_timer()
        self.save_status = SaveStatus.SAVING
        self._notify()
        await self._commit()

    async def _commit(self) -> None:
        self._queued += 1
        try:
            await self._commit_lock.acquire()
        finally:
            self._queued -= 1
        try:
            await self._write_working_copy()
        finally:
            self._commit_lock.release()

    async def _write_working_copy(self) -> None:
        if self._closed:
            return
        sent = self.working_copy
        try:
            written = await self._store.update_fields(
                self._session.identity,
                self.note_id,
                {"title": sent.title, "content": sent.content},
            )
        except (NoteSyncError, ValueError) as e:
            logger.warning("Failed to save note %s: %s", self.note_id, e)
            self._fail_commit(e)
            return
        except Exception as e:
            logger.exception("Unexpected error saving note %s", self.note_id)
            self._fail_commit(TransientIOError("update", str(e)))
            return

        if self._closed:
            return
        self.last_committed = sent
        self.last_error = None
        self.commit_count += 1
        if self.state == SubscriptionState.ERRORED:
            self.save_status = SaveStatus.IDLE
        elif not self._has_newer_commit(sent):
            self.save_status = SaveStatus.SAVED
            self._reconcile_after_commit(written)
        self._notify()

    def _has_newer_commit(self, sent: NoteSnapshot) -> bool:
        """Whether edits made after `sent` still have to be written."""
        others = self._commits - {asyncio.current_task()}
        return (
            self._timer is not None
            or self._queued > 0
            or bool(others)
            or self.working_copy != sent
        )

    def _fail_commit(self, error: NoteSyncError | ValueError) -> None:
        if self._closed:
            return
        self.last_error = error
        if self._timer is None:
            self.save_status = SaveStatus.IDLE
        self._notify()

    def _reconcile_after_commit(self, written: NoteDocument) -> None:
        """
        Apply a foreign edit that arrived while we were saving.

        Only a snapshot stamped after our own write can have overwritten it.
        """
        latest = self.note
        if latest is None or latest.updated_at <= written.updated_at:
            return
        self._apply_remote(latest)
