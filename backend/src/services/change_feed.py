"""
Subscription-style change feeds over the note store.

A `Subscription` is an async iterator of `SnapshotEvent | ErrorEvent`. It
delivers the query's current result once, then a fresh result every time a
relevant note changes. Change notifications fan out in-process through the
`ChangeBroker` and, when Redis is connected, are relayed to other processes
over pub/sub.
"""
import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

from core.redis import RedisClient
from schemas.note import NoteDocument
from services.exceptions import InvalidStateError, NoteSyncError, TransientIOError

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


@dataclass(frozen=True)
class SnapshotEvent:
    """Current result of a subscribed query, ordered as the query orders it."""

    notes: tuple[NoteDocument, ...] = field(default_factory=tuple)

    @property
    def note(self) -> NoteDocument | None:
        """The single document of a by-id query, or None if it doesn't exist."""
        return self.notes[0] if self.notes else None

    @property
    def exists(self) -> bool:
        """Whether the query matched at least one document."""
        return bool(self.notes)


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal failure of a subscription; no further events follow."""

    error: NoteSyncError


ChangeEvent = SnapshotEvent | ErrorEvent


class ChangeBroker:
    """
    Fan-out of "note changed" notifications.

    The store publishes the id of every note it creates, updates or deletes.
    Listeners are plain callables invoked synchronously on the event loop, so
    they must only schedule work, never block.
    """

    def __init__(self, redis: RedisClient | None = None, channel: str = "notes:changes") -> None:
        self._listeners: list[ChangeListener] = []
        self._redis = redis
        self._channel = channel
        self._origin = uuid.uuid4().hex
        self._relay_task: asyncio.Task | None = None

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that detaches it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def listener_count(self) -> int:
        """Number of attached listeners."""
        return len(self._listeners)

    async def publish(self, note_id: str) -> None:
        """Notify local listeners, then relay to other processes if Redis is connected."""
        self._notify_local(note_id)
        if self._redis is not None and self._redis.is_connected:
            await self._redis.publish(self._channel, f"{self._origin}|{note_id}")

    def _notify_local(self, note_id: str) -> None:
        for listener in list(self._listeners):
            listener(note_id)

    async def start_relay(self) -> None:
        """Start consuming changes published by other processes."""
        if self._redis is None or not self._redis.is_connected or self._relay_task is not None:
            return
        self._relay_task = asyncio.create_task(self._relay())
        logger.info("Change relay listening on %s", self._channel)

    async def stop_relay(self) -> None:
        """Stop the cross-process relay."""
        task, self._relay_task = self._relay_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _relay(self) -> None:
        async for message in self._redis.listen(self._channel):
            origin, _, note_id = message.partition("|")
            # Our own publishes were already delivered locally
            if origin == self._origin or not note_id:
                continue
            self._notify_local(note_id)


class Subscription:
    """
    A cancellable live query.

    Created by the store; iterate it with `async for`. The first event is the
    query's result at subscription time. A snapshot is only emitted when the
    result differs from the previous one. After an `ErrorEvent` the
    subscription is finished.
    """

    def __init__(
        self,
        broker: ChangeBroker,
        evaluate: Callable[[], Awaitable[list[NoteDocument]]],
        is_relevant: Callable[[str], bool],
        description: str,
    ) -> None:
        self._broker = broker
        self._evaluate = evaluate
        self._is_relevant = is_relevant
        self.description = description
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self._dirty = asyncio.Event()
        self._detach: Callable[[], None] | None = None
        self._task: asyncio.Task | None = None
        self._cancelled = False

    def start(self) -> "Subscription":
        """Attach to the broker and start delivering events."""
        if self._task is not None or self._cancelled:
            raise InvalidStateError(f"Subscription {self.description} already started")
        self._detach = self._broker.add_listener(self._on_change)
        self._dirty.set()
        self._task = asyncio.create_task(self._run())
        logger.debug("Subscribed to %s", self.description)
        return self

    @property
    def is_active(self) -> bool:
        """True until cancelled or finished by an error."""
        return self._task is not None and not self._task.done() and not self._cancelled

    def cancel(self) -> None:
        """
        Detach from the change feed immediately.

        Safe to call more than once. Any iteration in progress ends after the
        events already queued.
        """
        if self._cancelled:
            return
        self._cancelled = True
        if self._detach is not None:
            self._detach()
            self._detach = None
        if self._task is not None:
            self._task.cancel()
        self._queue.put_nowait(None)
        logger.debug("Unsubscribed from %s", self.description)

    def _on_change(self, note_id: str) -> None:
        if self._is_relevant(note_id):
            self._dirty.set()

    async def _run(self) -> None:
        previous: tuple[NoteDocument, ...] | None = None
        while not self._cancelled:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                notes = tuple(await self._evaluate())
            except NoteSyncError as e:
                logger.warning("Subscription %s failed: %s", self.description, e)
                self._finish(ErrorEvent(e))
                return
            except Exception as e:
                logger.exception("Unexpected error evaluating %s", self.description)
                self._finish(ErrorEvent(TransientIOError("subscribe", str(e))))
                return
            if notes != previous:
                previous = notes
                self._queue.put_nowait(SnapshotEvent(notes))

    def _finish(self, event: ErrorEvent) -> None:
        self._queue.put_nowait(event)
        self._queue.put_nowait(None)
        if self._detach is not None:
            self._detach()
            self._detach = None

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def __aenter__(self) -> "Subscription":
        if self._task is None:
            self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.cancel()
