"""
Client entry point: wires settings, database, Redis relay and the note store.

Usage:
    async with await NotesClient.from_settings() as client:
        client.session.sign_in(Identity(uid="u1", email="a@example.com"))
        collection = client.collection()
        engine = client.open_note(note_id)
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import Settings, get_settings
from core.identity import SessionContext
from core.redis import RedisClient
from db.session import create_engine_from_settings, create_schema, create_session_factory
from schemas.share_link import ShareMode
from services.change_feed import ChangeBroker
from services.collection import NoteCollection
from services.note_store import NoteStore
from services.roster import RosterManager
from services.share_links import open_share_link
from services.sync_engine import NoteSyncEngine

logger = logging.getLogger(__name__)


class NotesClient:
    """Owns the resources shared by every view of one client."""

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        store: NoteStore,
        redis: RedisClient,
        session: SessionContext | None = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.store = store
        self.redis = redis
        self.session = session or SessionContext()
        self.roster = RosterManager(store, self.session)

    @classmethod
    async def from_settings(
        cls,
        settings: Settings | None = None,
        session: SessionContext | None = None,
    ) -> "NotesClient":
        """Create the engine, ensure the schema, and connect the change relay."""
        settings = settings or get_settings()
        engine = create_engine_from_settings(settings)
        await create_schema(engine)

        redis = RedisClient(
            url=settings.redis_url,
            enabled=settings.redis_enabled,
            pool_size=settings.redis_pool_size,
        )
        await redis.connect()
        broker = ChangeBroker(redis, channel=settings.change_channel)
        await broker.start_relay()

        store = NoteStore(create_session_factory(engine), broker)
        logger.info("Notes client ready (redis relay: %s)", redis.is_connected)
        return cls(settings, engine, store, redis, session)

    def collection(self) -> NoteCollection:
        """Start a live collection of the signed-in user's notes."""
        return NoteCollection(self.store, self.session).start()

    def open_note(self, note_id: str, mode: ShareMode = ShareMode.EDIT) -> NoteSyncEngine:
        """Start a sync engine for one note."""
        return NoteSyncEngine(
            self.store,
            self.session,
            note_id,
            mode=mode,
            debounce_seconds=self.settings.debounce_seconds,
        ).subscribe()

    def open_share_link(self, url: str) -> NoteSyncEngine:
        """Start a sync engine for the note behind a share link."""
        return open_share_link(
            self.store, self.session, url, debounce_seconds=self.settings.debounce_seconds,
        )

    async def close(self) -> None:
        """Stop the relay and release connections."""
        await self.store.broker.stop_relay()
        await self.redis.close()
        await self.engine.dispose()

    async def __aenter__(self) -> "NotesClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
