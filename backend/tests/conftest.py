"""Pytest fixtures for testing."""
import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from core.identity import Identity, SessionContext
from db.session import create_schema, create_session_factory
from schemas.note import NoteCreate
from services.change_feed import ChangeBroker
from services.note_store import NoteStore

# Short enough to keep the suite fast, long enough to batch edits issued back to back
TEST_DEBOUNCE_SECONDS = "0.05"


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make every test read settings fresh from its own environment."""
    monkeypatch.setenv("DEBOUNCE_SECONDS", TEST_DEBOUNCE_SECONDS)
    get_settings.cache_clear()


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine on a throwaway SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}", echo=False)
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest.fixture
def broker() -> ChangeBroker:
    """In-process change broker (no Redis)."""
    return ChangeBroker()


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession],
    broker: ChangeBroker,
) -> NoteStore:
    """Note store on the test database."""
    return NoteStore(session_factory, broker)


@pytest.fixture
def alice() -> Identity:
    """Note owner in most tests."""
    return Identity(uid="uid-alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def bob() -> Identity:
    """Collaborator in most tests."""
    return Identity(uid="uid-bob", email="bob@x.com", display_name="Bob")


@pytest.fixture
def carol() -> Identity:
    """User without access in most tests."""
    return Identity(uid="uid-carol", email="carol@example.com", display_name="Carol")


@pytest.fixture
def alice_session(alice: Identity) -> SessionContext:
    """Signed-in session for alice."""
    return SessionContext(alice)


@pytest.fixture
def bob_session(bob: Identity) -> SessionContext:
    """Signed-in session for bob."""
    return SessionContext(bob)


@pytest.fixture
def carol_session(carol: Identity) -> SessionContext:
    """Signed-in session for carol."""
    return SessionContext(carol)


@pytest.fixture
async def note_id(store: NoteStore, alice: Identity) -> str:
    """A fresh 'Untitled Note' owned by alice."""
    return await store.create(alice, NoteCreate())


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """
    Poll a condition until it holds.

    Change-feed deliveries are asynchronous, so assertions on live state wait
    for the event loop to catch up instead of sleeping a fixed amount.
    """

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return wait
