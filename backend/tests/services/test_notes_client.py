"""Tests for the client entry point wiring."""
from pathlib import Path

import pytest

from core.config import Settings
from core.identity import Identity
from schemas.note import CollaboratorPermission
from schemas.share_link import ShareMode
from services.notes_client import NotesClient
from services.share_links import build_share_link
from services.sync_engine import SubscriptionState


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'client.db'}",
        DEBOUNCE_SECONDS=30.0,
        REDIS_ENABLED=False,
    )


async def test__from_settings__end_to_end(settings: Settings, eventually) -> None:
    """One client creates, shares and edits; a second one sees the result."""
    owner = await NotesClient.from_settings(settings)
    collaborator = NotesClient(
        settings, owner.engine, owner.store, owner.redis,
    )
    try:
        owner.session.sign_in(Identity(uid="uid-alice", email="alice@example.com"))
        collaborator.session.sign_in(Identity(uid="uid-bob", email="bob@x.com"))

        collection = owner.collection()
        await collection.wait_until_loaded(timeout=2.0)
        note_id = await collection.create_note()
        await owner.roster.upsert_collaborator(note_id, "bob@x.com", CollaboratorPermission.EDITOR)

        shared = collaborator.collection()
        await shared.wait_until_loaded(timeout=2.0)
        await eventually(lambda: [n.id for n in shared.notes] == [note_id])

        url = build_share_link(note_id, ShareMode.EDIT, base_url=settings.share_base_url)
        engine = collaborator.open_share_link(url)
        assert await engine.wait_until_ready(timeout=2.0) == SubscriptionState.LIVE
        assert engine.debounce_seconds == 30.0
        engine.edit_content("from bob")
        await engine.flush()

        viewer = owner.open_note(note_id, mode=ShareMode.VIEW)
        await viewer.wait_until_ready(timeout=2.0)
        assert viewer.content == "from bob"
        assert not viewer.can_edit

        for live in (engine, viewer):
            live.unsubscribe()
        collection.stop()
        shared.stop()
    finally:
        await owner.close()


async def test__context_manager__closes_resources(settings: Settings) -> None:
    async with await NotesClient.from_settings(settings) as client:
        assert not client.redis.is_connected
        assert not client.session.is_authenticated
