"""Tests for mediator.storage."""

import json
import threading
from unittest.mock import patch

import pytest

from mediator.errors import MediationNotFoundError, StorageError
from mediator.models import MediationId, MediationState, Participant


class TestMediationRecords:
    """Tests for create / load / save."""

    @pytest.mark.asyncio
    async def test_create_persists_open_record(self, store):
        mediation = await store.create("Noise at night", 7)

        assert mediation.state is MediationState.OPEN
        assert mediation.participants == []
        assert mediation.id.group_id == 7

        path = store.mediation_path(mediation.id)
        assert path == store.base_dir / "g7" / mediation.id.token / "meta.json"
        data = json.loads(path.read_text())
        assert data["title"] == "Noise at night"
        assert data["state"] == "open"

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, store):
        first = await store.create("A", 1)
        second = await store.create("B", 1)
        assert first.id.token != second.id.token
        assert len(first.id.token) >= 16

    @pytest.mark.asyncio
    async def test_token_collision_is_retried_off_the_event_loop(self, store):
        existing = await store.create("A", 1)
        tokens = iter([existing.id.token, existing.id.token, "fresh"])
        threads = []

        def next_token():
            threads.append(threading.current_thread())
            return next(tokens)

        with patch("mediator.storage.generate_token", side_effect=next_token):
            created = await store.create("B", 1)

        assert created.id.token == "fresh"
        assert len(threads) == 3
        assert threading.main_thread() not in threads
        assert (await store.load(existing.id)).title == "A"

    @pytest.mark.asyncio
    async def test_load_returns_saved_state(self, store):
        mediation = await store.create("Title", 1)
        mediation.participants.append(Participant(user_id=10, display_name="Ann"))
        mediation.state = MediationState.CLOSED
        await store.save(mediation)

        loaded = await store.load(mediation.id)
        assert loaded == mediation

    @pytest.mark.asyncio
    async def test_load_missing_raises_not_found(self, store):
        with pytest.raises(MediationNotFoundError, match="1%nope"):
            await store.load(MediationId(group_id=1, token="nope"))

    @pytest.mark.asyncio
    async def test_corrupt_record_raises_storage_error(self, store):
        mediation = await store.create("Title", 1)
        store.mediation_path(mediation.id).write_text("{not json")

        with pytest.raises(StorageError, match="Corrupt"):
            await store.load(mediation.id)

    @pytest.mark.asyncio
    async def test_failed_write_leaves_previous_record(self, store):
        mediation = await store.create("Title", 1)
        mediation.state = MediationState.CLOSED

        with patch("mediator.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="disk full"):
                await store.save(mediation)

        loaded = await store.load(mediation.id)
        assert loaded.state is MediationState.OPEN
        leftovers = [p.name for p in store.mediation_dir(mediation.id).iterdir()]
        assert leftovers == ["meta.json"]


class TestPerspectivesAndAnswers:
    """Tests for the per-participant text files."""

    @pytest.mark.asyncio
    async def test_missing_perspective_is_none(self, store):
        mediation = await store.create("Title", 1)
        assert await store.load_perspective(mediation.id, 10) is None

    @pytest.mark.asyncio
    async def test_save_perspective_reports_overwrite(self, store):
        mediation = await store.create("Title", 1)

        assert await store.save_perspective(mediation.id, 10, "first") is False
        assert await store.save_perspective(mediation.id, 10, "second") is True
        assert await store.load_perspective(mediation.id, 10) == "second"

    @pytest.mark.asyncio
    async def test_perspective_path_layout(self, store):
        mediation_id = MediationId(group_id=3, token="abc")
        assert store.perspective_path(mediation_id, 42) == (
            store.base_dir / "g3" / "abc" / "42" / "perspective.txt"
        )
        assert store.answer_path(mediation_id, 42).name == "answer.txt"

    @pytest.mark.asyncio
    async def test_answer_is_written_once(self, store):
        mediation = await store.create("Title", 1)
        await store.save_answer(mediation.id, 10, "be kind")

        with pytest.raises(StorageError, match="already stored"):
            await store.save_answer(mediation.id, 10, "be kinder")

        assert await store.load_answer(mediation.id, 10) == "be kind"

    @pytest.mark.asyncio
    async def test_unicode_round_trip(self, store):
        mediation = await store.create("Klo", 1)
        text = "Immer wenn ich aufs Klo gehe, hört Hans laut Musik 🎵"
        await store.save_perspective(mediation.id, 10, text)
        assert await store.load_perspective(mediation.id, 10) == text
