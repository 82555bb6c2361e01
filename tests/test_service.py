"""End-to-end tests for MediationService and the perspective collector."""

import asyncio
from unittest.mock import MagicMock

import pytest

from mediator.errors import (
    InsufficientParticipantsError,
    InvalidStateError,
    MediationNotFoundError,
)
from mediator.models import MediationId, MediationState
from mediator.service import MediationService, normalize_title


async def closed_mediation(service: MediationService, users: dict[int, str]):
    mediation = await service.create_mediation("Noise", 1)
    for user_id, name in users.items():
        await service.join_mediation(user_id, name, mediation.id)
    await service.close_mediation(mediation.id)
    return mediation


class TestScenario:
    """The full Ann-and-Ben walk-through."""

    @pytest.mark.asyncio
    async def test_two_person_mediation(self, service, fake_client, store):
        mediation = await service.create_mediation("Test", 1)
        assert mediation.state is MediationState.OPEN

        joined = await service.join_mediation(10, "Ann", mediation.id)
        assert joined.already_joined is False
        assert joined.participant_count == 1

        again = await service.join_mediation(10, "Ann", mediation.id)
        assert again.already_joined is True
        assert again.participant_count == 1

        ben = await service.join_mediation(20, "Ben", mediation.id)
        assert ben.participant_count == 2

        assert await service.close_mediation(mediation.id) == "Test"

        first = await service.submit_perspective(mediation.id, 10, "Ben is loud")
        assert first.already_stored is False
        assert first.mediation_closed is True
        assert first.mediation_title == "Test"

        second = await service.submit_perspective(mediation.id, 10, "Ben plays music at night")
        assert second.already_stored is True
        assert await store.load_perspective(mediation.id, 10) == "Ben plays music at night"

        pending = await service.check_completeness_and_consult(mediation.id, MagicMock())
        assert pending.finished is False
        assert (pending.received_count, pending.participant_count) == (1, 2)

        await service.submit_perspective(mediation.id, 20, "Ann complains a lot")
        answers = {}
        status = await service.check_completeness_and_consult(
            mediation.id, lambda uid, text: answers.update({uid: text})
        )
        assert status.finished is True

        await service.dispatcher.drain()
        assert len(fake_client.requests) == 2
        for request in fake_client.requests:
            own = next(m["content"] for m in request if m["role"] == "user")
            others = request[1]["content"]
            assert own not in others
        assert answers == {
            10: "Advice about: Ben plays music at night",
            20: "Advice about: Ann complains a lot",
        }
        assert await service.get_answer(mediation.id, 20) == "Advice about: Ann complains a lot"
        assert (await store.load(mediation.id)).state is MediationState.FINISHED

    @pytest.mark.asyncio
    async def test_finished_is_reported_once(self, service, fake_client):
        mediation = await closed_mediation(service, {10: "Ann"})
        await service.submit_perspective(mediation.id, 10, "view")

        statuses = [
            await service.check_completeness_and_consult(mediation.id, MagicMock())
            for _ in range(3)
        ]
        await service.dispatcher.drain()

        assert [s.finished for s in statuses] == [True, False, False]
        assert statuses[1].already_finished is True
        assert len(fake_client.requests) == 1


class TestConcurrency:
    """Concurrent submissions and checks."""

    @pytest.mark.asyncio
    async def test_concurrent_final_submissions_dispatch_once(self, service, fake_client):
        users = {uid: f"user{uid}" for uid in range(1, 6)}
        mediation = await closed_mediation(service, users)
        dispatch_spy = MagicMock(wraps=service.dispatcher.dispatch)
        service.dispatcher.dispatch = dispatch_spy

        async def submit_and_check(uid):
            await service.submit_perspective(mediation.id, uid, f"view of {uid}")
            return await service.check_completeness_and_consult(mediation.id, MagicMock())

        statuses = await asyncio.gather(*(submit_and_check(uid) for uid in users))
        await service.dispatcher.drain()

        assert sum(s.finished for s in statuses) == 1
        dispatch_spy.assert_called_once()
        assert len(fake_client.requests) == len(users)

    @pytest.mark.asyncio
    async def test_concurrent_joins_are_all_kept(self, service, store):
        mediation = await service.create_mediation("Crowd", 1)

        statuses = await asyncio.gather(*(
            service.join_mediation(uid, f"user{uid}", mediation.id) for uid in range(10)
        ))

        assert sorted(s.participant_count for s in statuses) == list(range(1, 11))
        stored = await store.load(mediation.id)
        assert sorted(p.user_id for p in stored.participants) == list(range(10))

    @pytest.mark.asyncio
    async def test_join_racing_close(self, service, store):
        mediation = await service.create_mediation("Race", 1)
        await service.join_mediation(1, "Ann", mediation.id)

        results = await asyncio.gather(
            service.close_mediation(mediation.id),
            service.join_mediation(2, "Ben", mediation.id),
            return_exceptions=True,
        )

        assert results[0] == "Race"
        assert isinstance(results[1], InvalidStateError)
        stored = await store.load(mediation.id)
        assert [p.user_id for p in stored.participants] == [1]


class TestCompletenessRules:
    """Completeness only fires on closed, complete mediations."""

    @pytest.mark.asyncio
    async def test_open_mediation_does_not_finish(self, service, fake_client):
        mediation = await service.create_mediation("Open", 1)
        await service.join_mediation(10, "Ann", mediation.id)
        await service.submit_perspective(mediation.id, 10, "view")

        status = await service.check_completeness_and_consult(mediation.id, MagicMock())

        assert status.finished is False
        assert (status.received_count, status.participant_count) == (1, 1)
        assert fake_client.requests == []

    @pytest.mark.asyncio
    async def test_perspective_of_non_participant_is_not_counted(self, service):
        mediation = await closed_mediation(service, {10: "Ann", 20: "Ben"})
        await service.submit_perspective(mediation.id, 10, "view")
        await service.submit_perspective(mediation.id, 99, "lurker")

        status = await service.check_completeness_and_consult(mediation.id, MagicMock())
        assert status.finished is False
        assert status.received_count == 1

    @pytest.mark.asyncio
    async def test_submission_after_finish_has_no_effect(self, service, fake_client):
        mediation = await closed_mediation(service, {10: "Ann"})
        await service.submit_perspective(mediation.id, 10, "view")
        await service.check_completeness_and_consult(mediation.id, MagicMock())
        await service.dispatcher.drain()

        late = await service.submit_perspective(mediation.id, 10, "changed my mind")
        status = await service.check_completeness_and_consult(mediation.id, MagicMock())

        assert late.already_stored is True
        assert late.mediation_closed is False
        assert status.already_finished is True
        assert len(fake_client.requests) == 1


class TestErrors:
    """Typed failures surface to the caller."""

    @pytest.mark.asyncio
    async def test_close_without_participants(self, service, store):
        mediation = await service.create_mediation("Empty", 1)
        with pytest.raises(InsufficientParticipantsError):
            await service.close_mediation(mediation.id)
        assert (await store.load(mediation.id)).state is MediationState.OPEN

    @pytest.mark.asyncio
    async def test_closed_mediation_never_reopens(self, service):
        mediation = await closed_mediation(service, {10: "Ann"})
        with pytest.raises(InvalidStateError):
            await service.join_mediation(20, "Ben", mediation.id)

    @pytest.mark.asyncio
    async def test_unknown_mediation(self, service):
        missing = MediationId(group_id=1, token="missing")
        with pytest.raises(MediationNotFoundError):
            await service.join_mediation(10, "Ann", missing)
        with pytest.raises(MediationNotFoundError):
            await service.submit_perspective(missing, 10, "view")
        with pytest.raises(MediationNotFoundError):
            await service.check_completeness_and_consult(missing, MagicMock())

    def test_compute_joint_key(self):
        assert MediationService.compute_joint_key(MediationId(5, "abc")) == "5%abc"


class TestNormalizeTitle:
    """Tests for normalize_title."""

    def test_strips_whitespace(self):
        assert normalize_title("  Dishes \n") == "Dishes"

    def test_truncates_long_titles(self):
        assert len(normalize_title("x" * 1000)) == 255

    def test_empty_title_raises(self):
        with pytest.raises(ValueError, match="title"):
            normalize_title("   ")
