"""Per-mediation mutual exclusion for read-modify-write mutations.

Every mutation of a mediation record goes through ``MutationSerializer``.
For one joint key at most one mutator runs at a time; contenders wait in a
FIFO list and are handed the in-memory snapshot the previous mutator just
persisted. Mutations on different keys never wait for each other.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .errors import StorageError
from .logging_config import mediation_context
from .models import Mediation, MediationId
from .storage import MediationStore
from .telemetry import record_error, trace_span

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class NoChange(Generic[T]):
    """Returned by a mutator that did not modify the snapshot.

    The wrapped value is handed to the caller and the save is skipped.
    """

    value: T


Mutator = Callable[[Mediation], Awaitable[Any]]


@dataclass
class _Slot:
    """Serialization state for one joint key."""

    snapshot: Mediation | None = None
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)


class MutationSerializer:
    """Runs mutators for the same mediation one after another.

    A slot exists in the registry exactly while a mutator for its key is
    running. The draining rule: when a mutator finishes, ownership passes
    directly to the oldest live waiter if there is one; otherwise the slot is
    removed and the next arrival loads a fresh record from the store.
    """

    def __init__(self, store: MediationStore):
        self.store = store
        self._slots: dict[str, _Slot] = {}

    def is_busy(self, mediation_id: MediationId) -> bool:
        """True while a mutator for ``mediation_id`` is running."""
        return mediation_id.joint_key in self._slots

    def queue_length(self, mediation_id: MediationId) -> int:
        """Number of mutators waiting behind the running one."""
        slot = self._slots.get(mediation_id.joint_key)
        return len(slot.waiters) if slot else 0

    async def with_mediation(self, mediation_id: MediationId, mutator: Mutator) -> Any:
        """Run ``mutator`` with exclusive access to the mediation.

        The snapshot is saved after the mutator returns or raises, unless it
        returned ``NoChange``. Errors raised by the mutator propagate to the
        caller after the save; a failing save is logged and does not stop the
        next waiter.

        Raises:
            MediationNotFoundError: If the mediation does not exist.
            Exception: Whatever ``mutator`` raises.
        """
        key = mediation_id.joint_key
        slot = await self._acquire(key)

        with mediation_context(key), trace_span(
            "mediation.mutation", {"mediation.key": key}
        ) as span:
            try:
                if slot.snapshot is None:
                    slot.snapshot = await self.store.load(mediation_id)
            except asyncio.CancelledError:
                self._release(key, slot)
                raise
            except Exception as e:
                record_error(span, e)
                self._release(key, slot)
                raise

            mediation = slot.snapshot
            changed = True
            try:
                result = await mutator(mediation)
                if isinstance(result, NoChange):
                    changed = False
                    result = result.value
                return result
            except Exception as e:
                record_error(span, e)
                logger.debug("Mutator failed for %s: %s", key, e)
                raise
            finally:
                try:
                    if changed:
                        await self._persist(mediation)
                finally:
                    self._release(key, slot)

    async def _acquire(self, key: str) -> _Slot:
        slot = self._slots.get(key)
        if slot is None:
            slot = _Slot()
            self._slots[key] = slot
            return slot

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        slot.waiters.append(waiter)
        logger.debug("Mutation for %s queued at position %d", key, len(slot.waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            # Ownership may already have been handed to us; pass it on.
            if waiter.done() and not waiter.cancelled():
                self._release(key, slot)
            raise
        return slot

    def _release(self, key: str, slot: _Slot) -> None:
        while slot.waiters:
            waiter = slot.waiters.popleft()
            # A cancelled waiter never runs; skip it so the key is not stalled.
            if not waiter.done():
                waiter.set_result(None)
                return
        del self._slots[key]

    async def _persist(self, mediation: Mediation) -> None:
        try:
            await self.store.save(mediation)
        except StorageError:
            logger.exception("Failed to persist mediation %s", mediation.id.joint_key)
