"""Mediation operations exposed to the chat transport.

``MediationService`` wires the store, the mutation serializer, the
perspective collector and the consultation dispatcher together. Every
operation that changes a mediation record runs through the serializer.
"""

import logging

from . import lifecycle
from .collector import PerspectiveCollector
from .config import MAX_TITLE_LENGTH
from .consultation import AnswerCallback, ConsultationDispatcher
from .models import CompletenessStatus, JoinStatus, Mediation, MediationId, SubmitStatus
from .openrouter import CompletionClient, OpenRouterClient
from .serializer import MutationSerializer, NoChange
from .storage import MediationStore

logger = logging.getLogger(__name__)


def normalize_title(title: str) -> str:
    """Strip and truncate a mediation title.

    Raises:
        ValueError: If the title is empty after stripping.
    """
    title = title.strip()[:MAX_TITLE_LENGTH].strip()
    if not title:
        raise ValueError("A mediation needs a title")
    return title


class MediationService:
    """Facade over the mediation components."""

    def __init__(
        self,
        store: MediationStore | None = None,
        client: CompletionClient | None = None,
        dry_run: bool | None = None,
    ):
        self.store = store or MediationStore()
        self.serializer = MutationSerializer(self.store)
        self.dispatcher = ConsultationDispatcher(
            client or OpenRouterClient(), self.store, dry_run=dry_run
        )
        self.collector = PerspectiveCollector(self.store, self.serializer, self.dispatcher)

    async def create_mediation(self, title: str, group_id: int) -> Mediation:
        """Create an open mediation in ``group_id``."""
        return await self.store.create(normalize_title(title), group_id)

    async def join_mediation(self, user_id: int, name: str, mediation_id: MediationId) -> JoinStatus:
        """Add a participant.

        Raises:
            MediationNotFoundError: If the mediation does not exist.
            InvalidStateError: If the mediation is no longer open.
        """

        async def mutate(mediation: Mediation) -> JoinStatus | NoChange[JoinStatus]:
            status = lifecycle.join(mediation, user_id, name)
            return NoChange(status) if status.already_joined else status

        return await self.serializer.with_mediation(mediation_id, mutate)

    async def close_mediation(self, mediation_id: MediationId) -> str:
        """Close a mediation and return its title.

        Raises:
            MediationNotFoundError: If the mediation does not exist.
            InsufficientParticipantsError: If nobody has joined yet.
            InvalidStateError: If the mediation has already finished.
        """

        async def mutate(mediation: Mediation) -> str:
            return lifecycle.close(mediation)

        return await self.serializer.with_mediation(mediation_id, mutate)

    async def submit_perspective(self, mediation_id: MediationId, user_id: int, text: str) -> SubmitStatus:
        """Store a participant's perspective."""
        return await self.collector.submit(mediation_id, user_id, text)

    async def check_completeness_and_consult(
        self,
        mediation_id: MediationId,
        on_answer_ready: AnswerCallback,
    ) -> CompletenessStatus:
        """Finish the mediation and start consultations once all perspectives are in."""
        return await self.collector.check_completeness(mediation_id, on_answer_ready)

    async def get_answer(self, mediation_id: MediationId, user_id: int) -> str | None:
        return await self.store.load_answer(mediation_id, user_id)

    @staticmethod
    def compute_joint_key(mediation_id: MediationId) -> str:
        return mediation_id.joint_key
