"""Perspective collection and completeness detection."""

import asyncio
import logging

from . import lifecycle
from .consultation import AnswerCallback, ConsultationDispatcher
from .logging_config import mediation_context
from .models import CompletenessStatus, Mediation, MediationId, MediationState, SubmitStatus
from .serializer import MutationSerializer, NoChange
from .storage import MediationStore

logger = logging.getLogger(__name__)


class PerspectiveCollector:
    """Stores perspectives and decides when a mediation has all of them."""

    def __init__(
        self,
        store: MediationStore,
        serializer: MutationSerializer,
        dispatcher: ConsultationDispatcher,
    ):
        self.store = store
        self.serializer = serializer
        self.dispatcher = dispatcher

    async def submit(self, mediation_id: MediationId, user_id: int, text: str) -> SubmitStatus:
        """Store ``text`` as the user's perspective, replacing an earlier one.

        The mediation record is only read (through the serializer, so the
        freshest snapshot is seen); the perspective itself is written outside
        the serialized section.

        Raises:
            MediationNotFoundError: If the mediation does not exist.
        """

        async def read(mediation: Mediation) -> NoChange[Mediation]:
            return NoChange(mediation)

        mediation = await self.serializer.with_mediation(mediation_id, read)
        title = mediation.title
        state = mediation.state
        participant_count = mediation.participant_count

        with mediation_context(mediation_id.joint_key, user_id):
            if state is MediationState.FINISHED:
                logger.info("Perspective stored after the mediation finished; it has no effect")
            already_stored = await self.store.save_perspective(mediation_id, user_id, text)
            logger.info("Perspective %s", "replaced" if already_stored else "stored")

        return SubmitStatus(
            already_stored=already_stored,
            mediation_title=title,
            mediation_closed=state is MediationState.CLOSED,
            participant_count=participant_count,
        )

    async def check_completeness(
        self,
        mediation_id: MediationId,
        on_answer_ready: AnswerCallback,
    ) -> CompletenessStatus:
        """Finish the mediation and start consultations if every perspective is in.

        Runs inside the serializer, so of several concurrent checks exactly one
        can observe the closed, complete mediation and move it to finished.
        """

        async def check(mediation: Mediation) -> CompletenessStatus | NoChange[CompletenessStatus]:
            participant_count = mediation.participant_count
            if mediation.state is MediationState.FINISHED:
                return NoChange(CompletenessStatus(
                    finished=False,
                    received_count=participant_count,
                    participant_count=participant_count,
                    already_finished=True,
                ))

            loaded = await asyncio.gather(*(
                self.store.load_perspective(mediation_id, p.user_id)
                for p in mediation.participants
            ))
            perspectives = {
                p.user_id: text
                for p, text in zip(mediation.participants, loaded)
                if text is not None
            }
            received_count = len(perspectives)

            complete = participant_count > 0 and received_count == participant_count
            if not complete or mediation.state is not MediationState.CLOSED:
                logger.info(
                    "Received %d of %d perspectives (state %s)",
                    received_count,
                    participant_count,
                    mediation.state.value,
                )
                return NoChange(CompletenessStatus(
                    finished=False,
                    received_count=received_count,
                    participant_count=participant_count,
                ))

            lifecycle.mark_finished(mediation)
            self.dispatcher.dispatch(mediation, perspectives, on_answer_ready)
            logger.info("All %d perspectives received, mediation finished", participant_count)
            return CompletenessStatus(
                finished=True,
                received_count=received_count,
                participant_count=participant_count,
            )

        return await self.serializer.with_mediation(mediation_id, check)
