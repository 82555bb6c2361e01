"""Consultation fan-out: one completion request per participant.

Once every participant of a closed mediation has submitted a perspective,
``ConsultationDispatcher.dispatch`` starts an independent task per
participant and returns immediately. Each task builds a personalized prompt,
asks the completion client for an answer, hands the answer to the caller's
``on_answer_ready`` callback and stores it. Failures are logged and dropped.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping

from . import config
from .errors import ConsultationError, StorageError
from .logging_config import mediation_context
from .models import Mediation, Participant
from .openrouter import CompletionClient
from .storage import MediationStore

logger = logging.getLogger(__name__)

AnswerCallback = Callable[[int, str], Awaitable[None] | None]

FRAME_PROMPT = (
    "There are {count} people who have a conflict: {names}. Each of them has "
    "their own perspective on the conflict. Please read their versions of the "
    "truth and give {name} suggestions on how to deal with the situation in a "
    "constructive way."
)

OTHERS_HEADER = "Here are the other people's perspectives:\n\n"

OWN_PERSPECTIVE_INTRO = "Here is the user's ({name}) perspective:"

CLOSING_PROMPT = (
    "Please give the user ({name}) suggestions on how to deal with the "
    "situation in a constructive way or what to reflect on. Answer in the same "
    "language as the user ({name}) used in their message. If you think "
    "something is amiss or there is a misunderstanding, suggest starting a new "
    "mediation in the group chat."
)


def format_name_list(names: list[str]) -> str:
    """Join names as ``A, B and C``."""
    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def build_consultation_messages(
    participants: list[Participant],
    perspectives: Mapping[int, str],
    index: int,
) -> list[dict[str, str]]:
    """Build the chat messages for the participant at ``index``.

    Other perspectives are listed starting with the participant after the
    target and wrapping around, so every participant sees a different order.
    """
    target = participants[index]
    count = len(participants)
    names = format_name_list([p.display_name for p in participants])

    others = OTHERS_HEADER
    for offset in range(1, count):
        other = participants[(index + offset) % count]
        others += f"Person {offset}, {other.display_name}:\n{perspectives[other.user_id]}\n\n"

    return [
        {
            "role": "system",
            "content": FRAME_PROMPT.format(count=count, names=names, name=target.display_name),
        },
        {"role": "system", "content": others.rstrip("\n")},
        {"role": "system", "content": OWN_PERSPECTIVE_INTRO.format(name=target.display_name)},
        {"role": "user", "content": perspectives[target.user_id]},
        {"role": "system", "content": CLOSING_PROMPT.format(name=target.display_name)},
    ]


class ConsultationDispatcher:
    """Starts and tracks the per-participant consultation tasks."""

    def __init__(
        self,
        client: CompletionClient,
        store: MediationStore,
        dry_run: bool | None = None,
    ):
        self.client = client
        self.store = store
        self._dry_run = dry_run
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def dry_run(self) -> bool:
        """The explicit override, else the current configured value."""
        return config.DRY_RUN if self._dry_run is None else self._dry_run

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        mediation: Mediation,
        perspectives: Mapping[int, str],
        on_answer_ready: AnswerCallback,
    ) -> list[asyncio.Task[None]]:
        """Start one consultation task per participant and return without waiting.

        Args:
            mediation: The finished mediation.
            perspectives: Perspective text keyed by user id, one per participant.
            on_answer_ready: Called with ``(user_id, answer)`` for every answer.

        Returns:
            The started tasks.
        """
        participants = list(mediation.participants)
        snapshot = dict(perspectives)
        started = []
        for index, participant in enumerate(participants):
            messages = build_consultation_messages(participants, snapshot, index)
            task = asyncio.create_task(
                self._consult(mediation, participant, messages, on_answer_ready),
                name=f"consult-{mediation.id.joint_key}-{participant.user_id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(task)

        logger.info("Dispatched %d consultation request(s)", len(started))
        return started

    async def drain(self) -> None:
        """Wait until every started consultation has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _consult(
        self,
        mediation: Mediation,
        participant: Participant,
        messages: list[dict[str, str]],
        on_answer_ready: AnswerCallback,
    ) -> None:
        user_id = participant.user_id
        with mediation_context(mediation.id.joint_key, user_id):
            if self.dry_run:
                logger.info("Dry run, not sending consultation request: %s", messages)
                return

            try:
                answer = await self.client.complete(messages)
                if not answer or not answer.strip():
                    raise ConsultationError("no answer or unexpected answer format")
            except ConsultationError as e:
                logger.error("Consultation for user %s failed: %s", user_id, e)
                return
            except Exception:
                logger.exception("Unexpected error consulting for user %s", user_id)
                return

            try:
                result = on_answer_ready(user_id, answer)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Answer callback failed for user %s", user_id)

            try:
                await self.store.save_answer(mediation.id, user_id, answer)
            except StorageError:
                logger.exception("Failed to store answer for user %s", user_id)
