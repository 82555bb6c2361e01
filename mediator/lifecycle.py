"""Mediation lifecycle: ``open -> closed -> finished``.

The functions here validate and apply a single transition to an in-memory
``Mediation``. They never touch storage; callers run them inside
``MutationSerializer.with_mediation`` so the result is persisted.
"""

import logging

from .config import MIN_PARTICIPANTS_TO_CLOSE
from .errors import InsufficientParticipantsError, InvalidStateError
from .models import JoinStatus, Mediation, MediationState, Participant

logger = logging.getLogger(__name__)


def _advance(mediation: Mediation, target: MediationState) -> None:
    if target.rank <= mediation.state.rank:
        raise InvalidStateError(
            f"Cannot move mediation from {mediation.state.value} to {target.value}",
            state=mediation.state.value,
        )
    mediation.state = target


def join(mediation: Mediation, user_id: int, name: str) -> JoinStatus:
    """Add a participant to an open mediation.

    Joining twice is allowed and changes nothing, including the display name.

    Raises:
        InvalidStateError: If the mediation is no longer open.
    """
    if mediation.state is not MediationState.OPEN:
        raise InvalidStateError(
            f"Mediation {mediation.title!r} is already {mediation.state.value}",
            state=mediation.state.value,
        )

    already_joined = mediation.find_participant(user_id) is not None
    if not already_joined:
        mediation.participants.append(Participant(user_id=user_id, display_name=name))
        logger.info("User %s joined as participant %d", user_id, mediation.participant_count)

    return JoinStatus(
        already_joined=already_joined,
        mediation_title=mediation.title,
        participant_count=mediation.participant_count,
    )


def close(mediation: Mediation) -> str:
    """Stop accepting participants. Returns the mediation title.

    Raises:
        InsufficientParticipantsError: If nobody has joined yet.
        InvalidStateError: If the mediation has already finished.
    """
    if mediation.participant_count < MIN_PARTICIPANTS_TO_CLOSE:
        raise InsufficientParticipantsError(
            f"Mediation {mediation.title!r} needs at least "
            f"{MIN_PARTICIPANTS_TO_CLOSE} participant(s) to close"
        )
    if mediation.state is MediationState.CLOSED:
        return mediation.title

    _advance(mediation, MediationState.CLOSED)
    logger.info("Mediation closed with %d participants", mediation.participant_count)
    return mediation.title


def mark_finished(mediation: Mediation) -> None:
    """Move a closed mediation to ``finished``.

    Only the completeness check calls this, and only after it has seen every
    perspective on the freshest snapshot.

    Raises:
        InvalidStateError: If the mediation is not closed.
    """
    if mediation.state is not MediationState.CLOSED:
        raise InvalidStateError(
            f"Only closed mediations can finish, not {mediation.state.value} ones",
            state=mediation.state.value,
        )
    _advance(mediation, MediationState.FINISHED)
