"""AI Mediator: coordinates multi-party mediations and their consultations."""

from .errors import (
    ConsultationError,
    InsufficientParticipantsError,
    InvalidInviteError,
    InvalidStateError,
    MediationError,
    MediationNotFoundError,
    StorageError,
)
from .models import (
    CompletenessStatus,
    JoinStatus,
    Mediation,
    MediationId,
    MediationState,
    Participant,
    SubmitStatus,
)
from .service import MediationService

__version__ = "0.1.0"

__all__ = [
    "CompletenessStatus",
    "ConsultationError",
    "InsufficientParticipantsError",
    "InvalidInviteError",
    "InvalidStateError",
    "JoinStatus",
    "Mediation",
    "MediationError",
    "MediationId",
    "MediationNotFoundError",
    "MediationService",
    "MediationState",
    "Participant",
    "StorageError",
    "SubmitStatus",
]
