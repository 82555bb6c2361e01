"""Error taxonomy for mediation operations."""


class MediationError(Exception):
    """Base class for all mediation failures."""


class MediationNotFoundError(MediationError):
    """No mediation record exists for the given id."""

    def __init__(self, joint_key: str):
        super().__init__(f"Mediation {joint_key} not found")
        self.joint_key = joint_key


class InvalidStateError(MediationError):
    """Operation attempted against a mediation in the wrong lifecycle state."""

    def __init__(self, message: str, state: str | None = None):
        super().__init__(message)
        self.state = state


class InsufficientParticipantsError(MediationError):
    """Close attempted before enough participants joined."""


class StorageError(MediationError):
    """Persistence I/O failed or a stored record could not be decoded."""


class ConsultationError(MediationError):
    """The completion provider failed or returned an unusable result."""


class InvalidMediationIdError(MediationError, ValueError):
    """A token contains characters outside the URL-safe alphabet."""


class InvalidInviteError(InvalidMediationIdError):
    """An invite parameter could not be decoded into a mediation id."""
