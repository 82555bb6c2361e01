"""Mediation data models."""

import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import InvalidInviteError, InvalidMediationIdError

JOINT_KEY_SEPARATOR = "%"
INVITE_SEPARATOR = "+"
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class MediationState(str, Enum):
    """Lifecycle states. A mediation only ever moves forward."""

    OPEN = "open"
    CLOSED = "closed"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = [MediationState.OPEN, MediationState.CLOSED, MediationState.FINISHED]


@dataclass(frozen=True)
class MediationId:
    """Address of a mediation: the group it belongs to and its token."""

    group_id: int
    token: str

    def __post_init__(self):
        if not TOKEN_PATTERN.fullmatch(self.token):
            raise InvalidMediationIdError(f"Invalid mediation token {self.token!r}")

    @property
    def joint_key(self) -> str:
        """Stable single-string key, e.g. ``-1001%k3j2h1``."""
        return f"{self.group_id}{JOINT_KEY_SEPARATOR}{self.token}"

    def to_invite_param(self) -> str:
        """Encode the id for use in a deep link, without base64 padding."""
        raw = f"{self.group_id}{INVITE_SEPARATOR}{self.token}".encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def from_invite_param(cls, param: str) -> "MediationId":
        """Decode an invite parameter produced by ``to_invite_param``.

        Raises:
            InvalidInviteError: If the parameter is not valid base64 or does
                not contain a group id and a URL-safe token.
        """
        try:
            padded = param + "=" * (-len(param) % 4)
            raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidInviteError(f"Malformed invite parameter: {e}") from e

        group_part, sep, token = raw.partition(INVITE_SEPARATOR)
        if not sep or not token:
            raise InvalidInviteError("Invite parameter is missing the token")
        if not TOKEN_PATTERN.fullmatch(token):
            raise InvalidInviteError(f"Invalid token in invite parameter: {token!r}")
        try:
            group_id = int(group_part)
        except ValueError as e:
            raise InvalidInviteError(f"Invalid group id {group_part!r}") from e
        return cls(group_id=group_id, token=token)

    def to_dict(self) -> dict[str, Any]:
        return {"group_id": self.group_id, "token": self.token}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediationId":
        return cls(group_id=int(data["group_id"]), token=str(data["token"]))


@dataclass(frozen=True)
class Participant:
    """A person who has joined a mediation."""

    user_id: int
    display_name: str

    def to_dict(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "display_name": self.display_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Participant":
        return cls(user_id=int(data["user_id"]), display_name=data.get("display_name", ""))


@dataclass
class Mediation:
    """A mediation record as persisted in ``meta.json``."""

    id: MediationId
    title: str
    participants: list[Participant] = field(default_factory=list)
    state: MediationState = MediationState.OPEN
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def find_participant(self, user_id: int) -> Participant | None:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id.to_dict(),
            "title": self.title,
            "participants": [p.to_dict() for p in self.participants],
            "state": self.state.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mediation":
        """Create from dictionary."""
        return cls(
            id=MediationId.from_dict(data["id"]),
            title=data["title"],
            participants=[Participant.from_dict(p) for p in data.get("participants", [])],
            state=MediationState(data.get("state", MediationState.OPEN.value)),
            created_at=data.get("created_at", ""),
        )


@dataclass(frozen=True)
class JoinStatus:
    """Outcome of a join request."""

    already_joined: bool
    mediation_title: str
    participant_count: int


@dataclass(frozen=True)
class SubmitStatus:
    """Outcome of a perspective submission."""

    already_stored: bool
    mediation_title: str
    mediation_closed: bool
    participant_count: int


@dataclass(frozen=True)
class CompletenessStatus:
    """Outcome of a completeness check.

    ``finished`` is True only for the single check that moved the mediation
    to ``finished`` and started the consultation. Later checks report
    ``already_finished`` instead.
    """

    finished: bool
    received_count: int | None = None
    participant_count: int | None = None
    already_finished: bool = False

    @property
    def missing_count(self) -> int | None:
        if self.received_count is None or self.participant_count is None:
            return None
        return self.participant_count - self.received_count
