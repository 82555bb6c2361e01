"""In-process session tracking for the chat transport.

Tracks which mediation a user is currently talking about in their private
chat, and which group message carries the latest "close" prompt for a
mediation so the transport can strip its button when a newer one is sent.
Lives for the lifetime of the process.
"""

import logging
from typing import Any

from .models import MediationId

logger = logging.getLogger(__name__)


class SessionRegistry:
    """User and UI correlation state keyed by user id and joint key."""

    def __init__(self) -> None:
        self._current_mediations: dict[int, MediationId] = {}
        self._close_prompts: dict[str, Any] = {}

    def set_current(self, user_id: int, mediation_id: MediationId) -> None:
        """Make ``mediation_id`` the target of the user's next perspective."""
        self._current_mediations[user_id] = mediation_id

    def current(self, user_id: int) -> MediationId | None:
        return self._current_mediations.get(user_id)

    def remember_close_prompt(self, joint_key: str, message_ref: Any) -> Any | None:
        """Record the newest close prompt and return the one it replaces."""
        previous = self._close_prompts.get(joint_key)
        self._close_prompts[joint_key] = message_ref
        return previous

    def pop_close_prompt(self, joint_key: str) -> Any | None:
        """Forget and return the close prompt for a mediation, if any."""
        return self._close_prompts.pop(joint_key, None)
