"""File-based storage for mediations, perspectives and answers.

Layout below the base directory::

    g<group_id>/<token>/meta.json
    g<group_id>/<token>/<user_id>/perspective.txt
    g<group_id>/<token>/<user_id>/answer.txt
"""

import asyncio
import json
import logging
import os
import secrets
import tempfile
from pathlib import Path

from .config import MEDIATIONS_DIR
from .errors import MediationNotFoundError, StorageError
from .models import Mediation, MediationId, MediationState

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"
PERSPECTIVE_FILENAME = "perspective.txt"
ANSWER_FILENAME = "answer.txt"


def generate_token() -> str:
    """Generate an unguessable mediation token."""
    return secrets.token_urlsafe(12)


def _write_atomic(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` so readers see either the old or the new file.

    Raises:
        StorageError: If the directory cannot be created or the write fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e


def _read_text(path: Path) -> str | None:
    """Read a text file, returning None when it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e


class MediationStore:
    """Durable persistence for mediation records and per-participant texts.

    All public methods are coroutines; the blocking file I/O runs in a
    worker thread so only the calling coroutine is suspended.
    """

    def __init__(self, base_dir: str | os.PathLike[str] = MEDIATIONS_DIR):
        self.base_dir = Path(base_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def mediation_dir(self, mediation_id: MediationId) -> Path:
        return self.base_dir / f"g{mediation_id.group_id}" / mediation_id.token

    def mediation_path(self, mediation_id: MediationId) -> Path:
        return self.mediation_dir(mediation_id) / META_FILENAME

    def participant_dir(self, mediation_id: MediationId, user_id: int) -> Path:
        return self.mediation_dir(mediation_id) / str(user_id)

    def perspective_path(self, mediation_id: MediationId, user_id: int) -> Path:
        return self.participant_dir(mediation_id, user_id) / PERSPECTIVE_FILENAME

    def answer_path(self, mediation_id: MediationId, user_id: int) -> Path:
        return self.participant_dir(mediation_id, user_id) / ANSWER_FILENAME

    # ------------------------------------------------------------------
    # Mediation records
    # ------------------------------------------------------------------

    async def create(self, title: str, group_id: int) -> Mediation:
        """Create and persist a new open mediation with a fresh token."""
        mediation_id = await asyncio.to_thread(self._fresh_id, group_id)
        mediation = Mediation(id=mediation_id, title=title, state=MediationState.OPEN)
        await self.save(mediation)
        logger.info("Created mediation %s (%r)", mediation_id.joint_key, title)
        return mediation

    def _fresh_id(self, group_id: int) -> MediationId:
        # Tokens are random; a collision would silently replace another record.
        while True:
            mediation_id = MediationId(group_id=group_id, token=generate_token())
            if not self.mediation_path(mediation_id).exists():
                return mediation_id

    async def load(self, mediation_id: MediationId) -> Mediation:
        """Load a mediation record.

        Raises:
            MediationNotFoundError: If no record exists for ``mediation_id``.
            StorageError: If the record cannot be read or decoded.
        """
        return await asyncio.to_thread(self._load_sync, mediation_id)

    def _load_sync(self, mediation_id: MediationId) -> Mediation:
        path = self.mediation_path(mediation_id)
        data = _read_text(path)
        if data is None:
            raise MediationNotFoundError(mediation_id.joint_key)
        try:
            return Mediation.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt mediation record {path}: {e}") from e

    async def save(self, mediation: Mediation) -> None:
        """Overwrite the record for ``mediation``."""
        content = json.dumps(mediation.to_dict(), indent=2)
        await asyncio.to_thread(_write_atomic, self.mediation_path(mediation.id), content)

    # ------------------------------------------------------------------
    # Perspectives and answers
    # ------------------------------------------------------------------

    async def load_perspective(self, mediation_id: MediationId, user_id: int) -> str | None:
        """Return the stored perspective, or None if the user has not submitted one."""
        return await asyncio.to_thread(_read_text, self.perspective_path(mediation_id, user_id))

    async def save_perspective(self, mediation_id: MediationId, user_id: int, text: str) -> bool:
        """Store a perspective, replacing any earlier one.

        Returns:
            True if a perspective had already been stored for this user.
        """
        path = self.perspective_path(mediation_id, user_id)
        existed = await asyncio.to_thread(path.exists)
        await asyncio.to_thread(_write_atomic, path, text)
        return existed

    async def load_answer(self, mediation_id: MediationId, user_id: int) -> str | None:
        """Return the stored answer, or None if none has been written yet."""
        return await asyncio.to_thread(_read_text, self.answer_path(mediation_id, user_id))

    async def save_answer(self, mediation_id: MediationId, user_id: int, text: str) -> None:
        """Store an answer. Answers are written once.

        Raises:
            StorageError: If an answer already exists or the write fails.
        """
        path = self.answer_path(mediation_id, user_id)
        if await asyncio.to_thread(path.exists):
            raise StorageError(
                f"Answer for user {user_id} in {mediation_id.joint_key} already stored"
            )
        await asyncio.to_thread(_write_atomic, path, text)
