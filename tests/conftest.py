"""Shared test fixtures and configuration.

Sets environment variables before any mediator modules are imported,
preventing import errors from missing API keys and keeping test data out of
the working directory.
"""

import asyncio
import os
import tempfile

# Set required env vars BEFORE any mediator imports happen.
# pytest loads conftest.py before test modules, so this runs first.
os.environ.setdefault("OPENROUTER_API_KEY", "test-key-not-real")
os.environ.setdefault("MEDIATOR_DATA_DIR", tempfile.mkdtemp(prefix="mediator-tests-"))
os.environ["MEDIATOR_DRY_RUN"] = "false"
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)

import pytest  # noqa: E402

from mediator.errors import ConsultationError  # noqa: E402
from mediator.service import MediationService  # noqa: E402
from mediator.storage import MediationStore  # noqa: E402


class FakeCompletionClient:
    """Records requests and answers with a canned reply.

    Args:
        fail_for: Perspective texts whose request should raise ConsultationError.
        gate: Optional event every request waits on before answering.
    """

    def __init__(self, fail_for: set[str] | None = None, gate: asyncio.Event | None = None):
        self.requests: list[list[dict[str, str]]] = []
        self.fail_for = fail_for or set()
        self.gate = gate

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.requests.append(messages)
        if self.gate is not None:
            await self.gate.wait()
        own_perspective = next(m["content"] for m in messages if m["role"] == "user")
        if own_perspective in self.fail_for:
            raise ConsultationError("provider unavailable")
        return f"Advice about: {own_perspective}"


@pytest.fixture
def store(tmp_path) -> MediationStore:
    return MediationStore(tmp_path / "mediations")


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def service(store, fake_client) -> MediationService:
    return MediationService(store=store, client=fake_client, dry_run=False)

@pytest.fixture
def make_service(store):
    """Factory for services backed by a custom fake client."""

    def _make(**client_kwargs) -> tuple[MediationService, FakeCompletionClient]:
        client = FakeCompletionClient(**client_kwargs)
        return MediationService(store=store, client=client, dry_run=False), client

    return _make
