"""FastAPI adapter the chat transport calls into."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from functools import lru_cache
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import config
from .consultation import AnswerCallback
from .errors import (
    InsufficientParticipantsError,
    InvalidMediationIdError,
    InvalidStateError,
    MediationError,
    MediationNotFoundError,
)
from .logging_config import set_current_user, setup_logging
from .models import CompletenessStatus, MediationId
from .service import MediationService
from .sessions import SessionRegistry
from .telemetry import instrument_fastapi, instrument_httpx, setup_telemetry

logger = logging.getLogger(__name__)

# Seconds to wait for running consultations when the server stops
SHUTDOWN_DRAIN_TIMEOUT = 30.0


@lru_cache
def get_service() -> MediationService:
    """Process-wide mediation service."""
    return MediationService()


@lru_cache
def get_sessions() -> SessionRegistry:
    """Process-wide session registry."""
    return SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if setup_telemetry():
        instrument_fastapi(app)
        instrument_httpx()
    yield
    dispatcher = get_service().dispatcher
    if dispatcher.pending_count:
        logger.info("Waiting for %d consultation(s) to settle", dispatcher.pending_count)
        try:
            await asyncio.wait_for(dispatcher.drain(), SHUTDOWN_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Consultations still running at shutdown were abandoned")


app = FastAPI(title="AI Mediator API", lifespan=lifespan)


_ERROR_STATUS = {
    MediationNotFoundError: 404,
    InvalidStateError: 409,
    InsufficientParticipantsError: 409,
    InvalidMediationIdError: 400,
}


@app.exception_handler(MediationError)
async def mediation_error_handler(request: Request, exc: MediationError) -> JSONResponse:
    """Map mediation failures to HTTP status codes."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code == 500:
        logger.error("Unhandled mediation error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


class CreateMediationRequest(BaseModel):
    """Request to create a mediation in a group chat."""
    title: str
    group_id: int
    member_count: int = Field(..., ge=0, description="Members in the group chat")


class JoinRequest(BaseModel):
    """Request to join a mediation."""
    user_id: int
    display_name: str


class PerspectiveRequest(BaseModel):
    """A participant's perspective, sent from their private chat."""
    text: str = Field(..., min_length=1)


def make_answer_notifier(mediation_id: MediationId, title: str) -> AnswerCallback:
    """Build the callback that delivers answers to the transport.

    Answers are POSTed to the configured webhook; without one they are only
    logged (they are stored either way).
    """

    async def notify(user_id: int, answer: str) -> None:
        url = config.ANSWER_WEBHOOK_URL
        if not url:
            logger.info("Answer ready for user %s in %r (no webhook configured)", user_id, title)
            return
        payload = {
            **mediation_id.to_dict(),
            "mediation_title": title,
            "user_id": user_id,
            "answer": answer,
        }
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()

    return notify


def _completeness_payload(status: CompletenessStatus) -> dict[str, Any]:
    payload = asdict(status)
    payload["missing_count"] = status.missing_count
    return payload


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "AI Mediator API"}


@app.post("/api/mediations")
async def create_mediation(
    request: CreateMediationRequest,
    service: MediationService = Depends(get_service),
):
    """Create a mediation and return its invite parameter."""
    if request.member_count < config.MIN_GROUP_MEMBERS:
        raise HTTPException(
            status_code=400,
            detail=f"Mediations need a group chat with at least {config.MIN_GROUP_MEMBERS} members",
        )
    try:
        mediation = await service.create_mediation(request.title, request.group_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {
        **mediation.to_dict(),
        "joint_key": service.compute_joint_key(mediation.id),
        "invite": mediation.id.to_invite_param(),
    }


@app.get("/api/invites/{param}")
async def resolve_invite(param: str):
    """Decode an invite parameter from a deep link."""
    mediation_id = MediationId.from_invite_param(param)
    return {**mediation_id.to_dict(), "joint_key": mediation_id.joint_key}


@app.post("/api/mediations/{group_id}/{token}/participants")
async def join_mediation(
    group_id: int,
    token: str,
    request: JoinRequest,
    service: MediationService = Depends(get_service),
    sessions: SessionRegistry = Depends(get_sessions),
):
    """Join a mediation and make it the user's current one."""
    set_current_user(request.user_id)
    mediation_id = MediationId(group_id=group_id, token=token)
    status = await service.join_mediation(request.user_id, request.display_name, mediation_id)
    sessions.set_current(request.user_id, mediation_id)
    return asdict(status)


@app.post("/api/mediations/{group_id}/{token}/close")
async def close_mediation(
    group_id: int,
    token: str,
    service: MediationService = Depends(get_service),
    sessions: SessionRegistry = Depends(get_sessions),
):
    """Close a mediation, then check whether every perspective is already in."""
    mediation_id = MediationId(group_id=group_id, token=token)
    previous_prompt = sessions.pop_close_prompt(mediation_id.joint_key)

    title = await service.close_mediation(mediation_id)
    status = await service.check_completeness_and_consult(
        mediation_id, make_answer_notifier(mediation_id, title)
    )
    return {
        "mediation_title": title,
        "previous_close_prompt": previous_prompt,
        "completeness": _completeness_payload(status),
    }


@app.post("/api/users/{user_id}/perspective")
async def submit_perspective(
    user_id: int,
    request: PerspectiveRequest,
    service: MediationService = Depends(get_service),
    sessions: SessionRegistry = Depends(get_sessions),
):
    """Store a perspective for the user's current mediation."""
    set_current_user(user_id)
    mediation_id = sessions.current(user_id)
    if mediation_id is None:
        raise HTTPException(status_code=404, detail="User has not joined a mediation")

    status = await service.submit_perspective(mediation_id, user_id, request.text)
    completeness = None
    if status.mediation_closed:
        completeness = _completeness_payload(
            await service.check_completeness_and_consult(
                mediation_id, make_answer_notifier(mediation_id, status.mediation_title)
            )
        )
    return {
        **asdict(status),
        **mediation_id.to_dict(),
        "completeness": completeness,
    }


@app.post("/api/mediations/{group_id}/{token}/consult")
async def consult(
    group_id: int,
    token: str,
    service: MediationService = Depends(get_service),
):
    """Check completeness and start consultations if everyone has submitted."""
    mediation_id = MediationId(group_id=group_id, token=token)
    mediation = await service.store.load(mediation_id)
    status = await service.check_completeness_and_consult(
        mediation_id, make_answer_notifier(mediation_id, mediation.title)
    )
    return _completeness_payload(status)


@app.post("/api/mediations/{group_id}/{token}/close-prompt")
async def remember_close_prompt(
    group_id: int,
    token: str,
    message_ref: dict[str, Any],
    sessions: SessionRegistry = Depends(get_sessions),
):
    """Record the group message carrying the newest close button.

    Returns the message it replaces so the transport can remove its button.
    """
    joint_key = MediationId(group_id=group_id, token=token).joint_key
    return {"previous": sessions.remember_close_prompt(joint_key, message_ref)}


@app.get("/api/mediations/{group_id}/{token}/answers/{user_id}")
async def get_answer(
    group_id: int,
    token: str,
    user_id: int,
    service: MediationService = Depends(get_service),
):
    """Return a stored answer."""
    mediation_id = MediationId(group_id=group_id, token=token)
    answer = await service.get_answer(mediation_id, user_id)
    if answer is None:
        raise HTTPException(status_code=404, detail="Answer not available yet")
    return {"user_id": user_id, "answer": answer}


@app.post("/api/config/reload")
async def reload_config_endpoint():
    """Reload configuration from .env without restarting the server."""
    return config.reload_config()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
