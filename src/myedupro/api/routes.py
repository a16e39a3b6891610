"""REST API routes exposing the auth snapshot and orchestrator actions."""

from typing import NoReturn

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from myedupro.auth.classify import classify_error
from myedupro.auth.orchestrator import SessionOrchestrator
from myedupro.backend.errors import AuthRequiredError, ErrorKind
from myedupro.models.auth import SignInRequest, SignUpRequest
from myedupro.models.profile import ProfileUpdate
from myedupro.models.progress import StudySessionType
from myedupro.storage.local_state import SIDEBAR_COLLAPSED, THEME, LocalStateStore

logger = structlog.get_logger()
router = APIRouter(prefix="/api")


class StudySessionRequest(BaseModel):
    session_type: StudySessionType
    subject: str
    duration_minutes: int
    score: int | None = None


class PreferencesUpdate(BaseModel):
    sidebar_collapsed: bool | None = None
    theme: str | None = None


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


def get_state_store(request: Request) -> LocalStateStore:
    return request.app.state.state_store


def _raise_http(error: Exception, context: str) -> NoReturn:
    if isinstance(error, AuthRequiredError):
        raise HTTPException(status_code=401, detail=str(error)) from error
    classification = classify_error(error, context)
    if classification.kind == ErrorKind.INVALID:
        status = 400
    elif classification.kind == ErrorKind.NOT_FOUND:
        status = 404
    elif classification.disconnects:
        status = 503
    else:
        status = 500
    raise HTTPException(status_code=status, detail=classification.message) from error


def _state(orchestrator: SessionOrchestrator) -> dict:
    return orchestrator.snapshot.model_dump(mode="json")


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/state")
async def get_state(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    """Current auth, profile and progress snapshot."""
    return _state(orchestrator)


@router.post("/auth/signup", status_code=202)
async def sign_up(
    body: SignUpRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        await orchestrator.sign_up(body)
    except Exception as e:
        _raise_http(e, "Sign up")
    return _state(orchestrator)


@router.post("/auth/signin", status_code=202)
async def sign_in(
    body: SignInRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        await orchestrator.sign_in(body)
    except Exception as e:
        _raise_http(e, "Sign in")
    return _state(orchestrator)


@router.post("/auth/signout")
async def sign_out(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    await orchestrator.sign_out()
    return _state(orchestrator)


@router.patch("/profile")
async def update_profile(
    body: ProfileUpdate, orchestrator: SessionOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        await orchestrator.update_profile(body)
    except Exception as e:
        _raise_http(e, "Profile update")
    return _state(orchestrator)


@router.post("/profile/retry")
async def retry_profile_load(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    await orchestrator.retry_profile_load()
    return _state(orchestrator)


@router.post("/profile/complete")
async def mark_profile_completed(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    orchestrator.mark_profile_completed()
    return _state(orchestrator)


@router.post("/progress/sessions", status_code=201)
async def record_study_session(
    body: StudySessionRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        record = await orchestrator.record_study_session(
            body.session_type, body.subject, body.duration_minutes, body.score
        )
    except Exception as e:
        _raise_http(e, "Record study session")
    return {"session": record.model_dump(mode="json"), "state": _state(orchestrator)}


@router.post("/progress/refresh")
async def refresh_progress(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    await orchestrator.refresh_progress()
    return _state(orchestrator)


@router.post("/connection/retry")
async def retry_connection(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    await orchestrator.retry_connection()
    return _state(orchestrator)


@router.post("/error/dismiss")
async def dismiss_error(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    orchestrator.dismiss_error()
    return _state(orchestrator)


@router.get("/preferences")
async def get_preferences(store: LocalStateStore = Depends(get_state_store)) -> dict:
    """UI preferences kept in the local flag store."""
    return store.preferences()


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdate, store: LocalStateStore = Depends(get_state_store)
) -> dict:
    if body.sidebar_collapsed is not None:
        store.set(SIDEBAR_COLLAPSED, "true" if body.sidebar_collapsed else "false")
    if body.theme is not None:
        store.set(THEME, body.theme)
    logger.info("preferences_updated", **body.model_dump(exclude_none=True))
    return store.preferences()
