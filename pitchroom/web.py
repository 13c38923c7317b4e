import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .errors import (
    ConfigurationError,
    DuplicateSubmitError,
    PersistenceError,
    SessionNotFoundError,
    TransportError,
    ValidationError,
)
from .llm_gateway import build_model_gateway
from .models import (
    EndSessionResponse,
    ReportResponse,
    SessionRequest,
    StartSessionRequest,
    StartSessionResponse,
    StartupProfile,
    TurnRequest,
    TurnResponse,
)
from .personas import PERSONAS
from .registry import SessionRegistry
from .storage import build_session_store


logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="PitchRoom Backend")
sessions = SessionRegistry(gateway=build_model_gateway(), store=build_session_store())

frontend_origins = os.getenv(
    "FRONTEND_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DuplicateSubmitError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, TransportError):
        return HTTPException(status_code=502, detail=f"{exc} Please resubmit the same message.")
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "storage": sessions.store.storage_name,
        "live_sessions": sessions.live_session_count(),
    }


@app.get("/api/system/status")
def system_status() -> dict:
    return {
        "providers": sessions.gateway.provider_status(),
        "default_provider": sessions.gateway.default_provider,
    }


@app.get("/api/personas")
def list_personas() -> dict:
    return {"items": [persona.to_dict() for persona in PERSONAS]}


@app.post("/api/sessions/start", response_model=StartSessionResponse)
def start_session(body: StartSessionRequest) -> StartSessionResponse:
    startup = StartupProfile(name=body.startup.name.strip(), description=body.startup.description.strip())
    try:
        opening = sessions.start(body.persona_id, startup, body.provider)
    except (ValidationError, ConfigurationError, TransportError, PersistenceError) as exc:
        logger.warning("session_start_failed persona=%s error=%s", body.persona_id, exc)
        raise _http_error(exc) from exc
    return StartSessionResponse(
        session_id=opening.session_id,
        opening_line=opening.opening_line,
        score=opening.score,
        provider=opening.provider,
    )


@app.post("/api/sessions/turn", response_model=TurnResponse)
def submit_turn(body: TurnRequest) -> TurnResponse:
    try:
        outcome = sessions.submit_turn(body.session_id, body.text)
    except (ValidationError, SessionNotFoundError, ConfigurationError, TransportError, PersistenceError) as exc:
        logger.warning("session_id=%s turn_rejected error=%s", body.session_id, exc)
        raise _http_error(exc) from exc
    return TurnResponse(
        reply=outcome.reply,
        score=outcome.score,
        trajectory_delta=outcome.delta,
        terminated=outcome.terminated,
        termination_reason=outcome.termination_reason.value if outcome.termination_reason else None,
    )


@app.post("/api/sessions/end", response_model=EndSessionResponse)
def end_session(body: SessionRequest) -> EndSessionResponse:
    try:
        state = sessions.end(body.session_id)
    except (ValidationError, SessionNotFoundError, ConfigurationError, PersistenceError) as exc:
        raise _http_error(exc) from exc
    return EndSessionResponse(
        session_id=state.id,
        terminated=True,
        termination_reason=state.termination_reason.value if state.termination_reason else None,
        score=state.score,
    )


@app.post("/api/sessions/report", response_model=ReportResponse)
def generate_report(body: SessionRequest) -> ReportResponse:
    try:
        report = sessions.report(body.session_id)
    except (ValidationError, SessionNotFoundError, ConfigurationError, PersistenceError) as exc:
        raise _http_error(exc) from exc
    return ReportResponse(**report.to_dict())


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str) -> dict:
    try:
        state = sessions.snapshot(session_id)
    except SessionNotFoundError as exc:
        raise _http_error(exc) from exc
    return state.to_dict()


@app.delete("/api/sessions/{session_id}")
def abandon_session(session_id: str) -> dict:
    try:
        sessions.discard(session_id)
    except (SessionNotFoundError, PersistenceError) as exc:
        raise _http_error(exc) from exc
    return {"session_id": session_id, "abandoned": True}
