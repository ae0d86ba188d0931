"""FastAPI application: routes, lifespan (engine + session store)."""

import shutil
import threading
import uuid
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request

from sshmedic.config import settings
from sshmedic.engine import DiagnosticEngine, StepActionError
from sshmedic.logging_config import setup_logging, set_correlation_id, log_event
from sshmedic.models import (
    AnalyzeRequest,
    ConnectionTestResult,
    DiagnosticSession,
    FixAllRequest,
    FixAllResult,
    FixRequest,
    FixResult,
    HealthResponse,
    PermissionFixResult,
    PlanRequest,
    PreflightRequest,
    PreflightResult,
    ProbeRequest,
    RootCauseAnalysis,
    SessionCreateRequest,
    StepActionRequest,
    StepActionResponse,
    TroubleshootingStep,
)
from sshmedic.safety import UnsafeInputError
from sshmedic import session as sessions


class SessionStore:
    """One live DiagnosticSession per host alias."""

    def __init__(self):
        self._sessions: dict[str, DiagnosticSession] = {}
        self._lock = threading.Lock()

    def get(self, host_alias) -> DiagnosticSession:
        with self._lock:
            session = self._sessions.get(host_alias)
        if session is None:
            raise HTTPException(status_code=404, detail=f"No session for host {host_alias}")
        return session

    def put(self, session: DiagnosticSession) -> DiagnosticSession:
        with self._lock:
            self._sessions[session.host_alias] = session
        return session

    def delete(self, host_alias) -> bool:
        with self._lock:
            return self._sessions.pop(host_alias, None) is not None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create the diagnostic engine and session store."""
    setup_logging()

    app.state.engine = DiagnosticEngine()
    app.state.sessions = SessionStore()

    log_event("app_start", {
        "transport": settings.PROBE_TRANSPORT,
        "ssh_dir": settings.SSH_DIR,
    })

    yield

    log_event("app_shutdown", {})


router = APIRouter(prefix="/api/v1")


def _engine(request: Request) -> DiagnosticEngine:
    return request.app.state.engine


def _store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _unprocessable(e):
    return HTTPException(status_code=422, detail=str(e))


@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    """Report agent availability, ~/.ssh permissions and the active probe transport."""
    engine = _engine(request)
    agent_running = engine.agent.is_running()
    ssh_dir = engine.permissions.check_ssh_dir()
    return HealthResponse(
        status="healthy" if agent_running and ssh_dir.is_secure else "degraded",
        agent_running=agent_running,
        transport=engine.prober.name,
        ssh_available=shutil.which(settings.SSH_BINARY) is not None,
        ssh_dir_secure=ssh_dir.is_secure,
        ssh_dir_message=ssh_dir.message,
    )


@router.post("/ssh-dir/fix", response_model=PermissionFixResult)
def fix_ssh_dir(request: Request):
    """Set the SSH directory to 700."""
    return _engine(request).permissions.fix_ssh_dir()


@router.post("/preflight", response_model=PreflightResult)
def preflight(body: PreflightRequest, request: Request):
    engine = _engine(request)
    host = engine.resolve_host(body.host_alias, body.identity_file)
    return engine.run_preflight(host)


@router.post("/probe", response_model=ConnectionTestResult)
def probe(body: ProbeRequest, request: Request):
    try:
        return _engine(request).probe_connection(body.host_alias)
    except UnsafeInputError as e:
        raise _unprocessable(e)


@router.post("/analyze", response_model=RootCauseAnalysis)
def analyze(body: AnalyzeRequest, request: Request):
    return _engine(request).analyze(body.connection_result, body.preflight)


@router.post("/plan", response_model=list[TroubleshootingStep])
def plan(body: PlanRequest, request: Request):
    return _engine(request).plan(body.error_type, body.error_details, body.preflight)


@router.post("/fix", response_model=FixResult)
def fix(body: FixRequest, request: Request):
    return _engine(request).execute_fix(body.action, body.secret)


@router.post("/fix-all", response_model=FixAllResult)
def fix_all(body: FixAllRequest, request: Request):
    return _engine(request).fix_all(body.preflight, body.secret)


# --- Sessions ---

@router.post("/sessions", response_model=DiagnosticSession)
def create_session(body: SessionCreateRequest, request: Request):
    """Start a fresh session, replacing any previous one for the host."""
    session = _engine(request).new_session(body.host_alias, body.identity_file)
    return _store(request).put(session)


@router.get("/sessions/{host_alias}", response_model=DiagnosticSession)
def get_session(host_alias: str, request: Request):
    return _store(request).get(host_alias)


@router.delete("/sessions/{host_alias}", status_code=204)
def delete_session(host_alias: str, request: Request):
    if not _store(request).delete(host_alias):
        raise HTTPException(status_code=404, detail=f"No session for host {host_alias}")


@router.post("/sessions/{host_alias}/reset", response_model=DiagnosticSession)
def reset_session(host_alias: str, request: Request):
    store = _store(request)
    return store.put(sessions.reset_session(store.get(host_alias)))


@router.post("/sessions/{host_alias}/preflight", response_model=DiagnosticSession)
def session_preflight(host_alias: str, request: Request):
    store = _store(request)
    try:
        return store.put(_engine(request).session_preflight(store.get(host_alias)))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/sessions/{host_alias}/probe", response_model=DiagnosticSession)
def session_probe(host_alias: str, request: Request):
    store = _store(request)
    try:
        return store.put(_engine(request).session_probe(store.get(host_alias)))
    except UnsafeInputError as e:
        raise _unprocessable(e)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/sessions/{host_alias}/root-cause", response_model=RootCauseAnalysis | None)
def session_root_cause(host_alias: str, request: Request):
    return sessions.root_cause(_store(request).get(host_alias))


@router.post("/sessions/{host_alias}/steps/{index}/execute", response_model=StepActionResponse)
def execute_step(host_alias: str, index: int, body: StepActionRequest, request: Request):
    store = _store(request)
    try:
        session, result = _engine(request).execute_step(
            store.get(host_alias), index, body.action_id, body.secret,
        )
    except (IndexError, KeyError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnsafeInputError as e:
        raise _unprocessable(e)
    except (StepActionError, ValueError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    store.put(session)
    return StepActionResponse(session=session, fix_result=result)


@router.post("/sessions/{host_alias}/steps/{index}/skip", response_model=DiagnosticSession)
def skip_step(host_alias: str, index: int, request: Request):
    store = _store(request)
    try:
        return store.put(_engine(request).skip_step(store.get(host_alias), index))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (StepActionError, ValueError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/sessions/{host_alias}/retest", response_model=DiagnosticSession)
def retest(host_alias: str, request: Request):
    store = _store(request)
    try:
        return store.put(_engine(request).retest(store.get(host_alias)))
    except UnsafeInputError as e:
        raise _unprocessable(e)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


app = FastAPI(
    title="sshmedic",
    description="Diagnose and repair SSH connection problems",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Inject a correlation ID for request-scoped logging."""
    cid = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    set_correlation_id(cid)
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = cid
    return response


app.include_router(router)
