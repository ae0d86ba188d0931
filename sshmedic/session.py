"""Diagnostic Session: the per-host aggregate and its lifecycle.

Sessions are frozen; every operation returns a replacement. A session is
bound to one host and is never reused for another.
"""

from enum import Enum

from sshmedic.analyzer import analyze_root_cause
from sshmedic.logging_config import log_event
from sshmedic.models import (
    ConnectionTestResult,
    DiagnosticSession,
    FixResult,
    HostIdentity,
    PreflightResult,
    RootCauseAnalysis,
    SessionStatus,
)
from sshmedic import planner


class SessionEvent(str, Enum):
    START_PREFLIGHT = "start_preflight"
    START_TEST = "start_test"
    TEST_PASSED = "test_passed"
    TEST_FAILED = "test_failed"
    REPLAN = "replan"
    RESET = "reset"


class SessionStateMachine:
    """Validates session status transitions."""

    _transitions = {
        (SessionStatus.IDLE, SessionEvent.START_PREFLIGHT): SessionStatus.PREFLIGHT,
        (SessionStatus.IDLE, SessionEvent.START_TEST): SessionStatus.TESTING,
        (SessionStatus.PREFLIGHT, SessionEvent.START_PREFLIGHT): SessionStatus.PREFLIGHT,
        (SessionStatus.PREFLIGHT, SessionEvent.START_TEST): SessionStatus.TESTING,
        (SessionStatus.PREFLIGHT, SessionEvent.REPLAN): SessionStatus.TROUBLESHOOTING,
        (SessionStatus.TESTING, SessionEvent.TEST_PASSED): SessionStatus.COMPLETE,
        (SessionStatus.TESTING, SessionEvent.TEST_FAILED): SessionStatus.TROUBLESHOOTING,
        (SessionStatus.TROUBLESHOOTING, SessionEvent.START_PREFLIGHT): SessionStatus.PREFLIGHT,
        (SessionStatus.TROUBLESHOOTING, SessionEvent.START_TEST): SessionStatus.TESTING,
        (SessionStatus.COMPLETE, SessionEvent.START_PREFLIGHT): SessionStatus.PREFLIGHT,
        (SessionStatus.COMPLETE, SessionEvent.START_TEST): SessionStatus.TESTING,
    }

    def can_transition(self, status: SessionStatus, event: SessionEvent) -> bool:
        return event == SessionEvent.RESET or (status, event) in self._transitions

    def transition(self, status: SessionStatus, event: SessionEvent) -> SessionStatus:
        """Apply a transition or raise ValueError for invalid transitions."""
        if event == SessionEvent.RESET:
            return SessionStatus.IDLE
        key = (status, event)
        if key not in self._transitions:
            raise ValueError(f"Invalid transition: status={status.value}, event={event.value}")
        return self._transitions[key]


_machine = SessionStateMachine()


def create_session(host: HostIdentity) -> DiagnosticSession:
    return DiagnosticSession(host_alias=host.host_alias, host_config=host)


def reset_session(session: DiagnosticSession) -> DiagnosticSession:
    """Back to a fresh idle session for the same host."""
    _log_transition(session, SessionEvent.RESET, SessionStatus.IDLE)
    return create_session(session.host_config)


def _apply(session, event, **update):
    status = _machine.transition(session.status, event)
    _log_transition(session, event, status)
    return session.model_copy(update={"status": status, **update})


def _log_transition(session, event, status):
    log_event("session_transition", {
        "host": session.host_alias,
        "from": session.status.value,
        "event": event.value,
        "to": status.value,
    })


def begin_preflight(session: DiagnosticSession) -> DiagnosticSession:
    return _apply(session, SessionEvent.START_PREFLIGHT)


def with_preflight(session: DiagnosticSession, preflight: PreflightResult) -> DiagnosticSession:
    """Record a finished preflight run.

    If the last probe failed, the plan is rebuilt against the new checks.
    """
    result = session.connection_result
    if result is not None and not result.success:
        return _apply(
            session, SessionEvent.REPLAN,
            preflight=preflight,
            troubleshooting_steps=planner.generate_troubleshooting_steps(
                result.error_type, result.error_details, preflight,
            ),
            current_step=0,
        )
    return session.model_copy(update={"preflight": preflight})


def begin_test(session: DiagnosticSession) -> DiagnosticSession:
    return _apply(session, SessionEvent.START_TEST)


def with_connection_result(session: DiagnosticSession, result: ConnectionTestResult) -> DiagnosticSession:
    """Record a finished probe.

    A success completes the session. A failure with a new error type
    replaces the plan; the same error again keeps the current plan and
    only updates the retest step.
    """
    previous = session.connection_result
    steps = session.troubleshooting_steps
    if result.success:
        return _apply(
            session, SessionEvent.TEST_PASSED,
            connection_result=result,
            troubleshooting_steps=planner.record_retest(steps, result) if steps else steps,
        )

    if steps and previous is not None and previous.error_type == result.error_type:
        return _apply(
            session, SessionEvent.TEST_FAILED,
            connection_result=result,
            troubleshooting_steps=planner.record_retest(steps, result),
        )

    return _apply(
        session, SessionEvent.TEST_FAILED,
        connection_result=result,
        troubleshooting_steps=planner.generate_troubleshooting_steps(
            result.error_type, result.error_details, session.preflight,
        ),
        current_step=0,
    )


def apply_step_result(session: DiagnosticSession, index: int, action_id: str,
                      result: FixResult) -> DiagnosticSession:
    steps, current = planner.record_action_result(session.troubleshooting_steps, index, action_id, result)
    return session.model_copy(update={"troubleshooting_steps": steps, "current_step": current})


def skip_step(session: DiagnosticSession, index: int) -> DiagnosticSession:
    steps, current = planner.skip_step(session.troubleshooting_steps, index)
    return session.model_copy(update={"troubleshooting_steps": steps, "current_step": current})


def root_cause(session: DiagnosticSession) -> RootCauseAnalysis | None:
    if session.connection_result is None or session.connection_result.success:
        return None
    return analyze_root_cause(session.connection_result, session.preflight)
