"""Diagnostic engine: one object wiring the collaborators together.

The HTTP layer and the session helpers only talk to ``DiagnosticEngine``;
tests swap any collaborator through the constructor.
"""

import time
import uuid
import logging

from sshmedic import session as sessions
from sshmedic.agent import AgentClient
from sshmedic.analyzer import analyze_root_cause
from sshmedic.classifier import classify_exception_message, detect_platform
from sshmedic.executor import make_prober
from sshmedic.fixes import FixExecutor
from sshmedic.hosts import resolve_host
from sshmedic.known_hosts import KnownHostsService
from sshmedic.logging_config import log_event
from sshmedic.models import (
    ConnectionTestResult,
    DiagnosticSession,
    ErrorDetails,
    ErrorType,
    FixAction,
    FixAllResult,
    FixResult,
    HostIdentity,
    PreflightResult,
    RootCauseAnalysis,
    TroubleshootingStep,
)
from sshmedic.permissions import PermissionOracle
from sshmedic.planner import RETEST_ACTION_ID, find_action, generate_troubleshooting_steps, is_terminal
from sshmedic.preflight import PreflightRunner
from sshmedic.safety import UnsafeInputError

logger = logging.getLogger("sshmedic")


class StepActionError(ValueError):
    """The requested step action cannot run in the step's current state."""


class DiagnosticEngine:

    def __init__(self, prober=None, permissions=None, agent=None, known_hosts=None):
        self.prober = prober or make_prober()
        self.permissions = permissions or PermissionOracle()
        self.agent = agent or AgentClient()
        self.known_hosts = known_hosts or KnownHostsService()
        self.preflight_runner = PreflightRunner(permissions=self.permissions, agent=self.agent)
        self.fix_executor = FixExecutor(
            permissions=self.permissions, agent=self.agent, known_hosts=self.known_hosts,
        )

    # --- Stateless operations ---

    def resolve_host(self, host_alias, identity_file=None) -> HostIdentity:
        return resolve_host(host_alias, identity_file=identity_file)

    def run_preflight(self, host: HostIdentity) -> PreflightResult:
        return self.preflight_runner.run(host)

    def probe_connection(self, host_alias) -> ConnectionTestResult:
        """Probe *host_alias* once. Transport errors become a classified failure."""
        probe_id = str(uuid.uuid4())
        start_time = time.time()
        log_event("probe_start", {
            "probe_id": probe_id,
            "host": host_alias,
            "transport": self.prober.name,
        })
        try:
            result = self.prober.probe(host_alias)
        except UnsafeInputError:
            raise
        except Exception as e:
            logger.error(f"Probe transport error for {host_alias}: {e}", exc_info=True)
            log_event("probe_transport_error", {
                "probe_id": probe_id,
                "host": host_alias,
                "error": f"{type(e).__name__}: {e}",
            })
            message = str(e) or type(e).__name__
            result = ConnectionTestResult(
                success=False,
                output=message,
                platform=detect_platform(host_alias),
                error_type=classify_exception_message(message),
            )

        log_event("probe_complete", {
            "probe_id": probe_id,
            "host": host_alias,
            "success": result.success,
            "error_type": result.error_type.value if result.error_type else None,
            "duration_seconds": round(time.time() - start_time, 2),
        })
        return result

    def analyze(self, result: ConnectionTestResult,
                preflight: PreflightResult | None = None) -> RootCauseAnalysis:
        return analyze_root_cause(result, preflight)

    def plan(self, error_type: ErrorType | None = None, error_details: ErrorDetails | None = None,
             preflight: PreflightResult | None = None) -> tuple[TroubleshootingStep, ...]:
        return generate_troubleshooting_steps(error_type, error_details, preflight)

    def execute_fix(self, action: FixAction, secret: str | None = None) -> FixResult:
        return self.fix_executor.execute(action, secret)

    def fix_all(self, preflight: PreflightResult, secret: str | None = None) -> FixAllResult:
        return self.fix_executor.fix_all(preflight, secret)

    # --- Session operations ---

    def new_session(self, host_alias, identity_file=None) -> DiagnosticSession:
        return sessions.create_session(self.resolve_host(host_alias, identity_file))

    def session_preflight(self, session: DiagnosticSession) -> DiagnosticSession:
        session = sessions.begin_preflight(session)
        return sessions.with_preflight(session, self.run_preflight(session.host_config))

    def session_probe(self, session: DiagnosticSession) -> DiagnosticSession:
        session = sessions.begin_test(session)
        return sessions.with_connection_result(session, self.probe_connection(session.host_alias))

    def execute_step(self, session: DiagnosticSession, index: int, action_id: str,
                     secret: str | None = None) -> tuple[DiagnosticSession, FixResult | None]:
        """Run one action of step *index*.

        Returns the replacement session and the fix outcome (``None`` for
        the retest action, whose outcome is the new connection result).
        """
        step = self._step(session, index)
        action = find_action(step, action_id)

        if action.id == RETEST_ACTION_ID:
            return self.session_probe(session), None
        if action.fix_action is None:
            return self.skip_step(session, index), None
        if is_terminal(step):
            raise StepActionError(f"Step {step.id} is already {step.status.value}")

        result = self.execute_fix(action.fix_action, secret)
        return sessions.apply_step_result(session, index, action.id, result), result

    def skip_step(self, session: DiagnosticSession, index: int) -> DiagnosticSession:
        step = self._step(session, index)
        if is_terminal(step):
            raise StepActionError(f"Step {step.id} is already {step.status.value}")
        return sessions.skip_step(session, index)

    def retest(self, session: DiagnosticSession) -> DiagnosticSession:
        return self.session_probe(session)

    def _step(self, session, index):
        steps = session.troubleshooting_steps
        if not 0 <= index < len(steps):
            raise IndexError(f"No troubleshooting step at index {index}")
        return steps[index]
