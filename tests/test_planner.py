"""Remediation Planner tests: plan shape and step transitions."""

import pytest

from sshmedic.classifier import make_error_details
from sshmedic.models import (
    ActionKind,
    CheckId,
    CheckStatus,
    ConnectionTestResult,
    ErrorType,
    FixAction,
    FixResult,
    FixType,
    PreflightCheck,
    PreflightResult,
    StepStatus,
)
from sshmedic.planner import (
    RETEST_STEP_ID,
    StepEvent,
    StepStateMachine,
    generate_troubleshooting_steps,
    record_action_result,
    record_retest,
    skip_step,
)

CHMOD = FixAction(
    id="fix-permissions", label="Fix Permissions", description="Set permissions to 600",
    type=FixType.CHMOD, params={"keyPath": "/home/dev/.ssh/id_rsa"},
)
SSH_ADD = FixAction(
    id="add-to-agent", label="Add to Agent", description="Add key to SSH agent",
    type=FixType.SSH_ADD, params={"keyPath": "/home/dev/.ssh/id_rsa"},
)


@pytest.fixture
def preflight():
    return PreflightResult(checks=[
        PreflightCheck(id=CheckId.AGENT_RUNNING, name="SSH Agent", description="", status=CheckStatus.PASSED),
        PreflightCheck(id=CheckId.IDENTITY_FILE_PERMISSIONS, name="Key Permissions", description="",
                       status=CheckStatus.FAILED, message="Key permissions are 644, should be 600",
                       fix_action=CHMOD),
        PreflightCheck(id=CheckId.KEY_IN_AGENT, name="Key in Agent", description="",
                       status=CheckStatus.WARNING, fix_action=SSH_ADD),
    ])


@pytest.fixture
def steps(preflight):
    return generate_troubleshooting_steps(None, None, preflight)


class TestPlanShape:

    def test_empty_inputs_still_end_with_retest(self):
        steps = generate_troubleshooting_steps(None, None, None)
        assert steps
        assert steps[-1].id == RETEST_STEP_ID
        assert [s.id for s in steps].count(RETEST_STEP_ID) == 1

    def test_preflight_fixes_become_steps(self, steps):
        assert [s.id for s in steps] == [
            "preflight-identity_file_permissions", "preflight-key_in_agent", RETEST_STEP_ID,
        ]
        first = steps[0]
        assert first.title == "Fix: Key Permissions"
        assert first.status == StepStatus.PENDING
        assert first.actions[0].type == ActionKind.AUTO
        assert first.actions[0].fix_action == CHMOD
        assert first.actions[1].id == "skip-identity_file_permissions"

    def test_auto_fixable_error_adds_step(self):
        details = make_error_details(ErrorType.HOST_KEY_CHANGED, "raw", hostname="github.com")
        steps = generate_troubleshooting_steps(details.type, details, None)
        assert [s.id for s in steps] == ["error-host_key_changed", RETEST_STEP_ID]
        fix = steps[0].actions[0].fix_action
        assert fix.type == FixType.REMOVE_KNOWN_HOST
        assert fix.params == {"hostname": "github.com"}

    def test_not_auto_fixable_error_adds_nothing(self):
        details = make_error_details(ErrorType.TIMEOUT, "raw")
        steps = generate_troubleshooting_steps(details.type, details, None)
        assert [s.id for s in steps] == [RETEST_STEP_ID]

    def test_error_fix_already_planned_by_preflight_is_not_repeated(self, preflight):
        details = make_error_details(
            ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS, "raw", key_path="/home/dev/.ssh/id_rsa",
        )
        steps = generate_troubleshooting_steps(details.type, details, preflight)
        assert [s.id for s in steps].count("error-permission_denied_key_permissions") == 0


class TestStepTransitions:

    def test_success_completes_and_advances(self, steps):
        updated, current = record_action_result(
            steps, 0, "fix-permissions", FixResult(success=True, message="Permissions set to 600"),
        )
        assert updated[0].status == StepStatus.COMPLETED
        assert updated[0].result == "Permissions set to 600"
        assert updated[0].actions[0].completed is True
        assert current == 1
        assert steps[0].status == StepStatus.PENDING

    def test_failure_marks_failed_without_advancing(self, steps):
        updated, current = record_action_result(
            steps, 0, "fix-permissions", FixResult(success=False, message="EPERM"),
        )
        assert updated[0].status == StepStatus.FAILED
        assert current == 0

    def test_needs_passphrase_leaves_step_pending(self, steps):
        updated, current = record_action_result(
            steps, 1, "add-to-agent",
            FixResult(success=False, message="This key requires a passphrase.", needs_passphrase=True),
        )
        assert updated[1].status == StepStatus.PENDING
        assert updated[1].result == "This key requires a passphrase."
        assert current == 1

    def test_success_on_last_step_does_not_advance(self, steps):
        last = len(steps) - 1
        _, current = record_action_result(steps, last, "retest-connection", FixResult(success=True, message="ok"))
        assert current == last

    def test_skip(self, steps):
        updated, current = skip_step(steps, 0)
        assert updated[0].status == StepStatus.SKIPPED
        assert current == 1

    def test_transitions_return_new_tuples(self, steps):
        updated, _ = record_action_result(steps, 0, "fix-permissions", FixResult(success=True, message="ok"))
        assert isinstance(updated, tuple)
        assert isinstance(updated[0].actions, tuple)
        assert steps[0].status == StepStatus.PENDING
        assert steps[0].actions[0].completed is False

    def test_terminal_step_cannot_be_skipped(self, steps):
        updated, _ = record_action_result(steps, 0, "fix-permissions", FixResult(success=False, message="x"))
        with pytest.raises(ValueError):
            skip_step(updated, 0)

    def test_retest_completes_only_on_success(self, steps):
        failed = ConnectionTestResult(
            success=False, error_type=ErrorType.TIMEOUT,
            error_details=make_error_details(ErrorType.TIMEOUT, "Connection timed out after 10 seconds"),
        )
        after_failure = record_retest(steps, failed)
        assert after_failure[-1].status == StepStatus.PENDING
        assert after_failure[-1].result == "Connection timed out after 10 seconds"

        after_success = record_retest(after_failure, ConnectionTestResult(success=True))
        assert after_success[-1].status == StepStatus.COMPLETED


class TestStepStateMachine:

    def test_valid_chain(self):
        machine = StepStateMachine()
        status = machine.transition(StepStatus.PENDING, StepEvent.START)
        assert machine.transition(status, StepEvent.SUCCEED) == StepStatus.COMPLETED

    @pytest.mark.parametrize("status", [StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED])
    def test_terminal_states_are_final(self, status):
        machine = StepStateMachine()
        for event in StepEvent:
            assert machine.can_transition(status, event) is False

    def test_invalid_transition_raises(self):
        with pytest.raises(ValueError, match="Invalid transition"):
            StepStateMachine().transition(StepStatus.PENDING, StepEvent.SUCCEED)
