"""Remediation Planner: build the ordered troubleshooting plan and move its steps.

Steps are frozen models; every transition returns a new tuple with the
affected step replaced.
"""

from enum import Enum

from sshmedic.models import (
    ActionKind,
    ConnectionTestResult,
    ErrorDetails,
    ErrorType,
    FixAction,
    FixResult,
    PreflightResult,
    StepStatus,
    TroubleshootingAction,
    TroubleshootingStep,
)

RETEST_STEP_ID = "retest"
RETEST_ACTION_ID = "retest-connection"

_ERROR_STEP_TITLES = {
    ErrorType.HOST_KEY_CHANGED: "Remove Old Host Key",
    ErrorType.HOST_KEY_UNKNOWN: "Add Host to Known Hosts",
    ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS: "Fix Key Permissions",
    ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT: "Add Key to SSH Agent",
    ErrorType.PERMISSION_DENIED_PASSPHRASE: "Add Key to SSH Agent",
}


class StepEvent(str, Enum):
    START = "start"
    SUCCEED = "succeed"
    FAIL = "fail"
    SKIP = "skip"


class StepStateMachine:
    """Validates troubleshooting step status transitions."""

    _transitions = {
        (StepStatus.PENDING, StepEvent.START): StepStatus.IN_PROGRESS,
        (StepStatus.PENDING, StepEvent.SKIP): StepStatus.SKIPPED,
        (StepStatus.IN_PROGRESS, StepEvent.SUCCEED): StepStatus.COMPLETED,
        (StepStatus.IN_PROGRESS, StepEvent.FAIL): StepStatus.FAILED,
        (StepStatus.IN_PROGRESS, StepEvent.SKIP): StepStatus.SKIPPED,
    }

    def can_transition(self, status: StepStatus, event: StepEvent) -> bool:
        return (status, event) in self._transitions

    def transition(self, status: StepStatus, event: StepEvent) -> StepStatus:
        """Apply a transition or raise ValueError for invalid transitions."""
        key = (status, event)
        if key not in self._transitions:
            raise ValueError(f"Invalid transition: status={status.value}, event={event.value}")
        return self._transitions[key]


_machine = StepStateMachine()


def is_terminal(step: TroubleshootingStep) -> bool:
    return step.status in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


def _skip_action(suffix):
    return TroubleshootingAction(id=f"skip-{suffix}", label="Skip", type=ActionKind.MANUAL)


def _retest_step():
    return TroubleshootingStep(
        id=RETEST_STEP_ID,
        title="Re-test Connection",
        description="After applying fixes, test the connection again to verify it works.",
        actions=[TroubleshootingAction(id=RETEST_ACTION_ID, label="Test Connection", type=ActionKind.AUTO)],
    )


def generate_troubleshooting_steps(error_type: ErrorType | None = None,
                                   error_details: ErrorDetails | None = None,
                                   preflight: PreflightResult | None = None) -> tuple[TroubleshootingStep, ...]:
    """Preflight fixes first, then the connection error's fix, then the retest step."""
    steps = []
    planned = set()

    if preflight is not None:
        for check in preflight.fixable_checks():
            fix = check.fix_action
            steps.append(TroubleshootingStep(
                id=f"preflight-{check.id.value}",
                title=f"Fix: {check.name}",
                description=check.message or check.description,
                actions=[
                    TroubleshootingAction(id=fix.id, label=fix.label, type=ActionKind.AUTO, fix_action=fix),
                    _skip_action(check.id.value),
                ],
            ))
            planned.add((fix.type, tuple(sorted((fix.params or {}).items()))))

    if error_details is not None and error_details.can_auto_fix and error_details.fix_type:
        error_type = error_type or error_details.type
        key = (error_details.fix_type, tuple(sorted((error_details.fix_params or {}).items())))
        if key not in planned:
            fix = FixAction(
                id=f"fix-{error_type.value}",
                label="Auto Fix",
                description=error_details.suggestion,
                type=error_details.fix_type,
                params=error_details.fix_params,
            )
            steps.append(TroubleshootingStep(
                id=f"error-{error_type.value}",
                title=_ERROR_STEP_TITLES.get(error_type, "Apply Fix"),
                description=error_details.suggestion,
                actions=[
                    TroubleshootingAction(id=fix.id, label=fix.label, type=ActionKind.AUTO, fix_action=fix),
                    _skip_action(error_type.value),
                ],
            ))

    steps.append(_retest_step())
    return tuple(steps)


def find_action(step: TroubleshootingStep, action_id: str) -> TroubleshootingAction:
    for action in step.actions:
        if action.id == action_id:
            return action
    raise KeyError(f"Step {step.id} has no action {action_id}")


def _replace(steps, index, step):
    updated = list(steps)
    updated[index] = step
    return tuple(updated)


def _advance(steps, index):
    return index + 1 if index < len(steps) - 1 else index


def record_action_result(steps: tuple[TroubleshootingStep, ...], index: int, action_id: str,
                         result: FixResult) -> tuple[tuple[TroubleshootingStep, ...], int]:
    """Apply an auto action's outcome to step *index*.

    Success completes the step and advances the pointer; failure marks it
    failed. A passphrase prompt leaves the step pending so the caller can
    retry with a secret. Returns ``(steps, current_step)``.
    """
    step = steps[index]
    if result.needs_passphrase:
        return _replace(steps, index, step.model_copy(update={"result": result.message})), index

    status = _machine.transition(step.status, StepEvent.START)
    status = _machine.transition(status, StepEvent.SUCCEED if result.success else StepEvent.FAIL)
    actions = tuple(
        a.model_copy(update={"completed": True}) if a.id == action_id else a
        for a in step.actions
    )
    updated = step.model_copy(update={"status": status, "result": result.message, "actions": actions})
    steps = _replace(steps, index, updated)
    return steps, _advance(steps, index) if result.success else index


def skip_step(steps: tuple[TroubleshootingStep, ...], index: int) -> tuple[tuple[TroubleshootingStep, ...], int]:
    step = steps[index]
    status = _machine.transition(step.status, StepEvent.SKIP)
    steps = _replace(steps, index, step.model_copy(update={"status": status}))
    return steps, _advance(steps, index)


def record_retest(steps: tuple[TroubleshootingStep, ...],
                  result: ConnectionTestResult) -> tuple[TroubleshootingStep, ...]:
    """Mark the retest step completed iff the new probe succeeded."""
    for index, step in enumerate(steps):
        if step.id != RETEST_STEP_ID:
            continue
        message = "Connection successful" if result.success else (
            result.error_details.raw_message if result.error_details else "Connection still failing"
        )
        if result.success and step.status == StepStatus.PENDING:
            status = _machine.transition(_machine.transition(step.status, StepEvent.START), StepEvent.SUCCEED)
            actions = tuple(a.model_copy(update={"completed": True}) for a in step.actions)
            return _replace(steps, index, step.model_copy(
                update={"status": status, "result": message, "actions": actions},
            ))
        return _replace(steps, index, step.model_copy(update={"result": message}))
    return tuple(steps)
