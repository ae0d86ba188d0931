"""Pydantic models for the diagnostic engine and its HTTP boundary.

Field names are snake_case in Python and camelCase on the wire
(``allPassed``, ``errorType``, ``fixParams`` ...), because the UI layer
switches on the camelCase shape.
"""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Value(BaseModel):
    """Immutable value object; transitions replace it via ``model_copy``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- Enumerations ---

class ErrorType(str, Enum):
    HOST_KEY_CHANGED = "host_key_changed"
    HOST_KEY_UNKNOWN = "host_key_unknown"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_DENIED_KEY_PERMISSIONS = "permission_denied_key_permissions"
    PERMISSION_DENIED_KEY_NOT_IN_AGENT = "permission_denied_key_not_in_agent"
    PERMISSION_DENIED_WRONG_KEY = "permission_denied_wrong_key"
    PERMISSION_DENIED_PASSPHRASE = "permission_denied_passphrase"
    PERMISSION_DENIED_AUTH_METHOD = "permission_denied_auth_method"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    DNS_FAILED = "dns_failed"
    IDENTITY_FILE_NOT_FOUND = "identity_file_not_found"
    PUBLIC_KEY_MISSING = "public_key_missing"
    UNKNOWN = "unknown"


class FixType(str, Enum):
    CHMOD = "chmod"
    SSH_ADD = "ssh-add"
    COPY_PUBKEY = "copy-pubkey"
    REMOVE_KNOWN_HOST = "remove-known-host"
    ADD_KNOWN_HOST = "add-known-host"
    GENERATE_KEY = "generate-key"


class CheckId(str, Enum):
    AGENT_RUNNING = "agent_running"
    IDENTITY_FILE_EXISTS = "identity_file_exists"
    PUBLIC_KEY_EXISTS = "public_key_exists"
    IDENTITY_FILE_PERMISSIONS = "identity_file_permissions"
    KEY_IN_AGENT = "key_in_agent"


# Canonical order of checks inside a PreflightResult
CHECK_ORDER = [
    CheckId.AGENT_RUNNING,
    CheckId.IDENTITY_FILE_EXISTS,
    CheckId.PUBLIC_KEY_EXISTS,
    CheckId.IDENTITY_FILE_PERMISSIONS,
    CheckId.KEY_IN_AGENT,
]


class CheckStatus(str, Enum):
    PENDING = "pending"
    CHECKING = "checking"
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ActionKind(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    INFO = "info"


class SessionStatus(str, Enum):
    IDLE = "idle"
    PREFLIGHT = "preflight"
    TESTING = "testing"
    TROUBLESHOOTING = "troubleshooting"
    COMPLETE = "complete"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GitPlatform(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    UNKNOWN = "unknown"


# --- Host snapshot ---

class HostIdentity(_Value):
    """The part of a host's SSH config that matters for diagnostics."""
    host_alias: str
    identity_file: str | None = None
    hostname: str | None = None
    port: int | None = None
    user: str | None = None

    @property
    def public_key_file(self) -> str | None:
        if not self.identity_file:
            return None
        if self.identity_file.endswith(".pub"):
            return self.identity_file
        return f"{self.identity_file}.pub"


# --- Preflight ---

class FixAction(_Value):
    id: str
    label: str
    description: str
    type: FixType
    params: dict[str, str] | None = None


class PreflightCheck(_Value):
    id: CheckId
    name: str
    description: str
    status: CheckStatus = CheckStatus.PENDING
    message: str | None = None
    fix_action: FixAction | None = None


class PreflightResult(_Value):
    """One run of the preflight battery. The summary flags are derived from ``checks``."""
    checks: tuple[PreflightCheck, ...] = ()
    timestamp: float = Field(default_factory=time.time)

    @computed_field(alias="hasErrors")
    @property
    def has_errors(self) -> bool:
        return any(c.status == CheckStatus.FAILED for c in self.checks)

    @computed_field(alias="hasWarnings")
    @property
    def has_warnings(self) -> bool:
        return any(c.status == CheckStatus.WARNING for c in self.checks)

    @computed_field(alias="allPassed")
    @property
    def all_passed(self) -> bool:
        return not self.has_errors and not self.has_warnings

    def failed_checks(self) -> list[PreflightCheck]:
        return [c for c in self.checks if c.status == CheckStatus.FAILED]

    def fixable_checks(self) -> list[PreflightCheck]:
        return [
            c for c in self.checks
            if c.status in (CheckStatus.FAILED, CheckStatus.WARNING) and c.fix_action
        ]


# --- Connection testing ---

class ErrorDetails(_Value):
    """An entry of the error taxonomy, produced by a classifier."""
    type: ErrorType
    raw_message: str
    suggestion: str
    can_auto_fix: bool = False
    fix_type: FixType | None = None
    fix_params: dict[str, str] | None = None


class ConnectionTestResult(_Value):
    success: bool
    output: str = ""
    platform: GitPlatform | None = None
    error_type: ErrorType | None = None
    error_details: ErrorDetails | None = None
    host_to_remove: str | None = None
    host_to_add: str | None = None
    identity_file: str | None = None
    debug_log: str | None = None

    @model_validator(mode="after")
    def _check_error_fields(self):
        if self.success:
            if self.error_type or self.error_details or self.host_to_remove or self.host_to_add:
                raise ValueError("a successful result cannot carry error fields")
            return self
        if self.host_to_remove and self.host_to_add:
            raise ValueError("only one of hostToRemove/hostToAdd may be set")
        if self.host_to_remove and self.error_type != ErrorType.HOST_KEY_CHANGED:
            raise ValueError("hostToRemove requires errorType host_key_changed")
        if self.host_to_add and self.error_type != ErrorType.HOST_KEY_UNKNOWN:
            raise ValueError("hostToAdd requires errorType host_key_unknown")
        return self


class RootCauseAnalysis(_Value):
    likely_cause: str
    confidence: Confidence
    explanation: str
    related_issues: tuple[str, ...] = ()


# --- Remediation ---

class TroubleshootingAction(_Value):
    id: str
    label: str
    type: ActionKind
    fix_action: FixAction | None = None
    completed: bool = False


class TroubleshootingStep(_Value):
    id: str
    title: str
    description: str
    status: StepStatus = StepStatus.PENDING
    actions: tuple[TroubleshootingAction, ...] = ()
    result: str | None = None


class DiagnosticSession(_Value):
    host_alias: str
    host_config: HostIdentity
    preflight: PreflightResult | None = None
    connection_result: ConnectionTestResult | None = None
    troubleshooting_steps: tuple[TroubleshootingStep, ...] = ()
    current_step: int = 0
    status: SessionStatus = SessionStatus.IDLE


# --- Collaborator results ---

class PermissionCheckResult(_Value):
    is_secure: bool
    current_mode: str | None = None
    required_mode: str
    message: str
    can_fix: bool = False


class PermissionFixResult(_Value):
    success: bool
    message: str
    new_mode: str | None = None


class AgentKeyInfo(_Value):
    bit_size: int
    fingerprint: str
    comment: str = ""
    type: str


class AddKeyResult(_Value):
    success: bool
    message: str
    needs_passphrase: bool = False


class RemoveKeyResult(_Value):
    success: bool
    message: str


class KnownHostResult(_Value):
    success: bool
    message: str
    removed_count: int | None = None
    keys_added: int | None = None


class FixResult(_Value):
    success: bool
    message: str
    needs_passphrase: bool | None = None
    key_path: str | None = None


class FixAllResult(_Value):
    """Outcome of applying every fixable preflight check in order."""
    attempted: tuple[CheckId, ...] = ()
    results: tuple[FixResult, ...] = ()
    halted_at: CheckId | None = None

    @computed_field(alias="needsPassphrase")
    @property
    def needs_passphrase(self) -> bool:
        return self.halted_at is not None


# --- HTTP request/response bodies ---

class PreflightRequest(_Model):
    host_alias: str
    identity_file: str | None = None


class ProbeRequest(_Model):
    host_alias: str = Field(min_length=1)


class AnalyzeRequest(_Model):
    connection_result: ConnectionTestResult
    preflight: PreflightResult | None = None


class PlanRequest(_Model):
    error_type: ErrorType | None = None
    error_details: ErrorDetails | None = None
    preflight: PreflightResult | None = None


class FixRequest(_Model):
    action: FixAction
    secret: str | None = None


class FixAllRequest(_Model):
    preflight: PreflightResult
    secret: str | None = None


class SessionCreateRequest(_Model):
    host_alias: str = Field(min_length=1)
    identity_file: str | None = None


class StepActionRequest(_Model):
    action_id: str
    secret: str | None = None


class StepActionResponse(_Model):
    session: DiagnosticSession
    fix_result: FixResult | None = None


class HealthResponse(_Model):
    status: str
    agent_running: bool = False
    transport: str = ""
    ssh_available: bool = False
    ssh_dir_secure: bool = False
    ssh_dir_message: str = ""
