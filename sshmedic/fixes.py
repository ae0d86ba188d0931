"""Fix Executor: apply one FixAction.

Dispatch is keyed on ``action.type``. Only types registered in
``FixExecutor._handlers`` run; every other type fails with a stable
"not implemented" message rather than reporting success.
"""

from sshmedic.agent import AgentClient
from sshmedic.known_hosts import KnownHostsService
from sshmedic.logging_config import log_event
from sshmedic.models import (
    CheckStatus,
    FixAction,
    FixAllResult,
    FixResult,
    FixType,
    PreflightResult,
)
from sshmedic.permissions import PermissionOracle
from sshmedic.safety import UnsafeInputError


class FixExecutor:

    def __init__(self, permissions=None, agent=None, known_hosts=None):
        self.permissions = permissions or PermissionOracle()
        self.agent = agent or AgentClient()
        self.known_hosts = known_hosts or KnownHostsService()
        self._handlers = {
            FixType.CHMOD: self._fix_permissions,
            FixType.SSH_ADD: self._add_to_agent,
            FixType.REMOVE_KNOWN_HOST: self._remove_known_host,
            FixType.ADD_KNOWN_HOST: self._add_known_host,
        }

    def execute(self, action: FixAction, secret: str | None = None) -> FixResult:
        log_event("fix_start", {
            "action": action.id,
            "type": action.type.value,
            "params": action.params or {},
            "with_secret": bool(secret),
        })
        handler = self._handlers.get(action.type)
        if handler is None:
            result = FixResult(success=False, message=f'Fix action "{action.type.value}" not implemented')
        else:
            try:
                result = handler(action.params or {}, secret)
            except UnsafeInputError as e:
                result = FixResult(success=False, message=str(e))
        log_event("fix_result", {
            "action": action.id,
            "success": result.success,
            "needs_passphrase": bool(result.needs_passphrase),
            "message": result.message,
        })
        return result

    def fix_all(self, preflight: PreflightResult, secret: str | None = None) -> FixAllResult:
        """Apply each failed/warning check's fix in check order.

        Stops at the first fix that needs a passphrase; plain failures do
        not stop the run.
        """
        attempted = []
        results = []
        for check in preflight.checks:
            if check.status not in (CheckStatus.FAILED, CheckStatus.WARNING) or not check.fix_action:
                continue
            result = self.execute(check.fix_action, secret)
            attempted.append(check.id)
            results.append(result)
            if result.needs_passphrase:
                log_event("fix_all_halted", {"check": check.id.value, "key_path": result.key_path})
                return FixAllResult(attempted=attempted, results=results, halted_at=check.id)
        return FixAllResult(attempted=attempted, results=results)

    # --- Handlers ---

    def _fix_permissions(self, params, secret):
        key_path = params.get("keyPath")
        if not key_path:
            return FixResult(success=False, message="No key path specified")
        result = self.permissions.fix(key_path)
        return FixResult(success=result.success, message=result.message, key_path=key_path)

    def _add_to_agent(self, params, secret):
        key_path = params.get("keyPath")
        if not key_path:
            return FixResult(success=False, message="No key path specified")
        result = self.agent.add_key(key_path, passphrase=secret)
        return FixResult(
            success=result.success,
            message=result.message,
            needs_passphrase=result.needs_passphrase,
            key_path=key_path,
        )

    def _remove_known_host(self, params, secret):
        hostname = params.get("hostname")
        if not hostname:
            return FixResult(success=False, message="No hostname specified")
        result = self.known_hosts.remove_host(hostname)
        return FixResult(success=result.success, message=result.message)

    def _add_known_host(self, params, secret):
        hostname = params.get("hostname")
        if not hostname:
            return FixResult(success=False, message="No hostname specified")
        port = params.get("port")
        result = self.known_hosts.add_host(hostname, int(port) if port and port.isdigit() else None)
        return FixResult(success=result.success, message=result.message)
