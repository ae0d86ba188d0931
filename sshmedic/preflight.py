"""Preflight Runner: local checks that run before any network attempt.

The agent check runs first. The four identity checks only read local
state, so they run concurrently; results are still returned in the
canonical order. A check that hits an unexpected error degrades to a
``warning`` instead of aborting the whole battery.
"""

import os
import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor

from sshmedic.agent import AgentClient
from sshmedic.logging_config import log_event
from sshmedic.models import (
    CheckId,
    CheckStatus,
    FixAction,
    FixType,
    HostIdentity,
    PreflightCheck,
    PreflightResult,
)
from sshmedic.permissions import PermissionOracle

logger = logging.getLogger("sshmedic")

_last_timestamp = 0.0
_timestamp_lock = threading.Lock()


def _next_timestamp():
    """Wall-clock seconds, strictly increasing across runs in this process."""
    global _last_timestamp
    with _timestamp_lock:
        now = time.time()
        if now <= _last_timestamp:
            now = _last_timestamp + 1e-6
        _last_timestamp = now
        return now


class PreflightRunner:

    def __init__(self, permissions=None, agent=None, max_workers=4):
        self.permissions = permissions or PermissionOracle()
        self.agent = agent or AgentClient()
        self.max_workers = max_workers

    def run(self, host: HostIdentity) -> PreflightResult:
        log_event("preflight_start", {"host": host.host_alias, "identity_file": host.identity_file})

        checks = [self._guarded(
            CheckId.AGENT_RUNNING, "SSH Agent", "Check if SSH agent is running",
            "Could not check agent status", self.check_agent_running,
        )]

        if not host.identity_file:
            checks.append(PreflightCheck(
                id=CheckId.IDENTITY_FILE_EXISTS,
                name="Identity File",
                description="No specific identity file configured",
                status=CheckStatus.SKIPPED,
                message="Using default SSH key discovery",
            ))
        else:
            key_path = host.identity_file
            pub_path = host.public_key_file
            jobs = [
                (CheckId.IDENTITY_FILE_EXISTS, "Identity File", "Check if private key file exists",
                 "Could not check identity file", lambda: self.check_identity_file(key_path)),
                (CheckId.PUBLIC_KEY_EXISTS, "Public Key", "Check if public key file exists",
                 "Could not check public key", lambda: self.check_public_key(pub_path)),
                (CheckId.IDENTITY_FILE_PERMISSIONS, "Key Permissions", "Check private key file permissions",
                 "Could not check permissions", lambda: self.check_permissions(key_path)),
                (CheckId.KEY_IN_AGENT, "Key in Agent", "Check if key is loaded in SSH agent",
                 "Could not check agent status", lambda: self.check_key_in_agent(key_path)),
            ]
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [pool.submit(self._guarded, *job) for job in jobs]
                checks.extend(f.result() for f in futures)

        result = PreflightResult(checks=checks, timestamp=_next_timestamp())
        log_event("preflight_complete", {
            "host": host.host_alias,
            "statuses": {c.id.value: c.status.value for c in checks},
            "all_passed": result.all_passed,
        })
        return result

    def _guarded(self, check_id, name, description, failure_message, fn):
        """Run one check; an exception becomes a warning, never a crash."""
        try:
            status, message, fix_action = fn()
        except Exception as e:
            logger.warning("Preflight check %s failed: %s", check_id.value, e)
            status, message, fix_action = CheckStatus.WARNING, failure_message, None
        return PreflightCheck(
            id=check_id,
            name=name,
            description=description,
            status=status,
            message=message,
            fix_action=fix_action,
        )

    # --- Individual checks: each returns (status, message, fix_action) ---

    def check_agent_running(self):
        if self.agent.is_running():
            return CheckStatus.PASSED, "SSH agent is running", None
        return (
            CheckStatus.WARNING,
            "SSH agent may not be running. Keys with passphrases may not work.",
            None,
        )

    def check_identity_file(self, key_path):
        if os.path.exists(key_path):
            return CheckStatus.PASSED, f"Found: {os.path.basename(key_path)}", None
        return CheckStatus.FAILED, f"File not found: {key_path}", FixAction(
            id="generate-key",
            label="Generate Key",
            description="Generate a new SSH key pair",
            type=FixType.GENERATE_KEY,
            params={"keyPath": key_path},
        )

    def check_public_key(self, pub_path):
        if os.path.exists(pub_path):
            return CheckStatus.PASSED, f"Found: {os.path.basename(pub_path)}", None
        return (
            CheckStatus.WARNING,
            "Public key file (.pub) is missing. You can regenerate it from the private key.",
            None,
        )

    def check_permissions(self, key_path):
        perm = self.permissions.check(key_path)
        if perm.is_secure:
            return CheckStatus.PASSED, f"Permissions: {perm.current_mode}", None
        fix = None
        if perm.can_fix:
            fix = FixAction(
                id="fix-permissions",
                label="Fix Permissions",
                description=f"Set permissions to {perm.required_mode}",
                type=FixType.CHMOD,
                params={"keyPath": key_path},
            )
        return CheckStatus.FAILED, perm.message, fix

    def check_key_in_agent(self, key_path):
        if self.agent.is_key_loaded(key_path):
            return CheckStatus.PASSED, "Key is loaded in SSH agent", None
        return CheckStatus.WARNING, "Key is not loaded in SSH agent. Passphrase may be required.", FixAction(
            id="add-to-agent",
            label="Add to Agent",
            description="Add key to SSH agent",
            type=FixType.SSH_ADD,
            params={"keyPath": key_path},
        )
