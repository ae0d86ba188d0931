"""Permission Oracle: inspect and repair private key file modes."""

import getpass
import os
import stat

from sshmedic.config import settings
from sshmedic.executor import run_command
from sshmedic.models import PermissionCheckResult, PermissionFixResult
from sshmedic.safety import _IS_WINDOWS, validate_key_path

KEY_MODE = 0o600
SECURE_KEY_MODES = (0o600, 0o400)
SSH_DIR_MODE = 0o700


def _mode_string(mode):
    return format(stat.S_IMODE(mode), "03o")


class PermissionOracle:
    """Reports whether a file's mode is tight enough for ssh to accept it.

    Missing files produce a result, never an exception. On Windows the
    mode is emulated through ACLs: the file is secure when only the
    current user has access.
    """

    def check(self, path) -> PermissionCheckResult:
        validate_key_path(path)
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return PermissionCheckResult(
                is_secure=False,
                required_mode="600",
                message=f"Key file not found: {path}",
                can_fix=False,
            )
        if _IS_WINDOWS:
            return self._check_windows(path)

        mode = stat.S_IMODE(os.stat(path).st_mode)
        current = _mode_string(mode)
        secure = mode in SECURE_KEY_MODES
        return PermissionCheckResult(
            is_secure=secure,
            current_mode=current,
            required_mode="600",
            message="Key permissions are secure" if secure
            else f"Key permissions are {current}, should be 600",
            can_fix=not secure,
        )

    def fix(self, path) -> PermissionFixResult:
        validate_key_path(path)
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return PermissionFixResult(success=False, message=f"Key file not found: {path}")
        if _IS_WINDOWS:
            return self._fix_windows(path)
        try:
            os.chmod(path, KEY_MODE)
        except OSError as e:
            return PermissionFixResult(success=False, message=f"Failed to set permissions: {e}")
        result = self.check(path)
        if not result.is_secure:
            return PermissionFixResult(
                success=False,
                message=f"Permissions are still {result.current_mode} after chmod",
                new_mode=result.current_mode,
            )
        return PermissionFixResult(success=True, message="Permissions set to 600", new_mode="600")

    def check_ssh_dir(self, path=None) -> PermissionCheckResult:
        path = os.path.expanduser(path or settings.SSH_DIR)
        if not os.path.isdir(path):
            return PermissionCheckResult(
                is_secure=False,
                required_mode="700",
                message=f"SSH directory not found: {path}",
                can_fix=False,
            )
        if _IS_WINDOWS:
            return PermissionCheckResult(
                is_secure=True, required_mode="700", message="SSH directory permissions are managed by ACLs",
            )
        mode = stat.S_IMODE(os.stat(path).st_mode)
        current = _mode_string(mode)
        secure = mode & 0o077 == 0
        return PermissionCheckResult(
            is_secure=secure,
            current_mode=current,
            required_mode="700",
            message="SSH directory permissions are secure" if secure
            else f"SSH directory permissions are {current}, should be 700",
            can_fix=not secure,
        )

    def fix_ssh_dir(self, path=None) -> PermissionFixResult:
        path = os.path.expanduser(path or settings.SSH_DIR)
        if not os.path.isdir(path):
            return PermissionFixResult(success=False, message=f"SSH directory not found: {path}")
        try:
            os.chmod(path, SSH_DIR_MODE)
        except OSError as e:
            return PermissionFixResult(success=False, message=f"Failed to set permissions: {e}")
        return PermissionFixResult(success=True, message="Permissions set to 700", new_mode="700")

    # --- Windows ACL emulation ---

    def _check_windows(self, path):
        result = run_command(["icacls", path])
        if not result.ok:
            return PermissionCheckResult(
                is_secure=False,
                required_mode="600",
                message=f"Could not read ACL: {result.output.strip()}",
                can_fix=True,
            )
        user = getpass.getuser().lower()
        grantees = []
        for line in result.stdout.splitlines():
            entry = line.replace(path, "").strip()
            if ":" in entry and "(" in entry:
                grantees.append(entry.split(":", 1)[0].strip().lower())
        others = [g for g in grantees if not g.endswith(user) and g not in ("nt authority\\system",)]
        secure = bool(grantees) and not others
        return PermissionCheckResult(
            is_secure=secure,
            current_mode="600" if secure else None,
            required_mode="600",
            message="Key permissions are secure" if secure
            else "Key is accessible by other users: " + ", ".join(others),
            can_fix=not secure,
        )

    def _fix_windows(self, path):
        user = getpass.getuser()
        for args in (
            ["icacls", path, "/inheritance:r"],
            ["icacls", path, "/grant:r", f"{user}:(R,W)"],
        ):
            result = run_command(args)
            if not result.ok:
                return PermissionFixResult(success=False, message=result.output.strip())
        return PermissionFixResult(success=True, message="Permissions restricted to current user", new_mode="600")
