"""Agent Client: talk to the running ssh-agent.

Listing keys goes through paramiko's agent protocol implementation;
adding and removing keys shells out to ``ssh-add`` because that is the
only tool that can decrypt a private key on the agent's behalf.
"""

import base64
import hashlib
import logging
import os
import socket
import stat
import subprocess
import tempfile

import paramiko

from sshmedic.config import settings
from sshmedic.executor import run_command
from sshmedic.models import AddKeyResult, AgentKeyInfo, RemoveKeyResult
from sshmedic.safety import _IS_WINDOWS, registered_secret, validate_key_path

logger = logging.getLogger("sshmedic")

_OPENSSH_MAGIC = b"openssh-key-v1\x00"


class AgentNotRunningError(RuntimeError):
    """No agent is reachable through SSH_AUTH_SOCK."""


# --- Key file helpers ---

def public_key_path(path):
    return path if path.endswith(".pub") else f"{path}.pub"


def read_public_key_blob(path):
    """Decode the wire blob from ``<path>.pub`` (``type base64 [comment]``)."""
    with open(public_key_path(os.path.expanduser(path)), encoding="utf-8") as f:
        parts = f.read().split()
    if len(parts) < 2:
        raise ValueError(f"Malformed public key file: {public_key_path(path)}")
    return base64.b64decode(parts[1])


def sha256_fingerprint(blob):
    """OpenSSH-style ``SHA256:...`` fingerprint of a public key blob."""
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def is_key_encrypted(path):
    """True when the private key at *path* needs a passphrase to load."""
    with open(os.path.expanduser(path), "rb") as f:
        content = f.read()

    if b"ENCRYPTED" in content and b"-----BEGIN" in content:
        return True

    if b"BEGIN OPENSSH PRIVATE KEY" in content:
        body = b"".join(
            line for line in content.splitlines() if line and not line.startswith(b"-----")
        )
        try:
            raw = base64.b64decode(body)
        except ValueError:
            raw = b""
        if raw.startswith(_OPENSSH_MAGIC):
            offset = len(_OPENSSH_MAGIC)
            length = int.from_bytes(raw[offset:offset + 4], "big")
            cipher = raw[offset + 4:offset + 4 + length]
            return cipher != b"none"

    # Formats we cannot read by hand: let paramiko try to load it.
    try:
        paramiko.PKey.from_path(os.path.expanduser(path))
    except paramiko.PasswordRequiredException:
        return True
    except (paramiko.SSHException, ValueError, OSError):
        return False
    return False


class AgentClient:
    """Queries and mutates the user's ssh-agent."""

    def __init__(self, ssh_add_binary=None):
        self.ssh_add_binary = ssh_add_binary or settings.SSH_ADD_BINARY

    def is_running(self) -> bool:
        if _IS_WINDOWS:
            # 0: keys listed, 1: agent reachable but empty, 2: no agent
            result = run_command([self.ssh_add_binary, "-l"], timeout=settings.SSH_ADD_TIMEOUT)
            return result.exit_code in (0, 1)

        sock_path = os.environ.get("SSH_AUTH_SOCK")
        if not sock_path:
            return False
        try:
            if not stat.S_ISSOCK(os.stat(sock_path).st_mode):
                return False
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(1)
                sock.connect(sock_path)
            return True
        except OSError:
            return False

    def list_keys(self) -> list[AgentKeyInfo]:
        if not self.is_running():
            raise AgentNotRunningError("SSH agent is not running")
        agent = paramiko.Agent()
        try:
            keys = []
            for key in agent.get_keys():
                inner = getattr(key, "inner_key", None) or key
                comment = getattr(key, "comment", "") or ""
                if isinstance(comment, bytes):
                    comment = comment.decode("utf-8", errors="replace")
                keys.append(AgentKeyInfo(
                    bit_size=inner.get_bits(),
                    fingerprint=sha256_fingerprint(key.asbytes()),
                    comment=comment,
                    type=key.get_name(),
                ))
            return keys
        finally:
            agent.close()

    def is_key_loaded(self, path) -> bool:
        """Compare the key's public half against the agent's fingerprints.

        Raises AgentNotRunningError or OSError; callers decide how to degrade.
        """
        validate_key_path(path)
        fingerprint = sha256_fingerprint(read_public_key_blob(path))
        return any(k.fingerprint == fingerprint for k in self.list_keys())

    def add_key(self, path, passphrase=None) -> AddKeyResult:
        validate_key_path(path)
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return AddKeyResult(success=False, message=f"Key not found: {path}")

        try:
            if self.is_key_loaded(path):
                return AddKeyResult(success=True, message="Key is already loaded in the agent")
        except (AgentNotRunningError, OSError, ValueError):
            pass  # fall through to ssh-add, which reports the real problem

        try:
            encrypted = is_key_encrypted(path)
        except OSError as e:
            return AddKeyResult(success=False, message=f"Could not read key: {e}")

        if passphrase:
            return self._add_with_passphrase(path, passphrase)
        if encrypted:
            return AddKeyResult(
                success=False, message="This key requires a passphrase.", needs_passphrase=True,
            )

        result = run_command([self.ssh_add_binary, path], timeout=settings.SSH_ADD_TIMEOUT)
        if result.status == "timeout":
            return AddKeyResult(
                success=False,
                message="ssh-add timed out waiting for input. The key may require a passphrase.",
                needs_passphrase=True,
            )
        if result.ok:
            return AddKeyResult(success=True, message="Key added to SSH agent")
        stderr = result.stderr.strip()
        lower = stderr.lower()
        return AddKeyResult(
            success=False,
            message=stderr or "ssh-add failed",
            needs_passphrase="passphrase" in lower or "password" in lower,
        )

    def _add_with_passphrase(self, path, passphrase):
        """Feed *passphrase* to ssh-add through a throwaway SSH_ASKPASS script."""
        fd, askpass = tempfile.mkstemp(prefix="sshmedic-askpass-", suffix=".sh")
        with registered_secret(passphrase):
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    escaped = passphrase.replace("'", "'\"'\"'")
                    f.write(f"#!/bin/sh\nprintf '%s\\n' '{escaped}'\n")
                os.chmod(askpass, 0o700)

                env = dict(os.environ)
                env.update({
                    "SSH_ASKPASS": askpass,
                    "SSH_ASKPASS_REQUIRE": "force",
                    "DISPLAY": env.get("DISPLAY") or ":0",
                })
                result = run_command(
                    [self.ssh_add_binary, path],
                    timeout=settings.SSH_ADD_PASSPHRASE_TIMEOUT,
                    env=env,
                    stdin=subprocess.DEVNULL,
                )
            finally:
                try:
                    os.unlink(askpass)
                except OSError:
                    logger.warning("Could not remove askpass helper %s", askpass)

        if result.ok:
            return AddKeyResult(success=True, message="Key added to SSH agent")
        lower = result.stderr.lower()
        if any(word in lower for word in ("bad passphrase", "incorrect passphrase", "wrong passphrase")):
            return AddKeyResult(
                success=False, message="Incorrect passphrase. Please try again.", needs_passphrase=True,
            )
        if result.status == "timeout":
            return AddKeyResult(success=False, message="ssh-add timed out", needs_passphrase=True)
        return AddKeyResult(success=False, message=result.stderr.strip() or "ssh-add failed")

    def remove_key(self, path) -> RemoveKeyResult:
        validate_key_path(path)
        path = os.path.expanduser(path)
        result = run_command([self.ssh_add_binary, "-d", path], timeout=settings.SSH_ADD_TIMEOUT)
        if result.ok:
            return RemoveKeyResult(success=True, message="Key removed from SSH agent")
        return RemoveKeyResult(success=False, message=result.stderr.strip() or "ssh-add -d failed")
