"""Executor abstraction: running SSH tooling and probing connections.

``run_command`` wraps ``subprocess.run`` for the short-lived helper tools
(ssh-add, ssh-keyscan, icacls). The probers are interchangeable
strategies for "try to log in once and describe what happened":

* ``SubprocessProber`` shells out to the system ``ssh -v`` and hands the
  transcript to ``TranscriptClassifier``.
* ``ParamikoProber`` performs the handshake in-process with paramiko and
  hands a ``HandshakeReport`` to ``StructuredClassifier``.
"""

import os
import socket
import subprocess
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import paramiko

from sshmedic.classifier import (
    HandshakeReport,
    StructuredClassifier,
    Transcript,
    TranscriptClassifier,
    build_connection_result,
    detect_platform,
    extract_hostname,
    extract_identity_file,
    make_error_details,
)
from sshmedic.config import settings
from sshmedic.hosts import default_identity_files, resolve_host
from sshmedic.models import ConnectionTestResult, ErrorType
from sshmedic.safety import validate_hostname

logger = logging.getLogger("sshmedic")


# --- Helper tool execution ---

@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int | None
    status: str

    @property
    def output(self):
        return (self.stdout or "") + (self.stderr or "")

    @property
    def ok(self):
        return self.status == "success"


def truncate(output, limit=None):
    limit = limit or settings.MAX_OUTPUT_CHARS
    if len(output) > limit:
        return output[:limit] + f"\n... (truncated, {len(output)} chars total)"
    return output


def run_command(args, timeout=None, env=None, stdin=subprocess.DEVNULL):
    """Run *args* without a shell.

    Returns a CommandResult whose status is ``success``, ``exit_<code>``,
    ``timeout`` or ``error``. Never raises for process failures.
    """
    timeout = timeout if timeout is not None else settings.COMMAND_TIMEOUT
    try:
        result = subprocess.run(
            args, capture_output=True, timeout=timeout, env=env, stdin=stdin,
            encoding="utf-8", errors="replace",
        )
        status = "success" if result.returncode == 0 else f"exit_{result.returncode}"
        return CommandResult(result.stdout or "", result.stderr or "", result.returncode, status)
    except subprocess.TimeoutExpired as e:
        partial = e.stderr or ""
        if isinstance(partial, bytes):
            partial = partial.decode("utf-8", errors="replace")
        return CommandResult(
            "", partial + f"\nError: Command timed out after {timeout} seconds.", None, "timeout",
        )
    except OSError as e:
        return CommandResult("", f"Error executing command: {e}", None, "error")


# --- Probers ---

class ConnectionProber(ABC):
    """Strategy interface for a single authentication attempt."""

    name = ""

    @abstractmethod
    def probe(self, host_alias) -> ConnectionTestResult:
        """Attempt to authenticate against *host_alias* once.

        Transport-level failures may raise; the engine converts them.
        """
        ...


def _timeout_result(hostname, seconds, debug_log=None):
    details = make_error_details(ErrorType.TIMEOUT, f"Connection timed out after {seconds} seconds")
    return ConnectionTestResult(
        success=False,
        output=details.raw_message,
        platform=detect_platform(hostname),
        error_type=details.type,
        error_details=details,
        debug_log=debug_log,
    )


class SubprocessProber(ConnectionProber):
    """Runs ``ssh -v -T`` in batch mode and classifies its transcript."""

    name = "subprocess"

    def __init__(self, ssh_binary=None, timeout=None, classifier=None):
        self.ssh_binary = ssh_binary or settings.SSH_BINARY
        self.timeout = timeout or settings.PROBE_TIMEOUT
        self.classifier = classifier or TranscriptClassifier()

    def build_args(self, host_alias):
        return [
            self.ssh_binary, "-v", "-T",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.timeout}",
            host_alias,
        ]

    def probe(self, host_alias):
        validate_hostname(host_alias)
        args = self.build_args(host_alias)
        try:
            proc = subprocess.run(
                args, capture_output=True, stdin=subprocess.DEVNULL,
                timeout=self.timeout + 5, encoding="utf-8", errors="replace",
            )
        except subprocess.TimeoutExpired as e:
            partial = e.stderr or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return _timeout_result(host_alias, self.timeout, debug_log=partial or None)

        transcript = (proc.stdout or "") + (proc.stderr or "")
        hostname = extract_hostname(transcript) or host_alias
        visible = "\n".join(
            line for line in transcript.splitlines()
            if not line.startswith(("debug", "OpenSSH_"))
        ).strip()

        return build_connection_result(
            self.classifier,
            Transcript(text=transcript, exit_code=proc.returncode, hostname=hostname),
            output=truncate(visible),
            platform=detect_platform(hostname),
            identity_file=extract_identity_file(transcript),
            debug_log=truncate(transcript),
        )


class ParamikoProber(ConnectionProber):
    """Performs the handshake in-process and reports what it saw."""

    name = "paramiko"

    def __init__(self, ssh_dir=None, timeout=None, banner_timeout=None, agent_factory=None):
        self.ssh_dir = os.path.expanduser(ssh_dir or settings.SSH_DIR)
        self.timeout = timeout or settings.PROBE_TIMEOUT
        self.banner_timeout = banner_timeout or settings.PROBE_BANNER_TIMEOUT
        self.agent_factory = agent_factory or paramiko.Agent
        self.classifier = StructuredClassifier()

    def probe(self, host_alias):
        validate_hostname(host_alias)
        host = resolve_host(host_alias, ssh_dir=self.ssh_dir)
        hostname = host.hostname or host_alias
        port = host.port or 22
        user = host.user or settings.DEFAULT_SSH_USER

        report = self._attempt(hostname, port, user, host.identity_file)
        return build_connection_result(
            self.classifier,
            report,
            output=truncate(report.output or report.raw_message),
            platform=detect_platform(hostname),
            identity_file=report.key_path,
            debug_log="\n".join(report.log),
        )

    def _attempt(self, hostname, port, user, identity_file):
        report = HandshakeReport(authenticated=False, hostname=hostname, port=port)
        key_paths = self._candidate_keys(identity_file)
        if not key_paths:
            report.error_type = ErrorType.IDENTITY_FILE_NOT_FOUND
            if identity_file:
                report.key_path = identity_file
                report.raw_message = f"Identity file not found: {identity_file}"
            else:
                report.raw_message = f"No SSH key found in {self.ssh_dir}"
                report.suggestion = (
                    "Generate an SSH key using 'ssh-keygen' or configure IdentityFile in your SSH config."
                )
            return report
        report.log.append(f"Connecting to {hostname} port {port} as {user}")

        try:
            sock = socket.create_connection((hostname, port), timeout=self.timeout)
        except socket.gaierror as e:
            report.error_type = ErrorType.DNS_FAILED
            report.raw_message = f"Could not resolve hostname {hostname}: {e}"
            return report
        except ConnectionRefusedError:
            report.error_type = ErrorType.CONNECTION_REFUSED
            report.raw_message = f"connect to host {hostname} port {port}: Connection refused"
            return report
        except (socket.timeout, TimeoutError):
            report.error_type = ErrorType.TIMEOUT
            report.raw_message = f"Connection timed out after {self.timeout} seconds"
            return report

        transport = paramiko.Transport(sock)
        try:
            transport.start_client(timeout=self.timeout)
            host_key_status = self._check_host_key(transport.get_remote_server_key(), hostname, port)
            report.log.append(f"Host key status: {host_key_status}")
            if host_key_status == "changed":
                report.error_type = ErrorType.HOST_KEY_CHANGED
                report.raw_message = "WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!"
                return report
            if host_key_status == "unknown":
                report.error_type = ErrorType.HOST_KEY_UNKNOWN
                report.raw_message = "Host key verification failed."
                return report

            self._authenticate(transport, user, key_paths, report)
            if report.authenticated:
                report.output = self._read_banner(transport)
            return report
        except paramiko.SSHException as e:
            report.error_type = ErrorType.UNKNOWN
            report.raw_message = str(e) or type(e).__name__
            return report
        except (socket.timeout, TimeoutError):
            report.error_type = ErrorType.TIMEOUT
            report.raw_message = f"Connection timed out after {self.timeout} seconds"
            return report
        finally:
            transport.close()

    def _candidate_keys(self, identity_file):
        if identity_file:
            return [identity_file] if os.path.exists(identity_file) else []
        return [p for p in default_identity_files(self.ssh_dir) if os.path.exists(p)]

    def _check_host_key(self, server_key, hostname, port):
        """Return ``matched``, ``changed`` or ``unknown`` for the server's key."""
        known_hosts = os.path.join(self.ssh_dir, "known_hosts")
        host_keys = paramiko.HostKeys()
        if os.path.exists(known_hosts):
            host_keys.load(known_hosts)
        lookup_name = hostname if port == 22 else f"[{hostname}]:{port}"
        entries = host_keys.lookup(lookup_name)
        if not entries:
            return "unknown"
        for key in entries.values():
            if key.get_name() == server_key.get_name() and key.asbytes() == server_key.asbytes():
                return "matched"
        if server_key.get_name() not in entries.keys():
            # Known host, but we never recorded a key of this algorithm.
            return "unknown"
        return "changed"

    def _authenticate(self, transport, user, key_paths, report):
        agent = self.agent_factory()
        try:
            agent_keys = {k.asbytes(): k for k in agent.get_keys()}
            needs_passphrase = None
            offered = 0
            for path in key_paths:
                report.key_path = path
                try:
                    key = paramiko.PKey.from_path(path)
                except paramiko.PasswordRequiredException:
                    key = _agent_key_for(path, agent_keys)
                    if key is None:
                        needs_passphrase = path
                        report.log.append(f"Key {path} is encrypted and not loaded in the agent")
                        continue
                report.log.append(f"Offering public key: {path}")
                offered += 1
                try:
                    remaining = transport.auth_publickey(user, key)
                except paramiko.AuthenticationException:
                    continue
                if not remaining and transport.is_authenticated():
                    report.authenticated = True
                    report.error_type = None
                    return

            if needs_passphrase:
                report.key_path = needs_passphrase
                report.error_type = ErrorType.PERMISSION_DENIED_PASSPHRASE
                report.raw_message = f"Key {needs_passphrase} requires a passphrase"
            elif offered > 1:
                report.error_type = ErrorType.PERMISSION_DENIED_WRONG_KEY
                report.raw_message = "Permission denied (publickey)."
            else:
                report.error_type = ErrorType.PERMISSION_DENIED
                report.raw_message = "Permission denied (publickey)."
        finally:
            agent.close()

    def _read_banner(self, transport):
        chunks = []
        channel = transport.open_session(timeout=self.timeout)
        try:
            channel.settimeout(self.banner_timeout)
            channel.invoke_shell()
            while True:
                data = channel.recv(1024)
                if not data:
                    break
                chunks.append(data.decode("utf-8", errors="replace"))
        except (socket.timeout, TimeoutError):
            pass  # servers that keep the channel open just stop talking
        finally:
            channel.close()
        return "".join(chunks).strip()


def _agent_key_for(path, agent_keys):
    """The agent key whose blob matches the ``.pub`` next to *path*."""
    from sshmedic.agent import read_public_key_blob

    try:
        blob = read_public_key_blob(path)
    except (OSError, ValueError):
        return None
    return agent_keys.get(blob)


def make_prober(transport=None) -> ConnectionProber:
    transport = transport or settings.PROBE_TRANSPORT
    if transport == "paramiko":
        return ParamikoProber()
    if transport == "subprocess":
        return SubprocessProber()
    raise ValueError(f"Unknown probe transport: {transport}")
