"""Error classification: turn probe evidence into an ErrorDetails entry.

Two strategies share one output contract:

* ``TranscriptClassifier`` reads the verbose text printed by the ``ssh``
  client and applies an ordered list of pattern rules. The first rule that
  matches wins, so rule order is significant (a changed host key also prints
  "Host key verification failed", for example).
* ``StructuredClassifier`` trusts a ``HandshakeReport`` that an in-process
  transport has already filled in with the failure kind.

Both route through ``make_error_details`` so the fix type, fix params and
``can_auto_fix`` flag are assigned identically for a given error type.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from sshmedic.models import (
    ConnectionTestResult,
    ErrorDetails,
    ErrorType,
    FixType,
    GitPlatform,
)

# --- Taxonomy tables ---

SUGGESTIONS = {
    ErrorType.HOST_KEY_CHANGED:
        "If this is expected (server reinstall), remove the old key from known_hosts.",
    ErrorType.HOST_KEY_UNKNOWN:
        "Add this host to your known_hosts file to continue.",
    ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS:
        "Restrict the private key to its owner (chmod 600).",
    ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT:
        "Add your key to the SSH agent with ssh-add.",
    ErrorType.PERMISSION_DENIED_PASSPHRASE:
        "This key is protected by a passphrase. Add it to the SSH agent and enter the passphrase.",
    ErrorType.PERMISSION_DENIED_WRONG_KEY:
        "Several keys were offered and none was accepted. Set IdentityFile for this host.",
    ErrorType.PERMISSION_DENIED_AUTH_METHOD:
        "The server does not accept any authentication method your client offered.",
    ErrorType.PERMISSION_DENIED:
        "Make sure your public key is registered with the server or service account.",
    ErrorType.CONNECTION_REFUSED:
        "Check that the SSH server is running and listening on the expected port.",
    ErrorType.TIMEOUT:
        "Check your network connection and firewall settings.",
    ErrorType.DNS_FAILED:
        "Check the hostname for typos and verify your DNS settings.",
    ErrorType.IDENTITY_FILE_NOT_FOUND:
        "The configured identity file does not exist. Fix the path or generate a new key.",
    ErrorType.PUBLIC_KEY_MISSING:
        "The public key file is missing. Regenerate it from the private key.",
    ErrorType.UNKNOWN:
        "Review the debug output for more information.",
}

# error type -> (fix type, required param)
_FIXES = {
    ErrorType.HOST_KEY_CHANGED: (FixType.REMOVE_KNOWN_HOST, "hostname"),
    ErrorType.HOST_KEY_UNKNOWN: (FixType.ADD_KNOWN_HOST, "hostname"),
    ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS: (FixType.CHMOD, "keyPath"),
    ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT: (FixType.SSH_ADD, "keyPath"),
    ErrorType.PERMISSION_DENIED_PASSPHRASE: (FixType.SSH_ADD, "keyPath"),
}


def make_error_details(error_type, raw_message, *, key_path=None, hostname=None,
                       port=None, suggestion=None):
    """Build the taxonomy entry for *error_type*.

    ``can_auto_fix`` is only set when the fix has the parameter it needs;
    a chmod without a key path cannot be executed.
    """
    fix_type = None
    fix_params = None
    can_auto_fix = False
    if error_type in _FIXES:
        fix_type, required = _FIXES[error_type]
        params = {}
        if key_path:
            params["keyPath"] = key_path
        if hostname:
            params["hostname"] = hostname
            if port and int(port) != 22:
                params["port"] = str(port)
        fix_params = params or None
        can_auto_fix = required in params
    return ErrorDetails(
        type=error_type,
        raw_message=raw_message,
        suggestion=suggestion or SUGGESTIONS[error_type],
        can_auto_fix=can_auto_fix,
        fix_type=fix_type,
        fix_params=fix_params,
    )


# --- Success detection ---

def is_auth_success(output):
    """Positive match on the greetings that git hosting services print."""
    if not output:
        return False
    if "You've successfully authenticated" in output or "Welcome to GitLab" in output:
        return True
    lower = output.lower()
    if "logged in as" in lower:
        return True
    if "authenticated" in lower and "not authenticated" not in lower:
        return True
    return "welcome" in lower


def detect_platform(hostname):
    if not hostname:
        return GitPlatform.UNKNOWN
    host = hostname.lower()
    if "github.com" in host:
        return GitPlatform.GITHUB
    if "bitbucket.org" in host:
        return GitPlatform.BITBUCKET
    if "gitlab" in host:
        return GitPlatform.GITLAB
    return GitPlatform.UNKNOWN


# --- Transcript extraction helpers ---

_CONNECTING_RE = re.compile(r"Connecting to (\S+?)(?: \[[^\]]*\])? port (\d+)")
_CONNECT_HOST_RE = re.compile(r"connect to host (\S+) port (\d+)")
_RESOLVE_RE = re.compile(r"Could not resolve hostname (\S+?):")
_CHANGED_HOST_RE = re.compile(r"host key for (\S+?),? has changed", re.IGNORECASE)
_UNKNOWN_HOST_RE = re.compile(r"host key is known for (\S+?) and", re.IGNORECASE)
_IDENTITY_RE = re.compile(r"identity file (\S+) type (-?\d+)")
_QUOTED_RE = re.compile(r"""['"]([^'"]+)['"]""")
_PASSPHRASE_KEY_RE = re.compile(r"""(?:Enter passphrase for key|Load key)\s+['"]([^'"]+)['"]""")
_MISSING_IDENTITY_RES = [
    re.compile(r"Identity file (\S+) not accessible: No such file or directory"),
    re.compile(r"no such identity: ([^:\n]+): No such file or directory"),
]


def _strip_brackets(host):
    host = host.strip("'\"")
    if host.startswith("[") and "]" in host:
        host = host[1:host.index("]")]
    return host


def extract_hostname(transcript):
    for pattern in (_CONNECTING_RE, _CONNECT_HOST_RE, _RESOLVE_RE, _UNKNOWN_HOST_RE):
        match = pattern.search(transcript)
        if match:
            return _strip_brackets(match.group(1))
    return None


def extract_port(transcript):
    for pattern in (_CONNECTING_RE, _CONNECT_HOST_RE):
        match = pattern.search(transcript)
        if match:
            return int(match.group(2))
    return None


def extract_changed_host(transcript):
    match = _CHANGED_HOST_RE.search(transcript)
    if match:
        return _strip_brackets(match.group(1))
    return extract_hostname(transcript)


def extract_identity_file(transcript):
    """The last identity file ssh loaded successfully (``type -1`` means it failed)."""
    found = None
    for path, key_type in _IDENTITY_RE.findall(transcript):
        if key_type != "-1":
            found = path
    return found


def _extract_too_open_path(transcript):
    for line in transcript.splitlines():
        if "too open" in line.lower():
            match = _QUOTED_RE.search(line)
            if match:
                return match.group(1)
    match = _QUOTED_RE.search(transcript)
    return match.group(1) if match else None


# --- Evidence types ---

@dataclass
class Transcript:
    """Everything the external ssh client printed for one attempt."""
    text: str
    exit_code: int | None = None
    hostname: str | None = None


@dataclass
class HandshakeReport:
    """What an in-process transport observed during one attempt."""
    authenticated: bool
    output: str = ""
    error_type: ErrorType | None = None
    raw_message: str = ""
    hostname: str | None = None
    port: int | None = None
    key_path: str | None = None
    suggestion: str | None = None
    log: list[str] = field(default_factory=list)


# --- Strategies ---

class ErrorClassifier(ABC):
    """Strategy interface: evidence in, taxonomy entry (or success) out."""

    @abstractmethod
    def is_success(self, evidence) -> bool:
        ...

    @abstractmethod
    def classify(self, evidence) -> ErrorDetails:
        """Return the taxonomy entry for a failed attempt. Never returns None."""
        ...


class TranscriptClassifier(ErrorClassifier):

    def is_success(self, evidence):
        return is_auth_success(evidence.text)

    def classify(self, evidence):
        text = evidence.text or ""
        lower = text.lower()

        if "REMOTE HOST IDENTIFICATION HAS CHANGED" in text:
            return make_error_details(
                ErrorType.HOST_KEY_CHANGED,
                "WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!",
                hostname=extract_changed_host(text) or evidence.hostname,
            )

        if "Host key verification failed" in text:
            return make_error_details(
                ErrorType.HOST_KEY_UNKNOWN,
                "Host key verification failed.",
                hostname=extract_hostname(text) or evidence.hostname,
                port=extract_port(text),
            )

        if "Permission denied" in text:
            return self._classify_permission_denied(text, lower)

        for pattern in _MISSING_IDENTITY_RES:
            match = pattern.search(text)
            if match:
                return make_error_details(
                    ErrorType.IDENTITY_FILE_NOT_FOUND,
                    match.group(0),
                    key_path=match.group(1),
                )

        if "Connection refused" in text:
            return make_error_details(ErrorType.CONNECTION_REFUSED, _line_with(text, "Connection refused"))

        if "timed out" in lower or "Connection timeout" in text:
            return make_error_details(ErrorType.TIMEOUT, _line_with(text, "timed out", "Connection timeout"))

        if ("Could not resolve hostname" in text
                or "Name or service not known" in text
                or "nodename nor servname provided" in text
                or "Temporary failure in name resolution" in text):
            return make_error_details(ErrorType.DNS_FAILED, _line_with(text, "resolve", "Name or service"))

        return make_error_details(ErrorType.UNKNOWN, _last_line(text) or "Connection failed")

    def _classify_permission_denied(self, text, lower):
        raw = _line_with(text, "Permission denied")

        if "too open" in lower:
            return make_error_details(
                ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS, raw,
                key_path=_extract_too_open_path(text),
            )

        if ("enter passphrase" in lower
                or "incorrect passphrase" in lower
                or "bad passphrase" in lower
                or "read_passphrase" in lower):
            match = _PASSPHRASE_KEY_RE.search(text)
            key_path = match.group(1) if match else extract_identity_file(text)
            return make_error_details(ErrorType.PERMISSION_DENIED_PASSPHRASE, raw, key_path=key_path)

        if "agent has no identities" in lower:
            return make_error_details(
                ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT, raw,
                key_path=extract_identity_file(text),
            )

        if ("no more authentication methods" in lower
                or "no mutual signature algorithm" in lower
                or "no matching host key type" in lower):
            return make_error_details(ErrorType.PERMISSION_DENIED_AUTH_METHOD, raw)

        if text.count("Offering public key") > 1 and "Server accepts key" not in text:
            return make_error_details(ErrorType.PERMISSION_DENIED_WRONG_KEY, raw)

        return make_error_details(ErrorType.PERMISSION_DENIED, raw)


class StructuredClassifier(ErrorClassifier):

    def is_success(self, evidence):
        return evidence.authenticated or is_auth_success(evidence.output)

    def classify(self, evidence):
        error_type = evidence.error_type or ErrorType.UNKNOWN
        return make_error_details(
            error_type,
            evidence.raw_message or "Connection failed",
            key_path=evidence.key_path,
            hostname=evidence.hostname,
            port=evidence.port,
            suggestion=evidence.suggestion,
        )


# Used when the transport itself raised; only the message survives.
_EXCEPTION_PATTERNS = [
    ("REMOTE HOST IDENTIFICATION HAS CHANGED", ErrorType.HOST_KEY_CHANGED),
    ("Host key verification failed", ErrorType.HOST_KEY_UNKNOWN),
    ("Permission denied", ErrorType.PERMISSION_DENIED),
    ("Connection refused", ErrorType.CONNECTION_REFUSED),
    ("timed out", ErrorType.TIMEOUT),
    ("Connection timeout", ErrorType.TIMEOUT),
    ("Could not resolve hostname", ErrorType.DNS_FAILED),
]


def classify_exception_message(message):
    for needle, error_type in _EXCEPTION_PATTERNS:
        if needle in (message or ""):
            return error_type
    return ErrorType.UNKNOWN


def build_connection_result(classifier, evidence, *, output="", platform=None,
                            identity_file=None, debug_log=None):
    """Assemble a ConnectionTestResult from classified evidence."""
    if classifier.is_success(evidence):
        return ConnectionTestResult(
            success=True,
            output=output,
            platform=platform,
            identity_file=identity_file,
            debug_log=debug_log,
        )
    details = classifier.classify(evidence)
    params = details.fix_params or {}
    return ConnectionTestResult(
        success=False,
        output=output,
        platform=platform,
        error_type=details.type,
        error_details=details,
        host_to_remove=params.get("hostname") if details.type == ErrorType.HOST_KEY_CHANGED else None,
        host_to_add=params.get("hostname") if details.type == ErrorType.HOST_KEY_UNKNOWN else None,
        identity_file=identity_file,
        debug_log=debug_log,
    )


def _line_with(text, *needles):
    for line in text.splitlines():
        if any(n in line for n in needles):
            return line.strip()
    return _last_line(text)


def _last_line(text):
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    return lines[-1] if lines else ""
