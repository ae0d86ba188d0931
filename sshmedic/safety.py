"""Safety module: secret redaction and input validation.

Everything that reaches a log line or an external process argument goes
through here first. Passphrases handed to ``ssh-add`` are registered for
the duration of the call so that any echo of them in tool output is
scrubbed as well.
"""

import re
import threading
import platform
from contextlib import contextmanager

REDACT_PLACEHOLDER = "[REDACTED]"

_IS_WINDOWS = platform.system() == "Windows"

# Patterns that match secrets/credentials in free text.
# Each tuple: (compiled_regex, description_for_testing).
_REDACT_PATTERNS = [
    # --- Forge tokens (the hosts this tool is usually pointed at) ---
    (re.compile(r"ghp_[A-Za-z0-9]{36,}"),              "GitHub PAT"),
    (re.compile(r"gho_[A-Za-z0-9]{36,}"),              "GitHub OAuth token"),
    (re.compile(r"ghs_[A-Za-z0-9]{36,}"),              "GitHub App token"),
    (re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),      "GitHub fine-grained PAT"),
    (re.compile(r"glpat-[A-Za-z0-9_-]{20,}"),          "GitLab PAT"),
    (re.compile(r"ATBB[A-Za-z0-9_-]{24,}"),            "Bitbucket app password"),
    (re.compile(r"AKIA[0-9A-Z]{16}"),                  "AWS Access Key ID"),
    (re.compile(r"(?i)(Bearer\s+)[A-Za-z0-9_\-.]{20,}"), "Bearer token"),
    # --- passphrase=..., password: ... ---
    (re.compile(
        r"(?i)\b(?:passphrase|password|passwd|secret)\b\s*[=:]\s*"
        r"""('[^']*'|"[^"]*"|\S+)"""
    ), "passphrase assignment"),
    # --- Private key blocks ---
    (re.compile(
        r"-----BEGIN[ A-Z]*PRIVATE KEY-----"
        r"[\s\S]*?"
        r"-----END[ A-Z]*PRIVATE KEY-----"
    ), "private key block"),
]

_registered_secrets: set[str] = set()
_secrets_lock = threading.Lock()


class UnsafeInputError(ValueError):
    """Raised when a hostname or key path is unfit to pass to an SSH tool."""


@contextmanager
def registered_secret(secret):
    """Redact *secret* verbatim from anything logged while the block runs."""
    if not secret:
        yield
        return
    with _secrets_lock:
        _registered_secrets.add(secret)
    try:
        yield
    finally:
        with _secrets_lock:
            _registered_secrets.discard(secret)


def redact_text(text):
    """Replace secrets/credentials in *text* with a placeholder."""
    with _secrets_lock:
        literal = sorted(_registered_secrets, key=len, reverse=True)
    for secret in literal:
        text = text.replace(secret, REDACT_PLACEHOLDER)
    for pattern, _ in _REDACT_PATTERNS:
        text = pattern.sub(REDACT_PLACEHOLDER, text)
    return text


def redact_data(obj):
    """Recursively redact secret values in a dict/list/string."""
    if isinstance(obj, str):
        return redact_text(obj)
    if isinstance(obj, dict):
        return {
            k: REDACT_PLACEHOLDER if _is_secret_key(k) and v else redact_data(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [redact_data(item) for item in obj]
    return obj


def _is_secret_key(key):
    return isinstance(key, str) and key.lower() in ("secret", "passphrase", "password")


# Anything a shell or ssh option parser could interpret
_HOST_FORBIDDEN = re.compile(r"[\s;&|`$<>()\\'\"*?!{}]")


def validate_hostname(hostname):
    """Reject hostnames that could smuggle options or shell syntax into ssh."""
    if not hostname or not hostname.strip():
        raise UnsafeInputError("Hostname is empty")
    if len(hostname) > 255:
        raise UnsafeInputError("Hostname is too long")
    if hostname.startswith("-"):
        raise UnsafeInputError(f"Hostname may not start with '-': {hostname!r}")
    if _HOST_FORBIDDEN.search(hostname):
        raise UnsafeInputError(f"Hostname contains forbidden characters: {hostname!r}")
    return hostname


def validate_key_path(path):
    if not path or not str(path).strip():
        raise UnsafeInputError("Key path is empty")
    if "\x00" in str(path):
        raise UnsafeInputError("Key path contains a NUL byte")
    return str(path)
