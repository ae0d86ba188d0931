"""Root Cause Analyzer.

A failed preflight check is treated as the cause and the failed handshake
as its symptom, so a failed check always outranks the error type.
"""

from sshmedic.models import (
    CheckId,
    CheckStatus,
    Confidence,
    ConnectionTestResult,
    ErrorType,
    PreflightResult,
    RootCauseAnalysis,
)

_PREFLIGHT_CAUSES = {
    CheckId.IDENTITY_FILE_EXISTS: RootCauseAnalysis(
        likely_cause="The configured identity file does not exist",
        confidence=Confidence.HIGH,
        explanation="The SSH config points to a private key file that could not be found. "
                    "SSH cannot authenticate with a key it cannot read.",
        related_issues=[
            "Check the IdentityFile path in your SSH config",
            "Generate a new key pair if the key was deleted",
        ],
    ),
    CheckId.IDENTITY_FILE_PERMISSIONS: RootCauseAnalysis(
        likely_cause="Key file permissions are too permissive",
        confidence=Confidence.HIGH,
        explanation="SSH refuses to use private keys that other users can read. "
                    "The key must be readable only by its owner.",
        related_issues=["Set the key file mode to 600"],
    ),
}

_ERROR_CAUSES = {
    ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS: RootCauseAnalysis(
        likely_cause="Key file permissions are incorrect",
        confidence=Confidence.HIGH,
        explanation="SSH ignored the private key because its permissions allow access by other users.",
        related_issues=["Set the key file mode to 600", "Check the ~/.ssh directory is mode 700"],
    ),
    ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT: RootCauseAnalysis(
        likely_cause="Key is not loaded in SSH agent",
        confidence=Confidence.HIGH,
        explanation="The SSH agent has no identities, so no key was offered to the server.",
        related_issues=["Run ssh-add with your key", "Check SSH_AUTH_SOCK points to a running agent"],
    ),
    ErrorType.PERMISSION_DENIED_PASSPHRASE: RootCauseAnalysis(
        likely_cause="Key requires passphrase input",
        confidence=Confidence.HIGH,
        explanation="The private key is encrypted and no passphrase was available in a non-interactive session.",
        related_issues=["Add the key to the SSH agent with its passphrase"],
    ),
    ErrorType.PERMISSION_DENIED_WRONG_KEY: RootCauseAnalysis(
        likely_cause="Wrong key is being used",
        confidence=Confidence.MEDIUM,
        explanation="Several keys were offered and the server accepted none of them.",
        related_issues=[
            "Set IdentityFile for this host",
            "Set IdentitiesOnly yes to stop offering unrelated keys",
            "Verify the public key is registered with the service",
        ],
    ),
    ErrorType.PERMISSION_DENIED_AUTH_METHOD: RootCauseAnalysis(
        likely_cause="Server does not accept your authentication method",
        confidence=Confidence.MEDIUM,
        explanation="The client and server could not agree on an authentication method or signature algorithm.",
        related_issues=["Use an ed25519 key", "Check PubkeyAcceptedAlgorithms on both sides"],
    ),
    ErrorType.PERMISSION_DENIED: RootCauseAnalysis(
        likely_cause="Authentication was rejected by the server",
        confidence=Confidence.MEDIUM,
        explanation="The server rejected the offered credentials.",
        related_issues=[
            "Verify the public key is registered with the service",
            "Check the user name for this host (git hosts expect 'git')",
        ],
    ),
    ErrorType.HOST_KEY_CHANGED: RootCauseAnalysis(
        likely_cause="Server identity has changed",
        confidence=Confidence.HIGH,
        explanation="The key the server presented differs from the one recorded in known_hosts. "
                    "This happens after a server reinstall, but can also indicate interception.",
        related_issues=[
            "Confirm the new fingerprint with the service's published keys",
            "Remove the old entry from known_hosts",
        ],
    ),
    ErrorType.HOST_KEY_UNKNOWN: RootCauseAnalysis(
        likely_cause="First time connecting to this server",
        confidence=Confidence.HIGH,
        explanation="The server's host key is not in known_hosts, and batch mode cannot ask for confirmation.",
        related_issues=["Add the host key to known_hosts"],
    ),
    ErrorType.CONNECTION_REFUSED: RootCauseAnalysis(
        likely_cause="SSH server is not accepting connections",
        confidence=Confidence.MEDIUM,
        explanation="The host answered but nothing is listening on the SSH port.",
        related_issues=["Check the Port setting for this host", "Check the SSH service is running"],
    ),
    ErrorType.TIMEOUT: RootCauseAnalysis(
        likely_cause="Network connectivity issue",
        confidence=Confidence.MEDIUM,
        explanation="The connection attempt did not get a response in time.",
        related_issues=["Check firewall rules", "Check VPN or proxy settings", "Try port 443 if the service offers it"],
    ),
    ErrorType.DNS_FAILED: RootCauseAnalysis(
        likely_cause="Hostname cannot be resolved",
        confidence=Confidence.HIGH,
        explanation="The hostname could not be turned into an IP address.",
        related_issues=["Check the HostName for typos", "Check your DNS settings"],
    ),
    ErrorType.IDENTITY_FILE_NOT_FOUND: RootCauseAnalysis(
        likely_cause="The configured identity file does not exist",
        confidence=Confidence.HIGH,
        explanation="ssh was told to use a key file that is not on disk.",
        related_issues=["Check the IdentityFile path in your SSH config"],
    ),
    ErrorType.PUBLIC_KEY_MISSING: RootCauseAnalysis(
        likely_cause="Public key file is missing",
        confidence=Confidence.MEDIUM,
        explanation="The private key has no matching .pub file next to it. "
                    "Some agents and tools need it to identify the key.",
        related_issues=["Regenerate it with ssh-keygen -y -f <key>"],
    ),
}


def analyze_root_cause(result: ConnectionTestResult,
                       preflight: PreflightResult | None = None) -> RootCauseAnalysis:
    if preflight is not None:
        failed = preflight.failed_checks()
        if failed and failed[0].id in _PREFLIGHT_CAUSES:
            return _PREFLIGHT_CAUSES[failed[0].id]

    cause = _ERROR_CAUSES.get(result.error_type)
    if cause is not None:
        return cause

    suggestion = result.error_details.suggestion if result.error_details else None
    return RootCauseAnalysis(
        likely_cause="Connection failed for unknown reason",
        confidence=Confidence.LOW,
        explanation=suggestion or "An unexpected error occurred during the connection attempt.",
        related_issues=["Check the debug log for more details"],
    )
