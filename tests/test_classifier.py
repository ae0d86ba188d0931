"""Classifier tests: transcript rules, structured reports, result assembly."""

import pytest

from sshmedic.classifier import (
    HandshakeReport,
    StructuredClassifier,
    Transcript,
    TranscriptClassifier,
    build_connection_result,
    classify_exception_message,
    detect_platform,
    extract_changed_host,
    extract_hostname,
    extract_identity_file,
    is_auth_success,
)
from sshmedic.models import ErrorType, FixType, GitPlatform

CHANGED_HOST = """\
@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@
@    WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!     @
@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@
IT IS POSSIBLE THAT SOMEONE IS DOING SOMETHING NASTY!
Add correct host key in /home/dev/.ssh/known_hosts to get rid of this message.
Offending ECDSA key in /home/dev/.ssh/known_hosts:3
Host key for github.com has changed and you have requested strict checking.
Host key verification failed.
"""

UNKNOWN_HOST = """\
debug1: Connecting to gitlab.example.com [10.0.0.5] port 2222.
debug1: Connection established.
No ED25519 host key is known for [gitlab.example.com]:2222 and you have requested strict checking.
Host key verification failed.
"""

TOO_OPEN = """\
@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@
@         WARNING: UNPROTECTED PRIVATE KEY FILE!          @
@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@
Permissions 0644 for '/home/dev/.ssh/id_ed25519' are too open.
It is required that your private key files are NOT accessible by others.
This private key will be ignored.
git@github.com: Permission denied (publickey).
"""

WRONG_KEY = """\
debug1: Connecting to github.com [140.82.112.3] port 22.
debug1: Offering public key: /home/dev/.ssh/id_rsa RSA SHA256:aaa
debug1: Authentications that can continue: publickey
debug1: Offering public key: /home/dev/.ssh/id_ed25519 ED25519 SHA256:bbb
debug1: Authentications that can continue: publickey
git@github.com: Permission denied (publickey).
"""


@pytest.fixture
def classifier():
    return TranscriptClassifier()


def _classify(classifier, text):
    return classifier.classify(Transcript(text=text))


class TestSuccessDetection:

    @pytest.mark.parametrize("output", [
        "Hi octocat! You've successfully authenticated, but GitHub does not provide shell access.",
        "Welcome to GitLab, @octocat!",
        "authenticated via ssh key.\nYou can use git to connect to Bitbucket.",
        "logged in as octocat.",
    ])
    def test_platform_greetings(self, output):
        assert is_auth_success(output) is True

    def test_not_authenticated_is_not_success(self):
        assert is_auth_success("Error: not authenticated") is False

    def test_empty_output(self):
        assert is_auth_success("") is False

    def test_success_ignores_exit_code(self):
        greeting = "Hi octocat! You've successfully authenticated, but GitHub does not provide shell access."
        result = build_connection_result(
            TranscriptClassifier(), Transcript(text=greeting, exit_code=1), output=greeting,
        )
        assert result.success is True
        assert result.error_type is None
        assert result.error_details is None


class TestTranscriptRules:

    def test_changed_host_key_wins_over_verification_failed(self, classifier):
        details = _classify(classifier, CHANGED_HOST)
        assert details.type == ErrorType.HOST_KEY_CHANGED
        assert details.fix_type == FixType.REMOVE_KNOWN_HOST
        assert details.fix_params == {"hostname": "github.com"}
        assert details.can_auto_fix is True

    def test_unknown_host_key_with_port(self, classifier):
        details = _classify(classifier, UNKNOWN_HOST)
        assert details.type == ErrorType.HOST_KEY_UNKNOWN
        assert details.fix_type == FixType.ADD_KNOWN_HOST
        assert details.fix_params == {"hostname": "gitlab.example.com", "port": "2222"}

    def test_too_open_captures_path(self, classifier):
        details = _classify(classifier, TOO_OPEN)
        assert details.type == ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS
        assert details.can_auto_fix is True
        assert details.fix_type == FixType.CHMOD
        assert details.fix_params["keyPath"] == "/home/dev/.ssh/id_ed25519"

    def test_too_open_with_any_quoted_path(self, classifier):
        text = 'Permission denied (publickey).\nkey "/tmp/k" is too open'
        details = _classify(classifier, text)
        assert details.type == ErrorType.PERMISSION_DENIED_KEY_PERMISSIONS
        assert details.fix_params["keyPath"] == "/tmp/k"

    def test_passphrase(self, classifier):
        text = (
            "debug1: read_passphrase: can't open /dev/tty: No such device or address\n"
            "Enter passphrase for key '/home/dev/.ssh/id_rsa':\n"
            "git@github.com: Permission denied (publickey).\n"
        )
        details = _classify(classifier, text)
        assert details.type == ErrorType.PERMISSION_DENIED_PASSPHRASE
        assert details.fix_type == FixType.SSH_ADD
        assert details.fix_params["keyPath"] == "/home/dev/.ssh/id_rsa"

    def test_agent_has_no_identities(self, classifier):
        text = (
            "debug1: identity file /home/dev/.ssh/id_ed25519 type 3\n"
            "The agent has no identities.\n"
            "git@github.com: Permission denied (publickey).\n"
        )
        details = _classify(classifier, text)
        assert details.type == ErrorType.PERMISSION_DENIED_KEY_NOT_IN_AGENT
        assert details.fix_params["keyPath"] == "/home/dev/.ssh/id_ed25519"

    def test_auth_method(self, classifier):
        text = (
            "debug1: send_pubkey_test: no mutual signature algorithm\n"
            "debug1: No more authentication methods to try.\n"
            "user@host: Permission denied (publickey).\n"
        )
        details = _classify(classifier, text)
        assert details.type == ErrorType.PERMISSION_DENIED_AUTH_METHOD
        assert details.can_auto_fix is False

    def test_wrong_key(self, classifier):
        assert _classify(classifier, WRONG_KEY).type == ErrorType.PERMISSION_DENIED_WRONG_KEY

    def test_full_verbose_rejection_reads_as_auth_method(self, classifier):
        # OpenSSH prints "No more authentication methods" before giving up,
        # and that rule is checked ahead of the multiple-offers rule.
        text = WRONG_KEY.replace(
            "git@github.com: Permission denied",
            "debug1: No more authentication methods to try.\ngit@github.com: Permission denied",
        )
        assert _classify(classifier, text).type == ErrorType.PERMISSION_DENIED_AUTH_METHOD

    def test_single_offer_is_generic_permission_denied(self, classifier):
        text = (
            "debug1: Offering public key: /home/dev/.ssh/id_rsa RSA SHA256:aaa\n"
            "git@github.com: Permission denied (publickey).\n"
        )
        details = _classify(classifier, text)
        assert details.type == ErrorType.PERMISSION_DENIED
        assert details.can_auto_fix is False
        assert details.fix_type is None

    def test_identity_file_not_found(self, classifier):
        text = "Warning: Identity file /home/dev/.ssh/missing not accessible: No such file or directory.\n"
        details = _classify(classifier, text)
        assert details.type == ErrorType.IDENTITY_FILE_NOT_FOUND
        assert details.fix_params is None

    def test_connection_refused(self, classifier):
        text = "ssh: connect to host example.com port 22: Connection refused\n"
        assert _classify(classifier, text).type == ErrorType.CONNECTION_REFUSED

    def test_timeout(self, classifier):
        text = "ssh: connect to host example.com port 22: Connection timed out\n"
        assert _classify(classifier, text).type == ErrorType.TIMEOUT

    def test_dns_failure(self, classifier):
        text = "ssh: Could not resolve hostname nosuch.example: Name or service not known\n"
        assert _classify(classifier, text).type == ErrorType.DNS_FAILED

    def test_no_match_is_unknown(self, classifier):
        details = _classify(classifier, "kex_exchange_identification: read: Connection reset by peer\n")
        assert details.type == ErrorType.UNKNOWN
        assert details.suggestion


class TestExtraction:

    def test_extract_hostname(self):
        assert extract_hostname(WRONG_KEY) == "github.com"

    def test_extract_hostname_none(self):
        assert extract_hostname("nothing useful") is None

    def test_identity_file_skips_absent_sentinel(self):
        text = (
            "debug1: identity file /home/dev/.ssh/id_rsa type 0\n"
            "debug1: identity file /home/dev/.ssh/id_ecdsa type -1\n"
        )
        assert extract_identity_file(text) == "/home/dev/.ssh/id_rsa"

    def test_changed_host(self):
        assert extract_changed_host(CHANGED_HOST) == "github.com"

    def test_detect_platform(self):
        assert detect_platform("github.com") == GitPlatform.GITHUB
        assert detect_platform("gitlab.internal.corp") == GitPlatform.GITLAB
        assert detect_platform("bitbucket.org") == GitPlatform.BITBUCKET
        assert detect_platform("example.com") == GitPlatform.UNKNOWN


class TestStructuredClassifier:

    def test_authenticated_report_is_success(self):
        result = build_connection_result(
            StructuredClassifier(), HandshakeReport(authenticated=True, output=""),
        )
        assert result.success is True

    def test_report_maps_to_same_fix_contract(self):
        report = HandshakeReport(
            authenticated=False,
            error_type=ErrorType.HOST_KEY_CHANGED,
            raw_message="WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!",
            hostname="github.com",
            port=22,
        )
        result = build_connection_result(StructuredClassifier(), report)
        assert result.success is False
        assert result.error_type == ErrorType.HOST_KEY_CHANGED
        assert result.host_to_remove == "github.com"
        assert result.host_to_add is None
        assert result.error_details.fix_params == {"hostname": "github.com"}

    def test_unknown_host_sets_host_to_add(self):
        report = HandshakeReport(
            authenticated=False,
            error_type=ErrorType.HOST_KEY_UNKNOWN,
            raw_message="Host key verification failed.",
            hostname="example.com",
            port=22,
        )
        result = build_connection_result(StructuredClassifier(), report)
        assert result.host_to_add == "example.com"
        assert result.host_to_remove is None

    def test_missing_error_type_is_unknown(self):
        details = StructuredClassifier().classify(HandshakeReport(authenticated=False))
        assert details.type == ErrorType.UNKNOWN


class TestExceptionFallback:

    @pytest.mark.parametrize("message,expected", [
        ("WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!", ErrorType.HOST_KEY_CHANGED),
        ("Host key verification failed.", ErrorType.HOST_KEY_UNKNOWN),
        ("Permission denied (publickey).", ErrorType.PERMISSION_DENIED),
        ("Connection refused", ErrorType.CONNECTION_REFUSED),
        ("operation timed out", ErrorType.TIMEOUT),
        ("Could not resolve hostname x", ErrorType.DNS_FAILED),
        ("[Errno 2] No such file or directory: 'ssh'", ErrorType.UNKNOWN),
    ])
    def test_message_mapping(self, message, expected):
        assert classify_exception_message(message) == expected
