"""Host resolution tests against a throwaway ~/.ssh/config."""

import os

import pytest

from sshmedic.hosts import DEFAULT_KEY_NAMES, default_identity_files, expand_key_path, resolve_host


@pytest.fixture
def ssh_dir(tmp_path):
    (tmp_path / "config").write_text(
        "Host github-work\n"
        "    HostName github.com\n"
        "    User git\n"
        "    IdentityFile id_work\n"
        "\n"
        "Host build\n"
        "    HostName build.internal\n"
        "    Port 2222\n"
    )
    return str(tmp_path)


def test_alias_with_config_block(ssh_dir):
    host = resolve_host("github-work", ssh_dir=ssh_dir)
    assert host.host_alias == "github-work"
    assert host.hostname == "github.com"
    assert host.user == "git"
    assert host.identity_file == os.path.join(ssh_dir, "id_work")
    assert host.public_key_file == os.path.join(ssh_dir, "id_work.pub")
    assert host.port is None


def test_port_is_parsed(ssh_dir):
    host = resolve_host("build", ssh_dir=ssh_dir)
    assert host.port == 2222
    assert host.identity_file is None


def test_explicit_identity_file_wins(ssh_dir):
    host = resolve_host("github-work", identity_file="/keys/other", ssh_dir=ssh_dir)
    assert host.identity_file == "/keys/other"


def test_unknown_alias_uses_alias_as_hostname(ssh_dir):
    host = resolve_host("gitlab.com", ssh_dir=ssh_dir)
    assert host.hostname == "gitlab.com"
    assert host.identity_file is None


def test_missing_config_file(tmp_path):
    host = resolve_host("github.com", ssh_dir=str(tmp_path))
    assert host.hostname == "github.com"


def test_default_identity_files(tmp_path):
    assert default_identity_files(str(tmp_path)) == [
        os.path.join(str(tmp_path), name) for name in DEFAULT_KEY_NAMES
    ]


def test_expand_key_path(tmp_path):
    assert expand_key_path("id_rsa", str(tmp_path)) == os.path.join(str(tmp_path), "id_rsa")
    assert expand_key_path("/abs/key", str(tmp_path)) == "/abs/key"
