"""Permission Oracle tests against real files in tmp_path."""

import os
import stat
import sys

import pytest

from sshmedic.permissions import PermissionOracle
from sshmedic.safety import UnsafeInputError

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


@pytest.fixture
def oracle():
    return PermissionOracle()


@pytest.fixture
def key(tmp_path):
    path = tmp_path / "id_rsa"
    path.write_text("private")
    return str(path)


class TestCheck:

    @pytest.mark.parametrize("mode", [0o600, 0o400])
    def test_secure_modes(self, oracle, key, mode):
        os.chmod(key, mode)
        result = oracle.check(key)
        assert result.is_secure is True
        assert result.can_fix is False
        assert result.current_mode == format(mode, "03o")

    def test_world_readable_is_insecure(self, oracle, key):
        os.chmod(key, 0o644)
        result = oracle.check(key)
        assert result.is_secure is False
        assert result.can_fix is True
        assert result.required_mode == "600"
        assert result.message == "Key permissions are 644, should be 600"

    def test_missing_file_returns_result(self, oracle, tmp_path):
        result = oracle.check(str(tmp_path / "missing"))
        assert result.is_secure is False
        assert result.can_fix is False
        assert "not found" in result.message

    def test_empty_path_rejected(self, oracle):
        with pytest.raises(UnsafeInputError):
            oracle.check("")


class TestFix:

    def test_fix_sets_600(self, oracle, key):
        os.chmod(key, 0o644)
        result = oracle.fix(key)
        assert result.success is True
        assert _mode(key) == 0o600
        assert oracle.check(key).is_secure is True

    def test_fix_missing_file(self, oracle, tmp_path):
        result = oracle.fix(str(tmp_path / "missing"))
        assert result.success is False


class TestSshDir:

    def test_open_dir_is_insecure(self, oracle, tmp_path):
        os.chmod(tmp_path, 0o755)
        result = oracle.check_ssh_dir(str(tmp_path))
        assert result.is_secure is False
        assert result.required_mode == "700"

    def test_fix_dir(self, oracle, tmp_path):
        ssh_dir = tmp_path / ".ssh"
        ssh_dir.mkdir(mode=0o755)
        assert oracle.fix_ssh_dir(str(ssh_dir)).success is True
        assert _mode(ssh_dir) == 0o700
        assert oracle.check_ssh_dir(str(ssh_dir)).is_secure is True
