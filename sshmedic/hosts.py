"""Resolve a host alias from ~/.ssh/config into a HostIdentity snapshot."""

import os

import paramiko

from sshmedic.config import settings
from sshmedic.models import HostIdentity

# Keys ssh tries when no IdentityFile is configured, in order
DEFAULT_KEY_NAMES = ["id_ed25519", "id_rsa", "id_ecdsa"]


def default_identity_files(ssh_dir=None):
    ssh_dir = os.path.expanduser(ssh_dir or settings.SSH_DIR)
    return [os.path.join(ssh_dir, name) for name in DEFAULT_KEY_NAMES]


def expand_key_path(path, ssh_dir=None):
    """Expand ``~`` and make relative paths relative to the SSH directory."""
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(os.path.expanduser(ssh_dir or settings.SSH_DIR), path)
    return path


def resolve_host(host_alias, identity_file=None, ssh_dir=None):
    """Build a HostIdentity for *host_alias*.

    An explicit *identity_file* wins over the config file. When the alias
    has no config block, the alias itself is used as the hostname.
    """
    ssh_dir = os.path.expanduser(ssh_dir or settings.SSH_DIR)
    config_path = os.path.join(ssh_dir, "config")

    options = {}
    if os.path.exists(config_path):
        options = paramiko.SSHConfig.from_path(config_path).lookup(host_alias)

    if identity_file is None and options.get("identityfile"):
        identity_file = options["identityfile"][0]

    port = options.get("port")
    return HostIdentity(
        host_alias=host_alias,
        identity_file=expand_key_path(identity_file, ssh_dir) if identity_file else None,
        hostname=options.get("hostname") or host_alias,
        port=int(port) if port else None,
        user=options.get("user"),
    )
