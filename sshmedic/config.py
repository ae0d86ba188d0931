"""Pydantic Settings for sshmedic configuration."""

import shutil
from pathlib import Path

from pydantic_settings import BaseSettings

PROBE_TRANSPORTS = ("subprocess", "paramiko")


class Settings(BaseSettings):
    """All configuration via environment variables (or .env file)."""

    # --- SSH tooling ---
    SSH_DIR: str = str(Path.home() / ".ssh")
    SSH_BINARY: str = "ssh"
    SSH_ADD_BINARY: str = "ssh-add"
    SSH_KEYSCAN_BINARY: str = "ssh-keyscan"
    DEFAULT_SSH_USER: str = "git"

    # --- Timeouts (seconds) ---
    PROBE_TIMEOUT: int = 10
    PROBE_BANNER_TIMEOUT: int = 3
    SSH_ADD_TIMEOUT: int = 5
    SSH_ADD_PASSPHRASE_TIMEOUT: int = 10
    KEYSCAN_TIMEOUT: int = 5
    COMMAND_TIMEOUT: int = 15

    # --- Probing ---
    PROBE_TRANSPORT: str = "subprocess"
    MAX_OUTPUT_CHARS: int = 8000

    # --- API ---
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8765

    # --- Logging ---
    LOG_DIR: str = str(Path.home() / ".sshmedic" / "logs")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def validate_settings() -> list[str]:
    """Return list of configuration problems. Empty list means all OK."""
    problems = []
    if settings.PROBE_TRANSPORT not in PROBE_TRANSPORTS:
        problems.append(
            f"PROBE_TRANSPORT must be one of {', '.join(PROBE_TRANSPORTS)} "
            f"(got {settings.PROBE_TRANSPORT!r})"
        )
    if settings.PROBE_TRANSPORT == "subprocess" and shutil.which(settings.SSH_BINARY) is None:
        problems.append(f"SSH_BINARY: {settings.SSH_BINARY!r} not found on PATH")
    for field in ("PROBE_TIMEOUT", "SSH_ADD_TIMEOUT", "KEYSCAN_TIMEOUT", "COMMAND_TIMEOUT"):
        if getattr(settings, field) <= 0:
            problems.append(f"{field} must be positive")
    return problems
