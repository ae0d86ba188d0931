"""known_hosts maintenance: drop stale host keys, trust new ones."""

import logging
import os

import paramiko

from sshmedic.config import settings
from sshmedic.executor import run_command
from sshmedic.models import KnownHostResult
from sshmedic.safety import validate_hostname

logger = logging.getLogger("sshmedic")


def _host_pattern(hostname, port=None):
    if port and int(port) != 22:
        return f"[{hostname}]:{port}"
    return hostname


def _bare_host(pattern):
    """``[example.com]:2222`` -> ``example.com``."""
    if pattern.startswith("[") and "]" in pattern:
        return pattern[1:pattern.index("]")]
    return pattern.split(":", 1)[0] if pattern.count(":") == 1 else pattern


class KnownHostsService:

    def __init__(self, path=None, keyscan_binary=None):
        self.path = os.path.expanduser(path or os.path.join(settings.SSH_DIR, "known_hosts"))
        self.keyscan_binary = keyscan_binary or settings.SSH_KEYSCAN_BINARY

    def _entry_matches(self, hosts_field, hostname):
        target = hostname.lower()
        for pattern in hosts_field.split(","):
            if pattern.startswith("|1|"):
                # Hashed entry: re-hash the hostname with the entry's salt.
                for candidate in (hostname, f"[{hostname}]:22"):
                    try:
                        if paramiko.HostKeys.hash_host(candidate, pattern) == pattern:
                            return True
                    except ValueError:
                        break
                continue
            if _bare_host(pattern).lower() == target:
                return True
        return False

    def remove_host(self, hostname) -> KnownHostResult:
        """Delete every entry for *hostname*, on any port."""
        validate_hostname(hostname)
        if not os.path.exists(self.path):
            return KnownHostResult(success=True, message=f"No entries found for {hostname}", removed_count=0)

        with open(self.path, encoding="utf-8") as f:
            lines = f.readlines()

        kept = []
        removed = 0
        for line in lines:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                kept.append(line)
                continue
            fields = stripped.split()
            hosts_field = fields[1] if fields[0].startswith("@") and len(fields) > 1 else fields[0]
            if self._entry_matches(hosts_field, hostname):
                removed += 1
                continue
            kept.append(line)

        if removed == 0:
            return KnownHostResult(success=True, message=f"No entries found for {hostname}", removed_count=0)

        with open(self.path, "w", encoding="utf-8") as f:
            f.writelines(kept)
        logger.info("Removed %d known_hosts entries for %s", removed, hostname)
        return KnownHostResult(success=True, message=f"Removed {removed} entries for {hostname}", removed_count=removed)

    def scan(self, hostname, port=None) -> list[str]:
        """Return ``ssh-keyscan`` entries, rewritten to the port-aware host pattern."""
        validate_hostname(hostname)
        args = [self.keyscan_binary, "-T", str(settings.KEYSCAN_TIMEOUT)]
        if port and int(port) != 22:
            args += ["-p", str(int(port))]
        args.append(hostname)

        result = run_command(args, timeout=settings.KEYSCAN_TIMEOUT + 5)
        if result.status in ("timeout", "error"):
            raise OSError(result.output.strip())

        pattern = _host_pattern(hostname, port)
        entries = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 1)
            if len(parts) == 2:
                entries.append(f"{pattern} {parts[1]}")
        return entries

    def add_host(self, hostname, port=None) -> KnownHostResult:
        try:
            entries = self.scan(hostname, port)
        except OSError as e:
            return KnownHostResult(success=False, message=f"ssh-keyscan failed: {e}")
        if not entries:
            return KnownHostResult(success=False, message=f"No host keys returned for {hostname}")

        existing = set()
        if os.path.exists(self.path):
            with open(self.path, encoding="utf-8") as f:
                existing = {line.strip() for line in f}

        new_entries = [e for e in entries if e not in existing]
        if new_entries:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            needs_newline = False
            if os.path.exists(self.path) and os.path.getsize(self.path) > 0:
                with open(self.path, "rb") as f:
                    f.seek(-1, os.SEEK_END)
                    needs_newline = f.read(1) != b"\n"
            with open(self.path, "a", encoding="utf-8") as f:
                if needs_newline:
                    f.write("\n")
                for entry in new_entries:
                    f.write(entry + "\n")

        logger.info("Added %d known_hosts entries for %s", len(new_entries), hostname)
        return KnownHostResult(
            success=True,
            message=f"Added {len(new_entries)} key(s) for {hostname}",
            keys_added=len(new_entries),
        )
