"""Entry point: python -m sshmedic (or the ``sshmedic`` console script)."""

import sys

import uvicorn

from sshmedic.config import settings, validate_settings


def main():
    problems = validate_settings()
    if problems:
        print("sshmedic: refusing to start, fix the configuration (env vars or .env):", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)

    print(
        f"sshmedic: probing via {settings.PROBE_TRANSPORT}, "
        f"listening on http://{settings.API_HOST}:{settings.API_PORT}",
        file=sys.stderr,
    )
    uvicorn.run("sshmedic.app:app", host=settings.API_HOST, port=settings.API_PORT, log_level="info")


if __name__ == "__main__":
    main()
