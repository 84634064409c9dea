"""``python -m issuegraph`` entrypoint."""

from __future__ import annotations

import sys

from .cli import main


def run() -> int:  # pragma: no cover - thin wrapper
    return main(sys.argv[1:])


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(run())
