#!/usr/bin/env python3
"""Sentient bridge entry point — launches the console host."""

import os
import sys
import pathlib

if sys.version_info < (3, 11):
    print(f"ERROR: Python 3.11+ required (found {sys.version_info.major}.{sys.version_info.minor})")
    sys.exit(1)


def _load_env_file(path: pathlib.Path) -> None:
    """Load KEY=VALUE lines from *path* (does not override existing env vars)."""
    if not path.is_file():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(pathlib.Path(__file__).resolve().parent / ".env")

# Ensure project root is on sys.path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from director.main import main


if __name__ == "__main__":
    main()
