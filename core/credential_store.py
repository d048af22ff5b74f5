"""Credential store — the API key persisted as a single plain-text file.

Whole-file overwrite on save; no locking beyond the filesystem.  The
``SENTIENT_API_KEY`` environment variable, when set, takes precedence
over the file.

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import logging
import os
import pathlib

log = logging.getLogger("sentient.credential_store")

DEFAULT_PATH = pathlib.Path.home() / ".sentient_coolplayer" / "gemini_api_key.txt"
ENV_KEY = "SENTIENT_API_KEY"


class CredentialStore:
    """Read/write access to the persisted API key."""

    def __init__(self, path: pathlib.Path | str | None = None, env_key: str = ENV_KEY) -> None:
        self.path = pathlib.Path(path).expanduser() if path else DEFAULT_PATH
        self._env_key = env_key

    def load(self) -> str | None:
        """Return the stored key, or None if absent or unreadable."""
        env_value = os.environ.get(self._env_key, "").strip() if self._env_key else ""
        if env_value:
            log.info("Using API key from $%s", self._env_key)
            return env_value
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            log.warning("No API key found at %s — AI responses will be offline", self.path)
            return None
        except OSError:
            log.error("Failed to read API key file %s", self.path, exc_info=True)
            return None
        key = lines[0].strip() if lines else ""
        if not key:
            log.warning("API key file %s is empty", self.path)
            return None
        log.info("Loaded API key from %s", self.path)
        return key

    def save(self, value: str) -> None:
        """Overwrite the key file with *value*."""
        value = (value or "").strip()
        if not value:
            raise ValueError("API key is empty")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(value + "\n", encoding="utf-8")
        log.info("API key saved to %s", self.path)
