"""Typed configuration loaded from ``config/config.toml``."""

from __future__ import annotations

import pathlib
import tomllib
from typing import NamedTuple

DEFAULT_ENDPOINT_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODELS = ("gemini-2.0-flash", "gemini-2.0-flash-lite", "gemini-1.5-flash")


class BridgeConfig(NamedTuple):
    """Settings for the AI bridge, taken from the [bridge] section."""
    endpoint_base: str
    models: tuple[str, ...]
    timeout_sec: float
    credential_path: str
    idle_check_interval_sec: float
    idle_threshold_sec: float
    history_max_turns: int
    history_context_turns: int
    max_process_names: int

    @classmethod
    def from_dict(cls, section: dict | None = None) -> "BridgeConfig":
        """Parse from the raw [bridge] config dict."""
        b = section or {}
        history = b.get("history", {})
        idle = b.get("idle", {})
        return cls(
            endpoint_base=b.get("endpoint_base", DEFAULT_ENDPOINT_BASE).rstrip("/"),
            models=tuple(b.get("models", DEFAULT_MODELS)),
            timeout_sec=b.get("timeout_sec", 15.0),
            credential_path=b.get("credential_path", ""),
            idle_check_interval_sec=idle.get("check_interval_sec", 60.0),
            idle_threshold_sec=idle.get("threshold_sec", 180.0),
            history_max_turns=history.get("max_turns", 20),
            history_context_turns=history.get("context_turns", 10),
            max_process_names=b.get("max_process_names", 15),
        )


class DirectorConfig(NamedTuple):
    """Settings for the phase controller and scanner ([director] section)."""
    poll_interval_sec: float
    betrayal_grace_sec: float
    echo_delay_sec: float
    scan_interval_sec: float
    hostile_entity: str
    friendly_entity: str
    resource_dir: str

    @classmethod
    def from_dict(cls, section: dict | None = None) -> "DirectorConfig":
        """Parse from the raw [director] config dict."""
        d = section or {}
        return cls(
            poll_interval_sec=d.get("poll_interval_sec", 1.0),
            betrayal_grace_sec=d.get("betrayal_grace_sec", 4.0),
            echo_delay_sec=d.get("echo_delay_sec", 60.0),
            scan_interval_sec=d.get("scan_interval_sec", 30.0),
            hostile_entity=d.get("hostile_entity", "AngryCoolPlayer303Entity"),
            friendly_entity=d.get("friendly_entity", "CoolPlayer303Entity"),
            resource_dir=d.get("resource_dir", "~/.sentient_coolplayer"),
        )


def load_config(project_root: pathlib.Path) -> dict:
    """Read ``config/config.toml``; an absent file yields an empty dict."""
    cfg_path = project_root / "config" / "config.toml"
    if not cfg_path.is_file():
        return {}
    with open(cfg_path, "rb") as f:
        return tomllib.load(f)
