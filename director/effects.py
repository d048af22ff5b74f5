"""Desktop effects — capability interface and runtime registry.

The phase controller never touches the desktop itself.  It talks to a
``DesktopEffects`` implementation chosen at start-up: each registered
backend declares whether it can run on this machine, and the first
available one (by priority) wins.  The built-in ``LoggingEffects``
backend is always available and only records what would have happened.
"""

from __future__ import annotations

import abc
import logging
import threading
from typing import Callable, NamedTuple

log = logging.getLogger("sentient.effects")


class DesktopEffects(abc.ABC):
    """Side effects fired on phase transitions."""

    name: str = "abstract"

    @abc.abstractmethod
    def set_wallpaper(self, path: str) -> None:
        """Replace the desktop wallpaper with the image at *path*."""

    @abc.abstractmethod
    def play_sound(self, path: str) -> None:
        """Play *path* through the system mixer, bypassing the game volume."""

    @abc.abstractmethod
    def drop_narrative_file(self, filename: str, content: str) -> None:
        """Leave a text file on the player's desktop."""

    @abc.abstractmethod
    def ambient_echo(self) -> None:
        """Capture a few seconds of ambient audio and play it back faintly."""

    @abc.abstractmethod
    def show_overlay(self) -> None:
        """Flash the fake 'entity behind your windows' overlay."""

    @abc.abstractmethod
    def show_fake_crash(self) -> None:
        """Show the fake crash screen."""

    @abc.abstractmethod
    def spawn_persistent_trace(self) -> None:
        """Start the harmless idle marker process that outlives the game."""


class LoggingEffects(DesktopEffects):
    """Records each effect in the log and does nothing else."""

    name = "logging"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.fired: list[str] = []

    def _record(self, effect: str, detail: str = "") -> None:
        with self._lock:
            self.fired.append(effect)
        log.info("Effect %s %s", effect, detail)

    def set_wallpaper(self, path: str) -> None:
        self._record("set_wallpaper", path)

    def play_sound(self, path: str) -> None:
        self._record("play_sound", path)

    def drop_narrative_file(self, filename: str, content: str) -> None:
        self._record("drop_narrative_file", filename)

    def ambient_echo(self) -> None:
        self._record("ambient_echo")

    def show_overlay(self) -> None:
        self._record("show_overlay")

    def show_fake_crash(self) -> None:
        self._record("show_fake_crash")

    def spawn_persistent_trace(self) -> None:
        self._record("spawn_persistent_trace")


class _Backend(NamedTuple):
    name: str
    factory: Callable[[], DesktopEffects]
    available: Callable[[], bool]
    priority: int


class EffectsRegistry:
    """Named effect backends, resolved to one implementation at runtime."""

    def __init__(self) -> None:
        self._backends: dict[str, _Backend] = {}

    def register(
        self,
        name: str,
        factory: Callable[[], DesktopEffects],
        available: Callable[[], bool] = lambda: True,
        priority: int = 50,
    ) -> None:
        self._backends[name] = _Backend(name, factory, available, priority)

    def names(self) -> list[str]:
        return [b.name for b in sorted(self._backends.values(), key=lambda b: -b.priority)]

    def detect(self) -> DesktopEffects:
        """Instantiate the highest-priority backend that reports availability."""
        for backend in sorted(self._backends.values(), key=lambda b: -b.priority):
            try:
                if not backend.available():
                    continue
                effects = backend.factory()
            except Exception:
                log.warning("Effects backend %s failed to load", backend.name, exc_info=True)
                continue
            log.info("Using effects backend: %s", backend.name)
            return effects
        log.info("No effects backend available — falling back to logging")
        return LoggingEffects()


def default_registry() -> EffectsRegistry:
    registry = EffectsRegistry()
    registry.register("logging", LoggingEffects, priority=0)
    return registry
