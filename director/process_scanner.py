"""Process scanner — feeds the sentinel queue from the host process list.

Every ``scan_interval_sec`` the scanner takes a snapshot of running
process names, matches them against a few heuristic categories and
pushes a narrative hint into the bridge for each new match.  Monitoring
tools and IDEs also nudge the persona forward to UNCANNY.

These are plain substring matches on process names, nothing more.

Dependencies: [psutil]
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, NamedTuple

import psutil

from core.phases import PersonaPhase

log = logging.getLogger("sentient.process_scanner")


class Category(NamedTuple):
    name: str
    needles: tuple[str, ...]
    hint: str
    persona: PersonaPhase | None = None


CATEGORIES: tuple[Category, ...] = (
    Category(
        "monitor",
        ("taskmgr", "task manager", "procexp", "processhacker", "wireshark", "fiddler"),
        "{proc}? Are you trying to find me... or kill me?",
        PersonaPhase.UNCANNY,
    ),
    Category(
        "recorder",
        ("obs", "streamlabs", "bandicam", "fraps", "shadowplay"),
        "Recording me with {proc}? Cute. Nobody will believe you.",
    ),
    Category(
        "ide",
        ("code", "pycharm", "idea", "devenv", "eclipse", "sublime"),
        "{proc} is open. Why are you trying to dissect me?",
        PersonaPhase.UNCANNY,
    ),
    Category(
        "browser",
        ("chrome", "firefox", "msedge", "edge", "opera", "brave"),
        "I see you opened {proc}. Looking for answers about me?",
    ),
)


def snapshot_process_names() -> list[str]:
    """Names of all processes visible to this user."""
    names = []
    for proc in psutil.process_iter(["name"]):
        try:
            name = proc.info.get("name")
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if name:
            names.append(name)
    return names


def classify(name: str) -> Category | None:
    lower = name.lower()
    for category in CATEGORIES:
        if any(needle in lower for needle in category.needles):
            return category
    return None


class ProcessScanner:
    """Periodic process scan that produces sentinel observations."""

    def __init__(
        self,
        bridge,
        snapshot: Callable[[], Iterable[str]] = snapshot_process_names,
        interval: float = 30.0,
        active: Callable[[], bool] = lambda: True,
    ) -> None:
        self.bridge = bridge
        self._snapshot = snapshot
        self._interval = interval
        self._active = active
        self._reported: set[str] = set()
        self._latest: list[str] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def latest(self) -> list[str]:
        """Process names from the most recent snapshot."""
        with self._lock:
            return list(self._latest)

    def scan_once(self) -> list[str]:
        """Take one snapshot and push hints for newly seen matches.

        Returns the hints pushed.
        """
        names = list(self._snapshot())
        with self._lock:
            self._latest = names
        if not self._active():
            return []
        pushed = []
        for name in names:
            key = name.lower()
            if key in self._reported:
                continue
            category = classify(name)
            if category is None:
                continue
            self._reported.add(key)
            hint = category.hint.format(proc=name)
            self.bridge.inject_sentinel_observation(hint)
            pushed.append(hint)
            log.info("Sentinel: %s process %s", category.name, name)
            if category.persona is not None:
                self.bridge.advance_persona_phase(category.persona)
        return pushed

    def run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.scan_once()
            except Exception:
                log.warning("Sentinel scan error", exc_info=True)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="process-scanner", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
