"""Narrative phases and the persona state shared with the AI bridge.

GamePhase is the top-level story stage and only ever moves forward.
PersonaPhase is the entity's tone; it is set by the phase controller and
may be nudged ahead by the process scanner.  PersonaState bundles the
persona phase with the one-way kill-switch flag so that both can be read
atomically by a dispatch worker.

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import enum
import logging
import threading

log = logging.getLogger("sentient.phases")


class GamePhase(enum.IntEnum):
    ALLY = 0
    BREACH = 1
    BETRAYAL = 2
    AFTERMATH = 3


class PersonaPhase(enum.IntEnum):
    FRIEND = 0
    UNCANNY = 1
    OBSESSION = 2


# Persona the controller installs when a game phase is entered.
PERSONA_FOR_PHASE: dict[GamePhase, PersonaPhase] = {
    GamePhase.BREACH: PersonaPhase.UNCANNY,
    GamePhase.BETRAYAL: PersonaPhase.OBSESSION,
}


class PersonaState:
    """Thread-safe cell for the persona phase and kill-switch flag."""

    def __init__(self, phase: PersonaPhase = PersonaPhase.FRIEND) -> None:
        self._lock = threading.Lock()
        self._phase = phase
        self._kill_switch = False

    @property
    def phase(self) -> PersonaPhase:
        with self._lock:
            return self._phase

    @property
    def kill_switch(self) -> bool:
        with self._lock:
            return self._kill_switch

    def snapshot(self) -> tuple[PersonaPhase, bool]:
        """Return (phase, kill_switch) read under a single lock."""
        with self._lock:
            return self._phase, self._kill_switch

    def set_phase(self, phase: PersonaPhase) -> None:
        with self._lock:
            previous, self._phase = self._phase, phase
        if previous != phase:
            log.info("Persona %s -> %s", previous.name, phase.name)

    def advance(self, phase: PersonaPhase) -> bool:
        """Move the persona forward to *phase*; never regress.

        Returns True if the phase changed.
        """
        with self._lock:
            if phase <= self._phase:
                return False
            previous, self._phase = self._phase, phase
        log.info("Persona advanced %s -> %s", previous.name, phase.name)
        return True

    def arm_kill_switch(self, imminent: bool = True) -> None:
        """Set the kill-switch flag.  Clearing it is ignored."""
        if not imminent:
            log.debug("Kill-switch cannot be cleared once armed; ignoring")
            return
        with self._lock:
            already = self._kill_switch
            self._kill_switch = True
        if not already:
            log.warning("Kill-switch armed")
