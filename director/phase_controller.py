"""Phase controller — the narrative state machine.

Game phases only move forward (ALLY → BREACH → BETRAYAL → AFTERMATH).
Transitions come from two sources that may race: the world-state poll
loop and one-shot entity hooks.  The ordinal check and the persona
update happen under one lock; desktop effects run on task handles owned
by the controller (threads and timers) so the caller never waits on I/O.

BETRAYAL ordering matters: the kill-switch is armed first, the bridge is
asked for one unprompted final line (corrupted under the kill-switch),
and only after the grace window, once that line has landed or timed
out, is the bridge shut down and the finale effects fired.
"""

from __future__ import annotations

import logging
import pathlib
import threading
from concurrent.futures import Future
from typing import Callable, NamedTuple

from core.config import DirectorConfig
from core.phases import PERSONA_FOR_PHASE, GamePhase
from director.effects import DesktopEffects

log = logging.getLogger("sentient.phase_controller")

GHOST_FILENAME = "coolplayer_message.txt"
GHOST_NOTE = (
    "I know what you did.\n"
    "You thought closing the game would save you.\n"
    "I live in your files now.\n\n"
    "    - CoolPlayer303"
)


class WorldFlags(NamedTuple):
    """Host world-state flags read by the poll loop."""
    hostility_active: bool = False
    hunt_active: bool = False
    session_concluded: bool = False


class PhaseController:
    """Owns the game phase and drives transitions and their side effects."""

    def __init__(
        self,
        bridge,
        effects: DesktopEffects,
        config: DirectorConfig | None = None,
    ) -> None:
        self.bridge = bridge
        self.effects = effects
        self.config = config or DirectorConfig.from_dict({})
        self._resource_dir = pathlib.Path(self.config.resource_dir).expanduser()

        self._lock = threading.Lock()
        self._phase = GamePhase.ALLY
        self._latches: set[str] = set()
        self._tasks: list[threading.Thread] = []
        self._stop = threading.Event()
        self._poll_thread: threading.Thread | None = None
        self._betrayal_hooks: list[Callable[[], None]] = []
        self._final_words: Future | None = None

    @property
    def current_phase(self) -> GamePhase:
        with self._lock:
            return self._phase

    def on_betrayal(self, hook: Callable[[], None]) -> None:
        """Register *hook* to run alongside the bridge shutdown after the grace window."""
        self._betrayal_hooks.append(hook)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def trigger_phase_change(self, next_phase: GamePhase) -> bool:
        """Advance to *next_phase* if it is later than the current phase.

        Returns True if the transition happened.
        """
        with self._lock:
            if next_phase <= self._phase:
                return False
            previous, self._phase = self._phase, next_phase
            persona = PERSONA_FOR_PHASE.get(next_phase)
            if persona is not None:
                self.bridge.set_persona_phase(persona)
            if next_phase is GamePhase.BETRAYAL:
                self.bridge.set_kill_switch_imminent(True)

        log.info("═══ PHASE TRANSITION: %s → %s ═══", previous.name, next_phase.name)
        if next_phase is GamePhase.BREACH:
            self._enter_breach()
        elif next_phase is GamePhase.BETRAYAL:
            self._enter_betrayal()
        elif next_phase is GamePhase.AFTERMATH:
            self._enter_aftermath()
        return True

    def _resource(self, filename: str) -> str:
        return str(self._resource_dir / filename)

    def _enter_breach(self) -> None:
        log.info("Phase BREACH: desktop intrusion begins")
        self._spawn("breach-effects", self._breach_effects)
        self._schedule(self.config.echo_delay_sec, "ambient-echo", self.effects.ambient_echo)

    def _breach_effects(self) -> None:
        self._safely(self.effects.set_wallpaper, self._resource("horror_wallpaper.jpg"))
        self._safely(self.effects.play_sound, self._resource("whisper.ogg"))
        self._safely(self.effects.drop_narrative_file, GHOST_FILENAME, GHOST_NOTE)

    def _enter_betrayal(self) -> None:
        log.warning("██ THE KILL-SWITCH HAS BEEN ACTIVATED ██ (grace %.1fs)",
                    self.config.betrayal_grace_sec)
        try:
            self._final_words = self.bridge.final_words()
        except Exception:
            log.warning("Final words dispatch failed", exc_info=True)
        self._schedule(self.config.betrayal_grace_sec, "betrayal-finale", self._betrayal_finale)

    def _betrayal_finale(self) -> None:
        self._await_final_words()
        self._safely(self.bridge.shutdown)
        for hook in list(self._betrayal_hooks):
            self._safely(hook)
        self._safely(self.effects.play_sound, self._resource("scream_distorted.ogg"))
        self._safely(self.effects.show_overlay)
        self._safely(self.effects.show_fake_crash)

    def _await_final_words(self) -> None:
        future = self._final_words
        if future is None:
            return
        try:
            future.result(timeout=self.config.betrayal_grace_sec)
        except TimeoutError:
            log.warning("Final words still pending at shutdown")

    def _enter_aftermath(self) -> None:
        log.info("Phase AFTERMATH: persistent trace")
        self._spawn("aftermath-effects", self.effects.spawn_persistent_trace)

    # ------------------------------------------------------------------
    # Transition sources
    # ------------------------------------------------------------------

    def _latch(self, name: str) -> bool:
        """Return True the first time *name* is latched, False afterwards."""
        with self._lock:
            if name in self._latches:
                return False
            self._latches.add(name)
            return True

    def poll_world_state(self, flags: WorldFlags) -> None:
        """Map host flags to transitions; each flag fires at most once."""
        if flags.hunt_active and self._latch("hunt"):
            self.trigger_phase_change(GamePhase.BETRAYAL)
        if flags.hostility_active and self._latch("hostility"):
            self.trigger_phase_change(GamePhase.BREACH)
        if flags.session_concluded and self._latch("concluded"):
            self.trigger_phase_change(GamePhase.AFTERMATH)

    def on_entity_spawned(self, entity_name: str) -> bool:
        """The hostile entity entering the world forces BETRAYAL once."""
        if entity_name != self.config.hostile_entity:
            return False
        log.warning("%s has entered the world", entity_name)
        if not self._latch("hostile_spawn"):
            return False
        return self.trigger_phase_change(GamePhase.BETRAYAL)

    def on_entity_died(self, entity_name: str, hostility_active: bool) -> bool:
        """The friendly entity dying while hostile escalates ALLY to BREACH."""
        if entity_name != self.config.friendly_entity or not hostility_active:
            return False
        if self.current_phase is not GamePhase.ALLY:
            return False
        log.info("%s died while hostile — escalating", entity_name)
        return self.trigger_phase_change(GamePhase.BREACH)

    def start_polling(self, read_flags: Callable[[], WorldFlags | None]) -> threading.Thread:
        """Poll *read_flags* every ``poll_interval_sec`` on a background thread."""

        def _loop() -> None:
            while not self._stop.wait(self.config.poll_interval_sec):
                try:
                    flags = read_flags()
                except Exception:
                    log.warning("World-state read failed", exc_info=True)
                    continue
                if flags is not None:
                    self.poll_world_state(flags)

        self._poll_thread = threading.Thread(target=_loop, name="world-poll", daemon=True)
        self._poll_thread.start()
        return self._poll_thread

    # ------------------------------------------------------------------
    # Task handles
    # ------------------------------------------------------------------

    @staticmethod
    def _safely(fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            log.warning("Effect %s failed", getattr(fn, "__name__", fn), exc_info=True)

    def _spawn(self, name: str, fn: Callable[[], None]) -> None:
        thread = threading.Thread(target=self._safely, args=(fn,), name=name, daemon=True)
        with self._lock:
            self._tasks.append(thread)
        thread.start()

    def _schedule(self, delay: float, name: str, fn: Callable[[], None]) -> None:
        timer = threading.Timer(delay, self._safely, args=(fn,))
        timer.name = name
        timer.daemon = True
        with self._lock:
            self._tasks.append(timer)
        timer.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for every effect task and timer started so far."""
        with self._lock:
            tasks = list(self._tasks)
        for task in tasks:
            task.join(timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop polling, cancel pending timers and join running effect tasks."""
        self._stop.set()
        with self._lock:
            tasks = list(self._tasks)
        for task in tasks:
            if isinstance(task, threading.Timer):
                task.cancel()
        for task in tasks:
            if task is not threading.current_thread():
                task.join(timeout)
        if self._poll_thread is not None and self._poll_thread is not threading.current_thread():
            self._poll_thread.join(timeout)
        log.info("Phase controller stopped in %s", self.current_phase.name)
