"""AI bridge — turns chat events into in-character replies.

Each dispatch runs on its own short-lived thread so a slow or stalled
remote call never blocks the host loop or other dispatches.  The reply
(remote or offline) is handed to the dispatch callback exactly once and
also resolves the ``Future`` returned by :meth:`AIBridge.dispatch`.

A background idle scheduler checks once per interval whether the player
has been silent past the threshold and, if so, pushes a synthetic
idle-initiation message through the same pipeline.

Errors never propagate to the caller: every failure path ends in the
offline fallback.
"""

from __future__ import annotations

import enum
import getpass
import itertools
import logging
import random
import threading
import time
from concurrent.futures import Future
from typing import Callable, Iterable

from bridge.context_assembler import ContextAssembler, build_request_body
from bridge.endpoint_failover import EndpointError, EndpointFailover
from bridge.geolocation import GeoSnapshot
from bridge.offline_fallback import fallback
from bridge.prompts import FAREWELL_MARKER, IDLE_MARKER
from core.config import BridgeConfig
from core.credential_store import CredentialStore
from core.history_store import HistoryStore
from core.phases import GamePhase, PersonaPhase, PersonaState
from core.sentinel_queue import SentinelQueue

log = logging.getLogger("sentient.ai_bridge")

ReplyCallback = Callable[[str], None]

# How long a dispatch issued during start-up waits for the key to load.
_CREDENTIAL_WAIT_SEC = 5.0


class BridgeState(enum.Enum):
    STARTING = "starting"
    LIVE = "live"
    LIVE_NO_KEY = "live_no_key"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def _default_identity() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "player"


class AIBridge:
    """Owns the credential, the dispatch pipeline and the idle scheduler."""

    def __init__(
        self,
        failover: EndpointFailover,
        credential_store: CredentialStore,
        config: BridgeConfig | None = None,
        *,
        persona: PersonaState | None = None,
        history: HistoryStore | None = None,
        sentinel: SentinelQueue | None = None,
        assembler: ContextAssembler | None = None,
        geo_provider: Callable[[], GeoSnapshot | None] | None = None,
        game_phase_provider: Callable[[], GamePhase] | None = None,
        broadcast: ReplyCallback | None = None,
        identity: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        cfg = config or BridgeConfig.from_dict({})
        self.failover = failover
        self.credentials = credential_store
        self.persona = persona or PersonaState()
        self.history = history or HistoryStore(cfg.history_max_turns)
        self.sentinel = sentinel or SentinelQueue()
        self.assembler = assembler or ContextAssembler(cfg.max_process_names)
        self.identity = identity or _default_identity()
        self.idle_check_interval_sec = cfg.idle_check_interval_sec
        self.idle_threshold_sec = cfg.idle_threshold_sec
        self.context_turns = cfg.history_context_turns

        self._geo_provider = geo_provider
        self._game_phase_provider = game_phase_provider
        self._broadcast = broadcast
        self._clock = clock
        self._rng = rng

        self._lock = threading.Lock()
        self._state = BridgeState.STARTING
        self._api_key: str | None = None
        self._last_input = clock()
        self._last_biome: str | None = None
        self._last_processes: tuple[str, ...] = ()

        self._ready = threading.Event()
        self._stop = threading.Event()
        self._idle_thread: threading.Thread | None = None
        self._loader_thread: threading.Thread | None = None
        self._inflight: set[threading.Thread] = set()
        self._seq = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> BridgeState:
        with self._lock:
            return self._state

    def start(self) -> None:
        """Load the credential in the background and start the idle scheduler."""
        with self._lock:
            if self._loader_thread is not None or self._state is not BridgeState.STARTING:
                return
            self._loader_thread = threading.Thread(
                target=self._load_credential, name="credential-loader", daemon=True,
            )
            self._idle_thread = threading.Thread(
                target=self._idle_loop, name="idle-scheduler", daemon=True,
            )
        log.info("Starting AI bridge")
        self._loader_thread.start()
        self._idle_thread.start()

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until the credential load has finished."""
        return self._ready.wait(timeout)

    def _load_credential(self) -> None:
        try:
            key = self.credentials.load()
        except Exception:
            log.warning("Credential load failed — running offline", exc_info=True)
            key = None
        with self._lock:
            if self._state is BridgeState.STARTING:
                self._api_key = key
                self._state = BridgeState.LIVE if key else BridgeState.LIVE_NO_KEY
                state = self._state
            else:
                state = None
        self._ready.set()
        if state is BridgeState.LIVE:
            log.info("AI bridge is LIVE")
        elif state is BridgeState.LIVE_NO_KEY:
            log.info("AI bridge is LIVE without a key — offline replies only")

    def shutdown(self) -> None:
        """Stop the idle scheduler and refuse new dispatches.  Idempotent.

        Dispatches already in flight are allowed to finish.
        """
        with self._lock:
            if self._state in (BridgeState.SHUTTING_DOWN, BridgeState.TERMINATED):
                return
            self._state = BridgeState.SHUTTING_DOWN
            idle_thread = self._idle_thread
        self._stop.set()
        self._ready.set()
        if idle_thread is not None and idle_thread is not threading.current_thread():
            idle_thread.join(timeout=5)
        with self._lock:
            self._state = BridgeState.TERMINATED
        log.info("AI bridge terminated")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for in-flight dispatches.  Returns True if all finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._inflight)
            if not pending:
                return True
            for thread in pending:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not self._inflight

    # ------------------------------------------------------------------
    # Credential (UI-facing)
    # ------------------------------------------------------------------

    def has_credential(self) -> bool:
        with self._lock:
            return bool(self._api_key)

    def save_and_activate_credential(self, value: str) -> None:
        """Persist *value* and switch the bridge to the network path.

        Raises:
            ValueError: *value* is empty.
        """
        value = (value or "").strip()
        if not value:
            raise ValueError("API key is empty")
        try:
            self.credentials.save(value)
        except OSError:
            log.error("Could not persist API key; using it for this session only", exc_info=True)
        with self._lock:
            self._api_key = value
            if self._state in (BridgeState.STARTING, BridgeState.LIVE_NO_KEY):
                self._state = BridgeState.LIVE
        self._ready.set()
        log.info("API key activated")

    def validate_credential(self, candidate: str) -> bool:
        """Probe the endpoints with *candidate*; bridge state is untouched."""
        try:
            return self.failover.probe(candidate)
        except Exception:
            log.warning("Credential validation failed", exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Orchestrator-facing state
    # ------------------------------------------------------------------

    def inject_sentinel_observation(self, text: str) -> None:
        self.sentinel.push(text)

    def set_persona_phase(self, phase: PersonaPhase) -> None:
        self.persona.set_phase(phase)

    def advance_persona_phase(self, phase: PersonaPhase) -> bool:
        return self.persona.advance(phase)

    def get_persona_phase(self) -> PersonaPhase:
        return self.persona.phase

    def set_kill_switch_imminent(self, imminent: bool = True) -> None:
        self.persona.arm_kill_switch(imminent)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(
        self,
        message: str,
        player_id: str | None = None,
        biome: str | None = None,
        processes: Iterable[str] | None = None,
        callback: ReplyCallback | None = None,
    ) -> Future | None:
        """Queue *message* for a reply.

        Returns a Future resolving to the delivered text, or None when the
        bridge has been shut down.  *callback* defaults to the broadcast sink.
        """
        return self._submit(message, player_id, biome, processes, callback, idle_elapsed=0.0)

    def _submit(
        self,
        message: str,
        player_id: str | None,
        biome: str | None,
        processes: Iterable[str] | None,
        callback: ReplyCallback | None,
        idle_elapsed: float,
    ) -> Future | None:
        with self._lock:
            if self._state in (BridgeState.SHUTTING_DOWN, BridgeState.TERMINATED):
                log.debug("Dispatch refused: bridge is %s", self._state.value)
                return None
            self._last_input = self._clock()
            if biome is not None:
                self._last_biome = biome
            if processes is not None:
                self._last_processes = tuple(processes)
            biome = self._last_biome
            procs = self._last_processes

        future: Future = Future()
        future.set_running_or_notify_cancel()
        thread = threading.Thread(
            target=self._run_dispatch,
            args=(message, player_id or self.identity, biome, procs,
                  callback or self._broadcast, idle_elapsed, future),
            name=f"dispatch-{next(self._seq)}",
            daemon=True,
        )
        with self._lock:
            self._inflight.add(thread)
        thread.start()
        return future

    def _run_dispatch(
        self,
        message: str,
        player: str,
        biome: str | None,
        processes: tuple[str, ...],
        callback: ReplyCallback | None,
        idle_elapsed: float,
        future: Future,
    ) -> None:
        try:
            try:
                text = self._respond(message, player, biome, processes, idle_elapsed)
            except Exception:
                log.error("Dispatch failed unexpectedly — using offline reply", exc_info=True)
                text = self._offline(message, player, idle_elapsed)
            self._deliver(callback, text)
            future.set_result(text)
        finally:
            with self._lock:
                self._inflight.discard(threading.current_thread())

    def _respond(
        self,
        message: str,
        player: str,
        biome: str | None,
        processes: tuple[str, ...],
        idle_elapsed: float,
    ) -> str:
        api_key = self._current_key()
        if not api_key:
            return self._offline(message, player, idle_elapsed)

        persona, kill_switch = self.persona.snapshot()
        observations = self.sentinel.drain_all()
        context = self.assembler.assemble(
            message,
            observations,
            player_name=player,
            biome=biome,
            processes=processes,
            game_phase=self._game_phase(),
            persona_phase=persona,
            kill_switch=kill_switch,
            geo=self._geo(),
        )
        body = build_request_body(context, self.history.recent(self.context_turns))
        try:
            reply = self.failover.generate(api_key, body)
        except EndpointError as exc:
            log.warning("Remote reply unavailable (%s) — using offline reply", exc)
            return self._offline(message, player, idle_elapsed)
        self.history.append_exchange(context.user_text, reply)
        return reply

    def _offline(self, message: str, player: str, idle_elapsed: float) -> str:
        persona, kill_switch = self.persona.snapshot()
        return fallback(
            message, persona, kill_switch, player, self._geo(), idle_elapsed, rng=self._rng,
        )

    def _current_key(self) -> str | None:
        with self._lock:
            starting = self._state is BridgeState.STARTING and self._loader_thread is not None
        if starting:
            self._ready.wait(_CREDENTIAL_WAIT_SEC)
        with self._lock:
            return self._api_key

    def _geo(self) -> GeoSnapshot | None:
        if self._geo_provider is None:
            return None
        try:
            return self._geo_provider()
        except Exception:
            log.debug("Geo provider failed", exc_info=True)
            return None

    def _game_phase(self) -> GamePhase:
        if self._game_phase_provider is None:
            return GamePhase.ALLY
        try:
            return self._game_phase_provider()
        except Exception:
            log.debug("Game phase provider failed", exc_info=True)
            return GamePhase.ALLY

    @staticmethod
    def _deliver(callback: ReplyCallback | None, text: str) -> None:
        if callback is None:
            log.debug("No reply callback configured; dropping: %s", text)
            return
        try:
            callback(text)
        except Exception:
            log.warning("Reply callback raised", exc_info=True)

    # ------------------------------------------------------------------
    # Idle scheduler
    # ------------------------------------------------------------------

    def _idle_loop(self) -> None:
        while not self._stop.wait(self.idle_check_interval_sec):
            try:
                self.check_idle()
            except Exception:
                log.warning("Idle check failed", exc_info=True)

    def check_idle(self) -> Future | None:
        """Fire an idle-initiation dispatch if the player has been silent too long."""
        with self._lock:
            if self._state not in (BridgeState.LIVE, BridgeState.LIVE_NO_KEY):
                return None
            elapsed = self._clock() - self._last_input
            if elapsed < self.idle_threshold_sec:
                return None
            self._last_input = self._clock()
        log.info("No input for %.0fs — initiating conversation", elapsed)
        return self._submit(IDLE_MARKER, None, None, None, None, idle_elapsed=elapsed)

    # ------------------------------------------------------------------
    # Kill-switch
    # ------------------------------------------------------------------

    def final_words(self) -> Future | None:
        """Dispatch the unprompted last line spoken while the kill-switch is armed."""
        log.info("Delivering final words")
        return self._submit(FAREWELL_MARKER, None, None, None, None, idle_elapsed=0.0)
