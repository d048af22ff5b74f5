"""Tests for director.phase_controller.PhaseController."""

from __future__ import annotations

import threading
import time
import unicodedata
from unittest.mock import MagicMock, call

from bridge.ai_bridge import AIBridge, BridgeState
from core.config import DirectorConfig
from core.phases import GamePhase, PersonaPhase
from director.effects import LoggingEffects
from director.phase_controller import GHOST_FILENAME, GHOST_NOTE, PhaseController, WorldFlags


def _controller(tmp_path, **overrides):
    cfg = {
        "poll_interval_sec": 0.01,
        "betrayal_grace_sec": 0.05,
        "echo_delay_sec": 0.01,
        "resource_dir": str(tmp_path),
    }
    cfg.update(overrides)
    bridge = MagicMock()
    effects = LoggingEffects()
    return PhaseController(bridge, effects, DirectorConfig.from_dict(cfg)), bridge, effects


def _wait_for(predicate, timeout=5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestTransitions:
    def test_starts_in_ally(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.current_phase is GamePhase.ALLY

    def test_forward_only(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.trigger_phase_change(GamePhase.BREACH) is True
        assert ctrl.trigger_phase_change(GamePhase.BREACH) is False
        assert ctrl.trigger_phase_change(GamePhase.ALLY) is False
        assert ctrl.current_phase is GamePhase.BREACH
        ctrl.shutdown()

    def test_may_skip_phases(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.trigger_phase_change(GamePhase.AFTERMATH) is True
        assert ctrl.trigger_phase_change(GamePhase.BETRAYAL) is False
        ctrl.shutdown()

    def test_concurrent_triggers_fire_once(self, tmp_path):
        ctrl, bridge, _ = _controller(tmp_path)
        results = []

        def worker():
            results.append(ctrl.trigger_phase_change(GamePhase.BREACH))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        bridge.set_persona_phase.assert_called_once_with(PersonaPhase.UNCANNY)
        ctrl.shutdown()


class TestPhaseEffects:
    def test_breach(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path)
        ctrl.trigger_phase_change(GamePhase.BREACH)
        ctrl.join(timeout=5)
        bridge.set_persona_phase.assert_called_once_with(PersonaPhase.UNCANNY)
        bridge.set_kill_switch_imminent.assert_not_called()
        assert sorted(effects.fired) == sorted(
            ["set_wallpaper", "play_sound", "drop_narrative_file", "ambient_echo"]
        )

    def test_breach_effects_fire_once(self, tmp_path):
        ctrl, _, effects = _controller(tmp_path)
        ctrl.trigger_phase_change(GamePhase.BREACH)
        ctrl.trigger_phase_change(GamePhase.BREACH)
        ctrl.join(timeout=5)
        assert effects.fired.count("set_wallpaper") == 1
        assert effects.fired.count("ambient_echo") == 1

    def test_breach_arguments(self, tmp_path):
        effects = MagicMock()
        ctrl = PhaseController(MagicMock(), effects, DirectorConfig.from_dict({
            "resource_dir": str(tmp_path), "echo_delay_sec": 0.01,
        }))
        ctrl.trigger_phase_change(GamePhase.BREACH)
        ctrl.join(timeout=5)
        effects.set_wallpaper.assert_called_once_with(str(tmp_path / "horror_wallpaper.jpg"))
        effects.play_sound.assert_called_once_with(str(tmp_path / "whisper.ogg"))
        effects.drop_narrative_file.assert_called_once_with(GHOST_FILENAME, GHOST_NOTE)

    def test_failing_effect_does_not_stop_others(self, tmp_path):
        effects = MagicMock()
        effects.set_wallpaper.side_effect = RuntimeError("no desktop")
        ctrl = PhaseController(MagicMock(), effects, DirectorConfig.from_dict({
            "resource_dir": str(tmp_path), "echo_delay_sec": 0.01,
        }))
        ctrl.trigger_phase_change(GamePhase.BREACH)
        ctrl.join(timeout=5)
        effects.play_sound.assert_called_once()
        effects.drop_narrative_file.assert_called_once()

    def test_betrayal_ordering(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path, betrayal_grace_sec=0.3)
        bridge.shutdown.side_effect = lambda: effects.fired.append("bridge.shutdown")
        ctrl.on_betrayal(lambda: effects.fired.append("hook"))

        assert ctrl.trigger_phase_change(GamePhase.BETRAYAL) is True
        assert bridge.mock_calls[:2] == [
            call.set_persona_phase(PersonaPhase.OBSESSION),
            call.set_kill_switch_imminent(True),
        ]
        bridge.final_words.assert_called_once_with()
        # Still inside the grace window.
        assert "bridge.shutdown" not in effects.fired

        ctrl.join(timeout=5)
        assert effects.fired == [
            "bridge.shutdown", "hook", "play_sound", "show_overlay", "show_fake_crash",
        ]

    def test_aftermath(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path)
        ctrl.trigger_phase_change(GamePhase.AFTERMATH)
        ctrl.join(timeout=5)
        assert effects.fired == ["spawn_persistent_trace"]
        bridge.set_persona_phase.assert_not_called()

    def test_shutdown_cancels_pending_finale(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path, betrayal_grace_sec=30)
        ctrl.trigger_phase_change(GamePhase.BETRAYAL)
        ctrl.shutdown(timeout=2)
        bridge.shutdown.assert_not_called()
        assert effects.fired == []


class TestWorldState:
    def test_hostility_triggers_breach_once(self, tmp_path):
        ctrl, bridge, _ = _controller(tmp_path)
        flags = WorldFlags(hostility_active=True)
        ctrl.poll_world_state(flags)
        ctrl.poll_world_state(flags)
        assert ctrl.current_phase is GamePhase.BREACH
        bridge.set_persona_phase.assert_called_once_with(PersonaPhase.UNCANNY)
        ctrl.shutdown()

    def test_hunt_wins_over_hostility(self, tmp_path):
        ctrl, bridge, _ = _controller(tmp_path)
        ctrl.poll_world_state(WorldFlags(hostility_active=True, hunt_active=True))
        assert ctrl.current_phase is GamePhase.BETRAYAL
        bridge.set_persona_phase.assert_called_once_with(PersonaPhase.OBSESSION)
        ctrl.shutdown()

    def test_concluded(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        ctrl.poll_world_state(WorldFlags(session_concluded=True))
        assert ctrl.current_phase is GamePhase.AFTERMATH
        ctrl.shutdown()

    def test_no_flags(self, tmp_path):
        ctrl, bridge, _ = _controller(tmp_path)
        ctrl.poll_world_state(WorldFlags())
        assert ctrl.current_phase is GamePhase.ALLY
        assert bridge.mock_calls == []

    def test_polling_thread(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        reads = []

        def read_flags():
            reads.append(1)
            if len(reads) == 1:
                raise RuntimeError("world not loaded")
            return WorldFlags(hostility_active=True)

        ctrl.start_polling(read_flags)
        assert _wait_for(lambda: ctrl.current_phase is GamePhase.BREACH)
        ctrl.shutdown()


class TestEntityHooks:
    def test_hostile_spawn_forces_betrayal_once(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.on_entity_spawned("AngryCoolPlayer303Entity") is True
        assert ctrl.current_phase is GamePhase.BETRAYAL
        assert ctrl.on_entity_spawned("AngryCoolPlayer303Entity") is False
        ctrl.shutdown()

    def test_other_spawn_ignored(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.on_entity_spawned("Zombie") is False
        assert ctrl.current_phase is GamePhase.ALLY

    def test_friendly_death_while_hostile(self, tmp_path):
        ctrl, _, _ = _controller(tmp_path)
        assert ctrl.on_entity_died("CoolPlayer303Entity", hostility_active=False) is False
        assert ctrl.on_entity_died("CoolPlayer303Entity", hostility_active=True) is True
        assert ctrl.current_phase is GamePhase.BREACH
        assert ctrl.on_entity_died("CoolPlayer303Entity", hostility_active=True) is False
        ctrl.shutdown()


class TestFinalWords:
    def test_corrupted_line_lands_before_shutdown(self, tmp_path):
        events: list[str] = []
        store = MagicMock()
        store.load.return_value = None
        bridge = AIBridge(MagicMock(), store, broadcast=events.append, identity="alex")
        bridge.start()
        assert bridge.wait_ready(5)

        real_shutdown = bridge.shutdown

        def shutdown():
            events.append("shutdown")
            real_shutdown()

        bridge.shutdown = shutdown
        ctrl = PhaseController(bridge, LoggingEffects(), DirectorConfig.from_dict({
            "betrayal_grace_sec": 0.2, "resource_dir": str(tmp_path),
        }))
        assert ctrl.on_entity_spawned("AngryCoolPlayer303Entity") is True
        ctrl.join(timeout=5)

        assert len(events) == 2
        assert any(unicodedata.combining(c) for c in events[0])
        assert events[1] == "shutdown"
        assert bridge.state is BridgeState.TERMINATED

    def test_finale_runs_when_bridge_refuses(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path)
        bridge.final_words.return_value = None
        ctrl.trigger_phase_change(GamePhase.BETRAYAL)
        ctrl.join(timeout=5)
        bridge.shutdown.assert_called_once()
        assert effects.fired == ["play_sound", "show_overlay", "show_fake_crash"]

    def test_finale_runs_when_dispatch_raises(self, tmp_path):
        ctrl, bridge, effects = _controller(tmp_path)
        bridge.final_words.side_effect = RuntimeError("bridge gone")
        assert ctrl.trigger_phase_change(GamePhase.BETRAYAL) is True
        ctrl.join(timeout=5)
        bridge.shutdown.assert_called_once()
