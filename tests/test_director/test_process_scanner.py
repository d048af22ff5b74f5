"""Tests for director.process_scanner."""

from __future__ import annotations

import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import psutil

from core.phases import PersonaPhase
from director.process_scanner import ProcessScanner, classify, snapshot_process_names


class TestClassify:
    def test_categories(self):
        assert classify("Taskmgr.exe").name == "monitor"
        assert classify("obs64.exe").name == "recorder"
        assert classify("Code.exe").name == "ide"
        assert classify("firefox").name == "browser"

    def test_unmatched(self):
        assert classify("svchost.exe") is None


class TestSnapshot:
    def test_reads_names(self, monkeypatch):
        procs = [
            SimpleNamespace(info={"name": "chrome.exe"}),
            SimpleNamespace(info={"name": None}),
            SimpleNamespace(info={"name": "java"}),
        ]
        monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: iter(procs))
        assert snapshot_process_names() == ["chrome.exe", "java"]


class TestProcessScanner:
    def test_pushes_hints_for_matches(self):
        bridge = MagicMock()
        scanner = ProcessScanner(bridge, snapshot=lambda: ["chrome.exe", "svchost.exe", "Taskmgr.exe"])
        hints = scanner.scan_once()
        assert len(hints) == 2
        assert "chrome.exe" in hints[0] and "Taskmgr.exe" in hints[1]
        assert bridge.inject_sentinel_observation.call_count == 2
        bridge.advance_persona_phase.assert_called_once_with(PersonaPhase.UNCANNY)

    def test_each_name_reported_once(self):
        bridge = MagicMock()
        names = ["chrome.exe"]
        scanner = ProcessScanner(bridge, snapshot=lambda: names)
        scanner.scan_once()
        names[:] = ["CHROME.EXE"]
        assert scanner.scan_once() == []
        assert bridge.inject_sentinel_observation.call_count == 1

    def test_inactive_scans_but_stays_quiet(self):
        bridge = MagicMock()
        scanner = ProcessScanner(bridge, snapshot=lambda: ["chrome.exe"], active=lambda: False)
        assert scanner.scan_once() == []
        assert scanner.latest == ["chrome.exe"]
        bridge.inject_sentinel_observation.assert_not_called()

    def test_latest_is_a_copy(self):
        scanner = ProcessScanner(MagicMock(), snapshot=lambda: ["a"])
        scanner.scan_once()
        scanner.latest.append("b")
        assert scanner.latest == ["a"]

    def test_background_thread(self):
        bridge = MagicMock()
        scanner = ProcessScanner(bridge, snapshot=lambda: ["wireshark"], interval=0.01)
        scanner.start()
        deadline = time.monotonic() + 5
        while not bridge.inject_sentinel_observation.called and time.monotonic() < deadline:
            time.sleep(0.01)
        scanner.stop()
        bridge.inject_sentinel_observation.assert_called_once()

    def test_snapshot_errors_do_not_kill_loop(self):
        bridge = MagicMock()
        calls = []

        def snapshot():
            calls.append(1)
            if len(calls) == 1:
                raise psutil.AccessDenied()
            return ["obs64.exe"]

        scanner = ProcessScanner(bridge, snapshot=snapshot, interval=0.01)
        scanner.start()
        deadline = time.monotonic() + 5
        while not bridge.inject_sentinel_observation.called and time.monotonic() < deadline:
            time.sleep(0.01)
        scanner.stop()
        assert bridge.inject_sentinel_observation.called
