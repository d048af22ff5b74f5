"""Context assembler — resolves the system instruction and outbound text.

Everything the model sees is built here: the persona template with the
player's identity, biome, notable processes, time, phases and location
substituted in, plus the user turn carrying any queued sentinel
observations ahead of the triggering message.  Missing inputs are
replaced with explicit placeholders; assembly never raises on absent
context.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, NamedTuple, Sequence

from bridge.geolocation import GeoSnapshot
from bridge.prompts import (
    FAREWELL_MARKER,
    GEO_POLICY,
    IDLE_MARKER,
    NO_PROCESSES,
    PHASE_HINTS,
    SENTINEL_TAG,
    SYSTEM_PROMPT,
    UNKNOWN,
    UNRESOLVED,
)
from core.history_store import ConversationTurn
from core.phases import GamePhase, PersonaPhase

MAX_PROCESS_NAMES = 15

# Substrings that make a process name worth showing to the model.
INTERESTING_PROCESSES = (
    "chrome", "firefox", "edge", "opera", "brave",
    "discord", "steam", "obs", "spotify", "vlc", "telegram", "whatsapp",
    "code", "idea", "pycharm", "notepad", "explorer",
    "taskmgr", "wireshark", "procexp", "processhacker",
    "minecraft", "java", "powershell", "cmd", "terminal",
)


class AssembledContext(NamedTuple):
    system_instruction: str
    user_text: str


def interesting_processes(
    names: Iterable[str] | None,
    limit: int = MAX_PROCESS_NAMES,
) -> list[str]:
    """Deduplicated (case-insensitive) notable process names, first-seen order."""
    result: list[str] = []
    seen: set[str] = set()
    for name in names or ():
        if not name:
            continue
        lower = name.strip().lower()
        if lower in seen:
            continue
        if any(token in lower for token in INTERESTING_PROCESSES):
            seen.add(lower)
            result.append(name.strip())
            if len(result) >= limit:
                break
    return result


def compose_user_text(observations: Sequence[str], message: str) -> str:
    """Sentinel observations (tagged) followed by the triggering message."""
    tagged = "".join(SENTINEL_TAG.format(obs) + " " for obs in observations)
    return tagged + (message or "")


class ContextAssembler:
    """Builds the resolved prompt payload for one outbound request."""

    def __init__(self, max_process_names: int = MAX_PROCESS_NAMES, clock=datetime.now) -> None:
        self.max_process_names = max_process_names
        self._clock = clock

    def system_instruction(
        self,
        player_name: str | None,
        biome: str | None,
        processes: Iterable[str] | None,
        game_phase: GamePhase,
        persona_phase: PersonaPhase,
        kill_switch: bool,
        geo: GeoSnapshot | None,
    ) -> str:
        procs = interesting_processes(processes, self.max_process_names)
        if geo is None:
            location = timezone = country = coordinates = ip = UNRESOLVED
        else:
            location = geo.full_location() if geo.full_location() != "Unknown" else UNKNOWN
            timezone = geo.timezone or UNKNOWN
            country = geo.country or UNKNOWN
            coordinates = f"{geo.lat:.2f}, {geo.lon:.2f}"
            ip = geo.ip or UNKNOWN
        return SYSTEM_PROMPT.format(
            geo_policy=GEO_POLICY[persona_phase],
            player_name=player_name or UNKNOWN,
            biome=biome or UNKNOWN,
            process_list=", ".join(procs) if procs else NO_PROCESSES,
            system_time=self._clock().strftime("%H:%M, %A"),
            game_phase=game_phase.name,
            persona_phase=persona_phase.name,
            kill_switch="YES" if kill_switch else "no",
            geo_location=location,
            geo_timezone=timezone,
            geo_country=country,
            geo_coordinates=coordinates,
            geo_ip=ip,
            phase_hint=PHASE_HINTS[game_phase],
            idle_marker=IDLE_MARKER,
            farewell_marker=FAREWELL_MARKER,
        )

    def assemble(
        self,
        message: str,
        observations: Sequence[str],
        *,
        player_name: str | None = None,
        biome: str | None = None,
        processes: Iterable[str] | None = None,
        game_phase: GamePhase = GamePhase.ALLY,
        persona_phase: PersonaPhase = PersonaPhase.FRIEND,
        kill_switch: bool = False,
        geo: GeoSnapshot | None = None,
    ) -> AssembledContext:
        system = self.system_instruction(
            player_name, biome, processes, game_phase, persona_phase, kill_switch, geo,
        )
        return AssembledContext(system, compose_user_text(observations, message))


def build_request_body(
    context: AssembledContext,
    history: Sequence[ConversationTurn] = (),
) -> dict:
    """Gemini ``generateContent`` request body: instruction, history, current turn."""
    contents = [turn.to_content() for turn in history]
    contents.append({"role": "user", "parts": [{"text": context.user_text}]})
    return {
        "systemInstruction": {"parts": [{"text": context.system_instruction}]},
        "contents": contents,
    }
