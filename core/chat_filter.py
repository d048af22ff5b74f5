"""Chat filter — decides which chat lines never reach the AI bridge.

Scripted dialogue in the host already answers a fixed set of phrases;
sending those lines to the model as well would produce a second reply in
chat and cost a remote call.  Matching is a plain substring test on the
lowercased, trimmed message (not token matching), so "hello there" hits
"hello".

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

from core.phases import GamePhase

# Phrases answered by scripted dialogue, grouped by language.
SCRIPTED_PHRASES: frozenset[str] = frozenset({
    # English
    "hello",
    "hey coolplayer",
    "who are you",
    "what are you",
    "are you real",
    "where am i",
    "what do you want",
    "leave me alone",
    # Russian
    "привет",
    "кто ты",
    "что ты такое",
    "где я",
    "чего ты хочешь",
    "оставь меня",
    # Spanish
    "hola",
    "quién eres",
    "quien eres",
    "dónde estoy",
    # Portuguese
    "olá",
    "quem é você",
    "quem e voce",
    # German
    "hallo",
    "wer bist du",
    "wo bin ich",
    # French
    "bonjour",
    "qui es-tu",
    "qui es tu",
    "où suis-je",
})

# Game phases in which chat is routed to the bridge at all.
ROUTED_PHASES: frozenset[GamePhase] = frozenset({GamePhase.ALLY, GamePhase.BREACH})


def is_scripted(message: str, phrases: frozenset[str] = SCRIPTED_PHRASES) -> bool:
    """Return True if *message* contains a scripted trigger phrase."""
    text = (message or "").strip().lower()
    if not text:
        return False
    return any(phrase in text for phrase in phrases)


def should_route(message: str, phase: GamePhase, npc_nearby: bool = True) -> bool:
    """Single routing policy for inbound chat.

    A line is sent to the bridge only while the game is in ALLY or
    BREACH, the friendly entity is within earshot, and scripted dialogue
    does not already cover it.
    """
    if phase not in ROUTED_PHASES:
        return False
    if not npc_nearby:
        return False
    if not (message or "").strip():
        return False
    return not is_scripted(message)
