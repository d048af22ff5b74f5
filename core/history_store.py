"""Conversation history — bounded log of confirmed remote exchanges.

Only exchanges that actually came back from the model are recorded;
fallback text never enters the history, otherwise the model would be
shown assistant turns it never produced.
"""

from __future__ import annotations

import collections
import threading
from typing import NamedTuple

MAX_TURNS = 20
CONTEXT_TURNS = 10

ROLE_USER = "user"
ROLE_MODEL = "model"


class ConversationTurn(NamedTuple):
    role: str
    text: str

    def to_content(self) -> dict:
        """Gemini ``contents`` entry for this turn."""
        return {"role": self.role, "parts": [{"text": self.text}]}


class HistoryStore:
    """Thread-safe ring of the last *max_turns* conversation turns."""

    def __init__(self, max_turns: int = MAX_TURNS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be positive")
        self.max_turns = max_turns
        self._lock = threading.Lock()
        self._turns: collections.deque[ConversationTurn] = collections.deque(maxlen=max_turns)

    def append(self, turn: ConversationTurn) -> None:
        if turn.role not in (ROLE_USER, ROLE_MODEL):
            raise ValueError(f"Unknown role: {turn.role!r}")
        with self._lock:
            self._turns.append(turn)

    def append_exchange(self, user_text: str, model_text: str) -> None:
        """Record a user turn and the model's reply as one adjacent pair."""
        with self._lock:
            self._turns.append(ConversationTurn(ROLE_USER, user_text))
            self._turns.append(ConversationTurn(ROLE_MODEL, model_text))

    def recent(self, n: int = CONTEXT_TURNS) -> list[ConversationTurn]:
        """Return the last *n* turns, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            turns = list(self._turns)
        return turns[-n:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)
