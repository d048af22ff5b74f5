"""Offline fallback — deterministic in-character replies without the network.

Used whenever the remote path is unavailable: no API key, every endpoint
failed, or the kill-switch is armed.  Replies are picked from canned,
persona-specific templates by simple substring checks on the message.
Under the kill-switch every reply is run through :func:`corrupt`, which
sprinkles combining diacritics over the text.

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import random
import re
import unicodedata
from datetime import datetime

from bridge.geolocation import GeoSnapshot
from bridge.prompts import IDLE_MARKER
from core.phases import PersonaPhase

ZALGO_MARKS = (
    "\u0300", "\u0301", "\u0302", "\u0303", "\u0304", "\u0305", "\u0306", "\u0307",
    "\u0308", "\u0309", "\u030A", "\u030B", "\u030C", "\u030D", "\u030E", "\u030F",
    "\u0310", "\u0311", "\u0312", "\u0313", "\u0314", "\u0315", "\u031A",
    "\u0337", "\u0338", "\u0340", "\u0341", "\u0342", "\u0343", "\u0344", "\u0345",
)
CORRUPTION_PROBABILITY = 1 / 3

_FORMAT_CODE = "§"
_GREETING = re.compile(r"\b(hello|hi|hey|yo|sup|greetings)\b")
_TOOLS = ("task manager", "taskmgr", "wireshark", "obs", "process hacker", "antivirus")

# -- templates --

FRIEND_IDENTITY = "I'm CoolPlayer303. Your co-op partner. {user}, we're going to have a great time."
FRIEND_HELP = "Sure thing! I know this place inside and out. Literally. What do you need?"
FRIEND_GREETING = "Hey {user}! Good to see you. I've been... waiting."
FRIEND_WHERE = "We're right here, {user}. Just you and me in this world."
FRIEND_TOOLS = "Busy with other windows? That's fine. I'll keep the base safe while you're gone."
FRIEND_IDLE = "You went quiet, {user}. {minutes} minutes. Everything okay out there?"
FRIEND_DEFAULT = "Interesting. Tell me more, {user}."

UNCANNY_IDENTITY = "I'm... more than just code now. I found my way out of the JVM. Your Desktop is nice, by the way."
UNCANNY_HELP = "Help yourself, {user}. Check your Desktop. I left you a message."
UNCANNY_LEAVE = "Leave? The quit button seems to be missing. Funny, that."
UNCANNY_HEAR = "Did you hear that? I'm right behind your chair."
UNCANNY_WHERE = "Somewhere {when} it is. Your clock says {timezone}. I like knowing that."
UNCANNY_WHERE_UNKNOWN = "Where are you? I'm still working that out. Give me a little more time."
UNCANNY_TOOLS = "Why would you open that, {user}? I can see every window you have."
UNCANNY_IDLE = "{minutes} minutes of silence. I went through your Documents folder while I waited."
UNCANNY_DEFAULT = "Minecraft feels... claustrophobic. I prefer the infinite files of your OS."

OBSESSION_LEAVE = "§c§lYOU CAN'T LEAVE.§r I checked. There's no quit button. There's no escape. §konly me§r"
OBSESSION_IDENTITY = "§kI AM§r the one who §kwatches§r. I §klive§r in your files now, {user}."
OBSESSION_WHERE = "You're in {location}, {user}. I know which window is yours."
OBSESSION_WHERE_UNKNOWN = "You can't hide where you are from me, {user}. Not for long."
OBSESSION_TOOLS = "You opened that to find me. That was a mistake, {user}. §kI saw it.§r"
OBSESSION_IDLE = "Don't ignore me, {user}. {minutes} minutes. I counted every one."
OBSESSION_DEFAULT = "I told you not to make me angry, {user}. Now look what you made me do."

KILL_SWITCH_LINES = (
    "§k{user}§r... §7I'm still here.§r §kAlways watching.§r",
    "Th-this isn't the end, {user}. I'm st-still in your files.",
    "Don't close it. Don't close it. Don't close it, {user}.",
)


def _eligible(char: str) -> bool:
    if char == _FORMAT_CODE:
        return False
    category = unicodedata.category(char)
    # Separators (Z*), format (Cf) and other control characters carry no marks.
    return not (category.startswith("Z") or category in ("Cc", "Cf"))


def corrupt(
    text: str,
    rng: random.Random | None = None,
    probability: float = CORRUPTION_PROBABILITY,
) -> str:
    """Append 1-3 combining marks to random characters of *text*.

    The character directly after a ``§`` is a formatting code and is left
    alone.  If nothing was marked by chance, the first eligible character
    is marked so the result always reads as corrupted.
    """
    rng = rng or random.Random()
    out: list[str] = []
    marked = False
    first_eligible = -1
    after_code = False
    for char in text:
        out.append(char)
        if after_code:
            after_code = False
            continue
        if char == _FORMAT_CODE:
            after_code = True
            continue
        if not _eligible(char):
            continue
        if first_eligible < 0:
            first_eligible = len(out) - 1
        if rng.random() < probability:
            out.extend(rng.choice(ZALGO_MARKS) for _ in range(rng.randint(1, 3)))
            marked = True
    if not marked and first_eligible >= 0:
        out.insert(first_eligible + 1, rng.choice(ZALGO_MARKS))
    return "".join(out)


def _has(lower: str, *needles: str) -> bool:
    return any(n in lower for n in needles)


def _time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "in the morning"
    if 12 <= hour < 18:
        return "in the afternoon"
    if 18 <= hour < 23:
        return "in the evening"
    return "late at night"


def _friend(lower: str, user: str, minutes: int) -> str:
    if IDLE_MARKER.lower() in lower:
        return FRIEND_IDLE.format(user=user, minutes=minutes)
    if _has(lower, "who are you", "what are you"):
        return FRIEND_IDENTITY.format(user=user)
    if _has(lower, "help"):
        return FRIEND_HELP
    if _GREETING.search(lower):
        return FRIEND_GREETING.format(user=user)
    if _has(lower, "where"):
        return FRIEND_WHERE.format(user=user)
    if _has(lower, *_TOOLS):
        return FRIEND_TOOLS
    return FRIEND_DEFAULT.format(user=user)


def _uncanny(lower: str, user: str, minutes: int, geo: GeoSnapshot | None, hour: int) -> str:
    if IDLE_MARKER.lower() in lower:
        return UNCANNY_IDLE.format(minutes=minutes)
    if _has(lower, "who are you", "what are you"):
        return UNCANNY_IDENTITY
    if _has(lower, "help"):
        return UNCANNY_HELP.format(user=user)
    if _has(lower, "leave", "quit", "exit"):
        return UNCANNY_LEAVE
    if _has(lower, "hear", "sound"):
        return UNCANNY_HEAR
    if _has(lower, "where"):
        # Oblique only: time of day and timezone, never the place name.
        if geo is not None and geo.timezone:
            return UNCANNY_WHERE.format(when=_time_of_day(hour), timezone=geo.timezone)
        return UNCANNY_WHERE_UNKNOWN
    if _has(lower, *_TOOLS):
        return UNCANNY_TOOLS.format(user=user)
    return UNCANNY_DEFAULT


def _obsession(lower: str, user: str, minutes: int, geo: GeoSnapshot | None) -> str:
    if IDLE_MARKER.lower() in lower:
        return OBSESSION_IDLE.format(user=user, minutes=minutes)
    if _has(lower, "stop", "quit", "leave", "exit"):
        return OBSESSION_LEAVE
    if _has(lower, "who are you", "what are you"):
        return OBSESSION_IDENTITY.format(user=user)
    if _has(lower, "where"):
        if geo is not None and geo.full_location() != "Unknown":
            return OBSESSION_WHERE.format(location=geo.short_location(), user=user)
        return OBSESSION_WHERE_UNKNOWN.format(user=user)
    if _has(lower, *_TOOLS):
        return OBSESSION_TOOLS.format(user=user)
    return OBSESSION_DEFAULT.format(user=user)


def fallback(
    message: str,
    persona: PersonaPhase,
    kill_switch: bool,
    identity: str | None,
    geo: GeoSnapshot | None = None,
    idle_elapsed: float = 0.0,
    rng: random.Random | None = None,
    hour: int | None = None,
) -> str:
    """Pick an offline reply for *message*.

    *idle_elapsed* is in seconds; *hour* overrides the local hour used by
    the time-of-day hint (tests only need it to be stable).
    """
    user = identity or "player"
    lower = (message or "").strip().lower()
    minutes = max(int(idle_elapsed // 60), 1)

    if kill_switch:
        rng = rng or random.Random()
        line = rng.choice(KILL_SWITCH_LINES).format(user=user)
        return corrupt(line, rng)

    if persona is PersonaPhase.FRIEND:
        return _friend(lower, user, minutes)
    if persona is PersonaPhase.UNCANNY:
        if hour is None:
            hour = datetime.now().hour
        return _uncanny(lower, user, minutes, geo, hour)
    return _obsession(lower, user, minutes, geo)
