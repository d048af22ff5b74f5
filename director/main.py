"""Console host — wires the bridge, phase controller and scanner together.

Stands in for the game runtime: each stdin line is a chat message from
the player, replies are printed as ``<CoolPlayer303> ...``, and a few
slash commands flip the world-state flags the controller polls.

    /hostile        set the "hostility active" flag
    /hunt           set the "hunt event active" flag
    /end            set the "session concluded" flag
    /spawn NAME     entity spawned (the hostile one forces BETRAYAL)
    /died NAME      entity died
    /biome NAME     change the reported biome
    /key VALUE      validate and activate an API key
    /status         print phase, persona and bridge state
    /quit           exit
"""

from __future__ import annotations

import logging
import os
import pathlib
import sys
import threading
from typing import NamedTuple, TextIO

from bridge.ai_bridge import AIBridge
from bridge.endpoint_failover import EndpointFailover
from bridge.geolocation import GeoLocator
from core.chat_filter import should_route
from core.config import BridgeConfig, DirectorConfig, load_config
from core.credential_store import CredentialStore
from core.phases import GamePhase
from director.effects import default_registry
from director.phase_controller import PhaseController, WorldFlags
from director.process_scanner import ProcessScanner

log = logging.getLogger("sentient.main")

ENTITY_PREFIX = "<CoolPlayer303>"


class Session(NamedTuple):
    bridge: AIBridge
    controller: PhaseController
    scanner: ProcessScanner
    geo: GeoLocator


class ConsoleWorld:
    """Mutable world-state flags, set by console commands and read by the poller."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flags = WorldFlags()
        self.biome = "minecraft:plains"

    def set(self, **changes: bool) -> None:
        with self._lock:
            self._flags = self._flags._replace(**changes)

    def read(self) -> WorldFlags:
        with self._lock:
            return self._flags


def build_session(cfg: dict, broadcast, identity: str | None = None) -> Session:
    """Construct and cross-link every component from the raw config dict."""
    bcfg = BridgeConfig.from_dict(cfg.get("bridge"))
    dcfg = DirectorConfig.from_dict(cfg.get("director"))

    geo = GeoLocator()
    failover = EndpointFailover(bcfg.models, bcfg.endpoint_base, bcfg.timeout_sec)
    store = CredentialStore(bcfg.credential_path or None)

    holder: dict[str, PhaseController] = {}
    bridge = AIBridge(
        failover,
        store,
        bcfg,
        geo_provider=geo.cached,
        game_phase_provider=lambda: holder["controller"].current_phase,
        broadcast=broadcast,
        identity=identity,
    )
    controller = PhaseController(bridge, default_registry().detect(), dcfg)
    holder["controller"] = controller

    scanner = ProcessScanner(
        bridge,
        interval=dcfg.scan_interval_sec,
        active=lambda: controller.current_phase is GamePhase.ALLY,
    )
    controller.on_betrayal(scanner.stop)
    return Session(bridge, controller, scanner, geo)


def _print_reply(out: TextIO):
    lock = threading.Lock()

    def _broadcast(text: str) -> None:
        with lock:
            out.write(f"{ENTITY_PREFIX} {text}\n")
            out.flush()

    return _broadcast


def handle_line(line: str, session: Session, world: ConsoleWorld, out: TextIO) -> bool:
    """Process one console line.  Returns False when the console should exit."""
    line = line.strip()
    if not line:
        return True
    bridge, controller = session.bridge, session.controller

    if line.startswith("/"):
        cmd, _, arg = line.partition(" ")
        arg = arg.strip()
        if cmd == "/quit":
            return False
        if cmd == "/hostile":
            world.set(hostility_active=True)
        elif cmd == "/hunt":
            world.set(hunt_active=True)
        elif cmd == "/end":
            world.set(session_concluded=True)
        elif cmd == "/spawn" and arg:
            controller.on_entity_spawned(arg)
        elif cmd == "/died" and arg:
            controller.on_entity_died(arg, world.read().hostility_active)
        elif cmd == "/biome" and arg:
            world.biome = arg
        elif cmd == "/key" and arg:
            if bridge.validate_credential(arg):
                bridge.save_and_activate_credential(arg)
                out.write("Entity successfully integrated.\n")
            else:
                out.write("ACCESS DENIED\n")
        elif cmd == "/status":
            out.write(
                f"phase={controller.current_phase.name} "
                f"persona={bridge.get_persona_phase().name} "
                f"bridge={bridge.state.value} key={'yes' if bridge.has_credential() else 'no'}\n"
            )
        else:
            out.write(f"Unknown command: {cmd}\n")
        out.flush()
        return True

    if should_route(line, controller.current_phase):
        bridge.dispatch(line, biome=world.biome, processes=session.scanner.latest)
    else:
        log.debug("Not routed to the bridge: %r", line)
    return True


def run(project_root: pathlib.Path, stdin: TextIO = sys.stdin, out: TextIO = sys.stdout) -> None:
    cfg = load_config(project_root)
    session = build_session(cfg, _print_reply(out), os.environ.get("SENTIENT_PLAYER") or None)
    world = ConsoleWorld()

    session.geo.fetch_async()
    session.bridge.start()
    session.scanner.start()
    session.controller.start_polling(world.read)
    log.info("Console host ready — type to chat, /quit to exit")

    try:
        for line in stdin:
            if not handle_line(line, session, world, out):
                break
    except KeyboardInterrupt:
        pass
    finally:
        session.scanner.stop()
        session.bridge.shutdown()
        session.bridge.join(timeout=5)
        session.controller.shutdown()
        log.info("Console host offline")


def main() -> None:
    debug = os.environ.get("SENTIENT_DEBUG", "").strip() not in ("", "0", "false")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    if debug:
        logging.getLogger("sentient").info("Debug mode enabled (SENTIENT_DEBUG=1)")
    project_root = pathlib.Path(__file__).resolve().parent.parent
    run(project_root)
