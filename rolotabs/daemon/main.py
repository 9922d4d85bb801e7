"""Daemon wiring for Rolotabs."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .bus import EventBus
from .commands import Command
from .config import Config
from .error_handling import CommandError
from .host import BrowserHost
from .memory_host import InMemoryHost
from .models import PanelState
from .orchestrator import Orchestrator, StateCallback
from .store import SettingsStore


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Install the stderr sink and, when asked, a rotating file sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG"
        )


class RolotabsDaemon:
    """Owns the event bus and the orchestrator for one host."""

    def __init__(
        self,
        config: Config,
        host: BrowserHost,
        store: SettingsStore,
        bus: EventBus,
        on_state_changed: Optional[StateCallback] = None,
    ):
        self.config = config
        self.host = host
        self.event_bus = bus
        self.orchestrator = Orchestrator(config, host, store, bus, on_state_changed)

    async def start(self) -> None:
        logger.info("Starting Rolotabs daemon...")
        await self.event_bus.start()
        await self.orchestrator.start()
        await self.settle()
        logger.info("Rolotabs daemon started")

    async def stop(self) -> None:
        logger.info("Stopping Rolotabs daemon...")
        await self.settle()
        await self.orchestrator.stop()
        await self.event_bus.stop()
        logger.info("Rolotabs daemon stopped")

    async def settle(self) -> None:
        """Wait until every queued host event has been handled."""
        await self.event_bus.join()

    async def execute(self, command: Command) -> PanelState:
        await self.orchestrator.execute(command)
        await self.settle()
        return await self.orchestrator.get_state()

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.event_bus.is_running else "stopped",
            "version": "0.1.0",
            "orchestrator": self.orchestrator.status(),
        }


class ScenarioRunner:
    """
    Drives a daemon over an in-memory host from a scenario dict.

    A scenario has the host snapshot (`bookmarks`, `tabs`, `active_tab`),
    an optional `pinned` list of bookmark titles and a list of `steps`:

        - open: https://example.com          (or {url, title, opener})
        - navigate: {tab: 1, url: https://example.com/next}
        - favicon: {tab: 1, url: https://example.com/icon.png}
        - close: 1
        - activate: 1
        - command: {type: pin_bookmark, bookmark: News}

    Command steps may name bookmarks and folders by title (`bookmark`,
    `parent`) instead of by id.
    """

    def __init__(self, config: Config, scenario: Dict[str, Any], store: Optional[SettingsStore] = None):
        self.config = config
        self.scenario = scenario
        self.bus = EventBus()
        self.host = InMemoryHost.from_snapshot(scenario, root_title=config.root_folder_name, bus=self.bus)
        self.daemon = RolotabsDaemon(config, self.host, store or SettingsStore(), self.bus)

    async def run(self) -> PanelState:
        await self.daemon.start()
        try:
            for title in self.scenario.get("pinned", []):
                await self.daemon.execute(Command(type="pin_bookmark", bookmark_id=self._bookmark_id(title)))
            for step in self.scenario.get("steps", []):
                await self.apply_step(step)
            return await self.daemon.orchestrator.get_state()
        finally:
            await self.daemon.stop()

    async def apply_step(self, step: Dict[str, Any]) -> None:
        if not isinstance(step, dict) or len(step) != 1:
            raise CommandError(f"Scenario step must have exactly one action: {step!r}")
        (action, args), = step.items()

        if action == "open":
            if isinstance(args, str):
                args = {"url": args}
            self.host.open_tab(args["url"], title=args.get("title"), opener_tab_id=args.get("opener"))
        elif action == "navigate":
            self.host.navigate(args["tab"], args["url"], title=args.get("title"))
        elif action == "favicon":
            self.host.set_favicon(args["tab"], args["url"])
        elif action == "close":
            await self.host.close_tab(args)
        elif action == "activate":
            await self.host.activate_tab(args)
        elif action == "command":
            await self.daemon.execute(self._command(args))
            return
        else:
            raise CommandError(f"Unknown scenario action: {action}")
        await self.daemon.settle()

    def _command(self, args: Dict[str, Any]) -> Command:
        data = dict(args)
        if "bookmark" in data:
            data["bookmark_id"] = self._bookmark_id(data.pop("bookmark"))
        if "parent" in data:
            data["parent_id"] = self._bookmark_id(data.pop("parent"))
        if "tab" in data:
            data["tab_id"] = data.pop("tab")
        return Command.from_dict(data)

    def _bookmark_id(self, title: str) -> str:
        found: List = self.host.find_bookmarks(title=title)
        if not found:
            raise CommandError(f"No bookmark titled {title!r}")
        return found[0].id


async def run_scenario(
    config: Config,
    scenario: Dict[str, Any],
    store: Optional[SettingsStore] = None,
) -> PanelState:
    """Run a scenario to completion and return the final panel state."""
    return await ScenarioRunner(config, scenario, store).run()
