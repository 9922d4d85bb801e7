"""Orchestrator: host events and panel commands in, panel state out.

Wires the host's lifecycle notifications to the index and the group
reconciler, executes panel commands, persists the pinned order, and
debounces state-changed notifications to the presentation layer.

Handlers may suspend at any host call and other events get dispatched in
the meantime. Index updates are synchronous, so each one is atomic; when
an incremental update cannot be placed safely the orchestrator rebuilds.
"""

from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from .bus import Event, EventBus
from .commands import Command, CommandType
from .config import Config
from .debounce import Debouncer
from .error_handling import HostEntityMissing, HostError, HostErrorTracker
from .grouping import GroupCategory, GroupReconciler, category_for
from .host import BrowserHost
from .index import BookmarkIndex, flatten_tree
from .models import PanelState, TabInfo
from .store import ONBOARDING_DONE, SettingsStore
from .urls import is_internal_url

OTHER_BOOKMARKS_TITLES = ("other bookmarks",)

StateCallback = Callable[[PanelState], Awaitable[None]]


class Orchestrator:
    """Coordinates index, group reconciler, settings and host."""

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
        self.store = store
        self.bus = bus
        self.errors = HostErrorTracker()
        self.index = BookmarkIndex(max_parent_depth=config.max_parent_depth)
        self.groups = GroupReconciler(host, config.groups, self.errors)
        self.debouncer = Debouncer(config.debounce_seconds, self._notify_state_changed)
        self.root_folder_id: Optional[str] = None
        self._on_state_changed = on_state_changed
        self._started = False
        self.stats = defaultdict(int)

        self._event_handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "tab.created": self._on_tab_created,
            "tab.updated": self._on_tab_updated,
            "tab.removed": self._on_tab_removed,
            "tab.activated": self._on_tab_activated,
            "bookmark.created": self._on_bookmark_created,
            "bookmark.removed": self._on_bookmark_removed,
            "bookmark.changed": self._on_bookmark_changed,
            "bookmark.moved": self._on_bookmark_moved,
            "group.removed": self._on_group_removed,
        }

        self._command_handlers: Dict[CommandType, Callable[[Command], Awaitable[None]]] = {
            CommandType.GET_STATE: self._cmd_get_state,
            CommandType.ACTIVATE_BOOKMARK: self._cmd_activate_bookmark,
            CommandType.ACTIVATE_OPEN_TAB: self._cmd_activate_open_tab,
            CommandType.CLOSE_BOOKMARK_TAB: self._cmd_close_bookmark_tab,
            CommandType.CLOSE_OPEN_TAB: self._cmd_close_open_tab,
            CommandType.PROMOTE_TAB: self._cmd_promote_tab,
            CommandType.PIN_BOOKMARK: self._cmd_pin_bookmark,
            CommandType.UNPIN_BOOKMARK: self._cmd_unpin_bookmark,
            CommandType.REORDER_PINNED: self._cmd_reorder_pinned,
            CommandType.MOVE_BOOKMARK: self._cmd_move_bookmark,
            CommandType.REMOVE_BOOKMARK: self._cmd_remove_bookmark,
            CommandType.RENAME_BOOKMARK: self._cmd_rename_bookmark,
            CommandType.REPLACE_BOOKMARK_URL: self._cmd_replace_bookmark_url,
            CommandType.CREATE_FOLDER: self._cmd_create_folder,
            CommandType.REMOVE_FOLDER: self._cmd_remove_folder,
            CommandType.TOGGLE_FOLDER: self._cmd_toggle_folder,
            CommandType.COMPLETE_ONBOARDING: self._cmd_complete_onboarding,
        }
        missing = set(CommandType) - set(self._command_handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(c.value for c in missing)}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load settings, find the root folder, recover groups and rebuild."""
        logger.info("Starting orchestrator...")
        await self.store.load()
        await self.ensure_root_folder()
        if self.config.groups.enabled:
            await self.groups.recover_handles()
        await self.rebuild()
        self.bus.subscribe("*", self._on_event)
        self._started = True
        logger.info(f"Orchestrator started (root folder {self.root_folder_id})")

    async def stop(self) -> None:
        self.bus.unsubscribe("*", self._on_event)
        await self.debouncer.flush()
        self._started = False
        logger.info("Orchestrator stopped")

    async def ensure_root_folder(self) -> str:
        """Find or create the root folder under Other Bookmarks."""
        tree = await self.host.get_tree()
        if not tree:
            raise HostError("Host has no bookmark roots")
        other = next(
            (n for n in tree if n.title.lower() in OTHER_BOOKMARKS_TITLES),
            tree[1] if len(tree) > 1 else tree[0],
        )
        name = self.config.root_folder_name
        existing = next(
            (c for c in other.children or [] if c.is_folder and c.title == name),
            None,
        )
        if existing is not None:
            self.root_folder_id = existing.id
        else:
            created = await self.host.create_bookmark(other.id, name)
            logger.info(f"Created root folder '{name}' ({created.id})")
            self.root_folder_id = created.id
        return self.root_folder_id

    async def rebuild(self) -> None:
        """Full refresh from the host. Every incremental path falls back here."""
        if self.root_folder_id is None:
            await self.ensure_root_folder()
        try:
            subtree = await self.host.get_subtree(self.root_folder_id)
        except HostEntityMissing:
            logger.warning(f"Root folder {self.root_folder_id} vanished, recreating")
            await self.ensure_root_folder()
            subtree = await self.host.get_subtree(self.root_folder_id)
        tabs = await self.host.query_tabs()

        self.index.rebuild([subtree], tabs, self.store.pinned_ids(), self.root_folder_id)
        self.stats['rebuilds'] += 1
        if self.index.cleanup_pinned():
            logger.info("Pruned stale pinned bookmarks")
            await self._persist_pinned()

        for tab in tabs:
            await self._sync_tab_group(tab.id)
        self._schedule_notify()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def get_state(self) -> PanelState:
        """Fresh projection; never cached."""
        tabs = await self.host.query_tabs()
        active_tab_id = await self.host.get_active_tab_id()
        return self.index.get_state(active_tab_id, tabs, self._is_hidden)

    def panel_settings(self) -> Dict[str, Any]:
        return {
            'collapsed_folders': self.store.collapsed_folders(),
            'show_onboarding': not self.store.onboarding_done(),
        }

    def status(self) -> Dict[str, Any]:
        associations = self.index.associations()
        return {
            'started': self._started,
            'root_folder_id': self.root_folder_id,
            'bookmarks': len(self.index),
            'associations': len(associations),
            'pinned': len(self.index.pinned_ids),
            'groups': {
                category.value: {
                    'state': self.groups.state(category).value,
                    'handle': self.groups.handle(category),
                }
                for category in GroupCategory
            },
            'stats': dict(self.stats),
            'bus': self.bus.get_stats(),
            'errors': self.errors.get_error_summary(),
        }

    def _is_hidden(self, tab: TabInfo) -> bool:
        return is_internal_url(tab.url, self.config.hidden_url_prefixes)

    def _schedule_notify(self) -> None:
        if self._on_state_changed is not None:
            self.debouncer.trigger()

    async def _notify_state_changed(self) -> None:
        state = await self.get_state()
        self.stats['notifications'] += 1
        await self._on_state_changed(state)

    async def _persist_pinned(self) -> None:
        await self.store.set_pinned_ids(self.index.pinned_ids)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def _sync_tab_group(self, tab_id: int) -> None:
        """Put a tab in the group its bookmark implies, or out of managed groups."""
        if not self.config.groups.enabled:
            return
        bookmark_id = self.index.get_bookmark_id_for_tab(tab_id)
        bm = self.index.get(bookmark_id) if bookmark_id is not None else None
        if bm is not None:
            await self.groups.add_to_group(tab_id, category_for(bm))
        else:
            await self.groups.reconcile_orphan(tab_id, False)

    # ------------------------------------------------------------------
    # Host events
    # ------------------------------------------------------------------

    async def _on_event(self, event: Event) -> None:
        handler = self._event_handlers.get(event.type)
        if handler is None:
            return
        self.stats['events'] += 1
        try:
            await handler(event.data)
        except HostError as e:
            # Entities vanish mid-handler; the next event or rebuild repairs
            logger.warning(f"Host error while handling {event.type}: {e}")
            self.errors.record("orchestrator", event.type, e)
        self._schedule_notify()

    async def _on_tab_created(self, data: Dict[str, Any]) -> None:
        tab: TabInfo = data["tab"]
        if not self.index.is_tab_associated(tab.id) and tab.url:
            self.index.try_associate_by_url(tab.id, tab.url, tab)
        await self._sync_tab_group(tab.id)

    async def _on_tab_updated(self, data: Dict[str, Any]) -> None:
        tab_id = data["tab_id"]
        change = data.get("change", {})
        tab: Optional[TabInfo] = data.get("tab")

        if "url" in change:
            before = self.index.get_bookmark_id_for_tab(tab_id)
            after = self.index.handle_navigation(tab_id, change["url"], tab)
            if after != before:
                await self._sync_tab_group(tab_id)
        if "fav_icon_url" in change:
            self.index.update_tab_info(tab_id, fav_icon_url=change["fav_icon_url"])

    async def _on_tab_removed(self, data: Dict[str, Any]) -> None:
        self.index.dissociate_tab(data["tab_id"])

    async def _on_tab_activated(self, data: Dict[str, Any]) -> None:
        logger.debug(f"Tab {data['tab_id']} activated")

    async def _on_bookmark_created(self, data: Dict[str, Any]) -> None:
        bookmark_id = data["id"]
        if bookmark_id in self.index:
            # Created by one of our own commands, already indexed
            return
        node = data["node"]
        if not await self._is_under_root(node.parent_id):
            return

        tabs = await self.host.query_tabs()
        if not self.index.add_bookmark(node, tabs):
            logger.warning(f"Could not place bookmark {bookmark_id} incrementally, rebuilding")
            await self.rebuild()
            return

        for bm in flatten_tree([self.index.get(bookmark_id)]):
            if bm.tab_id is not None:
                await self._sync_tab_group(bm.tab_id)

    async def _on_bookmark_removed(self, data: Dict[str, Any]) -> None:
        await self._apply_removal(data["id"])

    async def _on_bookmark_changed(self, data: Dict[str, Any]) -> None:
        bookmark_id = data["id"]
        if bookmark_id not in self.index:
            return
        change = data.get("change", {})
        if "title" in change:
            self.index.update_bookmark_title(bookmark_id, change["title"])
        if "url" in change:
            old_tab_id = self.index.get_tab_id(bookmark_id)
            tabs = await self.host.query_tabs()
            new_tab_id = self.index.update_bookmark_url(bookmark_id, change["url"], tabs)
            if old_tab_id is not None and old_tab_id != new_tab_id:
                await self._rematch_released(old_tab_id, tabs)
            if new_tab_id is not None:
                await self._sync_tab_group(new_tab_id)

    async def _on_bookmark_moved(self, data: Dict[str, Any]) -> None:
        # New position relative to the root is not known incrementally
        await self.rebuild()

    async def _on_group_removed(self, data: Dict[str, Any]) -> None:
        self.groups.forget_group(data["group_id"])

    async def _apply_removal(self, bookmark_id: str) -> None:
        pinned_before = self.index.pinned_ids
        released = self.index.remove_bookmark(bookmark_id)
        if self.index.pinned_ids != pinned_before:
            await self._persist_pinned()
        if released:
            tabs = await self.host.query_tabs()
            for tab_id in released:
                await self._rematch_released(tab_id, tabs)

    async def _rematch_released(self, tab_id: int, tabs) -> None:
        """A tab lost its bookmark: let it match another one, then fix its group."""
        tab = next((t for t in tabs if t.id == tab_id), None)
        if tab is None:
            return
        if not self.index.is_tab_associated(tab_id):
            self.index.try_associate_by_url(tab_id, tab.url, tab)
        if self.config.groups.enabled and not self.index.is_tab_associated(tab_id):
            if tab.group_id is not None:
                await self.groups.remove_from_group(tab_id)
            return
        await self._sync_tab_group(tab_id)

    async def _is_under_root(self, bookmark_id: Optional[str]) -> bool:
        """Bounded walk toward the root; lookup failures mean "outside"."""
        if self.root_folder_id is None:
            return False
        current = bookmark_id
        depth = 0
        while current is not None and depth < self.config.max_parent_depth:
            if current == self.root_folder_id:
                return True
            if current in self.index:
                return self.index.is_under_root(current)
            try:
                node = await self.host.get_bookmark(current)
            except HostEntityMissing:
                return False
            current = node.parent_id
            depth += 1
        return False

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(self, command: Command) -> PanelState:
        """Run a panel command and return the resulting state."""
        self.stats['commands'] += 1
        handler = self._command_handlers[command.type]
        try:
            await handler(command)
        except HostError as e:
            logger.warning(f"Command {command.type.value} failed: {e}")
            self.errors.record("commands", command.type.value, e)
        if command.type is not CommandType.GET_STATE:
            self._schedule_notify()
        return await self.get_state()

    async def _cmd_get_state(self, command: Command) -> None:
        pass

    async def _cmd_activate_bookmark(self, command: Command) -> None:
        bm = self.index.get(command.bookmark_id)
        if bm is None or bm.is_folder:
            return
        if bm.tab_id is not None:
            try:
                await self.host.activate_tab(bm.tab_id)
                return
            except HostEntityMissing:
                self.index.dissociate(bm.id)

        tab = await self.host.create_tab(bm.url)
        self.index.associate(bm.id, tab.id, tab)
        await self._sync_tab_group(tab.id)

    async def _cmd_activate_open_tab(self, command: Command) -> None:
        await self.host.activate_tab(command.tab_id)

    async def _cmd_close_bookmark_tab(self, command: Command) -> None:
        tab_id = self.index.dissociate(command.bookmark_id)
        if tab_id is not None:
            await self.host.close_tab(tab_id)

    async def _cmd_close_open_tab(self, command: Command) -> None:
        await self.host.close_tab(command.tab_id)

    async def _cmd_promote_tab(self, command: Command) -> None:
        """Save an open tab as a bookmark, optionally straight into pinned."""
        tab = await self.host.get_tab(command.tab_id)
        if not tab.url:
            return

        bookmark_id = self.index.get_bookmark_id_for_tab(tab.id)
        if bookmark_id is None:
            parent_id = command.parent_id or self.root_folder_id
            node = await self.host.create_bookmark(
                parent_id,
                command.title or tab.title or tab.url,
                tab.url,
                command.index,
            )
            if not self.index.add_bookmark(node, []):
                await self.rebuild()
            self.index.associate(node.id, tab.id, tab)
            bookmark_id = node.id

        if command.pinned and self.index.pin(bookmark_id):
            await self._persist_pinned()
        await self._sync_tab_group(tab.id)

    async def _cmd_pin_bookmark(self, command: Command) -> None:
        if self.index.pin(command.bookmark_id):
            await self._persist_pinned()
            await self._regroup_bookmark(command.bookmark_id)

    async def _cmd_unpin_bookmark(self, command: Command) -> None:
        if self.index.unpin(command.bookmark_id):
            await self._persist_pinned()
            await self._regroup_bookmark(command.bookmark_id)

    async def _cmd_reorder_pinned(self, command: Command) -> None:
        if self.index.reorder_pinned(command.bookmark_id, command.index):
            await self._persist_pinned()

    async def _cmd_move_bookmark(self, command: Command) -> None:
        await self.host.move_bookmark(command.bookmark_id, command.parent_id, command.index)
        await self.rebuild()

    async def _cmd_remove_bookmark(self, command: Command) -> None:
        bm = self.index.get(command.bookmark_id)
        if bm is None or bm.is_folder:
            return
        await self.host.remove_bookmark(bm.id)
        await self._apply_removal(bm.id)

    async def _cmd_rename_bookmark(self, command: Command) -> None:
        if command.bookmark_id not in self.index:
            return
        await self.host.update_bookmark(command.bookmark_id, title=command.title)
        self.index.update_bookmark_title(command.bookmark_id, command.title)

    async def _cmd_replace_bookmark_url(self, command: Command) -> None:
        """Adopt the URL the bookmark's tab navigated away to."""
        bm = self.index.get(command.bookmark_id)
        if bm is None or bm.tab_id is None or not bm.tab_url or bm.tab_url == bm.url:
            return
        tab_id, url = bm.tab_id, bm.tab_url
        await self.host.update_bookmark(bm.id, url=url)
        tabs = [t for t in await self.host.query_tabs() if t.id == tab_id]
        self.index.update_bookmark_url(bm.id, url, tabs)
        self.index.associate(bm.id, tab_id, tabs[0] if tabs else None)
        await self._sync_tab_group(tab_id)

    async def _cmd_create_folder(self, command: Command) -> None:
        parent_id = command.parent_id or self.root_folder_id
        node = await self.host.create_bookmark(parent_id, command.title, None, command.index)
        if not self.index.add_bookmark(node, []):
            await self.rebuild()

    async def _cmd_remove_folder(self, command: Command) -> None:
        bm = self.index.get(command.bookmark_id)
        if bm is None or not bm.is_folder or bm.id == self.root_folder_id:
            return
        await self.host.remove_tree(bm.id)
        await self._apply_removal(bm.id)

    async def _cmd_toggle_folder(self, command: Command) -> None:
        await self.store.toggle_folder(command.bookmark_id)

    async def _cmd_complete_onboarding(self, command: Command) -> None:
        await self.store.set(ONBOARDING_DONE, True)

    async def _regroup_bookmark(self, bookmark_id: str) -> None:
        tab_id = self.index.get_tab_id(bookmark_id)
        if tab_id is not None:
            await self._sync_tab_group(tab_id)
