"""In-memory browser host.

Behaves like a browser closely enough to drive the whole daemon without
one: bookmark tree with the usual three roots, tabs in strip order, tab
groups that keep their members contiguous and disappear when empty. Every
mutation emits the notification a browser would, so changes made by the
daemon itself come back to it as events, just like in the real thing.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from loguru import logger

from .bus import Event, EventBus
from .error_handling import HostEntityMissing, HostError
from .host import BrowserHost
from .models import BookmarkNode, TabGroup, TabInfo

ROOT_ID = "0"
BOOKMARKS_BAR_ID = "1"
OTHER_BOOKMARKS_ID = "2"


@dataclass
class _StoredNode:
    id: str
    title: str
    parent_id: Optional[str]
    url: Optional[str] = None
    children: List[str] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.url is None


class InMemoryHost(BrowserHost):
    """BrowserHost backed by plain dicts."""

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self._nodes: Dict[str, _StoredNode] = {
            ROOT_ID: _StoredNode(ROOT_ID, "", None, children=[BOOKMARKS_BAR_ID, OTHER_BOOKMARKS_ID]),
            BOOKMARKS_BAR_ID: _StoredNode(BOOKMARKS_BAR_ID, "Bookmarks Bar", ROOT_ID),
            OTHER_BOOKMARKS_ID: _StoredNode(OTHER_BOOKMARKS_ID, "Other Bookmarks", ROOT_ID),
        }
        self._next_bookmark_id = 3

        self._tabs: Dict[int, TabInfo] = {}
        self._tab_order: List[int] = []
        self._active_tab_id: Optional[int] = None
        self._next_tab_id = 1

        self._groups: Dict[int, TabGroup] = {}
        self._next_group_id = 100

    # ------------------------------------------------------------------
    # Snapshot loading
    # ------------------------------------------------------------------

    @classmethod
    def from_snapshot(
        cls,
        data: Dict[str, Any],
        root_title: str = "Rolotabs",
        bus: Optional[EventBus] = None,
    ) -> "InMemoryHost":
        """
        Build a host from a scenario dict.

        `bookmarks` become the children of a `root_title` folder under
        Other Bookmarks; `tabs` are opened in order (a tab's `group` names
        a pre-existing tab group); `active_tab` is a 0-based tab position.
        No events are emitted while loading.
        """
        host = cls()
        root = host._add_node(OTHER_BOOKMARKS_ID, root_title)

        def load(parent_id: str, items: List[Dict[str, Any]]) -> None:
            for item in items or []:
                node = host._add_node(parent_id, item.get("title", item.get("url", "")), item.get("url"))
                if item.get("url") is None:
                    load(node.id, item.get("children", []))

        load(root.id, data.get("bookmarks", []))

        group_ids: Dict[str, int] = {}
        for item in data.get("tabs", []):
            tab = host._add_tab(item["url"], title=item.get("title"), fav_icon_url=item.get("fav_icon_url"))
            group_title = item.get("group")
            if group_title:
                if group_title not in group_ids:
                    group_ids[group_title] = host._new_group(title=group_title)
                tab.group_id = group_ids[group_title]

        active = data.get("active_tab")
        if active is not None and 0 <= active < len(host._tab_order):
            host._active_tab_id = host._tab_order[active]

        host.bus = bus
        return host

    def find_bookmarks(self, title: Optional[str] = None, url: Optional[str] = None) -> List[BookmarkNode]:
        """Test and scenario helper: nodes by exact title and/or URL, in id order."""
        found = []
        for node in self._nodes.values():
            if node.id == ROOT_ID:
                continue
            if title is not None and node.title != title:
                continue
            if url is not None and node.url != url:
                continue
            found.append(self._to_node(node))
        return found

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def get_tree(self) -> List[BookmarkNode]:
        return [self._to_node(self._nodes[c], deep=True) for c in self._nodes[ROOT_ID].children]

    async def get_subtree(self, bookmark_id: str) -> BookmarkNode:
        return self._to_node(self._node(bookmark_id), deep=True)

    async def get_bookmark(self, bookmark_id: str) -> BookmarkNode:
        return self._to_node(self._node(bookmark_id))

    async def get_children(self, bookmark_id: str) -> List[BookmarkNode]:
        return [self._to_node(self._nodes[c]) for c in self._node(bookmark_id).children]

    async def create_bookmark(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
    ) -> BookmarkNode:
        stored = self._add_node(parent_id, title, url, index)
        node = self._to_node(stored, deep=True)
        self._emit("bookmark.created", id=stored.id, node=node)
        return node

    async def update_bookmark(
        self,
        bookmark_id: str,
        title: Optional[str] = None,
        url: Optional[str] = None,
    ) -> BookmarkNode:
        stored = self._node(bookmark_id)
        change: Dict[str, Any] = {}
        if title is not None and title != stored.title:
            stored.title = title
            change["title"] = title
        if url is not None and not stored.is_folder and url != stored.url:
            stored.url = url
            change["url"] = url
        if change:
            self._emit("bookmark.changed", id=bookmark_id, change=change)
        return self._to_node(stored)

    async def move_bookmark(
        self,
        bookmark_id: str,
        parent_id: str,
        index: Optional[int] = None,
    ) -> BookmarkNode:
        stored = self._node(bookmark_id)
        parent = self._node(parent_id)
        if not parent.is_folder:
            raise HostError(f"Bookmark {parent_id} is not a folder")
        if bookmark_id == parent_id or self._is_descendant(parent_id, bookmark_id):
            raise HostError(f"Cannot move {bookmark_id} into its own subtree")

        old_parent = self._nodes[stored.parent_id]
        old_index = old_parent.children.index(bookmark_id)
        old_parent.children.remove(bookmark_id)
        self._insert_child(parent, bookmark_id, index)
        stored.parent_id = parent_id

        self._emit(
            "bookmark.moved",
            id=bookmark_id,
            parent_id=parent_id,
            index=parent.children.index(bookmark_id),
            old_parent_id=old_parent.id,
            old_index=old_index,
        )
        return self._to_node(stored)

    async def remove_bookmark(self, bookmark_id: str) -> None:
        stored = self._node(bookmark_id)
        if stored.children:
            raise HostError(f"Folder {bookmark_id} is not empty")
        self._remove_subtree(stored)

    async def remove_tree(self, bookmark_id: str) -> None:
        self._remove_subtree(self._node(bookmark_id))

    def _remove_subtree(self, stored: _StoredNode) -> None:
        if stored.parent_id is None or stored.parent_id == ROOT_ID:
            raise HostError(f"Cannot remove root folder {stored.id}")
        node = self._to_node(stored, deep=True)
        parent = self._nodes[stored.parent_id]
        parent.children.remove(stored.id)

        stack = [stored.id]
        while stack:
            current = self._nodes.pop(stack.pop())
            stack.extend(current.children)

        self._emit("bookmark.removed", id=stored.id, parent_id=parent.id, node=node)

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def query_tabs(self) -> List[TabInfo]:
        return [replace(self._tabs[tid]) for tid in self._tab_order]

    async def get_tab(self, tab_id: int) -> TabInfo:
        return replace(self._tab(tab_id))

    async def get_active_tab_id(self) -> Optional[int]:
        return self._active_tab_id

    async def create_tab(self, url: str, active: bool = True) -> TabInfo:
        return self.open_tab(url, active=active)

    def open_tab(
        self,
        url: str,
        title: Optional[str] = None,
        opener_tab_id: Optional[int] = None,
        active: bool = True,
    ) -> TabInfo:
        """
        Open a tab the way a user would.

        A tab opened from another one is placed right after its opener and
        inherits the opener's group.
        """
        tab = self._add_tab(url, title=title)
        if opener_tab_id is not None and opener_tab_id in self._tabs:
            opener = self._tabs[opener_tab_id]
            self._tab_order.remove(tab.id)
            self._tab_order.insert(self._tab_order.index(opener_tab_id) + 1, tab.id)
            tab.group_id = opener.group_id

        self._emit("tab.created", tab=replace(tab))
        if active:
            self._set_active(tab.id)
        return replace(tab)

    def navigate(self, tab_id: int, url: str, title: Optional[str] = None) -> None:
        tab = self._tab(tab_id)
        tab.url = url
        tab.title = title or url
        self._emit("tab.updated", tab_id=tab_id, change={"url": url, "title": tab.title}, tab=replace(tab))

    def set_favicon(self, tab_id: int, fav_icon_url: str) -> None:
        tab = self._tab(tab_id)
        tab.fav_icon_url = fav_icon_url
        self._emit("tab.updated", tab_id=tab_id, change={"fav_icon_url": fav_icon_url}, tab=replace(tab))

    async def activate_tab(self, tab_id: int) -> None:
        self._tab(tab_id)
        self._set_active(tab_id)

    async def close_tab(self, tab_id: int) -> None:
        self._tab(tab_id)
        del self._tabs[tab_id]
        self._tab_order.remove(tab_id)
        if self._active_tab_id == tab_id:
            self._active_tab_id = None
        self._emit("tab.removed", tab_id=tab_id)
        self._prune_groups()

    async def move_tab(self, tab_id: int, index: int) -> None:
        self._tab(tab_id)
        self._tab_order.remove(tab_id)
        self._tab_order.insert(max(0, min(index, len(self._tab_order))), tab_id)

    def _set_active(self, tab_id: int) -> None:
        self._active_tab_id = tab_id
        self._emit("tab.activated", tab_id=tab_id)

    # ------------------------------------------------------------------
    # Tab groups
    # ------------------------------------------------------------------

    async def query_groups(self, title: Optional[str] = None) -> List[TabGroup]:
        return [
            replace(group) for gid, group in sorted(self._groups.items())
            if title is None or group.title == title
        ]

    async def get_group(self, group_id: int) -> TabGroup:
        return replace(self._group(group_id))

    async def query_tabs_in_group(self, group_id: int) -> List[TabInfo]:
        self._group(group_id)
        return [replace(self._tabs[tid]) for tid in self._tab_order if self._tabs[tid].group_id == group_id]

    async def group_tabs(self, tab_ids: List[int], group_id: Optional[int] = None) -> int:
        if not tab_ids:
            raise HostError("No tabs to group")
        for tab_id in tab_ids:
            self._tab(tab_id)
        if group_id is None:
            group_id = self._new_group()
        else:
            self._group(group_id)

        for tab_id in tab_ids:
            members = [tid for tid in self._tab_order if self._tabs[tid].group_id == group_id and tid != tab_id]
            self._tabs[tab_id].group_id = group_id
            if members:
                # Keep the group contiguous: join after its last member
                self._tab_order.remove(tab_id)
                self._tab_order.insert(self._tab_order.index(members[-1]) + 1, tab_id)

        self._prune_groups()
        return group_id

    async def update_group(
        self,
        group_id: int,
        title: Optional[str] = None,
        color: Optional[str] = None,
        collapsed: Optional[bool] = None,
    ) -> TabGroup:
        group = self._group(group_id)
        if title is not None:
            group.title = title
        if color is not None:
            group.color = color
        if collapsed is not None:
            group.collapsed = collapsed
        return replace(group)

    async def move_group(self, group_id: int, index: int) -> None:
        self._group(group_id)
        members = [tid for tid in self._tab_order if self._tabs[tid].group_id == group_id]
        rest = [tid for tid in self._tab_order if self._tabs[tid].group_id != group_id]
        index = max(0, min(index, len(rest)))
        self._tab_order = rest[:index] + members + rest[index:]

    async def ungroup_tab(self, tab_id: int) -> None:
        tab = self._tab(tab_id)
        if tab.group_id is None:
            raise HostError(f"Tab {tab_id} is not in a group")
        tab.group_id = None
        self._prune_groups()

    def _prune_groups(self) -> None:
        used = {t.group_id for t in self._tabs.values()}
        for group_id in [gid for gid in self._groups if gid not in used]:
            del self._groups[group_id]
            logger.debug(f"Host removed empty group {group_id}")
            self._emit("group.removed", group_id=group_id)

    # ------------------------------------------------------------------
    # Internal utilities
    # ------------------------------------------------------------------

    def _node(self, bookmark_id: str) -> _StoredNode:
        node = self._nodes.get(bookmark_id)
        if node is None:
            raise HostEntityMissing("bookmark", bookmark_id)
        return node

    def _tab(self, tab_id: int) -> TabInfo:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise HostEntityMissing("tab", tab_id)
        return tab

    def _group(self, group_id: int) -> TabGroup:
        group = self._groups.get(group_id)
        if group is None:
            raise HostEntityMissing("group", group_id)
        return group

    def _add_node(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
    ) -> _StoredNode:
        parent = self._node(parent_id)
        if not parent.is_folder:
            raise HostError(f"Bookmark {parent_id} is not a folder")
        stored = _StoredNode(str(self._next_bookmark_id), title, parent_id, url)
        self._next_bookmark_id += 1
        self._nodes[stored.id] = stored
        self._insert_child(parent, stored.id, index)
        return stored

    def _insert_child(self, parent: _StoredNode, child_id: str, index: Optional[int]) -> None:
        if index is None:
            parent.children.append(child_id)
        else:
            parent.children.insert(max(0, min(index, len(parent.children))), child_id)

    def _is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        current = self._nodes.get(node_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            current = self._nodes.get(current.parent_id)
        return False

    def _to_node(self, stored: _StoredNode, deep: bool = False) -> BookmarkNode:
        index = None
        if stored.parent_id is not None:
            index = self._nodes[stored.parent_id].children.index(stored.id)
        children = None
        if deep and stored.is_folder:
            children = [self._to_node(self._nodes[c], deep=True) for c in stored.children]
        return BookmarkNode(
            id=stored.id,
            title=stored.title,
            url=stored.url,
            parent_id=stored.parent_id,
            index=index,
            children=children,
        )

    def _add_tab(self, url: str, title: Optional[str] = None, fav_icon_url: Optional[str] = None) -> TabInfo:
        tab = TabInfo(id=self._next_tab_id, url=url, title=title or url, fav_icon_url=fav_icon_url)
        self._next_tab_id += 1
        self._tabs[tab.id] = tab
        self._tab_order.append(tab.id)
        return tab

    def _new_group(self, title: str = "", color: str = "grey") -> int:
        group_id = self._next_group_id
        self._next_group_id += 1
        self._groups[group_id] = TabGroup(id=group_id, title=title, color=color)
        return group_id

    def _emit(self, event_type: str, **data) -> None:
        if self.bus is not None:
            self.bus.emit_nowait(Event(type=event_type, data=data, source="host"))
