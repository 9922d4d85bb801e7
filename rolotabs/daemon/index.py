"""Reconciliation index between bookmarks and open tabs.

The index projects the host's bookmark tree and tab list into an enriched
model with pin state and tab associations:
- Flat lookups by bookmark id, by tab id and by normalized URL
- Tree structure kept for rendering the bookmarks zone
- Targeted updates for single host events, full rebuild for anything else
- `get_state()` produces the PanelState for the presentation layer

Invariant: the association is a partial bijection. A tab is linked to at
most one bookmark and a bookmark to at most one tab. Every method here is
synchronous, so no other event handler ever observes a half-applied
change.
"""

from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, Iterator, List, Optional, Set

from loguru import logger

from .models import BookmarkNode, ManagedBookmark, OpenTab, PanelState, TabInfo
from .urls import normalize_url, urls_match

MAX_PARENT_DEPTH = 20


def flatten_tree(nodes) -> list:
    """Pre-order flattening of a node list (folders included)."""
    result = []
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        result.append(node)
        if node.children:
            stack.extend(reversed(node.children))
    return result


def is_under_root(
    node_id: Optional[str],
    root_id: str,
    get_parent_id: Callable[[str], Optional[str]],
    max_depth: int = MAX_PARENT_DEPTH,
) -> bool:
    """Walk parent links toward `root_id`.

    Parent links come from the host and may be corrupt, so the walk is
    bounded; running out of depth counts as "not under root".
    """
    current = node_id
    depth = 0
    while current is not None and depth < max_depth:
        if current == root_id:
            return True
        current = get_parent_id(current)
        depth += 1
    return False


class BookmarkIndex:
    """Owns the enriched bookmark model, tab associations and pinned order."""

    def __init__(self, max_parent_depth: int = MAX_PARENT_DEPTH):
        # Primary store
        self._by_id: Dict[str, ManagedBookmark] = {}

        # Reverse indexes
        self._tab_to_bookmark: Dict[int, str] = {}
        self._url_to_bookmarks: Dict[str, Set[str]] = {}

        # Tree traversal position, used to break ties between duplicates
        self._position: Dict[str, int] = {}

        self._pinned_ids: List[str] = []
        self._pinned_pruned = False

        self._roots: List[ManagedBookmark] = []
        self.root_folder_id: str = ""
        self.max_parent_depth = max_parent_depth

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def rebuild(
        self,
        tree: List[BookmarkNode],
        tabs: List[TabInfo],
        pinned_ids: List[str],
        root_folder_id: str,
    ) -> None:
        """Discard everything and recompute from the host's current state."""
        self._by_id.clear()
        self._tab_to_bookmark.clear()
        self._url_to_bookmarks.clear()
        self.root_folder_id = root_folder_id

        self._roots = [self._annotate(node) for node in tree]
        self._renumber()

        # Pinned ids that no longer resolve are dropped here and reported
        # by the next cleanup_pinned() so the caller can persist.
        requested = list(pinned_ids)
        self._pinned_ids = [
            bid for bid in dict.fromkeys(requested)
            if bid in self._by_id and not self._by_id[bid].is_folder
        ]
        self._pinned_pruned = self._pinned_ids != requested
        pinned = set(self._pinned_ids)

        leaves = [bm for bm in flatten_tree(self._roots) if not bm.is_folder]
        for bm in leaves:
            bm.is_pinned = bm.id in pinned
            self._index_url(bm.id, bm.url)

        # Greedy first-fit: bookmarks claim tabs in tree order, each taking
        # the first unclaimed tab (in host order) with a matching URL.
        available: Dict[str, Deque[TabInfo]] = {}
        for tab in tabs:
            if tab.url:
                available.setdefault(normalize_url(tab.url), deque()).append(tab)

        for bm in leaves:
            queue = available.get(normalize_url(bm.url))
            while queue:
                tab = queue.popleft()
                if tab.id in self._tab_to_bookmark:
                    continue
                self._link(bm, tab.id, tab)
                break

        logger.debug(
            f"Rebuilt index: {len(self._by_id)} nodes, "
            f"{len(self._tab_to_bookmark)} associations, {len(self._pinned_ids)} pinned"
        )

    def _annotate(self, node: BookmarkNode, parent_id: Optional[str] = None) -> ManagedBookmark:
        managed = ManagedBookmark.from_node(node)
        if managed.parent_id is None:
            managed.parent_id = parent_id
        if node.children is not None:
            managed.children = [self._annotate(child, node.id) for child in node.children]
        self._by_id[managed.id] = managed
        return managed

    # ------------------------------------------------------------------
    # Active tab
    # ------------------------------------------------------------------

    def set_active_tab(self, tab_id: Optional[int]) -> None:
        for bm in self._by_id.values():
            bm.is_active = False
        if tab_id is None:
            return
        bookmark_id = self._tab_to_bookmark.get(tab_id)
        if bookmark_id is not None and bookmark_id in self._by_id:
            self._by_id[bookmark_id].is_active = True

    # ------------------------------------------------------------------
    # Association management
    # ------------------------------------------------------------------

    def associate(self, bookmark_id: str, tab_id: int, tab: Optional[TabInfo] = None) -> bool:
        """Link a bookmark and a tab, breaking whatever either was linked to."""
        bm = self._by_id.get(bookmark_id)
        if bm is None or bm.is_folder:
            return False

        old_bookmark_id = self._tab_to_bookmark.get(tab_id)
        if old_bookmark_id is not None and old_bookmark_id != bookmark_id:
            old_bm = self._by_id.get(old_bookmark_id)
            if old_bm is not None:
                old_bm.clear_tab()

        if bm.tab_id is not None and bm.tab_id != tab_id:
            self._tab_to_bookmark.pop(bm.tab_id, None)
            bm.clear_tab()

        self._link(bm, tab_id, tab)
        return True

    def dissociate(self, bookmark_id: str) -> Optional[int]:
        """Break a bookmark's association. Returns the released tab id."""
        bm = self._by_id.get(bookmark_id)
        if bm is None or bm.tab_id is None:
            return None
        tab_id = bm.tab_id
        if self._tab_to_bookmark.get(tab_id) == bookmark_id:
            del self._tab_to_bookmark[tab_id]
        bm.clear_tab()
        return tab_id

    def dissociate_tab(self, tab_id: int) -> Optional[str]:
        """Break a tab's association. Returns the released bookmark id."""
        bookmark_id = self._tab_to_bookmark.pop(tab_id, None)
        if bookmark_id is None:
            return None
        bm = self._by_id.get(bookmark_id)
        if bm is not None:
            bm.clear_tab()
        return bookmark_id

    def try_associate_by_url(
        self,
        tab_id: int,
        url: Optional[str],
        tab: Optional[TabInfo] = None,
    ) -> Optional[str]:
        """
        Link a tab to the first unloaded bookmark with a matching URL.

        Candidates are tried in tree order. Returns the bookmark id, or
        None (and changes nothing) when every candidate is taken.
        """
        if not url:
            return None
        for bookmark_id in self._candidates(url):
            bm = self._by_id[bookmark_id]
            if bm.tab_id is None:
                self.associate(bookmark_id, tab_id, tab)
                self._refresh_snapshot(bm, url, tab)
                return bookmark_id
        return None

    def handle_navigation(
        self,
        tab_id: int,
        new_url: Optional[str],
        tab: Optional[TabInfo] = None,
    ) -> Optional[str]:
        """
        Handle a tab navigating to a new URL.

        A linked tab moves to another unloaded bookmark if the new URL
        matches one. Otherwise the original link is restored with the new
        URL as its snapshot, so the bookmark shows as "navigated away"
        instead of the tab surfacing as a duplicate open tab.

        Returns the bookmark id linked to the tab afterwards.
        """
        current_id = self._tab_to_bookmark.get(tab_id)
        current = self._by_id.get(current_id) if current_id is not None else None

        if current is None:
            if current_id is not None:
                del self._tab_to_bookmark[tab_id]
            return self.try_associate_by_url(tab_id, new_url, tab)

        if not new_url:
            return current.id

        if urls_match(current.url, new_url):
            self._refresh_snapshot(current, new_url, tab)
            return current.id

        was_active = current.is_active
        previous_icon = current.fav_icon_url

        # Tentative break so the current bookmark is not its own candidate
        self.dissociate(current.id)
        new_match = self.try_associate_by_url(tab_id, new_url, tab)
        if new_match is not None:
            self._by_id[new_match].is_active = was_active
            logger.debug(f"Tab {tab_id} moved from bookmark {current.id} to {new_match}")
            return new_match

        # Roll back: navigated away
        self._link(current, tab_id)
        current.is_active = was_active
        current.fav_icon_url = previous_icon
        self._refresh_snapshot(current, new_url, tab)
        logger.debug(f"Tab {tab_id} navigated away from bookmark {current.id}")
        return current.id

    # ------------------------------------------------------------------
    # Pinned management
    # ------------------------------------------------------------------

    @property
    def pinned_ids(self) -> List[str]:
        return list(self._pinned_ids)

    def pin(self, bookmark_id: str) -> bool:
        bm = self._by_id.get(bookmark_id)
        if bm is None or bm.is_folder or bookmark_id in self._pinned_ids:
            return False
        self._pinned_ids.append(bookmark_id)
        bm.is_pinned = True
        return True

    def unpin(self, bookmark_id: str) -> bool:
        if bookmark_id not in self._pinned_ids:
            return False
        self._pinned_ids.remove(bookmark_id)
        bm = self._by_id.get(bookmark_id)
        if bm is not None:
            bm.is_pinned = False
        return True

    def reorder_pinned(self, bookmark_id: str, to_index: int) -> bool:
        if bookmark_id not in self._pinned_ids:
            return False
        self._pinned_ids.remove(bookmark_id)
        clamped = max(0, min(to_index, len(self._pinned_ids)))
        self._pinned_ids.insert(clamped, bookmark_id)
        return True

    def cleanup_pinned(self) -> bool:
        """Drop pinned ids that are no longer indexed leaves. True if anything changed."""
        before = list(self._pinned_ids)
        self._pinned_ids = [
            bid for bid in dict.fromkeys(before)
            if bid in self._by_id and not self._by_id[bid].is_folder
        ]
        pinned = set(self._pinned_ids)
        for bm in self._by_id.values():
            bm.is_pinned = bm.id in pinned

        changed = self._pinned_ids != before or self._pinned_pruned
        self._pinned_pruned = False
        return changed

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, bookmark_id: str) -> Optional[ManagedBookmark]:
        return self._by_id.get(bookmark_id)

    def get_bookmark_id_for_tab(self, tab_id: int) -> Optional[str]:
        return self._tab_to_bookmark.get(tab_id)

    def get_tab_id(self, bookmark_id: str) -> Optional[int]:
        bm = self._by_id.get(bookmark_id)
        return bm.tab_id if bm is not None else None

    def is_tab_associated(self, tab_id: int) -> bool:
        return tab_id in self._tab_to_bookmark

    def associations(self) -> Dict[int, str]:
        """Copy of the tab -> bookmark map."""
        return dict(self._tab_to_bookmark)

    def iter_bookmarks(self) -> Iterator[ManagedBookmark]:
        return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, bookmark_id: str) -> bool:
        return bookmark_id in self._by_id

    def is_under_root(self, bookmark_id: str) -> bool:
        def parent_of(node_id: str) -> Optional[str]:
            bm = self._by_id.get(node_id)
            return bm.parent_id if bm is not None else None

        return is_under_root(bookmark_id, self.root_folder_id, parent_of, self.max_parent_depth)

    # ------------------------------------------------------------------
    # Tab state updates
    # ------------------------------------------------------------------

    def update_tab_info(
        self,
        tab_id: int,
        url: Optional[str] = None,
        fav_icon_url: Optional[str] = None,
    ) -> bool:
        bookmark_id = self._tab_to_bookmark.get(tab_id)
        bm = self._by_id.get(bookmark_id) if bookmark_id is not None else None
        if bm is None:
            return False
        if fav_icon_url is not None:
            bm.fav_icon_url = fav_icon_url
        if url is not None:
            bm.tab_url = url
        return True

    # ------------------------------------------------------------------
    # Bookmark mutations
    # ------------------------------------------------------------------

    def add_bookmark(self, node: BookmarkNode, tabs: List[TabInfo]) -> bool:
        """
        Index a bookmark (and its descendants) reported by the host.

        Returns False without touching anything when the parent folder is
        not indexed; the caller should fall back to a rebuild.
        """
        if node.id in self._by_id:
            return True

        parent = self._by_id.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or not parent.is_folder:
            logger.debug(f"Parent {node.parent_id} of bookmark {node.id} is not indexed")
            return False

        managed = self._annotate(node, parent.id)
        if parent.children is None:
            parent.children = []
        position = len(parent.children) if node.index is None else node.index
        parent.children.insert(max(0, min(position, len(parent.children))), managed)
        self._reindex_children(parent)
        self._renumber()

        pinned = set(self._pinned_ids)
        for bm in flatten_tree([managed]):
            if bm.is_folder:
                continue
            bm.is_pinned = bm.id in pinned
            self._index_url(bm.id, bm.url)
            for tab in tabs:
                if tab.id not in self._tab_to_bookmark and urls_match(tab.url, bm.url):
                    self._link(bm, tab.id, tab)
                    break
        return True

    def remove_bookmark(self, bookmark_id: str) -> List[int]:
        """Remove a bookmark or folder subtree. Returns the released tab ids."""
        bm = self._by_id.get(bookmark_id)
        if bm is None:
            return []

        released = []
        for node in flatten_tree([bm]):
            if node.tab_id is not None:
                if self._tab_to_bookmark.get(node.tab_id) == node.id:
                    del self._tab_to_bookmark[node.tab_id]
                released.append(node.tab_id)
                node.clear_tab()
            if not node.is_folder:
                self._unindex_url(node.id, node.url)
            self.unpin(node.id)
            self._by_id.pop(node.id, None)

        parent = self._by_id.get(bm.parent_id) if bm.parent_id is not None else None
        if parent is not None and parent.children is not None:
            parent.children = [c for c in parent.children if c.id != bookmark_id]
            self._reindex_children(parent)
        self._roots = [r for r in self._roots if r.id != bookmark_id]
        self._renumber()
        return released

    def update_bookmark_title(self, bookmark_id: str, title: str) -> bool:
        bm = self._by_id.get(bookmark_id)
        if bm is None:
            return False
        bm.title = title
        return True

    def update_bookmark_url(
        self,
        bookmark_id: str,
        new_url: Optional[str],
        tabs: List[TabInfo],
    ) -> Optional[int]:
        """
        Re-point a bookmark at a new URL.

        The old association is broken and the first free tab matching the
        new URL is linked instead. Returns the tab linked afterwards.
        """
        bm = self._by_id.get(bookmark_id)
        if bm is None or bm.is_folder or not new_url:
            return None
        if bm.url == new_url:
            return bm.tab_id

        self._unindex_url(bm.id, bm.url)
        if bm.tab_id is not None:
            self._tab_to_bookmark.pop(bm.tab_id, None)
            bm.clear_tab()

        bm.url = new_url
        self._index_url(bm.id, new_url)

        for tab in tabs:
            if tab.id not in self._tab_to_bookmark and urls_match(tab.url, new_url):
                self._link(bm, tab.id, tab)
                return tab.id
        return None

    # ------------------------------------------------------------------
    # State projection
    # ------------------------------------------------------------------

    def get_state(
        self,
        active_tab_id: Optional[int],
        tabs: List[TabInfo],
        is_hidden: Optional[Callable[[TabInfo], bool]] = None,
    ) -> PanelState:
        """
        Project the index into the three panel zones.

        Updating the `is_active` flags is the only mutation; everything
        returned is a copy.
        """
        self.set_active_tab(active_tab_id)

        # Zone 1: pinned bookmarks in pinned order
        pinned = [
            replace(self._by_id[bid], children=None)
            for bid in self._pinned_ids if bid in self._by_id
        ]

        # Zone 2: root folder subtree minus pinned leaves
        pinned_set = set(self._pinned_ids)
        root = self._by_id.get(self.root_folder_id)
        bookmarks = [self._project(root, pinned_set)] if root is not None and root.is_folder else []

        # Zone 3: tabs with no bookmark
        open_tabs = [
            OpenTab(
                tab_id=t.id,
                title=t.title,
                url=t.url,
                fav_icon_url=t.fav_icon_url,
                is_active=t.id == active_tab_id,
            )
            for t in tabs
            if t.id not in self._tab_to_bookmark and not (is_hidden and is_hidden(t))
        ]

        return PanelState(
            pinned=pinned,
            bookmarks=bookmarks,
            open_tabs=open_tabs,
            active_tab_id=active_tab_id,
            pinned_ids=list(self._pinned_ids),
            root_folder_id=self.root_folder_id,
        )

    def _project(self, node: ManagedBookmark, pinned: Set[str]) -> ManagedBookmark:
        copy = replace(node, children=None)
        if node.children is not None:
            copy.children = [
                self._project(child, pinned)
                for child in node.children
                if child.is_folder or child.id not in pinned
            ]
        return copy

    # ------------------------------------------------------------------
    # Internal utilities
    # ------------------------------------------------------------------

    def _link(self, bm: ManagedBookmark, tab_id: int, tab: Optional[TabInfo] = None) -> None:
        self._tab_to_bookmark[tab_id] = bm.id
        bm.tab_id = tab_id
        if tab is not None:
            if tab.fav_icon_url:
                bm.fav_icon_url = tab.fav_icon_url
            if tab.url:
                bm.tab_url = tab.url

    def _refresh_snapshot(self, bm: ManagedBookmark, url: str, tab: Optional[TabInfo]) -> None:
        bm.tab_url = url
        if tab is not None and tab.fav_icon_url:
            bm.fav_icon_url = tab.fav_icon_url

    def _candidates(self, url: str) -> List[str]:
        ids = self._url_to_bookmarks.get(normalize_url(url))
        if not ids:
            return []
        return sorted(ids, key=lambda bid: self._position.get(bid, len(self._position)))

    def _index_url(self, bookmark_id: str, url: Optional[str]) -> None:
        if url:
            self._url_to_bookmarks.setdefault(normalize_url(url), set()).add(bookmark_id)

    def _unindex_url(self, bookmark_id: str, url: Optional[str]) -> None:
        if not url:
            return
        key = normalize_url(url)
        ids = self._url_to_bookmarks.get(key)
        if ids is not None:
            ids.discard(bookmark_id)
            if not ids:
                del self._url_to_bookmarks[key]

    def _renumber(self) -> None:
        self._position = {bm.id: i for i, bm in enumerate(flatten_tree(self._roots))}

    def _reindex_children(self, parent: ManagedBookmark) -> None:
        for i, child in enumerate(parent.children or []):
            child.index = i
