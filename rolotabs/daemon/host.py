"""Browser host interface.

The host owns the real bookmark tree, tabs and tab groups. Everything the
orchestrator and the group reconciler need from it goes through this
interface. Any call whose target has vanished raises HostEntityMissing.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import BookmarkNode, TabGroup, TabInfo


class BrowserHost(ABC):
    """Async bookmark, tab and tab-group operations."""

    # Bookmarks

    @abstractmethod
    async def get_tree(self) -> List[BookmarkNode]:
        """Top-level bookmark folders with their full subtrees."""

    @abstractmethod
    async def get_subtree(self, bookmark_id: str) -> BookmarkNode:
        ...

    @abstractmethod
    async def get_bookmark(self, bookmark_id: str) -> BookmarkNode:
        """A single node without children."""

    @abstractmethod
    async def get_children(self, bookmark_id: str) -> List[BookmarkNode]:
        ...

    @abstractmethod
    async def create_bookmark(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
    ) -> BookmarkNode:
        """Create a bookmark, or a folder when `url` is None."""

    @abstractmethod
    async def update_bookmark(
        self,
        bookmark_id: str,
        title: Optional[str] = None,
        url: Optional[str] = None,
    ) -> BookmarkNode:
        ...

    @abstractmethod
    async def move_bookmark(
        self,
        bookmark_id: str,
        parent_id: str,
        index: Optional[int] = None,
    ) -> BookmarkNode:
        ...

    @abstractmethod
    async def remove_bookmark(self, bookmark_id: str) -> None:
        """Remove a bookmark or an empty folder."""

    @abstractmethod
    async def remove_tree(self, bookmark_id: str) -> None:
        """Remove a folder and everything under it."""

    # Tabs

    @abstractmethod
    async def query_tabs(self) -> List[TabInfo]:
        """All tabs, in tab strip order."""

    @abstractmethod
    async def get_tab(self, tab_id: int) -> TabInfo:
        ...

    @abstractmethod
    async def get_active_tab_id(self) -> Optional[int]:
        ...

    @abstractmethod
    async def create_tab(self, url: str, active: bool = True) -> TabInfo:
        ...

    @abstractmethod
    async def activate_tab(self, tab_id: int) -> None:
        """Make the tab active and focus its window."""

    @abstractmethod
    async def close_tab(self, tab_id: int) -> None:
        ...

    @abstractmethod
    async def move_tab(self, tab_id: int, index: int) -> None:
        ...

    # Tab groups

    @abstractmethod
    async def query_groups(self, title: Optional[str] = None) -> List[TabGroup]:
        ...

    @abstractmethod
    async def get_group(self, group_id: int) -> TabGroup:
        ...

    @abstractmethod
    async def query_tabs_in_group(self, group_id: int) -> List[TabInfo]:
        ...

    @abstractmethod
    async def group_tabs(self, tab_ids: List[int], group_id: Optional[int] = None) -> int:
        """Add tabs to a group, creating one when `group_id` is None."""

    @abstractmethod
    async def update_group(
        self,
        group_id: int,
        title: Optional[str] = None,
        color: Optional[str] = None,
        collapsed: Optional[bool] = None,
    ) -> TabGroup:
        ...

    @abstractmethod
    async def move_group(self, group_id: int, index: int) -> None:
        """Move a whole group so its first tab sits at `index`."""

    @abstractmethod
    async def ungroup_tab(self, tab_id: int) -> None:
        ...
