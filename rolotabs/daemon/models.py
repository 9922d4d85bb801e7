"""Data models shared by the index, the group reconciler and the host."""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class BookmarkNode:
    """A bookmark tree node as reported by the host. No URL means folder."""
    id: str
    title: str = ""
    url: Optional[str] = None
    parent_id: Optional[str] = None
    index: Optional[int] = None
    children: Optional[List["BookmarkNode"]] = None

    @property
    def is_folder(self) -> bool:
        return not self.url

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookmarkNode":
        children = data.get("children")
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            url=data.get("url"),
            parent_id=data.get("parent_id"),
            index=data.get("index"),
            children=[cls.from_dict(c) for c in children] if children is not None else None,
        )


@dataclass
class TabInfo:
    """Snapshot of a live browser tab."""
    id: int
    url: Optional[str] = None
    title: Optional[str] = None
    fav_icon_url: Optional[str] = None
    group_id: Optional[int] = None
    window_id: int = 1


@dataclass
class TabGroup:
    """A host tab group."""
    id: int
    title: str = ""
    color: str = "grey"
    collapsed: bool = False


@dataclass
class ManagedBookmark:
    """A bookmark enriched with pin state and its live tab association."""
    id: str
    title: str
    url: Optional[str] = None
    parent_id: Optional[str] = None
    index: Optional[int] = None
    is_folder: bool = False
    children: Optional[List["ManagedBookmark"]] = None

    is_pinned: bool = False

    # Tab association
    tab_id: Optional[int] = None
    is_active: bool = False

    # Live tab state, only set while loaded
    tab_url: Optional[str] = None
    fav_icon_url: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self.tab_id is not None

    @classmethod
    def from_node(cls, node: BookmarkNode, is_pinned: bool = False) -> "ManagedBookmark":
        return cls(
            id=node.id,
            title=node.title,
            url=node.url,
            parent_id=node.parent_id,
            index=node.index,
            is_folder=node.is_folder,
            is_pinned=is_pinned and not node.is_folder,
        )

    def clear_tab(self) -> None:
        """Drop the association and every field derived from it."""
        self.tab_id = None
        self.is_active = False
        self.tab_url = None
        self.fav_icon_url = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'title': self.title,
            'url': self.url,
            'parent_id': self.parent_id,
            'index': self.index,
            'is_folder': self.is_folder,
            'is_pinned': self.is_pinned,
            'tab_id': self.tab_id,
            'is_loaded': self.is_loaded,
            'is_active': self.is_active,
            'tab_url': self.tab_url,
            'fav_icon_url': self.fav_icon_url,
        }
        if self.children is not None:
            data['children'] = [c.to_dict() for c in self.children]
        return data


@dataclass
class OpenTab:
    """A tab with no bookmark, shown in the open-tabs zone."""
    tab_id: int
    title: Optional[str] = None
    url: Optional[str] = None
    fav_icon_url: Optional[str] = None
    is_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tab_id': self.tab_id,
            'title': self.title,
            'url': self.url,
            'fav_icon_url': self.fav_icon_url,
            'is_active': self.is_active,
        }


@dataclass
class PanelState:
    """Read-only projection handed to the presentation layer."""
    pinned: List[ManagedBookmark] = field(default_factory=list)
    bookmarks: List[ManagedBookmark] = field(default_factory=list)
    open_tabs: List[OpenTab] = field(default_factory=list)
    active_tab_id: Optional[int] = None
    pinned_ids: List[str] = field(default_factory=list)
    root_folder_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pinned': [b.to_dict() for b in self.pinned],
            'bookmarks': [b.to_dict() for b in self.bookmarks],
            'open_tabs': [t.to_dict() for t in self.open_tabs],
            'active_tab_id': self.active_tab_id,
            'pinned_ids': list(self.pinned_ids),
            'root_folder_id': self.root_folder_id,
        }
