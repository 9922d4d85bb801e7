"""Commands sent by the presentation layer."""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

from .error_handling import CommandError


class CommandType(str, Enum):
    GET_STATE = "get_state"
    ACTIVATE_BOOKMARK = "activate_bookmark"
    ACTIVATE_OPEN_TAB = "activate_open_tab"
    CLOSE_BOOKMARK_TAB = "close_bookmark_tab"
    CLOSE_OPEN_TAB = "close_open_tab"
    PROMOTE_TAB = "promote_tab"
    PIN_BOOKMARK = "pin_bookmark"
    UNPIN_BOOKMARK = "unpin_bookmark"
    REORDER_PINNED = "reorder_pinned"
    MOVE_BOOKMARK = "move_bookmark"
    REMOVE_BOOKMARK = "remove_bookmark"
    RENAME_BOOKMARK = "rename_bookmark"
    REPLACE_BOOKMARK_URL = "replace_bookmark_url"
    CREATE_FOLDER = "create_folder"
    REMOVE_FOLDER = "remove_folder"
    TOGGLE_FOLDER = "toggle_folder"
    COMPLETE_ONBOARDING = "complete_onboarding"


# Fields each command cannot do without
REQUIRED_FIELDS = {
    CommandType.ACTIVATE_BOOKMARK: ("bookmark_id",),
    CommandType.ACTIVATE_OPEN_TAB: ("tab_id",),
    CommandType.CLOSE_BOOKMARK_TAB: ("bookmark_id",),
    CommandType.CLOSE_OPEN_TAB: ("tab_id",),
    CommandType.PROMOTE_TAB: ("tab_id",),
    CommandType.PIN_BOOKMARK: ("bookmark_id",),
    CommandType.UNPIN_BOOKMARK: ("bookmark_id",),
    CommandType.REORDER_PINNED: ("bookmark_id", "index"),
    CommandType.MOVE_BOOKMARK: ("bookmark_id", "parent_id"),
    CommandType.REMOVE_BOOKMARK: ("bookmark_id",),
    CommandType.RENAME_BOOKMARK: ("bookmark_id", "title"),
    CommandType.REPLACE_BOOKMARK_URL: ("bookmark_id",),
    CommandType.CREATE_FOLDER: ("title",),
    CommandType.REMOVE_FOLDER: ("bookmark_id",),
    CommandType.TOGGLE_FOLDER: ("bookmark_id",),
}


@dataclass
class Command:
    """One message from the panel. Unused fields stay None."""
    type: CommandType
    bookmark_id: Optional[str] = None
    tab_id: Optional[int] = None
    parent_id: Optional[str] = None
    index: Optional[int] = None
    title: Optional[str] = None
    pinned: bool = False

    def __post_init__(self):
        if not isinstance(self.type, CommandType):
            try:
                self.type = CommandType(self.type)
            except ValueError:
                raise CommandError(f"Unknown command type: {self.type!r}") from None
        missing = [f for f in REQUIRED_FIELDS.get(self.type, ()) if getattr(self, f) is None]
        if missing:
            raise CommandError(f"{self.type.value} requires {', '.join(missing)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Command":
        if "type" not in data:
            raise CommandError("Command has no type")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise CommandError(f"Unknown command fields: {sorted(unknown)}")
        return cls(**data)
