"""Tab group reconciliation.

Keeps two host tab groups ("pinned" and "saved") in line with the index:
a linked tab sits in the group of its bookmark's category, an unlinked tab
sits in neither. Group handles are only remembered, never trusted; every
operation re-validates them and falls back to searching by title, so the
reconciler survives restarts and groups vanishing under it.
"""

from enum import Enum
from typing import Dict, List, Optional

from loguru import logger

from .config import GroupStyle, GroupsConfig
from .error_handling import HostEntityMissing, HostError, HostErrorTracker
from .host import BrowserHost
from .models import ManagedBookmark, TabGroup


class GroupCategory(str, Enum):
    PINNED = "pinned"
    SAVED = "saved"


class HandleState(Enum):
    UNBOUND = "unbound"
    BOUND = "bound"


def category_for(bookmark: ManagedBookmark) -> GroupCategory:
    return GroupCategory.PINNED if bookmark.is_pinned else GroupCategory.SAVED


class GroupReconciler:
    """Owns the pinned/saved group handles. No method raises host errors."""

    def __init__(
        self,
        host: BrowserHost,
        config: Optional[GroupsConfig] = None,
        errors: Optional[HostErrorTracker] = None,
    ):
        self._host = host
        self.config = config or GroupsConfig()
        self._errors = errors or HostErrorTracker()
        self._handles: Dict[GroupCategory, Optional[int]] = {c: None for c in GroupCategory}

    def style(self, category: GroupCategory) -> GroupStyle:
        return self.config.pinned if category is GroupCategory.PINNED else self.config.saved

    def handle(self, category: GroupCategory) -> Optional[int]:
        return self._handles[category]

    def state(self, category: GroupCategory) -> HandleState:
        return HandleState.UNBOUND if self._handles[category] is None else HandleState.BOUND

    def category_of_group(self, group_id: int) -> Optional[GroupCategory]:
        for category, handle in self._handles.items():
            if handle == group_id:
                return category
        return None

    async def is_managed_group(self, group_id: Optional[int]) -> bool:
        """A group is managed if it is a bound handle or carries a managed title."""
        if group_id is None:
            return False
        if self.category_of_group(group_id) is not None:
            return True
        try:
            group = await self._host.get_group(group_id)
        except HostError as e:
            self._record("is_managed_group", e, group_id=group_id)
            return False
        return group.title in (self.config.pinned.title, self.config.saved.title)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover_handles(self) -> None:
        """Re-bind handles after a restart, merging duplicate groups."""
        for category in GroupCategory:
            title = self.style(category).title
            try:
                groups = await self._host.query_groups(title=title)
            except HostError as e:
                self._record("recover_handles", e, category=category.value)
                self._handles[category] = None
                continue

            if not groups:
                self._handles[category] = None
                continue

            keep = groups[0].id
            self._handles[category] = keep
            if len(groups) > 1:
                logger.info(f"Consolidating {len(groups)} '{title}' groups into {keep}")
                await self._consolidate(groups, keep)
            logger.debug(f"Recovered {category.value} group {keep}")

    async def _consolidate(self, groups: List[TabGroup], keep_group_id: int) -> None:
        """Merge tabs from duplicate groups into the primary one."""
        for group in groups:
            if group.id == keep_group_id:
                continue
            try:
                tabs = await self._host.query_tabs_in_group(group.id)
                if tabs:
                    await self._host.group_tabs([t.id for t in tabs], group_id=keep_group_id)
            except HostError as e:
                # Group may have been auto-removed
                self._record("consolidate", e, group_id=group.id)

    async def _ensure_group(self, category: GroupCategory) -> Optional[int]:
        """Return a valid group id for the category, or None when none exists."""
        current = self._handles[category]
        if current is not None:
            try:
                await self._host.get_group(current)
                return current
            except HostEntityMissing:
                logger.debug(f"{category.value} group {current} is gone")
                self._handles[category] = None

        groups = await self._host.query_groups(title=self.style(category).title)
        if not groups:
            return None
        await self._consolidate(groups, groups[0].id)
        self._handles[category] = groups[0].id
        return groups[0].id

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def add_to_group(self, tab_id: int, category: GroupCategory) -> bool:
        """Put a tab in its category's group, creating the group if needed."""
        style = self.style(category)
        try:
            group_id = await self._ensure_group(category)
            if group_id is None:
                group_id = await self._host.group_tabs([tab_id])
            else:
                await self._host.group_tabs([tab_id], group_id=group_id)

            # Always re-assert the look: the host may have regrouped the tab
            # behind our back, leaving an untitled group.
            await self._host.update_group(
                group_id,
                title=style.title,
                color=style.color,
                collapsed=style.collapsed,
            )
            self._handles[category] = group_id
        except HostError as e:
            self._record("add_to_group", e, tab_id=tab_id, category=category.value)
            await self._drop_stale_handle(category)
            return False

        await self.position_groups()
        return True

    async def _drop_stale_handle(self, category: GroupCategory) -> None:
        """After a failed call, unbind the handle if its group is gone."""
        current = self._handles[category]
        if current is None:
            return
        try:
            await self._host.get_group(current)
        except HostError as e:
            logger.debug(f"Unbinding {category.value} group {current}: {e}")
            self._handles[category] = None

    async def remove_from_group(self, tab_id: int) -> bool:
        try:
            await self._host.ungroup_tab(tab_id)
            removed = True
        except HostError as e:
            # Tab may be closed or not grouped
            self._record("remove_from_group", e, tab_id=tab_id)
            removed = False
        await self.position_groups()
        return removed

    async def reconcile_orphan(self, tab_id: int, is_associated: bool) -> bool:
        """
        Ungroup a tab that sits in a managed group without a bookmark.

        Tabs opened from a grouped tab inherit its group; those must not
        stay in a managed group. Returns True when the tab was ungrouped.
        """
        if is_associated:
            return False
        try:
            tab = await self._host.get_tab(tab_id)
        except HostError as e:
            self._record("reconcile_orphan", e, tab_id=tab_id)
            return False

        if not await self.is_managed_group(tab.group_id):
            return False

        logger.debug(f"Ungrouping orphan tab {tab_id} from group {tab.group_id}")
        return await self.remove_from_group(tab_id)

    def forget_group(self, group_id: int) -> None:
        """The host removed a group; drop the handle if it was ours."""
        category = self.category_of_group(group_id)
        if category is not None:
            logger.debug(f"{category.value} group {group_id} removed by host")
            self._handles[category] = None

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    async def position_groups(self) -> None:
        """Pinned group leftmost, saved group right after it."""
        pinned_id = self._handles[GroupCategory.PINNED]
        if pinned_id is not None:
            try:
                await self._host.move_group(pinned_id, 0)
            except HostError as e:
                self._record("position_groups", e, group_id=pinned_id)
                self._handles[GroupCategory.PINNED] = pinned_id = None

        saved_id = self._handles[GroupCategory.SAVED]
        if saved_id is None:
            return

        target = 0
        if pinned_id is not None:
            try:
                target = len(await self._host.query_tabs_in_group(pinned_id))
            except HostError as e:
                self._record("position_groups", e, group_id=pinned_id)
                self._handles[GroupCategory.PINNED] = None
        try:
            await self._host.move_group(saved_id, target)
        except HostError as e:
            self._record("position_groups", e, group_id=saved_id)
            self._handles[GroupCategory.SAVED] = None

    def _record(self, operation: str, error: HostError, **context) -> None:
        logger.debug(f"Group {operation} failed: {error}")
        self._errors.record("groups", operation, error, **context)
