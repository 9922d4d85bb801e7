"""Key-value settings store backed by a JSON file.

Holds the little state that must survive restarts: pinned order,
collapsed folders and the onboarding flag. Everything else is rebuilt
from the host on startup.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
from loguru import logger

PINNED_IDS = "pinned_ids"
COLLAPSED_FOLDERS = "collapsed_folders"
ONBOARDING_DONE = "onboarding_done"


class SettingsStore:
    """
    Async JSON settings file.

    Writes go to a temp file that replaces the real one, so a crash never
    leaves a half-written file. A store without a path lives in memory.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    async def load(self) -> Dict[str, Any]:
        """Read the settings file. Missing or corrupt files load as empty."""
        self._data = {}
        if self.path is not None and self.path.exists():
            try:
                async with aiofiles.open(self.path, 'r') as f:
                    raw = await f.read()
                data = json.loads(raw) if raw.strip() else {}
                if isinstance(data, dict):
                    self._data = data
                else:
                    logger.warning(f"Ignoring settings file {self.path}: not an object")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
        self._loaded = True
        logger.debug(f"Loaded settings: {sorted(self._data)}")
        return dict(self._data)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self.save()

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self.save()

    async def save(self) -> None:
        if self.path is None:
            return
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            async with aiofiles.open(tmp_path, 'w') as f:
                await f.write(json.dumps(self._data, indent=2, sort_keys=True))
                await f.flush()
            os.replace(tmp_path, self.path)

    # Typed accessors

    def pinned_ids(self) -> List[str]:
        return [str(i) for i in self.get(PINNED_IDS, [])]

    async def set_pinned_ids(self, pinned_ids: List[str]) -> None:
        await self.set(PINNED_IDS, list(pinned_ids))

    def collapsed_folders(self) -> List[str]:
        return [str(i) for i in self.get(COLLAPSED_FOLDERS, [])]

    async def toggle_folder(self, folder_id: str) -> bool:
        """Flip a folder's collapsed state. Returns the new state."""
        collapsed = self.collapsed_folders()
        if folder_id in collapsed:
            collapsed.remove(folder_id)
            is_collapsed = False
        else:
            collapsed.append(folder_id)
            is_collapsed = True
        await self.set(COLLAPSED_FOLDERS, collapsed)
        return is_collapsed

    def onboarding_done(self) -> bool:
        return bool(self.get(ONBOARDING_DONE, False))
