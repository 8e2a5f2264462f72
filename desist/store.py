"""
Desist - Local Key/Value Store
JSON-file persistence for cached app data and the local session.

Two stores are used by the daemon:
- ~/.desist/cache.json    cached application data
- ~/.desist/session.json  authentication/session state
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import TransientIOError

logger = logging.getLogger(__name__)


class JsonFileStore:
    """
    Key/value store backed by a single JSON file.

    The whole file is rewritten on every change. Values must be
    JSON-serializable.
    """

    def __init__(self, path: Path):
        self.path = path
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load entries from disk. Anything unreadable starts the store empty."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (ValueError, OSError) as e:
            logger.warning("Store %s is unreadable (%s), starting empty", self.path, e)
            return {}

        entries = data.get('entries') if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            logger.warning("Store %s has no entries mapping, starting empty", self.path)
            return {}
        return entries

    def _write(self, entries: Dict[str, Any]) -> None:
        """Write a snapshot of the entries to disk."""
        data = {
            'entries': entries,
            'last_updated': datetime.now().isoformat()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise TransientIOError(f"Could not write {self.path}: {e}") from e

    def _delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise TransientIOError(f"Could not delete {self.path}: {e}") from e

    async def _save(self) -> None:
        await asyncio.to_thread(self._write, dict(self._data))

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self._save()

    async def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            await self._save()

    async def clear(self) -> None:
        """Drop every entry and delete the backing file."""
        self._data = {}
        await asyncio.to_thread(self._delete)

    async def list_keys(self) -> List[str]:
        return list(self._data)
