# Copyright 2025 ATP Project Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Inspector SDK Storage

Key/value persistence for identity, session and queued events. Values are
stored JSON encoded under ``key + suffix``.
"""

import asyncio
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class InspectorStorage(ABC):
    """Base class for SDK storage backends."""

    def __init__(self):
        self.should_log = False
        self.suffix = ""
        self._initialized = False
        self._on_init: list[Callable[[], None]] = []
        self._lock = threading.RLock()

    def init(self, should_log: bool = False, suffix: str = "") -> None:
        """Open the backend and run every callback queued with :meth:`run_after_init`."""
        self.should_log = should_log
        self.suffix = suffix
        self._open()
        with self._lock:
            self._initialized = True
            pending, self._on_init = self._on_init, []
        for func in pending:
            func()

    def is_initialized(self) -> bool:
        return self._initialized

    def run_after_init(self, func: Callable[[], None]) -> None:
        """Run ``func`` now if initialized, otherwise once :meth:`init` completes."""
        with self._lock:
            if not self._initialized:
                self._on_init.append(func)
                return
        func()

    def get_item(self, key: str) -> Any:
        """Return the stored value, or None when missing or not yet initialized."""
        if not self._initialized:
            return None
        raw = self._read(key + self.suffix)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            if self.should_log:
                logger.error(f"[Inspector] Storage getItem error for {key}: {e}")
            return None

    async def get_item_async(self, key: str) -> Any:
        """Wait for initialization, then return the stored value."""
        if self._initialized:
            return self.get_item(key)
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def resolve():
            loop.call_soon_threadsafe(lambda: future.done() or future.set_result(None))

        self.run_after_init(resolve)
        await future
        return self.get_item(key)

    def set_item(self, key: str, value: Any) -> None:
        def write():
            try:
                self._write(key + self.suffix, json.dumps(value, default=str))
            except StorageError as e:
                if self.should_log:
                    logger.error(f"[Inspector] Storage setItem error: {e}")

        self.run_after_init(write)

    def remove_item(self, key: str) -> None:
        def delete():
            try:
                self._delete(key + self.suffix)
            except StorageError as e:
                if self.should_log:
                    logger.error(f"[Inspector] Storage removeItem error: {e}")

        self.run_after_init(delete)

    @abstractmethod
    def _open(self) -> None:
        """Prepare the backend."""

    @abstractmethod
    def _read(self, key: str) -> str | None:
        """Return the raw JSON string stored under ``key``."""

    @abstractmethod
    def _write(self, key: str, raw: str) -> None:
        """Store a raw JSON string."""

    @abstractmethod
    def _delete(self, key: str) -> None:
        """Remove ``key``."""


class MemoryStorage(InspectorStorage):
    """Process-local storage. Nothing survives a restart."""

    def __init__(self):
        super().__init__()
        self._items: dict[str, str] = {}

    def _open(self) -> None:
        pass

    def _read(self, key: str) -> str | None:
        return self._items.get(key)

    def _write(self, key: str, raw: str) -> None:
        self._items[key] = raw

    def _delete(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage(InspectorStorage):
    """Storage backed by a single JSON document on disk."""

    def __init__(self, path: str | os.PathLike):
        super().__init__()
        self.path = Path(path)
        self._items: dict[str, str] = {}

    def _open(self) -> None:
        if not self.path.exists():
            self._items = {}
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[Inspector] Could not read storage file {self.path}, starting empty: {e}")
            data = {}
        self._items = {key: value for key, value in data.items() if isinstance(value, str)}

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._items, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write storage file {self.path}", {"error": str(e)})

    def _read(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def _write(self, key: str, raw: str) -> None:
        with self._lock:
            self._items[key] = raw
            self._flush()

    def _delete(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is not None:
                self._flush()
