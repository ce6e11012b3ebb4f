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

"""In-memory event spec cache with TTL, hit-count expiry and global rotation."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import EventSpecResponse

logger = logging.getLogger(__name__)

TTL_SECONDS = 5 * 60
MAX_EVENT_COUNT = 50


@dataclass
class EventSpecCacheEntry:
    """Cached spec with its creation time and hit count."""

    spec: EventSpecResponse
    timestamp: float
    event_count: int = 0

    def is_expired(self, now: float) -> bool:
        """Check whether the entry outlived its TTL or its hit budget."""
        return now - self.timestamp > TTL_SECONDS or self.event_count >= MAX_EVENT_COUNT

    def touch(self) -> None:
        self.event_count += 1


class EventSpecCache:
    """
    Spec cache keyed by api key, stream id and event name.

    Entries expire after five minutes or fifty hits. Every fifty hits across
    the whole cache the oldest entry is evicted and the global counter resets.
    """

    def __init__(self, should_log: bool = False, clock: Callable[[], float] = time.time):
        self.should_log = should_log
        self._clock = clock
        self._cache: dict[str, EventSpecCacheEntry] = {}
        self._global_event_count = 0
        self._lock = threading.RLock()

    @staticmethod
    def _generate_key(api_key: str, stream_id: str, event_name: str) -> str:
        return f"{api_key}:{stream_id}:{event_name}"

    def get(self, api_key: str, stream_id: str, event_name: str) -> EventSpecResponse | None:
        """Return the cached spec, or None on a miss or an expired entry."""
        key = self._generate_key(api_key, stream_id, event_name)

        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                if self.should_log:
                    logger.debug(f"[EventSpecCache] Cache miss for key: {key}")
                return None

            if entry.is_expired(self._clock()):
                if self.should_log:
                    logger.debug(f"[EventSpecCache] Cache entry expired for key: {key}")
                del self._cache[key]
                return None

            if self.should_log:
                logger.debug(f"[EventSpecCache] Cache hit for key: {key}")

            entry.touch()
            self._global_event_count += 1

            if self._global_event_count >= MAX_EVENT_COUNT:
                self._evict_oldest()
                self._global_event_count = 0

            return entry.spec

    def set(self, api_key: str, stream_id: str, event_name: str, spec: EventSpecResponse) -> None:
        """Store a spec, replacing any previous entry and resetting its hit count."""
        key = self._generate_key(api_key, stream_id, event_name)
        with self._lock:
            self._cache[key] = EventSpecCacheEntry(spec=spec, timestamp=self._clock())
        if self.should_log:
            logger.debug(f"[EventSpecCache] Cached spec for key: {key}")

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        # min() keeps the first inserted entry on timestamp ties
        oldest_key = min(self._cache, key=lambda k: self._cache[k].timestamp)
        del self._cache[oldest_key]
        if self.should_log:
            logger.debug(f"[EventSpecCache] Evicted oldest entry: {oldest_key}")

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._global_event_count = 0
        if self.should_log:
            logger.debug("[EventSpecCache] Cache cleared")

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def global_event_count(self) -> int:
        return self._global_event_count

    def get_stats(self) -> dict[str, Any]:
        """Diagnostic snapshot of the cache contents."""
        now = self._clock()
        with self._lock:
            return {
                "size": len(self._cache),
                "global_event_count": self._global_event_count,
                "entries": [
                    {"key": key, "age": now - entry.timestamp, "event_count": entry.event_count}
                    for key, entry in self._cache.items()
                ],
            }
