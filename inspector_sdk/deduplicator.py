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
Event deduplication.

An event can reach the inspector twice: once from generated tracking code and
once from a manual call with the same name and properties. Within a short
window the second report is dropped.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from .schema import extract_schema, schema_to_dicts

logger = logging.getLogger(__name__)

DEDUP_WINDOW_SECONDS = 0.3


def _deep_equals(left: Any, right: Any) -> bool:
    """Structural equality where booleans never equal numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left) != set(right):
            return False
        return all(_deep_equals(value, right[key]) for key, value in left.items())
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(_deep_equals(a, b) for a, b in zip(left, right))
    if isinstance(left, (Mapping, list, tuple)) or isinstance(right, (Mapping, list, tuple)):
        return False
    return left == right


class EventDeduplicator:
    """
    Remembers recent events per source and reports cross-source duplicates.

    Events from generated code and manual events are kept apart. An event is a
    duplicate when the other source saw the same name with equal properties
    within the window; both records are then forgotten so a third report goes
    through.
    """

    def __init__(self, window_seconds: float = DEDUP_WINDOW_SECONDS, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        # event name -> (recorded at, properties)
        self._generated_events: dict[str, tuple[float, Any]] = {}
        self._manual_events: dict[str, tuple[float, Any]] = {}
        self._lock = threading.RLock()

    def should_register_event(self, event_name: str, params: Any, from_generated_code: bool = False) -> bool:
        """Record the event and return False when the other source already reported it."""
        with self._lock:
            self._clear_old_events()
            now = self._clock()

            if from_generated_code:
                self._generated_events[event_name] = (now, params)
                others = self._manual_events
            else:
                self._manual_events[event_name] = (now, params)
                others = self._generated_events

            seen = others.get(event_name)
            if seen is None or not _deep_equals(params, seen[1]):
                return True

            self._generated_events.pop(event_name, None)
            self._manual_events.pop(event_name, None)
            logger.debug(f"[Inspector] Deduplicated event {event_name}")
            return False

    def should_register_schema_from_manually(self, event_name: str, event_schema: list[dict[str, Any]]) -> bool:
        """Return False when generated code recently reported an event with the same name and schema."""
        with self._lock:
            self._clear_old_events()

            seen = self._generated_events.get(event_name)
            if seen is None or not _deep_equals(event_schema, schema_to_dicts(extract_schema(seen[1]))):
                return True

            del self._generated_events[event_name]
            logger.debug(f"[Inspector] Deduplicated schema of {event_name}")
            return False

    def has_seen_event_params(self, params: Any, check_generated: bool) -> bool:
        """Check whether any recent event of one source carried these properties."""
        with self._lock:
            events = self._generated_events if check_generated else self._manual_events
            return any(_deep_equals(params, seen) for _, seen in events.values())

    def _clear_old_events(self) -> None:
        cutoff = self._clock() - self.window_seconds
        for events in (self._generated_events, self._manual_events):
            for name in [name for name, (recorded_at, _) in events.items() if recorded_at < cutoff]:
                del events[name]

    def clear(self) -> None:
        with self._lock:
            self._generated_events.clear()
            self._manual_events.clear()
