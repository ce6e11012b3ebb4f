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

"""Session tracking."""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from .identity import new_guid
from .storage import InspectorStorage

if TYPE_CHECKING:
    from .batcher import Batcher

SESSION_ID_KEY = "AvoInspectorSessionId"
SESSION_TIMESTAMP_KEY = "AvoInspectorSessionTimestamp"
SESSION_LENGTH_SECONDS = 5 * 60


class SessionTracker:
    """Starts a new session after five minutes without tracked events."""

    def __init__(
        self,
        batcher: "Batcher",
        storage: InspectorStorage,
        clock: Callable[[], float] = time.time,
        session_length: float = SESSION_LENGTH_SECONDS,
    ):
        self.batcher = batcher
        self.storage = storage
        self.session_length = session_length
        self._clock = clock

        last = storage.get_item(SESSION_TIMESTAMP_KEY)
        self.last_session_timestamp: float = float(last) if isinstance(last, (int, float)) else 0.0

        stored_id = storage.get_item(SESSION_ID_KEY)
        if isinstance(stored_id, str) and stored_id:
            self.session_id = stored_id
        else:
            self._update_session_id()

    def start_or_prolong_session(self, at_time: float | None = None) -> None:
        now = self._clock() if at_time is None else at_time
        if now - self.last_session_timestamp > self.session_length:
            self._update_session_id()
            self.batcher.handle_session_started()
        self.last_session_timestamp = now
        self.storage.set_item(SESSION_TIMESTAMP_KEY, now)

    def _update_session_id(self) -> None:
        self.session_id = new_guid()
        self.storage.set_item(SESSION_ID_KEY, self.session_id)
