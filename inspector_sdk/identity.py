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

"""Persisted anonymous, installation and stream identifiers."""

import logging
import time
import uuid
from collections.abc import Callable

from .storage import InspectorStorage

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"

ANONYMOUS_ID_KEY = "AvoInspectorAnonymousId"
INSTALLATION_ID_KEY = "AvoInstallationId"
STREAM_ID_KEY = "AvoInspectorStreamId"
STREAM_CREATED_AT_KEY = "AvoInspectorStreamIdCreatedAt"
STREAM_LAST_ACTIVITY_KEY = "AvoInspectorStreamIdLastActivityAt"

STREAM_MAX_AGE_SECONDS = 4 * 60 * 60
STREAM_IDLE_SECONDS = 2 * 60 * 60


def new_guid() -> str:
    return str(uuid.uuid4())


class IdentityContext:
    """
    Identity values for one SDK instance.

    Every id is read from storage on first use and generated and persisted
    when absent. While storage is not initialized each id reads as
    ``"unknown"`` and nothing is cached, so a later read picks up the
    persisted value.
    """

    def __init__(self, storage: InspectorStorage, clock: Callable[[], float] = time.time):
        self.storage = storage
        self._clock = clock
        self._anonymous_id: str | None = None
        self._installation_id: str | None = None
        self._stream_id: str | None = None
        self._stream_created_at: float | None = None
        self._stream_last_activity_at: float | None = None

    def _load_or_create(self, key: str) -> str:
        stored = self.storage.get_item(key)
        if isinstance(stored, str) and stored:
            return stored
        generated = new_guid()
        self.storage.set_item(key, generated)
        return generated

    @property
    def anonymous_id(self) -> str:
        if self._anonymous_id is None:
            if not self.storage.is_initialized():
                return UNKNOWN_ID
            self._anonymous_id = self._load_or_create(ANONYMOUS_ID_KEY)
        return self._anonymous_id

    @property
    def installation_id(self) -> str:
        if self._installation_id is None:
            if not self.storage.is_initialized():
                return UNKNOWN_ID
            self._installation_id = self._load_or_create(INSTALLATION_ID_KEY)
        return self._installation_id

    @property
    def stream_id(self) -> str:
        """Ephemeral id, renewed once it is older than four hours and idle for two."""
        if self._stream_id is not None and not self._stream_expired():
            self._touch_stream()
            return self._stream_id

        if not self.storage.is_initialized():
            return UNKNOWN_ID

        if self._stream_id is None:
            self._load_stream()

        if self._stream_id is None or self._stream_expired():
            return self._renew_stream()

        self._touch_stream()
        return self._stream_id

    def _stream_expired(self) -> bool:
        if self._stream_created_at is None or self._stream_last_activity_at is None:
            return False
        now = self._clock()
        return (
            now - self._stream_created_at > STREAM_MAX_AGE_SECONDS
            and now - self._stream_last_activity_at > STREAM_IDLE_SECONDS
        )

    def _load_stream(self) -> None:
        stored = self.storage.get_item(STREAM_ID_KEY)
        if not isinstance(stored, str) or not stored:
            return
        now = self._clock()
        created_at = self.storage.get_item(STREAM_CREATED_AT_KEY)
        last_activity_at = self.storage.get_item(STREAM_LAST_ACTIVITY_KEY)
        self._stream_id = stored
        self._stream_created_at = float(created_at) if isinstance(created_at, (int, float)) else now
        self._stream_last_activity_at = (
            float(last_activity_at) if isinstance(last_activity_at, (int, float)) else now
        )

    def _renew_stream(self) -> str:
        now = self._clock()
        self._stream_id = new_guid()
        self._stream_created_at = now
        self._stream_last_activity_at = now
        self.storage.set_item(STREAM_ID_KEY, self._stream_id)
        self.storage.set_item(STREAM_CREATED_AT_KEY, now)
        self.storage.set_item(STREAM_LAST_ACTIVITY_KEY, now)
        logger.debug(f"[Inspector] Started new stream {self._stream_id}")
        return self._stream_id

    def _touch_stream(self) -> None:
        now = self._clock()
        self._stream_last_activity_at = now
        self.storage.set_item(STREAM_LAST_ACTIVITY_KEY, now)

    def clear_cache(self) -> None:
        """Forget cached ids; the next read goes back to storage."""
        self._anonymous_id = None
        self._installation_id = None
        self._stream_id = None
        self._stream_created_at = None
        self._stream_last_activity_at = None
