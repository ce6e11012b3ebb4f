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
Event batching.

Queued bodies are persisted so they survive restarts. A batch goes out when
the queue length is a multiple of the batch size or when the flush interval
has elapsed since the last attempt; a failed batch is put back in the queue.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from .exceptions import TransportError
from .network import NetworkCallsHandler
from .storage import InspectorStorage

logger = logging.getLogger(__name__)

EVENTS_KEY = "AvoInspectorEvents"
MAX_QUEUED_EVENTS = 1000


class Batcher:
    """Queues schema bodies and hands them to the network layer in batches."""

    def __init__(
        self,
        network: NetworkCallsHandler,
        storage: InspectorStorage,
        batch_size: int = 30,
        batch_flush_seconds: float = 30.0,
        should_log: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.network = network
        self.storage = storage
        self.batch_size = batch_size
        self.batch_flush_seconds = batch_flush_seconds
        self.should_log = should_log
        self._clock = clock
        self.events: list[dict[str, Any]] = []
        self.batch_flush_attempt_timestamp = clock()
        self._pending: set[asyncio.Task] = set()

        storage.run_after_init(self._restore)

    def _restore(self) -> None:
        saved = self.storage.get_item(EVENTS_KEY)
        if isinstance(saved, list) and saved:
            self.events = self.events + [event for event in saved if isinstance(event, dict)]
            self.check_if_batch_needs_to_be_sent()

    def handle_session_started(self) -> None:
        self.enqueue(self.network.body_for_session_started_call())

    def handle_track_schema(
        self,
        event_name: str,
        event_properties: list[dict[str, Any]],
        event_id: str | None = None,
        event_hash: str | None = None,
    ) -> None:
        self.enqueue(
            self.network.body_for_event_schema_call(
                event_name, event_properties, event_id=event_id, event_hash=event_hash
            )
        )
        if self.should_log:
            logger.info(f"[Inspector] Saved event {event_name} with schema {json.dumps(event_properties, default=str)}")

    def enqueue(self, body: dict[str, Any]) -> None:
        """Queue a prepared body and flush if the batch is due."""
        self.events.append(body)
        self._save_events()
        self.check_if_batch_needs_to_be_sent()

    def check_if_batch_needs_to_be_sent(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Sending needs an event loop; the queue is retried on the next call made from one
            return

        now = self._clock()
        send_by_size = len(self.events) % self.batch_size == 0
        send_by_time = now - self.batch_flush_attempt_timestamp >= self.batch_flush_seconds
        if not (send_by_size or send_by_time):
            return

        self.batch_flush_attempt_timestamp = now
        sending, self.events = self.events, []
        task = asyncio.ensure_future(self._send(sending))
        self._pending.add(task)
        task.add_done_callback(self._on_send_done)

    def _on_send_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Inspector] Unexpected error while sending batch: {task.exception()}")

    async def _send(self, sending: list[dict[str, Any]]) -> None:
        try:
            await self.network.call_inspector_with_batch_body(sending)
        except TransportError as e:
            self.events = self.events + sending
            if self.should_log:
                logger.warning(
                    f"[Inspector] Batch sending failed: {e}. We will attempt to send your schemas with next batch"
                )
        else:
            if self.should_log:
                logger.info("[Inspector] Batch sent successfully.")
        self._save_events()

    async def flush(self) -> None:
        """Send everything queued right now, regardless of size or interval."""
        await self.drain()
        if not self.events:
            return
        self.batch_flush_attempt_timestamp = self._clock()
        sending, self.events = self.events, []
        await self._send(sending)

    async def drain(self) -> None:
        """Wait for batches already in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _save_events(self) -> None:
        if len(self.events) > MAX_QUEUED_EVENTS:
            self.events = self.events[len(self.events) - MAX_QUEUED_EVENTS :]
        self.storage.set_item(EVENTS_KEY, self.events)
