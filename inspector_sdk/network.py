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
Collector transport.

Builds the JSON bodies posted to ``{base_url}/inspector/v1/track`` and sends
them either as a sampled batch or immediately.
"""

import json
import logging
import random
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from .config import InspectorConfig, InspectorEnv
from .event_spec.validator import ValidationResult
from .exceptions import TransportError
from .identity import UNKNOWN_ID, IdentityContext, new_guid

logger = logging.getLogger(__name__)

TRACK_PATH = "/inspector/v1/track"
LIB_PLATFORM = "python"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class NetworkCallsHandler:
    """Sends schema records to the collector."""

    def __init__(
        self,
        config: InspectorConfig,
        identity: IdentityContext,
        lib_version: str,
        client: httpx.AsyncClient | None = None,
        sampler: Callable[[], float] = random.random,
    ):
        self.config = config
        self.identity = identity
        self.lib_version = lib_version
        self.sampling_rate = 1.0
        self.should_log = bool(config.should_log)
        self._sending = False
        self._sampler = sampler
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{TRACK_PATH}"

    @property
    def is_sending(self) -> bool:
        return self._sending

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.network_timeout)
        return self._client

    def _base_body(self) -> dict[str, Any]:
        return {
            "apiKey": self.config.api_key,
            "appName": self.config.app_name,
            "appVersion": self.config.version,
            "libVersion": self.lib_version,
            "env": InspectorEnv(self.config.env).value,
            "libPlatform": LIB_PLATFORM,
            "messageId": new_guid(),
            "createdAt": _timestamp(),
            "anonymousId": self.identity.anonymous_id,
            "streamId": self.identity.stream_id,
            "samplingRate": self.sampling_rate,
        }

    def body_for_session_started_call(self) -> dict[str, Any]:
        body = self._base_body()
        body["type"] = "sessionStarted"
        return body

    def body_for_event_schema_call(
        self,
        event_name: str,
        event_properties: list[dict[str, Any]],
        validation: ValidationResult | None = None,
        event_id: str | None = None,
        event_hash: str | None = None,
    ) -> dict[str, Any]:
        """
        Build an event body.

        Args:
            event_name: Name of the tracked event
            event_properties: Serialized schema nodes, annotated with validation results if any
            validation: Result of validating the event against its spec
            event_id: Tracking plan id of an event reported by generated code
            event_hash: Hash of the generated event definition
        """
        body = self._base_body()
        body["type"] = "event"
        body["eventName"] = event_name
        body["eventProperties"] = event_properties

        if event_id is not None:
            body["avoFunction"] = True
            body["eventId"] = event_id
            body["eventHash"] = event_hash

        if validation is not None:
            body["eventSpecMetadata"] = validation.event_spec_metadata.to_wire()
            if validation.event_id is not None:
                body["eventId"] = validation.event_id
            if validation.variant_id is not None:
                body["variantId"] = validation.variant_id
            if validation.validation_errors:
                body["validationErrors"] = [error.to_wire() for error in validation.validation_errors]
        return body

    def _fix_anonymous_ids(self, events: list[dict[str, Any]]) -> None:
        known = None
        for event in events:
            anonymous_id = event.get("anonymousId")
            if anonymous_id and anonymous_id != UNKNOWN_ID:
                known = anonymous_id
        for event in events:
            if event.get("anonymousId") == UNKNOWN_ID:
                event["anonymousId"] = known if known is not None else self.identity.anonymous_id

    async def _post(self, events: list[dict[str, Any]]) -> None:
        try:
            response = await self._get_client().post(
                self.endpoint,
                content=json.dumps(events, default=str),
                headers={"Content-Type": "text/plain"},
                timeout=self.config.network_timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError("Request timed out", details={"error": str(e)})
        except httpx.HTTPError as e:
            raise TransportError("Request failed", details={"error": str(e)})

        if response.status_code != 200:
            raise TransportError(f"Error {response.status_code}: {response.reason_phrase}", status_code=response.status_code)

        try:
            sampling_rate = response.json().get("samplingRate")
        except (ValueError, AttributeError):
            sampling_rate = None
        if isinstance(sampling_rate, (int, float)) and not isinstance(sampling_rate, bool):
            self.sampling_rate = float(sampling_rate)

    async def call_inspector_with_batch_body(self, events: list[dict[str, Any] | None]) -> None:
        """
        Send a batch, subject to the sampling rate.

        Raises:
            TransportError: if another batch is in flight or the request fails.
        """
        if self._sending:
            raise TransportError(
                "Batch sending cancelled because another batch sending is in progress. "
                "Your events will be sent with next batch."
            )

        batch = [event for event in events if event is not None]
        self._fix_anonymous_ids(batch)
        if not batch:
            return

        if self._sampler() > self.sampling_rate:
            if self.should_log:
                logger.info("[Inspector] Last event schema dropped due to sampling rate.")
            return

        if self.should_log:
            for event in batch:
                if event.get("type") == "sessionStarted":
                    logger.info("[Inspector] Sending session started event.")
                elif event.get("type") == "event":
                    logger.info(
                        f"[Inspector] Sending event {event.get('eventName')} "
                        f"with schema {json.dumps(event.get('eventProperties'), default=str)}"
                    )

        self._sending = True
        try:
            await self._post(batch)
        finally:
            self._sending = False

    async def call_inspector_immediately(self, event: dict[str, Any]) -> None:
        """
        Send one validated event right away. Sampling does not apply.

        Raises:
            TransportError: if the request fails.
        """
        self._fix_anonymous_ids([event])
        if self.should_log:
            logger.info(f"[Inspector] Sending validated event {event.get('eventName')} immediately.")
        await self._post([event])

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
