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
Event Spec Fetcher

Fetches tracking-plan event specs from ``GET {base_url}/trackingPlan/eventSpec``.
"""

import asyncio
import json
import logging

import httpx

from ..config import DEFAULT_BASE_URL, InspectorEnv
from .models import EventSpecResponse, FetchEventSpecParams, has_expected_shape, parse_event_spec_response

logger = logging.getLogger(__name__)

EVENT_SPEC_PATH = "/trackingPlan/eventSpec"


class EventSpecFetcher:
    """
    Fetches event specs, coalescing concurrent requests for the same stream and event.

    ``fetch`` degrades to ``None`` on any failure (non-200 status, network
    error, timeout, malformed body) and never raises. Specs are only fetched
    in the dev and staging environments.
    """

    def __init__(
        self,
        timeout: float = 2.0,
        should_log: bool = False,
        env: InspectorEnv | str = InspectorEnv.DEV,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds
            should_log: Emit debug logs for every request
            env: Environment the SDK runs in
            base_url: Base URL of the spec API
            client: Optional HTTP client; one is created on first use otherwise
        """
        self.timeout = timeout
        self.should_log = should_log
        self.env = InspectorEnv(env)
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._in_flight: dict[str, asyncio.Task] = {}

    @staticmethod
    def _generate_request_key(params: FetchEventSpecParams) -> str:
        return f"{params.stream_id}:{params.event_name}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def fetch(self, params: FetchEventSpecParams) -> EventSpecResponse | None:
        """
        Fetch the spec for an event.

        A call made while an identical request is outstanding shares that
        request's result instead of issuing a new one.
        """
        key = self._generate_request_key(params)
        task = self._in_flight.get(key)

        if task is not None:
            if self.should_log:
                logger.debug(
                    f"[EventSpecFetcher] Returning existing in-flight request for "
                    f"streamId={params.stream_id}, eventName={params.event_name}"
                )
        else:
            task = asyncio.ensure_future(self._fetch_internal(params))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))

        # Shielded so one caller giving up does not cancel the shared request
        return await asyncio.shield(task)

    async def _fetch_internal(self, params: FetchEventSpecParams) -> EventSpecResponse | None:
        if not self.env.allows_validation:
            return None

        url = f"{self.base_url}{EVENT_SPEC_PATH}"
        if self.should_log:
            logger.debug(f"[EventSpecFetcher] Fetching event spec for: {params.event_name}")
            logger.debug(f"[EventSpecFetcher] Using base URL: {self.base_url}")

        try:
            response = await self._get_client().get(url, params=params.to_query(), timeout=self.timeout)
        except httpx.TimeoutException:
            if self.should_log:
                logger.error(f"[EventSpecFetcher] Request timed out after {self.timeout}s")
            return None
        except httpx.HTTPError as e:
            if self.should_log:
                logger.error(f"[EventSpecFetcher] Network error occurred: {e}")
            return None

        if response.status_code != 200:
            if self.should_log:
                logger.warning(f"[EventSpecFetcher] Request failed with status: {response.status_code}")
            return None

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            if self.should_log:
                logger.error(f"[EventSpecFetcher] Failed to parse response: {e}")
            return None

        if not has_expected_shape(payload):
            if self.should_log:
                logger.warning(f"[EventSpecFetcher] Invalid event spec response for: {params.event_name}")
            return None

        try:
            spec = parse_event_spec_response(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            if self.should_log:
                logger.warning(f"[EventSpecFetcher] Malformed event spec for {params.event_name}: {e}")
            return None

        if self.should_log:
            logger.debug(f"[EventSpecFetcher] Successfully fetched event spec for: {params.event_name}")
        return spec

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
