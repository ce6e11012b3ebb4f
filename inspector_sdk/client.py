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
Inspector Client Implementation

Main entry point: infers the schema of tracked events, validates them against
the tracking plan when a spec is available, and routes them to the collector.
"""

import asyncio
import logging
from typing import Any

import httpx

from .batcher import Batcher
from .config import InspectorConfig, InspectorEnv
from .deduplicator import EventDeduplicator
from .event_spec import (
    EventSpecCache,
    EventSpecFetcher,
    EventSpecResponse,
    FetchEventSpecParams,
    annotate_schema,
    validate_event,
)
from .exceptions import TransportError
from .identity import UNKNOWN_ID, IdentityContext
from .network import NetworkCallsHandler
from .schema import EncryptionContext, SchemaNode, extract_schema, schema_to_dicts
from .session import SessionTracker
from .storage import FileStorage, InspectorStorage, MemoryStorage

logger = logging.getLogger(__name__)


class Inspector:
    """
    Event schema inspector.

    Every tracked event has its schema inferred. In dev and staging, when the
    tracking plan has a spec for the event, the event is validated and sent
    immediately; otherwise it joins the regular sampled batch. Tracking never
    raises: failures are logged and the event falls back to the batch.
    """

    def __init__(
        self,
        api_key: str | None = None,
        env: InspectorEnv | str | None = None,
        version: str | None = None,
        app_name: str | None = None,
        public_encryption_key: str | None = None,
        config: InspectorConfig | None = None,
        storage: InspectorStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the inspector.

        Args:
            api_key: Inspector API key
            env: Environment, one of dev, staging or prod
            version: Version of the instrumented application
            app_name: Name of the instrumented application
            public_encryption_key: Hex P-256 public key used to encrypt property values
            config: Optional configuration object; explicit arguments are ignored when given
            storage: Storage backend; defaults to a file when configured, memory otherwise
            http_client: Shared HTTP client for the collector and spec requests

        Raises:
            ConfigurationError: if the api key or version is missing.
        """
        from . import __version__

        self.config = config or InspectorConfig(
            api_key=api_key,
            env=env,
            version=version,
            app_name=app_name or "",
            public_encryption_key=public_encryption_key,
        )
        logging.getLogger("inspector_sdk").setLevel(self.config.log_level)

        if storage is None:
            storage = FileStorage(self.config.storage_path) if self.config.storage_path else MemoryStorage()
        self.storage = storage
        if not self.storage.is_initialized():
            self.storage.init(bool(self.config.should_log), self.config.storage_suffix)

        self.identity = IdentityContext(self.storage)
        self.network = NetworkCallsHandler(self.config, self.identity, __version__, client=http_client)
        self.batcher = Batcher(
            self.network,
            self.storage,
            batch_size=self.config.batch_size,
            batch_flush_seconds=self.config.batch_flush_seconds,
            should_log=bool(self.config.should_log),
        )
        self.session_tracker = SessionTracker(self.batcher, self.storage)
        self.event_spec_cache = EventSpecCache(should_log=bool(self.config.should_log))
        self.event_spec_fetcher = EventSpecFetcher(
            timeout=self.config.spec_fetch_timeout,
            should_log=bool(self.config.should_log),
            env=self.config.env,
            base_url=self.config.base_url,
            client=http_client,
        )
        self.encryption = EncryptionContext(self.config.public_encryption_key, InspectorEnv(self.config.env))
        self.deduplicator = EventDeduplicator()

        if self.config.public_encryption_key and not self.config.allows_validation:
            logger.warning("[Inspector] Property value encryption is disabled in production.")

    @property
    def env(self) -> InspectorEnv:
        return InspectorEnv(self.config.env)

    @property
    def should_log(self) -> bool:
        return bool(self.config.should_log)

    def enable_logging(self, enable: bool) -> None:
        """Toggle verbose logging on every component."""
        self.config.should_log = enable
        self.network.should_log = enable
        self.batcher.should_log = enable
        self.event_spec_cache.should_log = enable
        self.event_spec_fetcher.should_log = enable
        self.storage.should_log = enable

    def set_batch_size(self, batch_size: int) -> None:
        self.config.update(batch_size=batch_size)
        self.batcher.batch_size = batch_size

    def set_batch_flush_seconds(self, batch_flush_seconds: float) -> None:
        self.config.update(batch_flush_seconds=batch_flush_seconds)
        self.batcher.batch_flush_seconds = batch_flush_seconds

    def extract_schema(self, event_properties: Any) -> list[SchemaNode]:
        """Infer the schema of event properties, encrypting values when configured."""
        return extract_schema(event_properties, self.encryption)

    def track_schema(self, event_name: str, event_properties: list[dict[str, Any]]) -> None:
        """Queue an already serialized schema on the batched path."""
        try:
            if not self.deduplicator.should_register_schema_from_manually(event_name, event_properties):
                if self.should_log:
                    logger.info(f"[Inspector] Deduplicated schema of {event_name}, already reported by generated code")
                return
            self.session_tracker.start_or_prolong_session()
            self.batcher.handle_track_schema(event_name, event_properties)
        except Exception as e:
            logger.error(f"[Inspector] Failed to track schema for {event_name}: {e}")

    async def track_schema_from_event(self, event_name: str, event_properties: Any) -> list[dict[str, Any]]:
        """
        Infer, validate and send the schema of one event.

        Args:
            event_name: Name of the tracked event
            event_properties: Mapping of property name to value

        Returns:
            The serialized schema that was tracked, or an empty list when the
            event duplicates one just reported by generated code.
        """
        return await self._track_event(event_name, event_properties)

    async def track_schema_from_generated_event(
        self, event_name: str, event_properties: Any, event_id: str, event_hash: str | None = None
    ) -> list[dict[str, Any]]:
        """
        Track an event reported by generated tracking code.

        The body is flagged as coming from generated code and carries the
        tracking plan event id and hash. Returns an empty list when the event
        duplicates one just tracked manually.
        """
        return await self._track_event(event_name, event_properties, event_id=event_id, event_hash=event_hash)

    async def _track_event(
        self,
        event_name: str,
        event_properties: Any,
        event_id: str | None = None,
        event_hash: str | None = None,
    ) -> list[dict[str, Any]]:
        from_generated_code = event_id is not None
        try:
            if not self.deduplicator.should_register_event(event_name, event_properties, from_generated_code):
                if self.should_log:
                    logger.info(f"[Inspector] Deduplicated event {event_name}")
                return []

            if self.should_log:
                logger.info(f"[Inspector] Supplied event {event_name} with params {list(event_properties or {})}")

            schema = self.extract_schema(event_properties)
            self.session_tracker.start_or_prolong_session()

            spec = await self._lookup_spec(event_name)
            if spec is None:
                self.batcher.handle_track_schema(event_name, schema_to_dicts(schema), event_id, event_hash)
            else:
                await self._send_validated(event_name, schema, spec, event_id, event_hash)

            return schema_to_dicts(schema)
        except Exception as e:
            logger.error(f"[Inspector] Failed to track event {event_name}: {e}")
            return []

    async def _lookup_spec(self, event_name: str) -> EventSpecResponse | None:
        if not self.config.allows_validation:
            return None

        stream_id = self.identity.stream_id
        if stream_id == UNKNOWN_ID:
            # Storage not ready yet, the event goes out unvalidated
            return None

        spec = self.event_spec_cache.get(self.config.api_key, stream_id, event_name)
        if spec is not None:
            return spec

        params = FetchEventSpecParams(api_key=self.config.api_key, stream_id=stream_id, event_name=event_name)
        try:
            spec = await asyncio.wait_for(self.event_spec_fetcher.fetch(params), timeout=self.config.spec_fetch_timeout)
        except asyncio.TimeoutError:
            if self.should_log:
                logger.warning(f"[Inspector] Timed out waiting for the event spec of {event_name}")
            return None

        if spec is not None:
            self.event_spec_cache.set(self.config.api_key, stream_id, event_name, spec)
        return spec

    async def _send_validated(
        self,
        event_name: str,
        schema: list[SchemaNode],
        spec: EventSpecResponse,
        event_id: str | None = None,
        event_hash: str | None = None,
    ) -> None:
        result = validate_event(schema, spec)
        properties = annotate_schema(schema_to_dicts(schema), result.property_results)
        body = self.network.body_for_event_schema_call(
            event_name, properties, result, event_id=event_id, event_hash=event_hash
        )

        if self.should_log and result.validation_errors:
            logger.info(f"[Inspector] Event {event_name} has {len(result.validation_errors)} validation error(s)")

        try:
            await self.network.call_inspector_immediately(body)
        except TransportError as e:
            if self.should_log:
                logger.warning(f"[Inspector] Immediate send of {event_name} failed, falling back to batch: {e}")
            self.batcher.handle_track_schema(event_name, schema_to_dicts(schema), event_id, event_hash)
        except Exception as e:
            logger.error(f"[Inspector] Immediate send of {event_name} failed, falling back to batch: {e}")
            self.batcher.handle_track_schema(event_name, schema_to_dicts(schema), event_id, event_hash)

    async def flush(self) -> None:
        """Send queued events now."""
        await self.batcher.flush()

    async def close(self) -> None:
        """Flush queued events and release HTTP clients."""
        try:
            await self.flush()
        finally:
            await self.network.aclose()
            await self.event_spec_fetcher.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
