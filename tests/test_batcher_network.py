"""Tests for the collector transport and the batcher."""

import json

import httpx
import pytest

from inspector_sdk.batcher import EVENTS_KEY, MAX_QUEUED_EVENTS, Batcher
from inspector_sdk.config import InspectorConfig
from inspector_sdk.exceptions import TransportError
from inspector_sdk.identity import UNKNOWN_ID, IdentityContext
from inspector_sdk.network import NetworkCallsHandler
from inspector_sdk.storage import MemoryStorage

COLLECTOR_URL = "http://collector.test"


class MockCollector:
    def __init__(self, status_code: int = 200, sampling_rate: float | None = None):
        self.status_code = status_code
        self.sampling_rate = sampling_rate
        self.batches: list[list[dict]] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.batches.append(json.loads(request.content))
        body = {} if self.sampling_rate is None else {"samplingRate": self.sampling_rate}
        return httpx.Response(self.status_code, json=body)


def build_network(collector: MockCollector, storage, sampler=lambda: 0.0) -> NetworkCallsHandler:
    config = InspectorConfig(
        api_key="key-1", env="dev", version="2.0.0", app_name="shop", base_url=COLLECTOR_URL, should_log=True
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(collector.handler))
    return NetworkCallsHandler(config, IdentityContext(storage), "1.0.0", client=client, sampler=sampler)


def test_event_body(storage):
    network = build_network(MockCollector(), storage)

    body = network.body_for_event_schema_call("Signup", [{"propertyName": "a", "propertyType": "int"}])

    assert body["type"] == "event"
    assert body["eventName"] == "Signup"
    assert body["eventProperties"] == [{"propertyName": "a", "propertyType": "int"}]
    assert body["apiKey"] == "key-1"
    assert body["appName"] == "shop"
    assert body["appVersion"] == "2.0.0"
    assert body["libVersion"] == "1.0.0"
    assert body["libPlatform"] == "python"
    assert body["env"] == "dev"
    assert body["samplingRate"] == 1.0
    assert body["createdAt"].endswith("Z")
    assert body["anonymousId"] != UNKNOWN_ID
    assert "eventSpecMetadata" not in body


def test_session_started_body(storage):
    network = build_network(MockCollector(), storage)

    body = network.body_for_session_started_call()

    assert body["type"] == "sessionStarted"
    assert "eventName" not in body


@pytest.mark.asyncio
async def test_batch_is_posted_as_text(storage):
    collector = MockCollector()
    network = build_network(collector, storage)

    await network.call_inspector_with_batch_body([network.body_for_session_started_call(), None])

    request = collector.requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{COLLECTOR_URL}/inspector/v1/track"
    assert request.headers["content-type"] == "text/plain"
    assert [event["type"] for event in collector.batches[0]] == ["sessionStarted"]


@pytest.mark.asyncio
async def test_sampling_rate_is_updated_and_applied(storage):
    collector = MockCollector(sampling_rate=0.1)
    network = build_network(collector, storage, sampler=lambda: 0.5)

    await network.call_inspector_with_batch_body([network.body_for_session_started_call()])
    assert network.sampling_rate == 0.1

    await network.call_inspector_with_batch_body([network.body_for_session_started_call()])
    assert len(collector.requests) == 1


@pytest.mark.asyncio
async def test_immediate_send_ignores_sampling(storage):
    collector = MockCollector()
    network = build_network(collector, storage, sampler=lambda: 0.99)
    network.sampling_rate = 0.0

    await network.call_inspector_immediately(network.body_for_event_schema_call("Signup", []))

    assert len(collector.requests) == 1


@pytest.mark.asyncio
async def test_error_status_raises(storage):
    network = build_network(MockCollector(status_code=500), storage)

    with pytest.raises(TransportError) as exc_info:
        await network.call_inspector_with_batch_body([network.body_for_session_started_call()])

    assert exc_info.value.status_code == 500
    assert network.is_sending is False


@pytest.mark.asyncio
async def test_connection_error_raises(storage):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    config = InspectorConfig(api_key="key-1", env="dev", version="2.0.0", base_url=COLLECTOR_URL)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    network = NetworkCallsHandler(config, IdentityContext(storage), "1.0.0", client=client)

    with pytest.raises(TransportError):
        await network.call_inspector_immediately(network.body_for_event_schema_call("Signup", []))


@pytest.mark.asyncio
async def test_concurrent_batch_is_rejected(storage):
    collector = MockCollector()
    network = build_network(collector, storage)
    network._sending = True

    with pytest.raises(TransportError):
        await network.call_inspector_with_batch_body([network.body_for_session_started_call()])

    assert collector.requests == []


@pytest.mark.asyncio
async def test_unknown_anonymous_ids_are_fixed(storage):
    collector = MockCollector()
    network = build_network(collector, storage)
    early = network.body_for_session_started_call()
    early["anonymousId"] = UNKNOWN_ID
    late = network.body_for_event_schema_call("Signup", [])

    await network.call_inspector_with_batch_body([early, late])

    sent = collector.batches[0]
    assert sent[0]["anonymousId"] == late["anonymousId"]
    assert sent[0]["anonymousId"] != UNKNOWN_ID


def build_batcher(collector, storage, clock, batch_size=2, batch_flush_seconds=30.0):
    network = build_network(collector, storage)
    return Batcher(
        network, storage, batch_size=batch_size, batch_flush_seconds=batch_flush_seconds, should_log=True, clock=clock
    )


@pytest.mark.asyncio
async def test_batch_sent_when_size_reached(storage, clock):
    collector = MockCollector()
    batcher = build_batcher(collector, storage, clock)

    batcher.handle_track_schema("A", [])
    await batcher.drain()
    assert collector.requests == []

    batcher.handle_track_schema("B", [])
    await batcher.drain()

    assert [event["eventName"] for event in collector.batches[0]] == ["A", "B"]
    assert batcher.events == []
    assert storage.get_item(EVENTS_KEY) == []


@pytest.mark.asyncio
async def test_batch_sent_when_interval_elapsed(storage, clock):
    collector = MockCollector()
    batcher = build_batcher(collector, storage, clock, batch_size=100, batch_flush_seconds=5.0)

    batcher.handle_track_schema("A", [])
    clock.advance(5)
    batcher.handle_track_schema("B", [])
    await batcher.drain()

    assert len(collector.batches[0]) == 2


@pytest.mark.asyncio
async def test_failed_batch_is_requeued(storage, clock):
    collector = MockCollector(status_code=503)
    batcher = build_batcher(collector, storage, clock)

    batcher.handle_track_schema("A", [])
    batcher.handle_track_schema("B", [])
    await batcher.drain()

    assert len(collector.requests) == 1
    assert [event["eventName"] for event in batcher.events] == ["A", "B"]
    assert len(storage.get_item(EVENTS_KEY)) == 2


@pytest.mark.asyncio
async def test_flush_sends_everything(storage, clock):
    collector = MockCollector()
    batcher = build_batcher(collector, storage, clock, batch_size=100)
    batcher.handle_session_started()
    batcher.handle_track_schema("A", [])

    await batcher.flush()

    assert [event["type"] for event in collector.batches[0]] == ["sessionStarted", "event"]
    assert batcher.events == []


@pytest.mark.asyncio
async def test_saved_events_are_restored(clock):
    store = MemoryStorage()
    store.init()
    store.set_item(EVENTS_KEY, [{"type": "sessionStarted", "anonymousId": "a"}])
    collector = MockCollector()

    batcher = build_batcher(collector, store, clock, batch_size=100)
    assert len(batcher.events) == 1

    await batcher.flush()
    assert collector.batches[0][0]["type"] == "sessionStarted"


def test_queue_is_capped(storage, clock):
    batcher = build_batcher(MockCollector(), storage, clock, batch_size=7)

    for i in range(MAX_QUEUED_EVENTS + 5):
        batcher.enqueue({"type": "event", "eventName": str(i)})

    assert len(batcher.events) == MAX_QUEUED_EVENTS
    assert batcher.events[0]["eventName"] == "5"
    assert len(storage.get_item(EVENTS_KEY)) == MAX_QUEUED_EVENTS
