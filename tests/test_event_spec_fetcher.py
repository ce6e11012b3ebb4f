"""Tests for the event spec fetcher."""

import asyncio

import httpx
import pytest
from conftest import spec_payload

from inspector_sdk.config import InspectorEnv
from inspector_sdk.event_spec.fetcher import EventSpecFetcher
from inspector_sdk.event_spec.models import FetchEventSpecParams, has_expected_shape, parse_event_spec_response

BASE_URL = "http://spec.test"


class MockSpecApi:
    def __init__(self, status_code: int = 200, body=None, raw: bytes | None = None):
        self.status_code = status_code
        self.body = spec_payload() if body is None else body
        self.raw = raw
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, json=self.body)


def build_fetcher(api: MockSpecApi, env=InspectorEnv.DEV) -> EventSpecFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))
    return EventSpecFetcher(timeout=2.0, should_log=True, env=env, base_url=BASE_URL, client=client)


def params(api_key="key-1", stream_id="stream-1", event_name="Signup"):
    return FetchEventSpecParams(api_key=api_key, stream_id=stream_id, event_name=event_name)


@pytest.mark.asyncio
async def test_fetch_parses_spec():
    api = MockSpecApi()
    fetcher = build_fetcher(api)

    spec = await fetcher.fetch(params())

    assert spec is not None
    assert spec.metadata.schema_id == "schema-1"
    entry = spec.events[0]
    assert entry.base_event_id == "evt_1"
    assert entry.variant_ids == ["evt_1.v1"]
    assert entry.props["user_id"].required is True
    assert entry.props["user_id"].id == "prop_user"
    assert entry.props["plan"].allowed_values == {'["free","pro"]': ["evt_1", "evt_1.v1"]}

    request = api.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/trackingPlan/eventSpec"
    assert dict(request.url.params) == {"apiKey": "key-1", "streamId": "stream-1", "eventName": "Signup"}


@pytest.mark.asyncio
async def test_concurrent_identical_fetches_share_one_request():
    api = MockSpecApi()
    fetcher = build_fetcher(api)

    first, second = await asyncio.gather(fetcher.fetch(params()), fetcher.fetch(params()))

    assert first is second
    assert len(api.requests) == 1
    assert fetcher._in_flight == {}


@pytest.mark.asyncio
async def test_dedup_key_ignores_api_key():
    api = MockSpecApi()
    fetcher = build_fetcher(api)

    await asyncio.gather(fetcher.fetch(params(api_key="a")), fetcher.fetch(params(api_key="b")))

    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_sequential_fetches_issue_new_requests():
    api = MockSpecApi()
    fetcher = build_fetcher(api)

    await fetcher.fetch(params())
    await fetcher.fetch(params())
    await fetcher.fetch(params(event_name="Login"))

    assert len(api.requests) == 3


@pytest.mark.asyncio
async def test_prod_never_fetches():
    api = MockSpecApi()
    fetcher = build_fetcher(api, env=InspectorEnv.PROD)

    assert await fetcher.fetch(params()) is None
    assert await fetcher.fetch(params(stream_id="other", event_name="Other")) is None
    assert api.requests == []


@pytest.mark.asyncio
async def test_staging_fetches():
    api = MockSpecApi()
    fetcher = build_fetcher(api, env=InspectorEnv.STAGING)

    assert await fetcher.fetch(params()) is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "api",
    [
        MockSpecApi(status_code=404),
        MockSpecApi(status_code=500),
        MockSpecApi(raw=b"not json"),
        MockSpecApi(body={"events": "nope"}),
        MockSpecApi(body={"events": [], "metadata": {"schemaId": "s"}}),
        MockSpecApi(body={"events": [{"p": {}}], "metadata": {"schemaId": "s", "branchId": "b", "latestActionId": "a"}}),
    ],
)
async def test_failures_resolve_to_none(api):
    fetcher = build_fetcher(api)

    assert await fetcher.fetch(params()) is None


@pytest.mark.asyncio
async def test_network_errors_resolve_to_none():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = EventSpecFetcher(base_url=BASE_URL, client=client)

    assert await fetcher.fetch(params()) is None


@pytest.mark.asyncio
async def test_timeouts_resolve_to_none():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = EventSpecFetcher(base_url=BASE_URL, client=client)

    assert await fetcher.fetch(params()) is None


@pytest.mark.asyncio
async def test_aclose_keeps_injected_client_open():
    api = MockSpecApi()
    fetcher = build_fetcher(api)
    client = fetcher._client

    await fetcher.aclose()

    assert client.is_closed is False
    await client.aclose()


def test_shape_check():
    assert has_expected_shape(spec_payload())
    assert not has_expected_shape(None)
    assert not has_expected_shape([])
    assert not has_expected_shape({"events": [], "metadata": None})
    assert not has_expected_shape({"events": [], "metadata": {"schemaId": 1, "branchId": "b", "latestActionId": "a"}})


def test_parse_nested_form_with_variants():
    payload = {
        "events": [
            {
                "branchId": "main",
                "baseEvent": {
                    "name": "Checkout",
                    "id": "evt_checkout",
                    "props": {
                        "total": {"id": "p_total", "t": {"type": "primitive", "value": "float"}, "r": True, "min": 0},
                        "currency": {"id": "p_cur", "t": {"type": "primitive", "value": "string"}, "r": True, "v": ["USD", "EUR"]},
                        "cart": {
                            "id": "p_cart",
                            "t": {"type": "object", "value": {"sku": {"id": "p_sku", "t": {"type": "primitive", "value": "string"}, "r": True}}},
                            "r": False,
                        },
                    },
                },
                "variants": [
                    {
                        "variantId": "gift",
                        "nameSuffix": "Gift",
                        "eventId": "evt_checkout",
                        "props": {
                            "currency": {"id": "p_cur", "t": {"type": "primitive", "value": "string"}, "r": True, "v": ["USD"]},
                            "gift_note": {"id": "p_note", "t": {"type": "primitive", "value": "string"}, "r": True, "rx": "^.{1,140}$"},
                        },
                    }
                ],
            }
        ],
        "metadata": {"schemaId": "schema-1", "branchId": "main", "latestActionId": "action-1", "sourceId": "src"},
    }

    spec = parse_event_spec_response(payload)
    entry = spec.events[0]

    assert entry.base_event_id == "evt_checkout"
    assert entry.variant_ids == ["evt_checkout.gift"]
    assert entry.props["total"].type == "float"
    assert entry.props["total"].min_max_ranges == {"0,": ["evt_checkout", "evt_checkout.gift"]}
    assert entry.props["currency"].allowed_values == {
        '["USD","EUR"]': ["evt_checkout"],
        '["USD"]': ["evt_checkout.gift"],
    }
    assert entry.props["gift_note"].required is False
    assert entry.props["gift_note"].regex_patterns == {"^.{1,140}$": ["evt_checkout.gift"]}
    assert entry.props["cart"].type == "object"
    assert entry.props["cart"].children["sku"].required is True
    assert spec.metadata.source_id == "src"
    assert spec.metadata.to_wire() == {
        "schemaId": "schema-1",
        "branchId": "main",
        "latestActionId": "action-1",
        "sourceId": "src",
    }
