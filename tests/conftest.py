"""Pytest configuration for repo-wide test behavior."""
# Ensure project root on sys.path for imports and keep INSPECTOR_* settings out of tests
import os
import sys

root = os.path.dirname(os.path.abspath(__file__))
proj = os.path.abspath(os.path.join(root, ".."))
if proj not in sys.path:
    sys.path.insert(0, proj)

import pytest  # noqa: E402

from inspector_sdk.event_spec.models import (  # noqa: E402
    EventSpecEntry,
    EventSpecMetadata,
    EventSpecResponse,
    PropertyConstraints,
)
from inspector_sdk.storage import MemoryStorage  # noqa: E402


class FakeClock:
    """Manually advanced clock for time dependent components."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clean_inspector_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("INSPECTOR_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    store = MemoryStorage()
    store.init()
    return store


@pytest.fixture
def metadata():
    return EventSpecMetadata(schema_id="schema-1", branch_id="main", latest_action_id="action-1")


def make_spec(props=None, base_event_id="evt_1", variant_ids=None, metadata=None):
    """Build a single-entry spec response from property constraints."""
    return EventSpecResponse(
        events=[
            EventSpecEntry(
                branch_id="main",
                base_event_id=base_event_id,
                variant_ids=variant_ids or [],
                props={name: PropertyConstraints(**fields) for name, fields in (props or {}).items()},
            )
        ],
        metadata=metadata or EventSpecMetadata(schema_id="schema-1", branch_id="main", latest_action_id="action-1"),
    )


def spec_payload(events=None):
    """Wire body of a ``/trackingPlan/eventSpec`` response in the compact form."""
    return {
        "events": events
        if events is not None
        else [
            {
                "b": "main",
                "id": "evt_1",
                "vids": ["evt_1.v1"],
                "p": {
                    "user_id": {"t": "string", "r": True, "id": "prop_user"},
                    "plan": {"t": "string", "r": False, "v": {'["free","pro"]': ["evt_1", "evt_1.v1"]}},
                },
            }
        ],
        "metadata": {"schemaId": "schema-1", "branchId": "main", "latestActionId": "action-1"},
    }
