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
Event Spec Data Models

Pydantic models for tracking-plan event specs and the parsers that turn the
``/trackingPlan/eventSpec`` wire payload into them.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PropertyConstraints(BaseModel):
    """
    Constraints attached to one property.

    Every constraint kind maps a constraint value to the event/variant ids
    that impose it, since variants of the same event may disagree.
    """

    type: str = Field("any", description="Declared type name")
    required: bool = Field(False, description="Whether the property must be present and non-null")
    is_list: bool = Field(False, description="Whether the property is a list of the declared type")
    id: Optional[str] = Field(None, description="Tracking plan property id")
    pinned_values: Dict[str, List[str]] = Field(default_factory=dict, description="Pinned literal -> event ids")
    allowed_values: Dict[str, List[str]] = Field(
        default_factory=dict, description="JSON array of allowed values -> event ids"
    )
    regex_patterns: Dict[str, List[str]] = Field(default_factory=dict, description="Pattern -> event ids")
    min_max_ranges: Dict[str, List[str]] = Field(
        default_factory=dict, description='"min,max" (either side may be empty) -> event ids'
    )
    children: Dict[str, "PropertyConstraints"] = Field(
        default_factory=dict, description="Constraints on nested object properties"
    )

    def constraint_ids(self) -> set:
        """Every id referenced by a value constraint on this property or its children."""
        ids = set()
        for mapping in (self.pinned_values, self.allowed_values, self.regex_patterns, self.min_max_ranges):
            for event_ids in mapping.values():
                ids.update(event_ids)
        for child in self.children.values():
            ids.update(child.constraint_ids())
        return ids


PropertyConstraints.model_rebuild()


class EventSpecEntry(BaseModel):
    """A base event and its variants sharing one event name."""

    branch_id: str = Field(..., description="Branch the spec was taken from")
    base_event_id: str = Field(..., description="Id of the base event")
    variant_ids: List[str] = Field(default_factory=list, description="Ids of the variants, base excluded")
    props: Dict[str, PropertyConstraints] = Field(default_factory=dict, description="Property constraints by name")

    @property
    def event_ids(self) -> List[str]:
        return [self.base_event_id, *self.variant_ids]


class EventSpecMetadata(BaseModel):
    """Metadata returned alongside an event spec."""

    model_config = ConfigDict(populate_by_name=True)

    schema_id: str = Field(..., alias="schemaId")
    branch_id: str = Field(..., alias="branchId")
    latest_action_id: str = Field(..., alias="latestActionId")
    source_id: Optional[str] = Field(None, alias="sourceId")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EventSpecResponse(BaseModel):
    """All spec entries matching an event name, in response order."""

    events: List[EventSpecEntry] = Field(default_factory=list)
    metadata: EventSpecMetadata


class FetchEventSpecParams(BaseModel):
    """Parameters identifying the spec to fetch."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey")
    stream_id: str = Field(..., alias="streamId")
    event_name: str = Field(..., alias="eventName")

    def to_query(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


def has_expected_shape(payload: Any) -> bool:
    """Minimal structure check on a decoded response body."""
    if not isinstance(payload, dict) or not isinstance(payload.get("events"), list):
        return False
    metadata = payload.get("metadata")
    return isinstance(metadata, dict) and all(
        isinstance(metadata.get(key), str) for key in ("schemaId", "branchId", "latestActionId")
    )


# Compact constraint form: {t, r, l?, id?, p?, v?, rx?, minmax?, children?}


def parse_property_constraints(wire: Dict[str, Any]) -> PropertyConstraints:
    """Parse one property from the compact constraint form."""
    return PropertyConstraints(
        type=wire.get("t") or "any",
        required=bool(wire.get("r", False)),
        is_list=bool(wire.get("l", False)),
        id=wire.get("id"),
        pinned_values=wire.get("p") or {},
        allowed_values=wire.get("v") or {},
        regex_patterns=wire.get("rx") or {},
        min_max_ranges=wire.get("minmax") or {},
        children={name: parse_property_constraints(child) for name, child in (wire.get("children") or {}).items()},
    )


def _parse_compact_entry(wire: Dict[str, Any], default_branch: str) -> EventSpecEntry:
    return EventSpecEntry(
        branch_id=wire.get("b") or default_branch,
        base_event_id=wire["id"],
        variant_ids=[vid for vid in (wire.get("vids") or []) if vid != wire["id"]],
        props={name: parse_property_constraints(prop) for name, prop in (wire.get("p") or {}).items()},
    )


# Event spec form: {branchId, baseEvent:{name, id, props}, variants:[{variantId, nameSuffix, eventId, props}]}
# where props are {id, t:{type, value}, r, l?, min?, max?, v?, rx?}


def _format_bound(bound: Any) -> str:
    if bound is None:
        return ""
    if isinstance(bound, float) and bound.is_integer():
        return str(int(bound))
    return str(bound)


def _property_spec_to_constraints(spec: Dict[str, Any], owners: List[str]) -> PropertyConstraints:
    type_spec = spec.get("t") or {}
    if isinstance(type_spec, str):
        type_spec = {"type": "primitive", "value": type_spec}

    children: Dict[str, PropertyConstraints] = {}
    if type_spec.get("type") == "object":
        declared_type = "object"
        nested = type_spec.get("value") or {}
        children = {name: _property_spec_to_constraints(child, owners) for name, child in nested.items()}
    else:
        declared_type = type_spec.get("value") or "any"

    constraints = PropertyConstraints(
        type=declared_type,
        required=bool(spec.get("r", False)),
        is_list=bool(spec.get("l", False)),
        id=spec.get("id"),
        children=children,
    )
    if spec.get("v"):
        constraints.allowed_values[json.dumps(list(spec["v"]), separators=(",", ":"))] = list(owners)
    if spec.get("rx"):
        constraints.regex_patterns[spec["rx"]] = list(owners)
    if spec.get("min") is not None or spec.get("max") is not None:
        key = f"{_format_bound(spec.get('min'))},{_format_bound(spec.get('max'))}"
        constraints.min_max_ranges[key] = list(owners)
    return constraints


def _merge_constraints(target: PropertyConstraints, extra: PropertyConstraints) -> None:
    for attr in ("pinned_values", "allowed_values", "regex_patterns", "min_max_ranges"):
        merged = getattr(target, attr)
        for key, ids in getattr(extra, attr).items():
            existing = merged.setdefault(key, [])
            existing.extend(event_id for event_id in ids if event_id not in existing)
    for name, child in extra.children.items():
        if name in target.children:
            _merge_constraints(target.children[name], child)
        else:
            target.children[name] = child


def _variant_id(variant: Dict[str, Any], base_id: str) -> str:
    variant_id = variant.get("variantId") or ""
    if variant_id.startswith(f"{base_id}."):
        return variant_id
    return f"{base_id}.{variant_id}"


def _parse_nested_entry(wire: Dict[str, Any], default_branch: str) -> EventSpecEntry:
    base = wire.get("baseEvent") or wire
    base_id = base["id"]
    base_props = base.get("props") or {}
    variants = wire.get("variants") if "baseEvent" in wire else base.get("variants")
    variants = variants or []
    variant_ids = [_variant_id(variant, base_id) for variant in variants]

    props: Dict[str, PropertyConstraints] = {}
    for name, spec in base_props.items():
        # Variants that do not redefine a base property inherit its constraints
        owners = [base_id] + [
            vid for vid, variant in zip(variant_ids, variants) if name not in (variant.get("props") or {})
        ]
        props[name] = _property_spec_to_constraints(spec, owners)

    for vid, variant in zip(variant_ids, variants):
        for name, spec in (variant.get("props") or {}).items():
            constraints = _property_spec_to_constraints(spec, [vid])
            if name in props:
                _merge_constraints(props[name], constraints)
            else:
                # Only required for this variant, which the base cannot express
                constraints.required = False
                props[name] = constraints

    return EventSpecEntry(
        branch_id=wire.get("branchId") or default_branch,
        base_event_id=base_id,
        variant_ids=variant_ids,
        props=props,
    )


def parse_event_spec_entry(wire: Dict[str, Any], default_branch: str = "") -> EventSpecEntry:
    """Parse a spec entry in either the compact or the event spec form."""
    if "baseEvent" in wire or "variants" in wire:
        return _parse_nested_entry(wire, default_branch)
    return _parse_compact_entry(wire, default_branch)


def parse_event_spec_response(payload: Dict[str, Any]) -> EventSpecResponse:
    """Parse a decoded ``/trackingPlan/eventSpec`` body. Callers check :func:`has_expected_shape` first."""
    metadata = EventSpecMetadata.model_validate(payload["metadata"])
    return EventSpecResponse(
        events=[parse_event_spec_entry(entry, metadata.branch_id) for entry in payload["events"]],
        metadata=metadata,
    )
