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
Event Validation

Checks an inferred schema against a fetched event spec. Findings are data:
a list of privacy-safe :class:`ValidationError` plus per-property pass/fail
event ids. Received values are only used for the internal comparisons and
never appear in any output.
"""

import json
import logging
import re
from collections.abc import Mapping
from enum import Enum
from decimal import Decimal
from functools import lru_cache
from numbers import Real
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..schema import SchemaNode, property_type_of
from .models import EventSpecEntry, EventSpecMetadata, EventSpecResponse, PropertyConstraints

logger = logging.getLogger(__name__)

_TYPE_ALIASES = {
    "string": {"string"},
    "int": {"int"},
    "integer": {"int"},
    "long": {"int"},
    "float": {"float", "int"},
    "double": {"float", "int"},
    "number": {"float", "int"},
    "bool": {"boolean"},
    "boolean": {"boolean"},
    "object": {"object"},
    "null": {"null"},
}
_LENIENT_TYPES = {"", "any", "unknown"}


class ValidationErrorCode(str, Enum):
    """Kinds of validation findings."""

    REQUIRED_MISSING = "RequiredMissing"
    TYPE_MISMATCH = "TypeMismatch"
    VALUE_NOT_ALLOWED = "ValueNotAllowed"
    VALUE_ABOVE_MAX = "ValueAboveMax"
    VALUE_BELOW_MIN = "ValueBelowMin"
    PATTERN_MISMATCH = "PatternMismatch"


class ValidationError(BaseModel):
    """A single finding. Carries the constraint, never the received value."""

    model_config = ConfigDict(populate_by_name=True)

    property_name: str = Field(..., alias="propertyName", description="Dotted path of the property")
    property_id: Optional[str] = Field(None, alias="propertyId", description="Tracking plan property id")
    code: ValidationErrorCode = Field(..., description="Kind of finding")
    expected: Optional[Any] = Field(None, description="Constraint the value was checked against")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PropertyValidationResult(BaseModel):
    """Pass/fail event ids for one property; at most one of the two id lists is set."""

    model_config = ConfigDict(populate_by_name=True)

    failed_event_ids: Optional[List[str]] = Field(None, alias="failedEventIds")
    passed_event_ids: Optional[List[str]] = Field(None, alias="passedEventIds")
    children: Optional[Dict[str, "PropertyValidationResult"]] = None
    items: Optional[List[Dict[str, "PropertyValidationResult"]]] = None


PropertyValidationResult.model_rebuild()


class ValidationResult(BaseModel):
    """Outcome of validating one tracked event."""

    event_id: Optional[str] = None
    variant_id: Optional[str] = None
    event_spec_metadata: EventSpecMetadata
    validation_errors: List[ValidationError] = Field(default_factory=list)
    property_results: Dict[str, PropertyValidationResult] = Field(default_factory=dict)


def _is_list_value(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _is_number(value: Any) -> bool:
    return isinstance(value, (Real, Decimal)) and not isinstance(value, bool)


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def _stringify(value: Any) -> str:
    """Render a value the way tracking plan literals are written."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)
    return str(value)


def _type_matches(declared: str, value: Any) -> bool:
    declared = (declared or "").lower()
    if declared in _LENIENT_TYPES or declared not in _TYPE_ALIASES:
        return True
    return property_type_of(value) in _TYPE_ALIASES[declared]


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern)
    except re.error:
        logger.warning(f"[Inspector] Skipping invalid regex pattern in event spec: {pattern}")
        return None


@lru_cache(maxsize=256)
def _parse_allowed(key: str) -> Optional[frozenset]:
    try:
        allowed = json.loads(key)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(allowed, list):
        return None
    return frozenset(_stringify(item) for item in allowed)


def _parse_bound(text: str) -> Optional[float]:
    text = text.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _parse_range(key: str) -> tuple:
    low, _, high = key.partition(",")
    return _parse_bound(low), _parse_bound(high)


def _display_bound(bound: float) -> Any:
    return int(bound) if bound.is_integer() else bound


def _imposes_own_constraint(constraints: PropertyConstraints, variant_id: str, base_id: str) -> bool:
    for mapping in (
        constraints.pinned_values,
        constraints.allowed_values,
        constraints.regex_patterns,
        constraints.min_max_ranges,
    ):
        for ids in mapping.values():
            if variant_id in ids and base_id not in ids:
                return True
    return any(
        _imposes_own_constraint(child, variant_id, base_id) for child in constraints.children.values()
    )


class _EntryValidation:
    """Validation state of the tracked event against one spec entry."""

    def __init__(self, entry: EventSpecEntry):
        self.entry = entry
        self.event_ids = entry.event_ids
        self.errors: Dict[str, List[ValidationError]] = {event_id: [] for event_id in self.event_ids}
        self.property_results: Dict[str, PropertyValidationResult] = {}

    def run(self, values: Dict[str, Any]) -> "_EntryValidation":
        for name, constraints in self.entry.props.items():
            self.property_results[name] = self._check_property(
                name, values.get(name), name in values, constraints
            )
        return self

    @property
    def base_errors(self) -> List[ValidationError]:
        return self.errors[self.entry.base_event_id]

    def matched_variant(self) -> Optional[str]:
        """First variant that passes and imposes at least one constraint the base does not."""
        base_id = self.entry.base_event_id
        for variant_id in self.entry.variant_ids:
            if self.errors.get(variant_id):
                continue
            if any(
                _imposes_own_constraint(constraints, variant_id, base_id)
                for constraints in self.entry.props.values()
            ):
                return variant_id
        return None

    def _fail(
        self,
        failed: set,
        ids: List[str],
        path: str,
        constraints: PropertyConstraints,
        code: ValidationErrorCode,
        expected: Any = None,
    ) -> None:
        error = ValidationError(property_name=path, property_id=constraints.id, code=code, expected=expected)
        for event_id in ids:
            recorded = self.errors.setdefault(event_id, [])
            if error not in recorded:
                recorded.append(error)
        failed.update(ids)

    def _result(self, failed: set) -> PropertyValidationResult:
        if not failed:
            return PropertyValidationResult()
        failed_ids = [event_id for event_id in self.event_ids if event_id in failed]
        failed_ids += sorted(event_id for event_id in failed if event_id not in self.event_ids)
        passed_ids = [event_id for event_id in self.event_ids if event_id not in failed]
        if not passed_ids or len(failed_ids) <= len(passed_ids):
            return PropertyValidationResult(failed_event_ids=failed_ids)
        return PropertyValidationResult(passed_event_ids=passed_ids)

    def _check_property(
        self, path: str, value: Any, present: bool, constraints: PropertyConstraints
    ) -> PropertyValidationResult:
        failed: set = set()

        if not present or value is None:
            if constraints.required:
                self._fail(failed, self.event_ids, path, constraints, ValidationErrorCode.REQUIRED_MISSING)
            return self._result(failed)

        validate_children = bool(constraints.children)
        children: Optional[Dict[str, PropertyValidationResult]] = None
        items: Optional[List[Dict[str, PropertyValidationResult]]] = None

        if constraints.is_list:
            if not _is_list_value(value):
                # A scalar where a list is declared carries nothing comparable
                return self._result(failed)
            elements = list(value)
            for element in elements:
                if not _type_matches(constraints.type, element):
                    self._fail(
                        failed, self.event_ids, path, constraints, ValidationErrorCode.TYPE_MISMATCH, constraints.type
                    )
                elif not isinstance(element, Mapping):
                    self._check_value(failed, path, element, constraints)
            if validate_children:
                items = [
                    self._check_children(path, element if isinstance(element, Mapping) else {}, constraints)
                    for element in elements
                ]
        else:
            if _is_list_value(value):
                self._check_value(failed, path, _stringify(value), constraints)
                obj: Mapping = {}
            else:
                if not _type_matches(constraints.type, value):
                    self._fail(
                        failed, self.event_ids, path, constraints, ValidationErrorCode.TYPE_MISMATCH, constraints.type
                    )
                    return self._result(failed)
                if not isinstance(value, Mapping):
                    self._check_value(failed, path, value, constraints)
                obj = value if isinstance(value, Mapping) else {}
            if validate_children:
                children = self._check_children(path, obj, constraints)

        result = self._result(failed)
        result.children = children
        result.items = items
        return result

    def _check_children(
        self, path: str, obj: Mapping, constraints: PropertyConstraints
    ) -> Dict[str, PropertyValidationResult]:
        return {
            name: self._check_property(f"{path}.{name}", obj.get(name), name in obj, child)
            for name, child in constraints.children.items()
        }

    def _check_value(self, failed: set, path: str, value: Any, constraints: PropertyConstraints) -> None:
        rendered = _stringify(value)

        for literal, ids in constraints.pinned_values.items():
            if rendered != literal:
                self._fail(failed, ids, path, constraints, ValidationErrorCode.VALUE_NOT_ALLOWED, literal)

        for key, ids in constraints.allowed_values.items():
            allowed = _parse_allowed(key)
            if allowed is not None and rendered not in allowed:
                self._fail(failed, ids, path, constraints, ValidationErrorCode.VALUE_NOT_ALLOWED, json.loads(key))

        for pattern, ids in constraints.regex_patterns.items():
            compiled = _compile(pattern)
            if compiled is not None and not compiled.search(rendered):
                self._fail(failed, ids, path, constraints, ValidationErrorCode.PATTERN_MISMATCH, pattern)

        for key, ids in constraints.min_max_ranges.items():
            if not _is_number(value):
                self._fail(failed, ids, path, constraints, ValidationErrorCode.TYPE_MISMATCH, "number")
                continue
            low, high = _parse_range(key)
            if low is not None and value < low:
                self._fail(failed, ids, path, constraints, ValidationErrorCode.VALUE_BELOW_MIN, _display_bound(low))
            elif high is not None and value > high:
                self._fail(failed, ids, path, constraints, ValidationErrorCode.VALUE_ABOVE_MAX, _display_bound(high))


def validate_event(schema: List[SchemaNode], spec_response: EventSpecResponse) -> ValidationResult:
    """
    Validate an inferred schema against every entry of a spec response.

    The first entry with a passing variant or a passing base event wins;
    otherwise the entry with the fewest base event errors is reported. When a
    variant matches, its id is reported and no errors are attached.
    """
    values = {node.name: node.value for node in schema}

    if not spec_response.events:
        return ValidationResult(event_spec_metadata=spec_response.metadata)

    checks = [_EntryValidation(entry).run(values) for entry in spec_response.events]

    chosen = None
    variant_id = None
    for check in checks:
        variant_id = check.matched_variant()
        if variant_id is not None or not check.base_errors:
            chosen = check
            break
    if chosen is None:
        variant_id = None
        chosen = min(checks, key=lambda check: len(check.base_errors))

    return ValidationResult(
        event_id=chosen.entry.base_event_id,
        variant_id=variant_id,
        event_spec_metadata=spec_response.metadata,
        validation_errors=[] if variant_id is not None else list(chosen.base_errors),
        property_results=chosen.property_results,
    )


def annotate_schema(
    properties: List[Dict[str, Any]], results: Dict[str, PropertyValidationResult]
) -> List[Dict[str, Any]]:
    """Merge per-property results into serialized schema nodes, in place."""
    for prop in properties:
        result = results.get(prop.get("propertyName"))
        if result is None:
            continue
        if result.failed_event_ids is not None:
            prop["failedEventIds"] = result.failed_event_ids
        elif result.passed_event_ids is not None:
            prop["passedEventIds"] = result.passed_event_ids

        children = prop.get("children")
        if not isinstance(children, list):
            continue
        if result.children:
            annotate_schema([child for child in children if isinstance(child, dict)], result.children)
        if result.items:
            element_nodes = [child for child in children if isinstance(child, list)]
            for nodes, item_results in zip(element_nodes, result.items):
                annotate_schema([node for node in nodes if isinstance(node, dict)], item_results)
    return properties
