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
Schema inference.

Maps arbitrary event properties to a tree of :class:`SchemaNode` describing
their runtime shape. Inference is a pure function of its input: a fresh tree
is built on every call.
"""

import datetime
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from numbers import Integral, Real
from typing import Any, Union

from .config import InspectorEnv
from .encryption import encrypt_value

logger = logging.getLogger(__name__)

MAX_SCHEMA_DEPTH = 4

# Numbers render in plain decimal notation within [_FIXED_NOTATION_MIN, _FIXED_NOTATION_MAX)
_FIXED_NOTATION_MIN = 1e-6
_FIXED_NOTATION_MAX = 1e21


class PropertyType(str, Enum):
    """Structural type tags reported for a property."""

    NULL = "null"
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOLEAN = "boolean"
    OBJECT = "object"
    LIST = "list"
    UNKNOWN = "unknown"


PRIMITIVE_TYPES = frozenset(
    {PropertyType.NULL.value, PropertyType.STRING.value, PropertyType.INT.value,
     PropertyType.FLOAT.value, PropertyType.BOOLEAN.value}
)


class _Undefined:
    """Marker for a property that is declared but carries no value. Such properties are skipped."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNDEFINED"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class EncryptionContext:
    """Public key and environment used to decide whether leaf values get encrypted."""

    public_key: str | None
    env: InspectorEnv

    @property
    def enabled(self) -> bool:
        return bool(self.public_key) and InspectorEnv(self.env).allows_validation


SchemaChild = Union[str, "SchemaNode", list]


@dataclass
class SchemaNode:
    """Inferred shape of a single property."""

    name: str
    type: str
    children: list[SchemaChild] | None = None
    encrypted_value: str | None = None
    # Raw runtime value, kept in-process for validation only and never serialized
    value: Any = field(default=None, compare=False, repr=False)

    @property
    def is_list(self) -> bool:
        return self.type.startswith(f"{PropertyType.LIST.value}(")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the collector wire form."""
        data: dict[str, Any] = {"propertyName": self.name, "propertyType": self.type}
        if self.children is not None:
            data["children"] = [_serialize_child(child) for child in self.children]
        if self.encrypted_value is not None:
            data["encryptedPropertyValue"] = self.encrypted_value
        return data


def _serialize_child(child: SchemaChild) -> Any:
    if isinstance(child, SchemaNode):
        return child.to_dict()
    if isinstance(child, list):
        return [_serialize_child(item) for item in child]
    return child


def schema_to_dicts(nodes: list[SchemaNode]) -> list[dict[str, Any]]:
    return [node.to_dict() for node in nodes]


def _is_list_value(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _number_type(number: float) -> str:
    """A number is a float when its rendering, plain or exponent, carries a decimal point."""
    if not math.isfinite(number):
        return PropertyType.INT.value
    magnitude = abs(number)
    if number.is_integer() and magnitude < _FIXED_NOTATION_MAX:
        return PropertyType.INT.value
    if _FIXED_NOTATION_MIN <= magnitude < _FIXED_NOTATION_MAX:
        return PropertyType.FLOAT.value
    # Exponent notation: repr yields the same shortest mantissa digits
    mantissa = repr(number).partition("e")[0]
    return PropertyType.FLOAT.value if "." in mantissa else PropertyType.INT.value


def property_type_of(value: Any) -> str:
    """Classify a single runtime value."""
    if value is None or value is UNDEFINED:
        return PropertyType.NULL.value
    if isinstance(value, bool):
        return PropertyType.BOOLEAN.value
    if isinstance(value, (str, datetime.date, datetime.time, re.Pattern)):
        return PropertyType.STRING.value
    if isinstance(value, Integral):
        return PropertyType.INT.value
    if isinstance(value, (Real, Decimal)):
        return _number_type(float(value))
    if isinstance(value, (BaseException, Mapping)):
        return PropertyType.OBJECT.value
    if _is_list_value(value):
        items = list(value)
        subtype = property_type_of(items[0]) if items else PropertyType.UNKNOWN.value
        return f"{PropertyType.LIST.value}({subtype})"
    return PropertyType.UNKNOWN.value


def _remove_duplicates(children: list[SchemaChild]) -> list[SchemaChild]:
    seen_tags: set[str] = set()
    seen_ids: set[int] = set()
    unique = []
    for child in children:
        if isinstance(child, str):
            if child in seen_tags:
                continue
            seen_tags.add(child)
        else:
            if id(child) in seen_ids:
                continue
            seen_ids.add(id(child))
        unique.append(child)
    return unique


def _map_list(items: Any, depth: int, encryption: EncryptionContext | None) -> list[SchemaChild]:
    mapped: list[SchemaChild] = []
    for item in items:
        if isinstance(item, Mapping):
            mapped.append(_map_object(item, depth, encryption))
        elif _is_list_value(item):
            mapped.append(_map_list(item, depth, encryption))
        else:
            mapped.append(property_type_of(item))
    return _remove_duplicates(mapped)


def _encrypt_leaf(name: str, value: Any, encryption: EncryptionContext) -> str | None:
    try:
        return encrypt_value(None if value is UNDEFINED else value, encryption.public_key)
    except Exception as e:
        logger.warning(f"[Inspector] Failed to encrypt property '{name}', sending it without a value: {e}")
        return None


def _map_property(name: str, value: Any, depth: int, encryption: EncryptionContext | None) -> SchemaNode:
    node = SchemaNode(name=name, type=property_type_of(value), value=value)

    if isinstance(value, Mapping):
        if depth < MAX_SCHEMA_DEPTH:
            node.children = _map_object(value, depth + 1, encryption)
    elif _is_list_value(value):
        if depth < MAX_SCHEMA_DEPTH:
            node.children = _map_list(value, depth + 1, encryption)
    elif encryption is not None and encryption.enabled and node.type in PRIMITIVE_TYPES:
        node.encrypted_value = _encrypt_leaf(name, value, encryption)

    return node


def _map_object(obj: Mapping, depth: int, encryption: EncryptionContext | None) -> list[SchemaNode]:
    nodes = []
    for key, value in obj.items():
        if value is UNDEFINED:
            continue
        try:
            nodes.append(_map_property(str(key), value, depth, encryption))
        except Exception as e:
            logger.error(f"[Inspector] Failed to extract schema for property '{key}': {e}")
    return nodes


def extract_schema(event_properties: Any, encryption: EncryptionContext | None = None) -> list[SchemaNode]:
    """
    Infer the schema of an event's properties.

    Args:
        event_properties: Mapping of property name to value. ``None`` yields an empty schema.
        encryption: Optional encryption context; when enabled, primitive leaf values
            are encrypted into ``encrypted_value``.

    Returns:
        One node per property in insertion order. Properties set to ``UNDEFINED``
        are skipped, and a property that fails to classify is logged and dropped.
    """
    if event_properties is None or event_properties is UNDEFINED:
        return []
    if not isinstance(event_properties, Mapping):
        logger.warning(
            f"[Inspector] Event properties must be a mapping, got {type(event_properties).__name__}. Ignoring."
        )
        return []
    return _map_object(event_properties, 0, encryption)
