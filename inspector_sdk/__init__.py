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
Inspector Python SDK

Infers the schema of analytics events, validates them against tracking plan
specs and ships the schemas to the Inspector collector.
"""

from .client import Inspector
from .config import InspectorConfig, InspectorEnv
from .deduplicator import EventDeduplicator
from .encryption import decrypt_value, encrypt_value, generate_key_pair
from .event_spec import (
    EventSpecCache,
    EventSpecFetcher,
    EventSpecResponse,
    FetchEventSpecParams,
    ValidationError,
    ValidationErrorCode,
    ValidationResult,
    validate_event,
)
from .exceptions import (
    ConfigurationError,
    EncryptionError,
    InspectorError,
    StorageError,
    TransportError,
)
from .schema import UNDEFINED, EncryptionContext, PropertyType, SchemaNode, extract_schema
from .storage import FileStorage, InspectorStorage, MemoryStorage

__version__ = "1.0.0"
__author__ = "ATP Project Contributors"

__all__ = [
    # Main client
    "Inspector",
    "InspectorConfig",
    "InspectorEnv",
    "EventDeduplicator",
    # Schema inference
    "extract_schema",
    "SchemaNode",
    "PropertyType",
    "EncryptionContext",
    "UNDEFINED",
    # Event specs
    "EventSpecCache",
    "EventSpecFetcher",
    "EventSpecResponse",
    "FetchEventSpecParams",
    "ValidationError",
    "ValidationErrorCode",
    "ValidationResult",
    "validate_event",
    # Encryption
    "encrypt_value",
    "decrypt_value",
    "generate_key_pair",
    # Storage
    "InspectorStorage",
    "MemoryStorage",
    "FileStorage",
    # Exceptions
    "InspectorError",
    "ConfigurationError",
    "EncryptionError",
    "StorageError",
    "TransportError",
]
