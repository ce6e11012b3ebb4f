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

"""Tracking plan event specs: models, cache, fetcher and validator."""

from .cache import MAX_EVENT_COUNT, TTL_SECONDS, EventSpecCache, EventSpecCacheEntry
from .fetcher import EventSpecFetcher
from .models import (
    EventSpecEntry,
    EventSpecMetadata,
    EventSpecResponse,
    FetchEventSpecParams,
    PropertyConstraints,
    parse_event_spec_response,
)
from .validator import (
    PropertyValidationResult,
    ValidationError,
    ValidationErrorCode,
    ValidationResult,
    annotate_schema,
    validate_event,
)

__all__ = [
    "EventSpecCache",
    "EventSpecCacheEntry",
    "EventSpecFetcher",
    "EventSpecEntry",
    "EventSpecMetadata",
    "EventSpecResponse",
    "FetchEventSpecParams",
    "PropertyConstraints",
    "PropertyValidationResult",
    "ValidationError",
    "ValidationErrorCode",
    "ValidationResult",
    "MAX_EVENT_COUNT",
    "TTL_SECONDS",
    "annotate_schema",
    "parse_event_spec_response",
    "validate_event",
]
