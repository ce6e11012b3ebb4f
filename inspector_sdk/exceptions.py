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
Inspector SDK Exceptions

Custom exception classes for the Inspector SDK.
"""

from typing import Any, Dict, Optional


class InspectorError(Exception):
    """Base exception for Inspector SDK errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(InspectorError):
    """Raised when the SDK is constructed with an invalid configuration."""
    pass


class StorageError(InspectorError):
    """Raised when persisted SDK state cannot be read or written."""
    pass


class EncryptionError(InspectorError):
    """Raised when a property value cannot be encrypted or decrypted."""
    pass


class TransportError(InspectorError):
    """Raised when the collector endpoint cannot be reached or rejects a payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code
