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
Property value encryption.

ECIES on NIST P-256: an ephemeral ECDH exchange against the recipient's
public key, SHA-256 of the shared secret as an AES-256-GCM key, and a
base64 envelope laid out as

    [version 0x00][ephemeral public key][iv (16)][tag (16)][ciphertext]

Only the holder of the private key can recover values, so the collector
never sees them in clear text.
"""

import base64
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import EncryptionError

ENVELOPE_VERSION = 0x00
IV_LENGTH = 16
TAG_LENGTH = 16
_CURVE = ec.SECP256R1()


def _public_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962, format=serialization.PublicFormat.UncompressedPoint
    )


def _derive_key(private_key: ec.EllipticCurvePrivateKey, peer: ec.EllipticCurvePublicKey) -> bytes:
    shared_secret = private_key.exchange(ec.ECDH(), peer)
    return hashlib.sha256(shared_secret).digest()


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def generate_key_pair() -> dict[str, str]:
    """Generate a P-256 key pair as hex strings (uncompressed public key, 32-byte private scalar)."""
    private_key = ec.generate_private_key(_CURVE)
    scalar = private_key.private_numbers().private_value
    return {
        "private_key": f"{scalar:064x}",
        "public_key": _public_bytes(private_key.public_key()).hex(),
    }


def encrypt_value(value: Any, public_key: str) -> str:
    """Encrypt ``value`` (JSON encoded first) for the holder of ``public_key``."""
    try:
        recipient = ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, bytes.fromhex(public_key))
        ephemeral = ec.generate_private_key(_CURVE)
        key = _derive_key(ephemeral, recipient)

        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, _to_json(value).encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        envelope = bytes([ENVELOPE_VERSION]) + _public_bytes(ephemeral.public_key()) + iv + tag + ciphertext
        return base64.b64encode(envelope).decode("ascii")
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Failed to encrypt value. Please check that the public key is valid: {e}")


def decrypt_value(encrypted_value: str, private_key: str) -> Any:
    """Reverse :func:`encrypt_value` with the matching private key."""
    try:
        envelope = base64.b64decode(encrypted_value)
        if not envelope or envelope[0] != ENVELOPE_VERSION:
            raise EncryptionError(f"Unsupported encryption version: {envelope[0] if envelope else None}")

        # 0x02/0x03 prefix means a compressed point
        key_size = 33 if envelope[1] in (0x02, 0x03) else 65
        offset = 1
        ephemeral_bytes = envelope[offset : offset + key_size]
        offset += key_size
        iv = envelope[offset : offset + IV_LENGTH]
        offset += IV_LENGTH
        tag = envelope[offset : offset + TAG_LENGTH]
        offset += TAG_LENGTH
        ciphertext = envelope[offset:]

        recipient = ec.derive_private_key(int(private_key, 16), _CURVE)
        ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, ephemeral_bytes)
        key = _derive_key(recipient, ephemeral)

        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return json.loads(plaintext.decode("utf-8"))
    except (ValueError, TypeError, IndexError, InvalidTag) as e:
        raise EncryptionError(
            f"Failed to decrypt value. Please check that the private key matches the public key used for encryption: {e}"
        )
