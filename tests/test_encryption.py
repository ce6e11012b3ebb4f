"""Tests for property value encryption."""

import base64

import pytest

from inspector_sdk.encryption import ENVELOPE_VERSION, decrypt_value, encrypt_value, generate_key_pair
from inspector_sdk.exceptions import EncryptionError


def test_generate_key_pair_format():
    keys = generate_key_pair()

    assert len(keys["private_key"]) == 64
    assert len(keys["public_key"]) == 130
    assert keys["public_key"].startswith("04")


def test_encrypt_then_decrypt():
    keys = generate_key_pair()

    for value in ["hello", 42, 3.5, True, None, {"nested": [1, "a"]}]:
        assert decrypt_value(encrypt_value(value, keys["public_key"]), keys["private_key"]) == value


def test_envelope_layout():
    keys = generate_key_pair()

    envelope = base64.b64decode(encrypt_value("x", keys["public_key"]))

    assert envelope[0] == ENVELOPE_VERSION
    assert envelope[1] == 0x04
    # version + 65 byte point + 16 byte iv + 16 byte tag + '"x"'
    assert len(envelope) == 1 + 65 + 16 + 16 + 3


def test_each_encryption_is_randomized():
    keys = generate_key_pair()

    assert encrypt_value("same", keys["public_key"]) != encrypt_value("same", keys["public_key"])


def test_invalid_public_key_raises():
    with pytest.raises(EncryptionError):
        encrypt_value("x", "zz")

    with pytest.raises(EncryptionError):
        encrypt_value("x", "04" + "00" * 64)


def test_wrong_private_key_raises():
    encrypted = encrypt_value("secret", generate_key_pair()["public_key"])

    with pytest.raises(EncryptionError):
        decrypt_value(encrypted, generate_key_pair()["private_key"])


def test_unsupported_version_raises():
    keys = generate_key_pair()
    envelope = bytearray(base64.b64decode(encrypt_value("x", keys["public_key"])))
    envelope[0] = 0x01

    with pytest.raises(EncryptionError):
        decrypt_value(base64.b64encode(bytes(envelope)).decode(), keys["private_key"])
