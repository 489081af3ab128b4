"""Key generation, XOR component splitting and DES parity helpers."""

from __future__ import annotations

import binascii
import secrets
from functools import reduce

from hsmtool.crypto.des import DESError, calculate_kcv

KEY_LENGTH_64 = 64
KEY_LENGTH_128 = 128
KEY_LENGTH_192 = 192
KEY_LENGTH_256 = 256
KCV_LENGTH = 3

_VALID_KEY_BITS = (KEY_LENGTH_64, KEY_LENGTH_128, KEY_LENGTH_192, KEY_LENGTH_256)


class KeyShareError(ValueError):
    """Base error for key handling."""


class InvalidKeyLengthError(KeyShareError):
    """The key has an invalid length."""

    def __init__(self, message: str = "invalid key length") -> None:
        super().__init__(message)


class InvalidHexStringError(KeyShareError):
    """The value is not a valid hex string."""

    def __init__(self, message: str = "invalid hex string") -> None:
        super().__init__(message)


class InvalidKeyFormatError(KeyShareError):
    """The key is not in a valid format."""

    def __init__(self, message: str = "invalid key format") -> None:
        super().__init__(message)


class InvalidComponentCountError(KeyShareError):
    """Too few components were given."""

    def __init__(self, message: str = "invalid component count") -> None:
        super().__init__(message)


def _decode_hex(hex_str: str, length_bytes: int = 0) -> bytes:
    if len(hex_str) % 2 != 0:
        raise InvalidHexStringError()
    if length_bytes > 0 and len(hex_str) // 2 != length_bytes:
        raise InvalidKeyLengthError()
    try:
        return binascii.unhexlify(hex_str)
    except (binascii.Error, ValueError) as exc:
        raise InvalidHexStringError() from exc


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _odd_parity_byte(value: int) -> int:
    high_bits = bin(value >> 1).count("1")
    return value | 1 if high_bits % 2 == 0 else value & 0xFE


def adjust_parity(key: bytes) -> bytes:
    """Return the key with each byte's low bit set for odd parity."""
    return bytes(_odd_parity_byte(b) for b in key)


def validate_key_parity(key: bytes) -> bool:
    """Return True if every byte of the key has odd parity."""
    return all(bin(b).count("1") % 2 == 1 for b in key)


def generate_key(length_bits: int, enforce_odd_parity: bool = False) -> tuple[str, str]:
    """Generate a random key; return (lowercase hex key, KCV)."""
    if length_bits not in _VALID_KEY_BITS:
        raise InvalidKeyLengthError()

    key = secrets.token_bytes(length_bits // 8)
    if enforce_odd_parity:
        key = adjust_parity(key)

    try:
        kcv = calculate_kcv(key)
    except DESError as exc:
        raise KeyShareError(f"failed to calculate KCV: {exc}") from exc

    return key.hex(), kcv


def split_key(key_hex: str, num_components: int) -> tuple[list[str], str]:
    """Split a hex key into XOR components; return (components, KCV of the key)."""
    if num_components < 2:
        raise InvalidComponentCountError()

    key = _decode_hex(key_hex)

    randoms = [secrets.token_bytes(len(key)) for _ in range(num_components - 1)]
    last = reduce(_xor, randoms, key)

    kcv = calculate_kcv(key)
    return [part.hex() for part in (*randoms, last)], kcv


def combine_components(components: list[str]) -> str:
    """XOR hex components together and return the lowercase hex key."""
    if len(components) < 2:
        raise InvalidComponentCountError()

    decoded = [_decode_hex(component) for component in components]
    key_length = len(decoded[0])
    if any(len(part) != key_length for part in decoded[1:]):
        raise InvalidKeyLengthError()

    return reduce(_xor, decoded[1:], decoded[0]).hex()


def validate_component_consistency(original: str, components: list[str]) -> bool:
    """Return True if the components XOR back to the original key."""
    try:
        original_bytes = binascii.unhexlify(original)
        recombined = binascii.unhexlify(combine_components(components))
    except (binascii.Error, ValueError):
        return False
    return original_bytes == recombined