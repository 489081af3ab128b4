"""Bitwise operations on hex-encoded blocks."""

from __future__ import annotations

import binascii
from enum import Enum


class BitwiseOperation(str, Enum):
    """Supported bitwise operations."""

    XOR = "XOR"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class BitwiseError(ValueError):
    """Raised when a bitwise operation cannot be performed."""


def _decode(block: str, label: str) -> bytes:
    try:
        return binascii.unhexlify(block)
    except (binascii.Error, ValueError) as exc:
        raise BitwiseError(f"invalid hex in block {label}: {exc}") from exc


def _coerce(operation: BitwiseOperation | str) -> BitwiseOperation | None:
    try:
        return BitwiseOperation(operation)
    except ValueError:
        return None


def perform_bitwise(
    operation: BitwiseOperation | str, block_a: str, block_b: str = ""
) -> str:
    """Apply a bitwise operation to hex blocks and return the uppercase hex result.

    ``block_b`` is ignored for NOT.
    """
    op = _coerce(operation)
    a = _decode(block_a, "A")

    if op is BitwiseOperation.NOT:
        return bytes(~x & 0xFF for x in a).hex().upper()

    b = _decode(block_b, "B")
    if len(a) != len(b):
        raise BitwiseError("input blocks must be same length")

    if op is BitwiseOperation.XOR:
        result = bytes(x ^ y for x, y in zip(a, b))
    elif op is BitwiseOperation.AND:
        result = bytes(x & y for x, y in zip(a, b))
    elif op is BitwiseOperation.OR:
        result = bytes(x | y for x, y in zip(a, b))
    else:
        name = operation.value if isinstance(operation, Enum) else operation
        raise BitwiseError(f"unsupported operation: {name}")

    return result.hex().upper()