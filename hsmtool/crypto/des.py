"""DES and triple-DES processing with ECB/CBC modes and ISO 9797-1 padding."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from Crypto.Cipher import DES

BLOCK_SIZE = 8
_VALID_KEY_LENGTHS = (8, 16, 24)


class CipherMode(IntEnum):
    """Block cipher mode of operation."""

    ECB = 0
    CBC = 1


class PaddingMode(IntEnum):
    """Padding method applied before processing."""

    NO_PADDING = 0
    ISO97971 = 1
    ISO97972 = 2


class DESError(ValueError):
    """Raised when a DES operation fails."""


@dataclass
class DESParams:
    """Parameters for a DES operation."""

    data: bytes
    key: bytes
    iv: bytes = b""
    mode: CipherMode = CipherMode.ECB
    padding: PaddingMode = PaddingMode.NO_PADDING
    encrypt: bool = True


class _BlockCipher:
    """Single DES or EDE triple DES operating on whole blocks in ECB fashion."""

    def __init__(self, key: bytes) -> None:
        if len(key) == 8:
            parts = [key]
        elif len(key) == 16:
            parts = [key[:8], key[8:16], key[:8]]
        else:
            parts = [key[:8], key[8:16], key[16:24]]
        self._stages = [DES.new(part, DES.MODE_ECB) for part in parts]

    def encrypt(self, data: bytes) -> bytes:
        if len(self._stages) == 1:
            return self._stages[0].encrypt(data)
        k1, k2, k3 = self._stages
        return k3.encrypt(k2.decrypt(k1.encrypt(data)))

    def decrypt(self, data: bytes) -> bytes:
        if len(self._stages) == 1:
            return self._stages[0].decrypt(data)
        k1, k2, k3 = self._stages
        return k1.decrypt(k2.encrypt(k3.decrypt(data)))


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _blocks(data: bytes):
    for start in range(0, len(data), BLOCK_SIZE):
        yield data[start : start + BLOCK_SIZE]


def _cbc_encrypt(cipher: _BlockCipher, data: bytes, iv: bytes) -> bytes:
    out = bytearray()
    previous = iv
    for block in _blocks(data):
        previous = cipher.encrypt(_xor(block, previous))
        out += previous
    return bytes(out)


def _cbc_decrypt(cipher: _BlockCipher, data: bytes, iv: bytes) -> bytes:
    out = bytearray()
    previous = iv
    for block in _blocks(data):
        out += _xor(cipher.decrypt(block), previous)
        previous = block
    return bytes(out)


def pad(data: bytes, block_size: int, mode: PaddingMode) -> bytes:
    """Pad data to a multiple of block_size according to the padding mode."""
    if mode == PaddingMode.NO_PADDING:
        if len(data) % block_size != 0:
            raise DESError(
                "data length must be multiple of block size when using no padding"
            )
        return bytes(data)

    pad_len = block_size - (len(data) % block_size)
    # Method 1 adds nothing when already aligned; method 2 always adds a block.
    if mode == PaddingMode.ISO97971 and pad_len == block_size:
        pad_len = 0

    if pad_len == 0:
        return bytes(data)

    if mode == PaddingMode.ISO97971:
        return bytes(data) + bytes(pad_len)
    if mode == PaddingMode.ISO97972:
        return bytes(data) + b"\x80" + bytes(pad_len - 1)
    raise DESError("unsupported padding mode")


def process_des(params: DESParams | None) -> bytes:
    """Encrypt or decrypt according to params."""
    if params is None:
        raise DESError("params cannot be nil")

    if len(params.key) not in _VALID_KEY_LENGTHS:
        raise DESError("invalid key length: must be 8, 16, or 24 bytes")

    cipher = _BlockCipher(bytes(params.key))

    try:
        padded = pad(params.data, BLOCK_SIZE, params.padding)
    except DESError as exc:
        raise DESError(f"padding error: {exc}") from exc

    if params.mode == CipherMode.ECB:
        return cipher.encrypt(padded) if params.encrypt else cipher.decrypt(padded)

    if params.mode == CipherMode.CBC:
        if len(params.iv) != BLOCK_SIZE:
            raise DESError(f"invalid iv length: must be {BLOCK_SIZE} bytes")
        iv = bytes(params.iv)
        if params.encrypt:
            return _cbc_encrypt(cipher, padded, iv)
        return _cbc_decrypt(cipher, padded, iv)

    raise DESError("unsupported mode")


def calculate_kcv(key: bytes) -> str:
    """Return the key check value: first 3 bytes of encrypted zeros, uppercase hex."""
    if len(key) not in _VALID_KEY_LENGTHS:
        raise DESError("invalid key length: must be 8, 16, or 24 bytes")
    try:
        result = process_des(
            DESParams(
                data=bytes(BLOCK_SIZE),
                key=key,
                mode=CipherMode.ECB,
                padding=PaddingMode.NO_PADDING,
                encrypt=True,
            )
        )
    except DESError as exc:
        raise DESError(f"failed to calculate KCV: {exc}") from exc
    return result[:3].hex().upper()