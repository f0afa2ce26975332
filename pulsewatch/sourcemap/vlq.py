"""Base64 VLQ decoding for source map ``mappings`` strings."""

from typing import List

BASE64_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {char: index for index, char in enumerate(BASE64_CHARS)}

_CONTINUATION_BIT = 0x20
_DATA_MASK = 0x1F
_SHIFT = 5


class VLQDecodeError(ValueError):
    """Raised when a mappings segment is not valid Base64 VLQ."""


def decode_segment(segment: str) -> List[int]:
    """
    Decode one comma-separated mappings segment into signed integers.

    Args:
        segment: Base64 VLQ text such as ``"ktCAyCUA"``

    Returns:
        Decoded values in order

    Raises:
        VLQDecodeError: On an invalid character or a truncated value
    """
    values: List[int] = []
    value = 0
    shift = 0
    pending = False

    for char in segment:
        digit = _BASE64_VALUES.get(char)
        if digit is None:
            raise VLQDecodeError(f"invalid base64 character {char!r} in {segment!r}")

        value += (digit & _DATA_MASK) << shift
        if digit & _CONTINUATION_BIT:
            shift += _SHIFT
            pending = True
            continue

        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = 0
        shift = 0
        pending = False

    if pending:
        raise VLQDecodeError(f"truncated VLQ value in {segment!r}")

    return values


def encode_value(value: int) -> str:
    """Encode one signed integer as Base64 VLQ."""
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    encoded = ""
    while True:
        digit = vlq & _DATA_MASK
        vlq >>= _SHIFT
        if vlq:
            digit |= _CONTINUATION_BIT
        encoded += BASE64_CHARS[digit]
        if not vlq:
            return encoded
