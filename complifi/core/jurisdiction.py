"""
Jurisdiction allow-list bitmap.

The policy stores permitted jurisdictions as an 80-bit bitmap (10 bytes).
Code c lives in byte c // 8 at bit c % 8 (least significant bit first).
"""

from typing import Iterable, List

BITMAP_BYTES = 10
MAX_JURISDICTION = BITMAP_BYTES * 8 - 1


def empty_bitmap() -> bytes:
    """All-zero bitmap: no jurisdiction is permitted."""
    return bytes(BITMAP_BYTES)


def bitmap_from_codes(codes: Iterable[int]) -> bytes:
    """Build a bitmap with the bit for every code in codes set."""
    bitmap = bytearray(BITMAP_BYTES)
    for code in codes:
        if isinstance(code, bool) or not isinstance(code, int):
            raise ValueError(f"jurisdiction code must be int, got {code!r}")
        if not 0 <= code <= MAX_JURISDICTION:
            raise ValueError(
                f"jurisdiction code must be in [0, {MAX_JURISDICTION}], got {code}"
            )
        bitmap[code // 8] |= 1 << (code % 8)
    return bytes(bitmap)


def codes_from_bitmap(bitmap: bytes) -> List[int]:
    """Sorted list of codes whose bit is set."""
    return [
        code for code in range(len(bitmap) * 8)
        if bitmap[code // 8] & (1 << (code % 8))
    ]


def is_allowed(bitmap: bytes, code: int) -> bool:
    """
    True if code's bit is set in bitmap.

    Codes beyond the end of the bitmap (or negative) are never allowed.
    """
    index = code // 8
    if code < 0 or index >= len(bitmap):
        return False
    return bool(bitmap[index] & (1 << (code % 8)))
