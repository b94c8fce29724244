"""
CompliFi Policy Engine

Evaluates the fixed compliance policy shape:
- KYC requirement
- Risk-score ceiling
- Jurisdiction allow-list (80-bit bitmap)
"""

from complifi.core.jurisdiction import (
    bitmap_from_codes,
    codes_from_bitmap,
    empty_bitmap,
    is_allowed,
)
from complifi.policy.evaluator import evaluate, is_compliant

__all__ = [
    "evaluate",
    "is_compliant",
    "bitmap_from_codes",
    "codes_from_bitmap",
    "empty_bitmap",
    "is_allowed",
]
