"""
complifi/core/time.py

Timestamp sources for CompliFi.

    unix_timestamp()  — integer seconds, stored on KycAttestation records
    wire_timestamp()  — YYYY-MM-DDTHH:MM:SS.mmmZ, stored on event log entries
"""

import time
from datetime import datetime, timezone


def unix_timestamp() -> int:
    """Current UTC time as whole seconds since the epoch."""
    return int(time.time())


def wire_timestamp() -> str:
    """
    Return current UTC time in event log wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)
    """
    now = datetime.now(timezone.utc)
    ms  = now.microsecond // 1000
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"
