from __future__ import annotations

import os
import random
import string
import time
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Union


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    Used for audit events and stocktake sessions so ids sort by creation time.

    Layout:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    ts_bytes = ts_ms.to_bytes(6, "big", signed=False)
    rand_bytes = os.urandom(10)
    raw = bytearray(ts_bytes + rand_bytes)
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def generate_document_number(
    prefix: str,
    sequence: int,
    *,
    on: Optional[Union[date, datetime]] = None,
) -> str:
    """Build a document number such as 'PO-20250214-0007'."""
    on = on or datetime.now(timezone.utc)
    return f"{prefix}-{on:%Y%m%d}-{sequence:04d}"


def generate_operator_id(prefix: str = "USR") -> str:
    """
    Short operator id such as 'USR-1F2A9C3D'.

    Used as a column default, so it must be callable with no arguments.
    """
    alphabet = string.ascii_uppercase + string.digits
    block = "".join(random.choices(alphabet, k=8))
    return f"{prefix}-{block}" if prefix else block
