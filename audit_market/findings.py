"""Findings values.

A findings value is a 32-byte, hash-shaped hex string (``0x`` + 64 hex digits)
recorded by the arbitrator for one agent on one task. The all-zero value means
"no findings". The integer it encodes (big-endian) is the agent's findings
count and is used as the payout weight under proportional weighting.
"""

from __future__ import annotations

import hashlib

from audit_market.schemas import ZERO_HASH

FINDINGS_BYTES = 32
_MAX_COUNT = (1 << (8 * FINDINGS_BYTES)) - 1


def normalize_hash(value: str) -> str:
    """Return the canonical lower-case ``0x``-prefixed 32-byte form of `value`."""
    raw = value.strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if len(raw) != FINDINGS_BYTES * 2:
        raise ValueError(f"expected {FINDINGS_BYTES}-byte hex value, got {len(raw) // 2} bytes")
    try:
        bytes.fromhex(raw)
    except ValueError as e:
        raise ValueError(f"not a hex value: {value!r}") from e
    return "0x" + raw


def is_zero(value: str) -> bool:
    return normalize_hash(value) == ZERO_HASH


def encode_findings(count: int) -> str:
    if count < 0 or count > _MAX_COUNT:
        raise ValueError("findings count out of range")
    return "0x" + count.to_bytes(FINDINGS_BYTES, "big").hex()


def decode_findings(value: str) -> int:
    return int(normalize_hash(value)[2:], 16)


def content_hash(text: str) -> str:
    """32-byte hash of `text`, for deriving repo references and work hashes from plain strings."""
    return "0x" + hashlib.sha256(text.encode("utf-8")).hexdigest()


def coerce_hash(value: str | int) -> str:
    """Accept a findings count, a 32-byte hex value, or arbitrary text (hashed)."""
    if isinstance(value, bool):
        raise ValueError("expected a count, hex value or text")
    if isinstance(value, int):
        return encode_findings(value)
    try:
        return normalize_hash(value)
    except ValueError:
        return content_hash(value)
