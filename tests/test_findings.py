from __future__ import annotations

import pytest

from audit_market.findings import (
    coerce_hash,
    content_hash,
    decode_findings,
    encode_findings,
    is_zero,
    normalize_hash,
)
from audit_market.schemas import ZERO_HASH


def test_encode_decode_count() -> None:
    value = encode_findings(5)
    assert value == "0x" + "00" * 31 + "05"
    assert decode_findings(value) == 5
    assert encode_findings(0) == ZERO_HASH


def test_encode_rejects_negative() -> None:
    with pytest.raises(ValueError, match="out of range"):
        encode_findings(-1)


def test_normalize_accepts_missing_prefix_and_upper_case() -> None:
    raw = "AB" * 32
    assert normalize_hash(raw) == "0x" + "ab" * 32
    assert normalize_hash("0X" + raw) == "0x" + "ab" * 32


@pytest.mark.parametrize("bad", ["0x1234", "zz" * 32, ""])
def test_normalize_rejects_bad_values(bad: str) -> None:
    with pytest.raises(ValueError):
        normalize_hash(bad)


def test_is_zero() -> None:
    assert is_zero(ZERO_HASH)
    assert is_zero("00" * 32)
    assert not is_zero(encode_findings(1))


def test_coerce_hash() -> None:
    assert coerce_hash(3) == encode_findings(3)
    assert coerce_hash("0x" + "11" * 32) == "0x" + "11" * 32
    assert coerce_hash("https://example.com/repo.git") == content_hash(
        "https://example.com/repo.git"
    )
    with pytest.raises(ValueError):
        coerce_hash(True)


def test_content_hash_is_stable_and_32_bytes() -> None:
    h = content_hash("report")
    assert h == content_hash("report")
    assert normalize_hash(h) == h
    assert h != content_hash("report2")
