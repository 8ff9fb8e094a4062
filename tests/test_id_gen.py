"""Tests for ID generation."""

from collections import Counter

import pytest

from beadstore.id_gen import (
    BASE36_ALPHABET, INTERNAL_ID_RE, ULID_ALPHABET, encode_base32, extract_short_id,
    extract_ulid, generate_internal_id, generate_short_id, generate_ulid, is_internal_id,
    make_internal_id,
)


def test_internal_id_format():
    issue_id = generate_internal_id()
    assert issue_id.startswith("is-")
    assert len(issue_id) == 29
    assert INTERNAL_ID_RE.match(issue_id)


def test_internal_ids_are_unique_and_monotonic():
    ids = [generate_internal_id() for _ in range(2000)]
    assert len(set(ids)) == len(ids)
    # Many of these share a millisecond; order must still follow generation order.
    assert ids == sorted(ids)


def test_ulid_uses_crockford_alphabet():
    ulid = generate_ulid()
    assert len(ulid) == 26
    assert all(c in ULID_ALPHABET for c in ulid)
    for excluded in "ilou":
        assert excluded not in ULID_ALPHABET


def test_encode_base32_fixed_width():
    assert encode_base32(0, 3) == "000"
    assert encode_base32(31, 2) == "0z"
    assert encode_base32(32, 2) == "10"


def test_encode_base32_overflow():
    with pytest.raises(ValueError):
        encode_base32(32 ** 2, 2)


def test_is_internal_id():
    assert is_internal_id(generate_internal_id())
    assert not is_internal_id("bd-a1b2")
    assert not is_internal_id("is-TOOSHORT")
    assert not is_internal_id("is-" + "A" * 26)


def test_make_and_extract_ulid():
    ulid = generate_ulid()
    assert extract_ulid(make_internal_id(ulid)) == ulid
    assert extract_ulid(ulid) == ulid


def test_generate_short_id():
    for length in (4, 5, 6):
        short_id = generate_short_id(length)
        assert len(short_id) == length
        assert all(c in BASE36_ALPHABET for c in short_id)


def test_short_id_characters_are_uniform():
    # 5000 expected per character; byte-modulo drawing puts 0-3 near 5600.
    counts = Counter(generate_short_id(36 * 5000))
    assert set(counts) == set(BASE36_ALPHABET)
    assert max(counts.values()) < 5350
    assert min(counts.values()) > 4650


def test_extract_short_id():
    assert extract_short_id("bd-a1b2") == "a1b2"
    assert extract_short_id("BD-A1B2") == "a1b2"
    assert extract_short_id("a1b2") == "a1b2"
    assert extract_short_id("my-proj-k9x3") == "k9x3"
