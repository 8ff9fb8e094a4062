"""Identifier generation.

Two kinds of identifiers exist for every issue:

1. Internal IDs: ``is-`` followed by a 26-character lowercase ULID. Stable,
   assigned once, sortable by creation time, generated without coordination.
2. Short IDs: a few base36 characters, unique within one repository's
   mapping, meant to be typed by humans (``bd-a1b2``).
"""

from __future__ import annotations

import os
import re
import secrets
import threading
import time


INTERNAL_ID_PREFIX = "is-"

# Crockford base32, lowercased.
ULID_ALPHABET = "0123456789abcdefghjkmnpqrstvwxyz"
ULID_LENGTH = 26
_TIME_CHARS = 10
_RANDOM_BITS = 80

ULID_RE = re.compile(r"^[0-9a-z]{26}$")
INTERNAL_ID_RE = re.compile(r"^is-[0-9a-z]{26}$")
SHORT_ID_RE = re.compile(r"^[0-9a-z]{1,16}$")


def encode_base32(num: int, length: int) -> str:
    """Encode a non-negative integer as Crockford base32 of exactly ``length`` chars."""
    chars: list[str] = []
    for _ in range(length):
        num, remainder = divmod(num, 32)
        chars.append(ULID_ALPHABET[remainder])
    if num:
        raise ValueError("value does not fit in requested length")
    chars.reverse()
    return "".join(chars)


class _MonotonicUlid:
    """ULID source that stays strictly increasing within one process.

    When two IDs are requested in the same millisecond the random component
    of the previous ID is incremented instead of drawing a fresh one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = 0

    def next(self) -> str:
        with self._lock:
            ms = int(time.time() * 1000)
            if ms <= self._last_ms:
                ms = self._last_ms
                self._last_random += 1
                if self._last_random >= 1 << _RANDOM_BITS:
                    # Random space exhausted for this millisecond; borrow the next one.
                    ms += 1
                    self._last_random = int.from_bytes(os.urandom(10), "big")
            else:
                self._last_random = int.from_bytes(os.urandom(10), "big")
            self._last_ms = ms
            return encode_base32(ms, _TIME_CHARS) + encode_base32(self._last_random, ULID_LENGTH - _TIME_CHARS)


_ulid_source = _MonotonicUlid()


def generate_ulid() -> str:
    return _ulid_source.next()


def generate_internal_id() -> str:
    """Return a fresh internal ID of the form ``is-<ulid>``."""
    return INTERNAL_ID_PREFIX + generate_ulid()


def is_internal_id(value: str) -> bool:
    return bool(INTERNAL_ID_RE.match(value))


def make_internal_id(ulid: str) -> str:
    return INTERNAL_ID_PREFIX + ulid


def extract_ulid(internal_id: str) -> str:
    """Strip the ``is-`` prefix. Accepts a bare ULID unchanged."""
    if internal_id.startswith(INTERNAL_ID_PREFIX):
        return internal_id[len(INTERNAL_ID_PREFIX):]
    return internal_id


# --- Base36 short IDs ---

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_short_id(length: int) -> str:
    """Draw a uniformly random base36 string of the given length."""
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def extract_short_id(value: str) -> str:
    """Strip a ``<prefix>-`` from a display ID: ``bd-a1b2`` -> ``a1b2``."""
    value = value.strip().lower()
    if "-" in value:
        return value.rsplit("-", 1)[1]
    return value
