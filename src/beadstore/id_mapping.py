"""Short ID <-> internal ID mapping.

The mapping lives in ``mappings/ids.yml`` inside the data directory as a flat
YAML mapping from short ID to bare ULID::

    a1b2: 01hx5zzkbkactav9wevgemmvrz
    k9x3: 01hx5zzkbkbctav9wevgemmvrz

It is synced like any other data file, so it has to survive sloppy merges:
duplicate keys are tolerated and reported, conflict markers are fatal.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

import yaml

from beadstore.codec import atomic_write_text
from beadstore.config import IDS_FILE, MAPPINGS_DIR
from beadstore.errors import NotFoundError, ValidationError
from beadstore.id_gen import (
    SHORT_ID_RE, ULID_RE, extract_short_id, extract_ulid, generate_short_id,
    is_internal_id, make_internal_id,
)
from beadstore.utils import natural_sort_key
from beadstore.yaml_utils import parse_yaml_tolerating_duplicates


logger = logging.getLogger(__name__)

SHORT_ID_LENGTH_THRESHOLD = 50_000
ATTEMPTS_PER_LENGTH = 10


@dataclass
class IdMapping:
    short_to_ulid: dict[str, str] = field(default_factory=dict)
    ulid_to_short: dict[str, str] = field(default_factory=dict)
    # Keys that appeared more than once in the file this mapping was loaded from.
    duplicate_keys: list[str] = field(default_factory=list)

    @classmethod
    def from_pairs(cls, short_to_ulid: dict[str, str],
                   duplicate_keys: list[str] | None = None) -> IdMapping:
        mapping = cls(duplicate_keys=list(duplicate_keys or []))
        for short in sorted(short_to_ulid, key=natural_sort_key):
            mapping.short_to_ulid[short] = short_to_ulid[short]
        mapping._rebuild_reverse()
        return mapping

    def _rebuild_reverse(self) -> None:
        self.ulid_to_short = {}
        for short in sorted(self.short_to_ulid, key=natural_sort_key):
            self.ulid_to_short.setdefault(self.short_to_ulid[short], short)

    def __len__(self) -> int:
        return len(self.short_to_ulid)

    def add(self, short_id: str, ulid: str) -> None:
        existing = self.short_to_ulid.get(short_id)
        if existing is not None and existing != ulid:
            raise ValidationError(f"Short ID {short_id} is already assigned to {existing}")
        self.short_to_ulid[short_id] = ulid
        self.ulid_to_short.setdefault(ulid, short_id)

    def has_short(self, short_id: str) -> bool:
        return short_id in self.short_to_ulid

    def get_ulid(self, short_id: str) -> str | None:
        return self.short_to_ulid.get(short_id)

    def get_short(self, internal_id: str) -> str | None:
        return self.ulid_to_short.get(extract_ulid(internal_id))

    def sorted_items(self) -> list[tuple[str, str]]:
        return [(k, self.short_to_ulid[k]) for k in sorted(self.short_to_ulid, key=natural_sort_key)]


# --- Generation ---

def calculate_optimal_length(entry_count: int) -> int:
    return 4 if entry_count < SHORT_ID_LENGTH_THRESHOLD else 5


def generate_unique_short_id(mapping: IdMapping) -> str:
    """Generate a short ID not yet present in the mapping.

    Tries the optimal length for the current size first, then one character
    longer. Each length gets a bounded number of attempts.
    """
    length = calculate_optimal_length(len(mapping))
    for candidate_length in (length, length + 1):
        for _ in range(ATTEMPTS_PER_LENGTH):
            candidate = generate_short_id(candidate_length)
            if not mapping.has_short(candidate):
                return candidate
    raise RuntimeError(
        f"Failed to generate a unique short ID after {2 * ATTEMPTS_PER_LENGTH} attempts "
        f"({len(mapping)} existing IDs)")


def create_short_id_mapping(internal_id: str, mapping: IdMapping) -> str:
    """Assign a short ID to internal_id (idempotent) and return it."""
    ulid = extract_ulid(internal_id)
    existing = mapping.ulid_to_short.get(ulid)
    if existing:
        return existing
    short_id = generate_unique_short_id(mapping)
    mapping.add(short_id, ulid)
    return short_id


# --- Merge and reconcile ---

def merge_id_mappings(local: IdMapping, remote: IdMapping, prefer: str = "local") -> IdMapping:
    """Union two mappings.

    Entries from the preferred side are kept verbatim. Entries from the other
    side are added only when neither their short ID nor their ULID is taken,
    so a short ID that one side has already shown to its users never changes
    meaning. With ``prefer="local"`` (the default) local always wins.
    """
    if prefer not in ("local", "remote"):
        raise ValueError(f"unknown mapping conflict policy: {prefer}")
    winner, other = (local, remote) if prefer == "local" else (remote, local)
    merged = dict(winner.short_to_ulid)
    taken_ulids = set(merged.values())
    for short_id, ulid in other.sorted_items():
        if short_id in merged or ulid in taken_ulids:
            if merged.get(short_id, ulid) != ulid:
                logger.warning("Short ID conflict on %s: keeping %s side (%s), dropping %s",
                               short_id, prefer, merged[short_id], ulid)
            continue
        merged[short_id] = ulid
        taken_ulids.add(ulid)
    return IdMapping.from_pairs(merged)


@dataclass
class ReconcileResult:
    created: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.recovered)


def reconcile_mappings(internal_ids: list[str], mapping: IdMapping,
                       historical: IdMapping | None = None) -> ReconcileResult:
    """Make sure every issue has a short ID. Mutates ``mapping``.

    When ``historical`` knows a short ID for an issue and that short ID is
    still free, it is reused so previously communicated IDs keep working.
    """
    result = ReconcileResult()
    for internal_id in sorted(internal_ids):
        ulid = extract_ulid(internal_id)
        if ulid in mapping.ulid_to_short:
            continue
        old_short = historical.ulid_to_short.get(ulid) if historical else None
        if old_short and not mapping.has_short(old_short):
            mapping.add(old_short, ulid)
            result.recovered.append(internal_id)
        else:
            create_short_id_mapping(internal_id, mapping)
            result.created.append(internal_id)
    return result


# --- Resolution ---

def resolve_to_internal_id(value: str, mapping: IdMapping) -> str:
    """Resolve user input to an internal ID.

    Accepts ``is-<ulid>``, a bare ULID, ``<prefix>-<short>`` or ``<short>``.
    """
    raw = value.strip().lower()
    if not raw:
        raise ValidationError("Empty issue ID")
    if is_internal_id(raw):
        return raw
    if ULID_RE.match(raw):
        return make_internal_id(raw)
    short_id = extract_short_id(raw)
    if not SHORT_ID_RE.match(short_id):
        raise ValidationError(f"Invalid issue ID: {value}")
    ulid = mapping.get_ulid(short_id)
    if ulid is None:
        raise NotFoundError(f"Issue not found: {value}")
    return make_internal_id(ulid)


def format_display_id(internal_id: str, mapping: IdMapping, prefix: str) -> str:
    short_id = mapping.get_short(internal_id)
    if short_id is None:
        return internal_id
    return f"{prefix}-{short_id}"


# --- Persistence ---

def mapping_path(data_dir: str) -> str:
    return os.path.join(data_dir, MAPPINGS_DIR, IDS_FILE)


def parse_id_mapping_text(text: str, path: str | None = None) -> IdMapping:
    parsed = parse_yaml_tolerating_duplicates(text, path)
    pairs: dict[str, str] = {}
    for key, value in parsed.data.items():
        short_id = str(key).strip()
        ulid = extract_ulid(str(value or "").strip())
        if not short_id or not ulid:
            logger.warning("Skipping incomplete mapping entry %r in %s", key, path)
            continue
        pairs[short_id] = ulid
    if parsed.duplicate_keys:
        logger.warning("Duplicate short IDs in %s: %s", path or "<string>",
                       ", ".join(parsed.duplicate_keys))
    return IdMapping.from_pairs(pairs, parsed.duplicate_keys)


def load_id_mapping(data_dir: str) -> IdMapping:
    path = mapping_path(data_dir)
    if not os.path.exists(path):
        return IdMapping()
    with open(path, encoding="utf-8") as f:
        text = f.read()
    return parse_id_mapping_text(text, path)


def serialize_id_mapping(mapping: IdMapping) -> str:
    items = mapping.sorted_items()
    if not items:
        return "{}\n"
    return yaml.safe_dump(dict(items), sort_keys=False, default_flow_style=False)


def save_id_mapping(data_dir: str, mapping: IdMapping) -> None:
    """Write the mapping in natural key order. Duplicate keys are dropped on save."""
    atomic_write_text(mapping_path(data_dir), serialize_id_mapping(mapping))
    mapping.duplicate_keys = []
