"""Archive of issue versions that lost a merge.

Each entry lives at ``attic/<internal_id>/<timestamp>.yml`` (colons in the
timestamp replaced by dashes) and holds the full serialized losing version
plus enough context to understand why it lost. Entries are never modified
or deleted by bd.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from beadstore.codec import atomic_write_text, parse_issue, serialize_issue
from beadstore.config import ATTIC_DIR
from beadstore.errors import CorruptionError, NotFoundError, ValidationError
from beadstore.id_gen import is_internal_id
from beadstore.models import Issue, format_timestamp, now_utc
from beadstore.storage.interface import Storage


logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".yml"


def _safe_timestamp(timestamp: str) -> str:
    return timestamp.replace(":", "-")


@dataclass
class AtticEntry:
    entity_id: str
    timestamp: str
    winner_source: str
    loser_source: str
    content: str
    context: dict[str, Any] = field(default_factory=dict)
    path: str | None = None

    @property
    def key(self) -> str:
        """File stem, unique per entity."""
        if self.path:
            return os.path.basename(self.path)[:-len(ENTRY_SUFFIX)]
        return _safe_timestamp(self.timestamp)

    def issue(self) -> Issue:
        return parse_issue(self.content, self.path)

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "timestamp": self.timestamp,
            "winner_source": self.winner_source,
            "loser_source": self.loser_source,
            "context": dict(self.context),
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, d: dict, path: str | None = None) -> AtticEntry:
        return cls(
            entity_id=str(d["entity_id"]),
            timestamp=str(d["timestamp"]),
            winner_source=str(d.get("winner_source", "")),
            loser_source=str(d.get("loser_source", "")),
            content=str(d.get("content", "")),
            context=dict(d.get("context") or {}),
            path=path,
        )


def _version_context(local: Issue | None, remote: Issue | None) -> dict[str, Any]:
    ctx: dict[str, Any] = {}
    if local is not None:
        ctx["local_version"] = local.version
        ctx["local_updated_at"] = format_timestamp(local.updated_at)
    if remote is not None:
        ctx["remote_version"] = remote.version
        ctx["remote_updated_at"] = format_timestamp(remote.updated_at)
    return ctx


class Attic:
    def __init__(self, data_dir: str) -> None:
        self.root = os.path.join(data_dir, ATTIC_DIR)

    def _entity_dir(self, entity_id: str) -> str:
        if not is_internal_id(entity_id):
            raise ValidationError(f"Not an internal issue ID: {entity_id}")
        return os.path.join(self.root, entity_id)

    def archive(self, lost: Issue, winner_source: str, loser_source: str,
                local: Issue | None = None, remote: Issue | None = None,
                timestamp: str | None = None) -> AtticEntry:
        """Store the losing version of an issue. Returns the new entry."""
        timestamp = timestamp or format_timestamp(now_utc())
        entity_dir = self._entity_dir(lost.id)
        stem = _safe_timestamp(timestamp)
        path = os.path.join(entity_dir, stem + ENTRY_SUFFIX)
        n = 1
        while os.path.exists(path):
            n += 1
            path = os.path.join(entity_dir, f"{stem}-{n}{ENTRY_SUFFIX}")
        entry = AtticEntry(
            entity_id=lost.id,
            timestamp=timestamp,
            winner_source=winner_source,
            loser_source=loser_source,
            content=serialize_issue(lost),
            context=_version_context(local, remote),
            path=path,
        )
        atomic_write_text(path, yaml.safe_dump(entry.to_dict(), sort_keys=True,
                                               default_flow_style=False, allow_unicode=True))
        logger.info("Archived %s version %d (%s lost to %s)", lost.id, lost.version,
                    loser_source, winner_source)
        return entry

    def _read(self, path: str) -> AtticEntry:
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise CorruptionError(f"Invalid attic entry {path}: {e}", path) from e
        if not isinstance(data, dict) or "entity_id" not in data:
            raise CorruptionError(f"Invalid attic entry {path}", path)
        return AtticEntry.from_dict(data, path)

    def list(self, entity_id: str | None = None) -> list[AtticEntry]:
        """All entries (or one entity's), newest first."""
        if entity_id is not None:
            dirs = [self._entity_dir(entity_id)]
        elif os.path.isdir(self.root):
            dirs = [os.path.join(self.root, d) for d in sorted(os.listdir(self.root))
                    if is_internal_id(d)]
        else:
            dirs = []
        entries = []
        for directory in dirs:
            if not os.path.isdir(directory):
                continue
            for name in sorted(os.listdir(directory)):
                if not name.endswith(ENTRY_SUFFIX):
                    continue
                path = os.path.join(directory, name)
                try:
                    entries.append(self._read(path))
                except CorruptionError as e:
                    logger.warning("Skipping %s", e)
        entries.sort(key=lambda e: (e.timestamp, e.key), reverse=True)
        return entries

    def show(self, entity_id: str, timestamp: str) -> AtticEntry:
        for entry in self.list(entity_id):
            if timestamp in (entry.timestamp, entry.key):
                return entry
        raise NotFoundError(f"No attic entry for {entity_id} at {timestamp}")

    def restore(self, store: Storage, entity_id: str, timestamp: str) -> Issue:
        """Make the archived version the current one, as a new version.

        The attic entry itself is left in place.
        """
        entry = self.show(entity_id, timestamp)
        restored = entry.issue()
        if store.exists(entity_id):
            restored.version = store.get(entity_id).version
        else:
            restored.version = 0
        return store.write(restored)
