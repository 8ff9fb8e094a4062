"""YAML helpers that tolerate artifacts of hand-resolved git merges.

A naive merge of ``ids.yml`` frequently keeps both sides of a hunk, which
leaves the same key twice in one mapping. PyYAML silently keeps the last
value; we want the same resolution but also a report of which keys were
duplicated so the doctor can flag them and the next save can drop them.

Literal conflict markers are never parsed through.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from beadstore.errors import CorruptionError, MergeConflictError


_CONFLICT_MARKER_RE = re.compile(r"^(<<<<<<< |<<<<<<<$|=======$|>>>>>>> |>>>>>>>$)", re.MULTILINE)


def has_merge_conflict_markers(text: str) -> bool:
    return bool(_CONFLICT_MARKER_RE.search(text))


@dataclass
class TolerantParse:
    data: dict[str, Any] = field(default_factory=dict)
    duplicate_keys: list[str] = field(default_factory=list)


class _DuplicateTrackingLoader(yaml.SafeLoader):
    """SafeLoader that records duplicate top-level keys and keeps scalars as strings.

    Short IDs such as ``0777`` or ``1e10`` must not turn into numbers, so all
    scalars are constructed as plain strings.
    """

    def __init__(self, stream: str) -> None:
        super().__init__(stream)
        self.duplicate_keys: list[str] = []
        self._depth = 0

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict:
        if not isinstance(node, yaml.MappingNode):
            raise yaml.constructor.ConstructorError(
                None, None, f"expected a mapping node, but found {node.id}", node.start_mark
            )
        top_level = self._depth == 0
        self._depth += 1
        try:
            mapping: dict[Any, Any] = {}
            for key_node, value_node in node.value:
                key = self.construct_object(key_node, deep=deep)
                value = self.construct_object(value_node, deep=deep)
                if key in mapping and top_level:
                    if key not in self.duplicate_keys:
                        self.duplicate_keys.append(key)
                mapping[key] = value
            return mapping
        finally:
            self._depth -= 1


def _construct_raw_str(loader: _DuplicateTrackingLoader, node: yaml.ScalarNode) -> str:
    return loader.construct_scalar(node)


def _construct_tracked_mapping(loader: _DuplicateTrackingLoader, node: yaml.MappingNode) -> dict:
    return loader.construct_mapping(node)


for _tag in (
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:bool",
    "tag:yaml.org,2002:timestamp",
    "tag:yaml.org,2002:null",
):
    _DuplicateTrackingLoader.add_constructor(_tag, _construct_raw_str)
_DuplicateTrackingLoader.add_constructor("tag:yaml.org,2002:map", _construct_tracked_mapping)


def parse_yaml_tolerating_duplicates(text: str, path: str | None = None) -> TolerantParse:
    """Parse a YAML mapping, recovering from duplicate keys (last occurrence wins).

    Raises MergeConflictError when the text contains conflict markers and
    CorruptionError when it is not valid YAML or not a mapping.
    """
    if has_merge_conflict_markers(text):
        raise MergeConflictError(path)
    loader = _DuplicateTrackingLoader(text)
    try:
        data = loader.get_single_data()
    except yaml.YAMLError as e:
        raise CorruptionError(f"Invalid YAML in {path or '<string>'}: {e}", path) from e
    finally:
        loader.dispose()
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CorruptionError(f"Expected a mapping in {path or '<string>'}", path)
    return TolerantParse(data=data, duplicate_keys=list(loader.duplicate_keys))
