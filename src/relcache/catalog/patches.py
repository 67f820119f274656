"""Document patches and their application.

A :class:`Patch` is one document-level write inside a batch. Keys of
``Patch.fields`` are dotted field paths (``cachedGames.ys-viii``), values are
either plain JSON values or one of the write sentinels below. Both store
backends apply patches through :func:`apply_patch`, so the semantics live in
exactly one place.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class _Sentinel:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __deepcopy__(self, memo: dict[int, Any]) -> _Sentinel:
        return self


DELETE_FIELD = _Sentinel("DELETE_FIELD")
"""Remove the field at this path."""

SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
"""Replace with the commit's server-assigned time."""


@dataclass(frozen=True)
class ArrayUnion:
    """Append each value not already present in the list at this path."""

    values: tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    """Remove every occurrence of each value from the list at this path."""

    values: tuple[Any, ...]


class PatchKind(StrEnum):
    SET = "set"  # replace the whole document
    UPDATE = "update"  # document must exist
    MERGE = "merge"  # create the document if absent


class PatchReason(StrEnum):
    PRIMARY = "primary"
    ADDED = "added"
    REMOVED = "removed"
    REFRESH = "refresh"
    AGGREGATE = "aggregate"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class Patch:
    """One document write inside an atomic batch.

    Attributes:
        collection: Target collection.
        doc_id: Target document id.
        kind: How ``fields`` are applied.
        fields: Dotted field path to value or sentinel. For ``SET`` the keys
            are top-level fields of the new document.
        reason: Why the planner emitted this patch.
        check_version: Whether the store must compare ``expected_version``
            with the stored ``version`` before applying.
        expected_version: Stored version the patch was computed against;
            ``None`` with ``check_version`` means the document must not exist.
    """

    collection: str
    doc_id: str
    kind: PatchKind
    fields: dict[str, Any] = field(default_factory=dict)
    reason: PatchReason = PatchReason.PRIMARY
    check_version: bool = False
    expected_version: int | None = None

    @property
    def target(self) -> tuple[str, str]:
        return (self.collection, self.doc_id)


def split_path(path: str) -> list[str]:
    """Split a dotted field path into its segments."""
    parts = path.split(".")
    if any(not p for p in parts):
        raise ValueError(f"Invalid field path {path!r}")
    return parts


def get_path(document: dict[str, Any], path: str) -> Any:
    """Read the value at a dotted field path, or None if any segment is absent."""
    node: Any = document
    for part in split_path(path):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _resolve(value: Any, current: Any, now: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, ArrayUnion):
        result = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in result:
                result.append(item)
        return result
    if isinstance(value, ArrayRemove):
        if not isinstance(current, list):
            return []
        return [item for item in current if item not in value.values]
    if isinstance(value, dict):
        return {k: _resolve(v, None, now) for k, v in value.items()}
    return copy.deepcopy(value)


def _write_path(document: dict[str, Any], path: str, value: Any, now: str) -> None:
    parts = split_path(path)
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            if value is DELETE_FIELD:
                return
            child = {}
            node[part] = child
        node = child
    leaf = parts[-1]
    if value is DELETE_FIELD:
        node.pop(leaf, None)
    else:
        node[leaf] = _resolve(value, node.get(leaf), now)


def encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Encode patch fields as plain JSON, spelling sentinels out as ``$`` keys."""

    def encode(value: Any) -> Any:
        if value is DELETE_FIELD:
            return {"$delete": True}
        if value is SERVER_TIMESTAMP:
            return {"$serverTimestamp": True}
        if isinstance(value, ArrayUnion):
            return {"$arrayUnion": list(value.values)}
        if isinstance(value, ArrayRemove):
            return {"$arrayRemove": list(value.values)}
        if isinstance(value, dict):
            return {k: encode(v) for k, v in value.items()}
        return value

    return {path: encode(value) for path, value in fields.items()}


def apply_patch(document: dict[str, Any] | None, patch: Patch, now: str) -> dict[str, Any]:
    """Apply *patch* to *document* and return the new document.

    The input document is not modified. Existence rules for ``UPDATE`` are
    enforced by the stores, which know the collection context; here a missing
    document is treated as empty.

    Args:
        document: Current document, or None if absent.
        patch: Patch to apply.
        now: Server time (ISO-8601) substituted for ``SERVER_TIMESTAMP``.

    Returns:
        The patched document.
    """
    if patch.kind == PatchKind.SET:
        return {k: _resolve(v, None, now) for k, v in patch.fields.items() if v is not DELETE_FIELD}

    result = copy.deepcopy(document) if document is not None else {}
    for path, value in patch.fields.items():
        _write_path(result, path, value, now)
    return result
