"""Mutation planner.

Turns one edit of one entity into the complete set of document patches
needed to keep every denormalized copy consistent:

- the primary patch, fully replacing the edited document;
- for every reference removed, a patch on the formerly referenced document
  dropping the back-reference and its embedded summary;
- for every reference added, a patch on the newly referenced document adding
  the back-reference and embedding the current summary;
- if the edited entity's summary changed, a patch re-embedding it into every
  retained partner that caches it, plus a patch on the aggregate cache.

Planning is a pure function of its inputs. Anything that needs I/O (loading
the previous snapshot, resolving newly referenced summaries) happens before
:func:`plan_edit` is called; timestamps are left as ``SERVER_TIMESTAMP``
sentinels for the writer to fill in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from relcache.catalog.errors import InvalidEditError, MissingSummaryError
from relcache.catalog.models import project_summary, summary_changed
from relcache.catalog.patches import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Patch,
    PatchKind,
    PatchReason,
)
from relcache.catalog.relations import (
    CACHE_COLLECTION,
    is_valid_entity_id,
    reserved_fields,
    sides_for,
)
from relcache.catalog.resolver import unique_ids

if TYPE_CHECKING:
    from collections.abc import Mapping

    from relcache.catalog.relations import EntityType, RelationSide


@dataclass(frozen=True)
class EditRequest:
    """New state of one entity as submitted by an editor.

    Attributes:
        entity_type: Type of the edited entity.
        entity_id: Id of the edited entity.
        fields: Authoritative fields; fully replace the stored ones.
        relations: Relation id lists keyed by field name. Omitted lists keep
            their stored value.
    """

    entity_type: EntityType
    entity_id: str
    fields: dict[str, Any]
    relations: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class RelationDiff:
    """Set difference of one relation list, in list order."""

    side: RelationSide
    ids: list[str]
    added: list[str]
    removed: list[str]
    retained: list[str]


@dataclass
class MutationPlan:
    """Every patch one edit needs, in commit order.

    Attributes:
        entity_type: Type of the edited entity.
        entity_id: Id of the edited entity.
        primary: Full replacement of the edited document.
        dependents: Patches on referenced documents.
        aggregate: Patch on the aggregate cache, if the summary changed.
        diffs: Relation diffs, one per relation side of the type.
        summary: The entity's summary after the edit.
        summary_changed: Whether any summary field differs from the snapshot.
    """

    entity_type: EntityType
    entity_id: str
    primary: Patch
    dependents: list[Patch]
    aggregate: Patch | None
    diffs: list[RelationDiff]
    summary: dict[str, Any]
    summary_changed: bool

    @property
    def patches(self) -> list[Patch]:
        patches = [self.primary, *self.dependents]
        if self.aggregate is not None:
            patches.append(self.aggregate)
        return patches

    def diff_for(self, ids_field: str) -> RelationDiff | None:
        """Return the diff of the relation list stored in *ids_field*."""
        for diff in self.diffs:
            if diff.side.local_ids_field == ids_field:
                return diff
        return None

    def summarize(self) -> dict[str, Any]:
        """Compact description for logs."""
        return {
            "entity": f"{self.entity_type.collection}/{self.entity_id}",
            "patches": len(self.patches),
            "summary_changed": self.summary_changed,
            "relations": {
                d.side.local_ids_field: {
                    "added": len(d.added),
                    "removed": len(d.removed),
                    "retained": len(d.retained),
                }
                for d in self.diffs
            },
        }


def diff_ids(previous: list[str], new: list[str]) -> tuple[list[str], list[str], list[str]]:
    """Split two id lists into ``(added, removed, retained)``.

    Set semantics; each result keeps the order of the list it came from.

    >>> diff_ids(["a", "b"], ["a", "c"])
    (['c'], ['b'], ['a'])
    """
    old = set(previous)
    current = set(new)
    added = [i for i in unique_ids(new) if i not in old]
    removed = [i for i in unique_ids(previous) if i not in current]
    retained = [i for i in unique_ids(new) if i in old]
    return added, removed, retained


def validate_request(request: EditRequest) -> None:
    """Check an edit request against the relation graph.

    Raises:
        InvalidEditError: Listing every problem found.
    """
    problems: list[str] = []
    entity_type = request.entity_type

    if not is_valid_entity_id(request.entity_id):
        problems.append(f"id {request.entity_id!r} must match [A-Za-z0-9_-]+")

    reserved = reserved_fields(entity_type)
    for name in request.fields:
        if name in reserved:
            problems.append(f"field {name!r} is maintained by the catalog and cannot be set")
        elif "." in name or not name:
            problems.append(f"field name {name!r} is not a plain field name")

    sides = {side.local_ids_field: side for side in sides_for(entity_type)}
    for name, ids in request.relations.items():
        side = sides.get(name)
        if side is None:
            problems.append(f"{entity_type.value} has no relation list {name!r}")
            continue
        if not side.editable:
            problems.append(
                f"relation list {name!r} is derived from {side.remote_type.value} edits"
            )
        for ref in ids:
            if not is_valid_entity_id(ref):
                problems.append(f"{name} contains invalid id {ref!r}")

    if problems:
        raise InvalidEditError(entity_id=request.entity_id, problems=problems)


def compute_diffs(request: EditRequest, previous: dict[str, Any] | None) -> list[RelationDiff]:
    """Diff every relation list of the request against the snapshot."""
    diffs: list[RelationDiff] = []
    for side in sides_for(request.entity_type):
        old_ids = list((previous or {}).get(side.local_ids_field) or [])
        new_ids = unique_ids(request.relations.get(side.local_ids_field, old_ids))
        added, removed, retained = diff_ids(old_ids, new_ids)
        diffs.append(
            RelationDiff(
                side=side,
                ids=new_ids,
                added=added,
                removed=removed,
                retained=retained,
            )
        )
    return diffs


def required_references(
    request: EditRequest,
    previous: dict[str, Any] | None,
) -> dict[EntityType, list[str]]:
    """Ids newly referenced by *request*, grouped by type.

    These must be resolved to summaries before :func:`plan_edit` runs.
    """
    wanted: dict[EntityType, list[str]] = {}
    for diff in compute_diffs(request, previous):
        if diff.added:
            wanted.setdefault(diff.side.remote_type, []).extend(diff.added)
    return {t: unique_ids(ids) for t, ids in wanted.items()}


def _remote_patch(
    side: RelationSide,
    remote_id: str,
    fields: dict[str, Any],
    reason: PatchReason,
) -> Patch:
    fields["updatedAt"] = SERVER_TIMESTAMP
    return Patch(
        collection=side.remote_type.collection,
        doc_id=remote_id,
        kind=PatchKind.UPDATE,
        fields=fields,
        reason=reason,
    )


def plan_edit(
    request: EditRequest,
    previous: dict[str, Any] | None,
    resolved: Mapping[EntityType, Mapping[str, dict[str, Any]]],
    *,
    check_version: bool = True,
) -> MutationPlan:
    """Plan every write one edit needs.

    Args:
        request: The edit.
        previous: Stored document the edit was made against, or None when
            the entity is being created.
        resolved: Current summaries of newly referenced entities, keyed by
            type then id. Must cover :func:`required_references`.
        check_version: Make the primary patch conditional on the stored
            version still matching ``previous``.

    Returns:
        The mutation plan.

    Raises:
        InvalidEditError: If the request is malformed.
        MissingSummaryError: If an added reference has no resolved summary.
    """
    validate_request(request)
    entity_type = request.entity_type
    entity_id = request.entity_id
    diffs = compute_diffs(request, previous)

    document: dict[str, Any] = dict(request.fields)
    try:
        summary = project_summary(entity_type, document)
    except ValidationError as e:
        problems = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
        raise InvalidEditError(entity_id=entity_id, problems=problems) from e
    changed = summary_changed(entity_type, previous, document)

    dependents: list[Patch] = []
    for diff in diffs:
        side = diff.side
        document[side.local_ids_field] = list(diff.ids)

        known = resolved.get(side.remote_type, {})
        missing = [i for i in diff.added if i not in known]
        if missing:
            raise MissingSummaryError(
                collection=side.remote_type.collection,
                missing=missing,
                context=f"{entity_type.collection}/{entity_id}.{side.local_ids_field}",
            )

        if side.local_cache_field:
            cache = dict((previous or {}).get(side.local_cache_field) or {})
            for remote_id in diff.removed:
                cache.pop(remote_id, None)
            for remote_id in diff.added:
                cache[remote_id] = dict(known[remote_id])
            document[side.local_cache_field] = cache

        if not side.touches_remote:
            continue

        for remote_id in diff.removed:
            fields: dict[str, Any] = {}
            if side.remote_ids_field:
                fields[side.remote_ids_field] = ArrayRemove((entity_id,))
            if side.remote_cache_field:
                fields[f"{side.remote_cache_field}.{entity_id}"] = DELETE_FIELD
            dependents.append(_remote_patch(side, remote_id, fields, PatchReason.REMOVED))

        for remote_id in diff.added:
            fields = {}
            if side.remote_ids_field:
                fields[side.remote_ids_field] = ArrayUnion((entity_id,))
            if side.remote_cache_field:
                fields[f"{side.remote_cache_field}.{entity_id}"] = dict(summary)
            dependents.append(_remote_patch(side, remote_id, fields, PatchReason.ADDED))

        if changed and side.remote_cache_field and side.edge.refresh_on_change:
            for remote_id in diff.retained:
                fields = {f"{side.remote_cache_field}.{entity_id}": dict(summary)}
                dependents.append(_remote_patch(side, remote_id, fields, PatchReason.REFRESH))

    previous_version = (previous or {}).get("version")
    document["updatedAt"] = SERVER_TIMESTAMP
    document["version"] = (previous_version or 0) + 1

    primary = Patch(
        collection=entity_type.collection,
        doc_id=entity_id,
        kind=PatchKind.SET,
        fields=document,
        reason=PatchReason.PRIMARY,
        check_version=check_version,
        expected_version=previous_version,
    )

    aggregate = None
    if changed:
        aggregate = Patch(
            collection=CACHE_COLLECTION,
            doc_id=entity_type.aggregate_doc_id,
            kind=PatchKind.MERGE,
            fields={entity_id: dict(summary)},
            reason=PatchReason.AGGREGATE,
        )

    return MutationPlan(
        entity_type=entity_type,
        entity_id=entity_id,
        primary=primary,
        dependents=dependents,
        aggregate=aggregate,
        diffs=diffs,
        summary=summary,
        summary_changed=changed,
    )
