"""Drift audit.

Read-only scan comparing every denormalized copy in the catalog with the
authoritative document it was copied from. Findings point at the entity
whose cache needs a rebuild; nothing is repaired here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from relcache.catalog.models import project_summary
from relcache.catalog.relations import CACHE_COLLECTION, EntityType, cache_sides, sides_for
from relcache.catalog.resolver import unique_ids

if TYPE_CHECKING:
    from relcache.catalog.store import Document, DocumentStore

DriftKind = Literal["stale", "orphaned", "missing", "dangling", "backref", "aggregate"]


@dataclass
class DriftFinding:
    """One out-of-step copy.

    Attributes:
        kind: What is wrong:
            - stale: embedded summary differs from the referenced entity
            - orphaned: embedded entry for an id no longer in the id list
            - missing: id in the list without an embedded entry
            - dangling: id in the list whose entity does not exist
            - backref: referenced entity does not list this one back
            - aggregate: aggregate cache entry absent, extra, or stale
        entity_type: Type of the document holding the copy.
        entity_id: Id of the document holding the copy.
        field: Cache or id-list field concerned.
        ref_id: Referenced id concerned.
    """

    kind: DriftKind
    entity_type: EntityType
    entity_id: str
    field: str
    ref_id: str

    @property
    def message(self) -> str:
        where = f"{self.entity_type.collection}/{self.entity_id}.{self.field}"
        return f"{self.kind}: {where} -> {self.ref_id}"


@dataclass
class DriftReport:
    """Every finding of one audit run."""

    findings: list[DriftFinding] = field(default_factory=list)
    entities_checked: int = 0

    @property
    def clean(self) -> bool:
        return not self.findings

    def by_kind(self, kind: DriftKind) -> list[DriftFinding]:
        return [f for f in self.findings if f.kind == kind]

    def entities_to_rebuild(self) -> list[tuple[EntityType, str]]:
        """Entities a cache rebuild repairs, in first-found order.

        Covers drifted cache maps and deleted ids in cache-holding lists,
        which the rebuild prunes.
        """
        seen: dict[tuple[EntityType, str], None] = {}
        for finding in self.findings:
            if finding.kind in ("stale", "orphaned", "missing") or (
                finding.kind == "dangling"
                and finding.field in {s.local_ids_field for s in cache_sides(finding.entity_type)}
            ):
                seen.setdefault((finding.entity_type, finding.entity_id), None)
        return list(seen)

    @property
    def summary(self) -> str:
        if self.clean:
            return f"{self.entities_checked} entities checked, no drift"
        counts: dict[str, int] = {}
        for finding in self.findings:
            counts[finding.kind] = counts.get(finding.kind, 0) + 1
        parts = [f"{n} {kind}" for kind, n in sorted(counts.items())]
        return f"{self.entities_checked} entities checked: " + ", ".join(parts)


def _summaries(
    entity_type: EntityType, documents: dict[str, Document]
) -> dict[str, dict[str, Any] | None]:
    result: dict[str, dict[str, Any] | None] = {}
    for doc_id, document in documents.items():
        try:
            result[doc_id] = project_summary(entity_type, document)
        except ValidationError:
            result[doc_id] = None
    return result


def _check_entity(
    report: DriftReport,
    documents: dict[EntityType, dict[str, Document]],
    summaries: dict[EntityType, dict[str, dict[str, Any] | None]],
    entity_type: EntityType,
    entity_id: str,
    document: Document,
) -> None:
    def flag(kind: DriftKind, field_name: str, ref_id: str) -> None:
        report.findings.append(DriftFinding(kind, entity_type, entity_id, field_name, ref_id))

    for side in sides_for(entity_type):
        ids = unique_ids(document.get(side.local_ids_field) or [])
        remote_docs = documents[side.remote_type]

        for ref_id in ids:
            if ref_id not in remote_docs:
                flag("dangling", side.local_ids_field, ref_id)
            elif side.remote_ids_field and entity_id not in (
                remote_docs[ref_id].get(side.remote_ids_field) or []
            ):
                flag("backref", side.local_ids_field, ref_id)

        if not side.local_cache_field:
            continue
        cache = document.get(side.local_cache_field) or {}
        for ref_id in ids:
            if ref_id not in cache:
                flag("missing", side.local_cache_field, ref_id)
            elif ref_id in remote_docs:
                current = summaries[side.remote_type][ref_id]
                if current is None or _projected(side.remote_type, cache[ref_id]) != current:
                    flag("stale", side.local_cache_field, ref_id)
        for ref_id in cache:
            if ref_id not in ids:
                flag("orphaned", side.local_cache_field, ref_id)


def _check_aggregate(
    report: DriftReport,
    store: DocumentStore,
    entity_type: EntityType,
    current_summaries: dict[str, dict[str, Any] | None],
) -> None:
    aggregate = store.get(CACHE_COLLECTION, entity_type.aggregate_doc_id) or {}
    location = f"{CACHE_COLLECTION}/{entity_type.aggregate_doc_id}"
    for entity_id in sorted(set(current_summaries) | set(aggregate)):
        entry = aggregate.get(entity_id)
        current = current_summaries.get(entity_id)
        if entry is None or current is None or _projected(entity_type, entry) != current:
            report.findings.append(
                DriftFinding("aggregate", entity_type, entity_id, location, entity_id)
            )


def find_drift(store: DocumentStore) -> DriftReport:
    """Audit every denormalized copy in *store*.

    Returns:
        Report with one finding per out-of-step copy.
    """
    documents = {t: store.get_all(t.collection) for t in EntityType}
    summaries = {t: _summaries(t, docs) for t, docs in documents.items()}
    report = DriftReport()

    for entity_type in EntityType:
        for entity_id, document in sorted(documents[entity_type].items()):
            report.entities_checked += 1
            _check_entity(report, documents, summaries, entity_type, entity_id, document)
        _check_aggregate(report, store, entity_type, summaries[entity_type])

    return report


def _projected(entity_type: EntityType, entry: Any) -> dict[str, Any] | None:
    if not isinstance(entry, dict):
        return None
    try:
        return project_summary(entity_type, entry)
    except ValidationError:
        return None
