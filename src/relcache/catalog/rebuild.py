"""Cache rebuild procedure.

Repairs drift in denormalized copies when the synchronous edit path was
bypassed or skipped a refresh (track edits never refresh staff music
caches). A rebuild re-reads one entity, resolves every id in each of its
cache-holding relation lists, and replaces each cache map wholesale, so
stale and orphaned entries disappear together. Ids whose entity was deleted
are pruned from the list as well. Running it twice in a row yields the same
document apart from ``updatedAt`` and ``version``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relcache.catalog.errors import EntityNotFoundError
from relcache.catalog.models import project_stored_summary, project_summary
from relcache.catalog.patches import SERVER_TIMESTAMP, Patch, PatchKind, PatchReason
from relcache.catalog.relations import CACHE_COLLECTION, cache_sides
from relcache.catalog.resolver import unique_ids
from relcache.catalog.writer import AtomicBatchWriter
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from relcache.catalog.relations import EntityType
    from relcache.catalog.resolver import ChunkedQueryExecutor
    from relcache.catalog.store import DocumentStore
    from relcache.catalog.writer import CommitReceipt

log = get_logger(__name__)


@dataclass
class CacheRebuild:
    """Outcome of one rebuild.

    Attributes:
        entity_type: Type of the rebuilt entity (or aggregate).
        entity_id: Rebuilt entity id, or the aggregate document id.
        caches: Rebuilt cache field name to number of entries.
        dropped: Id-list field name to the ids pruned because their entity is gone.
        receipt: Commit receipt, or None when the type holds no caches.
    """

    entity_type: EntityType
    entity_id: str
    caches: dict[str, int] = field(default_factory=dict)
    dropped: dict[str, list[str]] = field(default_factory=dict)
    receipt: CommitReceipt | None = None


async def build_entity_cache_patch(
    store: DocumentStore,
    executor: ChunkedQueryExecutor,
    entity_type: EntityType,
    entity_id: str,
    *,
    strict: bool = False,
) -> tuple[Patch, dict[str, list[str]]] | None:
    """Build the patch that rewrites every cache map of one entity.

    Ids whose entity no longer exists are dropped from both the id list and
    its cache map, unless *strict* is set.

    Returns:
        The patch and the dropped ids per id-list field, or None if
        *entity_type* holds no cache maps.

    Raises:
        EntityNotFoundError: If the entity is missing, or with *strict* if any
            id it references is missing.
        InvalidDocumentError: If a referenced document cannot be summarized.
        ResolutionError: If a chunk query fails.
    """
    sides = cache_sides(entity_type)
    if not sides:
        return None

    document = await asyncio.to_thread(store.get, entity_type.collection, entity_id)
    if document is None:
        raise EntityNotFoundError(
            collection=entity_type.collection,
            missing=[entity_id],
            context="cache rebuild",
        )

    fields: dict[str, Any] = {}
    dropped: dict[str, list[str]] = {}
    for side in sides:
        ids = unique_ids(document.get(side.local_ids_field) or [])
        context = f"{entity_type.collection}/{entity_id}.{side.local_ids_field}"
        if strict:
            found = await executor.fetch_existing(
                side.remote_type.collection, ids, context=context
            )
        else:
            found = await executor.fetch(side.remote_type.collection, ids)

        gone = [remote_id for remote_id in ids if remote_id not in found]
        if gone:
            for remote_id in gone:
                log.warning(
                    "dangling_reference_dropped",
                    field=side.local_ids_field,
                    collection=side.remote_type.collection,
                    ref_id=remote_id,
                )
            ids = [remote_id for remote_id in ids if remote_id in found]
            fields[side.local_ids_field] = ids
            dropped[side.local_ids_field] = gone

        fields[side.local_cache_field] = {
            remote_id: project_stored_summary(side.remote_type, remote_id, found[remote_id])
            for remote_id in ids
        }

    version = document.get("version")
    fields["updatedAt"] = SERVER_TIMESTAMP
    fields["version"] = (version or 0) + 1
    patch = Patch(
        collection=entity_type.collection,
        doc_id=entity_id,
        kind=PatchKind.UPDATE,
        fields=fields,
        reason=PatchReason.REBUILD,
        check_version=True,
        expected_version=version,
    )
    return patch, dropped


async def rebuild_entity_cache(
    store: DocumentStore,
    executor: ChunkedQueryExecutor,
    entity_type: EntityType,
    entity_id: str,
    writer: AtomicBatchWriter | None = None,
    *,
    strict: bool = False,
) -> CacheRebuild:
    """Rebuild every cache map of one entity from authoritative documents.

    Each cache field is overwritten whole, in the order of its id list.
    Ids whose entity was deleted are pruned from the list and its cache;
    with *strict* they fail the rebuild instead and nothing is written.

    Raises:
        EntityNotFoundError: If the entity is missing, or with *strict* if a
            referenced id is missing.
        InvalidDocumentError: If a referenced document cannot be summarized.
        ResolutionError: If a chunk query fails.
        CommitError: If the store rejects the write, including a concurrent edit.
    """
    built = await build_entity_cache_patch(
        store, executor, entity_type, entity_id, strict=strict
    )
    if built is None:
        log.info("rebuild_skipped", entity_type=entity_type.value, reason="no cache fields")
        return CacheRebuild(entity_type=entity_type, entity_id=entity_id)

    patch, dropped = built
    receipt = await asyncio.to_thread((writer or AtomicBatchWriter(store)).commit, [patch])
    caches = {
        side.local_cache_field: len(patch.fields[side.local_cache_field])
        for side in cache_sides(entity_type)
    }
    log.info("cache_rebuilt", entity_type=entity_type.value, entity_id=entity_id, caches=caches)
    return CacheRebuild(
        entity_type=entity_type,
        entity_id=entity_id,
        caches=caches,
        dropped=dropped,
        receipt=receipt,
    )


def rebuild_aggregate_cache(
    store: DocumentStore,
    entity_type: EntityType,
    writer: AtomicBatchWriter | None = None,
) -> CacheRebuild:
    """Rewrite the aggregate cache document of a type from a collection scan.

    Entries for entities that no longer exist are dropped. Documents that
    cannot be projected onto a summary are skipped with a warning.
    """
    summaries: dict[str, Any] = {}
    for doc_id, document in sorted(store.get_all(entity_type.collection).items()):
        try:
            summaries[doc_id] = project_summary(entity_type, document)
        except ValueError as e:
            log.warning(
                "aggregate_entry_skipped",
                entity_type=entity_type.value,
                doc_id=doc_id,
                error=str(e),
            )

    patch = Patch(
        collection=CACHE_COLLECTION,
        doc_id=entity_type.aggregate_doc_id,
        kind=PatchKind.SET,
        fields=summaries,
        reason=PatchReason.REBUILD,
    )
    receipt = (writer or AtomicBatchWriter(store)).commit([patch])
    log.info("aggregate_rebuilt", entity_type=entity_type.value, entries=len(summaries))
    return CacheRebuild(
        entity_type=entity_type,
        entity_id=entity_type.aggregate_doc_id,
        caches={entity_type.aggregate_doc_id: len(summaries)},
        receipt=receipt,
    )
