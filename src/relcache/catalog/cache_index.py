"""Live, push-updated view of the aggregate cache documents.

Editors pick related entities from lists backed by the per-type aggregate
documents. Instead of polling, the index subscribes to each document and
replaces its local copy whenever a commit touches it, so an entity created by
someone else shows up without a reload. The edit workflow also uses the
index as its first source of summaries for newly referenced ids.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from relcache.catalog.relations import CACHE_COLLECTION, EntityType
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from relcache.catalog.store import Document, DocumentStore

log = get_logger(__name__)


class CacheIndex:
    """Subscribed copies of every aggregate cache document.

    Use as a context manager, or call :meth:`start` and :meth:`close`.
    """

    def __init__(
        self,
        store: DocumentStore,
        entity_types: Iterable[EntityType] = tuple(EntityType),
    ) -> None:
        self._store = store
        self._entity_types = tuple(entity_types)
        self._summaries: dict[EntityType, dict[str, dict[str, Any]]] = {
            t: {} for t in self._entity_types
        }
        self._loaded: set[EntityType] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> CacheIndex:
        """Subscribe to every aggregate document. Idempotent."""
        if self._unsubscribers:
            return self
        for entity_type in self._entity_types:
            self._unsubscribers.append(
                self._store.subscribe(
                    CACHE_COLLECTION,
                    entity_type.aggregate_doc_id,
                    self._listener(entity_type),
                )
            )
        return self

    def close(self) -> None:
        """Cancel every subscription."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def __enter__(self) -> CacheIndex:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _listener(self, entity_type: EntityType) -> Callable[[Document | None], None]:
        def on_snapshot(document: Document | None) -> None:
            self._summaries[entity_type] = dict(document or {})
            self._loaded.add(entity_type)
            log.debug(
                "aggregate_snapshot",
                entity_type=entity_type.value,
                entries=len(self._summaries[entity_type]),
            )

        return on_snapshot

    def is_loaded(self, entity_type: EntityType) -> bool:
        """Whether the first snapshot for *entity_type* has arrived."""
        return entity_type in self._loaded

    def summaries(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        """Return a copy of the aggregate map for *entity_type*."""
        return {k: dict(v) for k, v in self._summaries.get(entity_type, {}).items()}

    def lookup(
        self,
        entity_type: EntityType,
        ids: Iterable[str],
    ) -> tuple[dict[str, dict[str, Any]], list[str]]:
        """Split *ids* into those known locally and those that must be fetched.

        Returns:
            ``(found, missing)``: summaries keyed by id, and ids not in the index.
        """
        known = self._summaries.get(entity_type, {})
        found: dict[str, dict[str, Any]] = {}
        missing: list[str] = []
        for entity_id in ids:
            if entity_id in known:
                found[entity_id] = dict(known[entity_id])
            else:
                missing.append(entity_id)
        return found, missing
