"""Chunked id-set reads.

The store caps ``id in set`` queries at a fixed cardinality, so resolving an
arbitrary set of ids means splitting it into chunks, querying each chunk,
and merging. Chunks run concurrently; callers index results by id and must
not rely on order.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from relcache.catalog.errors import EntityNotFoundError, ResolutionError
from relcache.catalog.models import project_stored_summary
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from relcache.catalog.relations import EntityType
    from relcache.catalog.store import Document, DocumentStore

log = get_logger(__name__)


def unique_ids(ids: Iterable[str]) -> list[str]:
    """Collapse duplicates, keeping first-seen order."""
    return list(dict.fromkeys(ids))


def chunked(ids: Iterable[str], size: int) -> list[list[str]]:
    """Partition ids into ordered chunks of at most *size*.

    >>> chunked(["a", "b", "c"], 2)
    [['a', 'b'], ['c']]
    >>> chunked([], 30)
    []
    """
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    items = list(ids)
    return [items[i : i + size] for i in range(0, len(items), size)]


class ChunkedQueryExecutor:
    """Resolve id sets of any size against a capped ``get_many``.

    Attributes:
        store: The document store to read from.
        chunk_size: Ids per query; defaults to the store's ``in_query_limit``.
    """

    def __init__(self, store: DocumentStore, chunk_size: int | None = None) -> None:
        self.store = store
        self.chunk_size = chunk_size if chunk_size is not None else store.in_query_limit
        if self.chunk_size > store.in_query_limit:
            raise ValueError(
                f"Chunk size {self.chunk_size} exceeds the store limit of {store.in_query_limit}"
            )

    async def fetch(self, collection: str, ids: Iterable[str]) -> dict[str, Document]:
        """Fetch every existing document among *ids*.

        Issues ``ceil(N / chunk_size)`` queries for N distinct ids, and none
        for an empty set.

        Raises:
            ResolutionError: If any chunk query fails. Partial results are discarded.
        """
        chunks = chunked(unique_ids(ids), self.chunk_size)
        if not chunks:
            return {}

        log.debug("chunked_fetch", collection=collection, chunks=len(chunks))
        results = await asyncio.gather(
            *(self._fetch_chunk(collection, chunk) for chunk in chunks),
        )

        merged: dict[str, Document] = {}
        for result in results:
            merged.update(result)
        return merged

    async def _fetch_chunk(self, collection: str, chunk: list[str]) -> dict[str, Document]:
        try:
            return await asyncio.to_thread(self.store.get_many, collection, chunk)
        except Exception as e:
            log.error("chunk_query_failed", collection=collection, size=len(chunk), error=str(e))
            raise ResolutionError(collection=collection, chunk=chunk, cause=str(e)) from e

    async def fetch_existing(
        self,
        collection: str,
        ids: Iterable[str],
        *,
        context: str = "",
    ) -> dict[str, Document]:
        """Fetch documents for *ids*, failing unless every one exists.

        Raises:
            EntityNotFoundError: Naming every missing id.
            ResolutionError: If any chunk query fails.
        """
        wanted = unique_ids(ids)
        found = await self.fetch(collection, wanted)
        missing = [i for i in wanted if i not in found]
        if missing:
            raise EntityNotFoundError(collection=collection, missing=missing, context=context)
        return found

    async def resolve(
        self,
        entity_type: EntityType,
        ids: Iterable[str],
        *,
        context: str = "",
    ) -> dict[str, dict[str, Any]]:
        """Resolve ids of one type to their current summary records.

        Raises:
            EntityNotFoundError: If any id does not exist.
            InvalidDocumentError: If a found document cannot be summarized.
            ResolutionError: If any chunk query fails.
        """
        docs = await self.fetch_existing(entity_type.collection, ids, context=context)
        return {
            doc_id: project_stored_summary(entity_type, doc_id, doc) for doc_id, doc in docs.items()
        }
