"""Document store backend protocol and in-memory implementation.

The DocumentStore protocol defines the small set of operations the
consistency engine needs from a schemaless, joinless document store: point
reads, capped id-set reads, collection scans, atomic multi-document commits,
and push subscriptions to single documents.

MemoryDocumentStore is the default backend and the reference for the
semantics. SqliteDocumentStore provides durable storage with the same
behavior.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from relcache.catalog.errors import DocumentMissingError, QueryLimitError, VersionConflictError
from relcache.catalog.patches import PatchKind, apply_patch
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from relcache.catalog.patches import Patch

log = get_logger(__name__)

# Limits enforced by the backing store; config may lower them.
DEFAULT_IN_QUERY_LIMIT = 30
DEFAULT_MAX_BATCH_OPERATIONS = 500

Document = dict[str, Any]


def server_now() -> datetime:
    """Default server clock."""
    return datetime.now(UTC)


@runtime_checkable
class DocumentStore(Protocol):
    """Storage backend protocol for the catalog.

    Reads return copies; mutating a returned document never changes the
    store. Only :meth:`commit` writes.
    """

    in_query_limit: int
    max_batch_operations: int

    def get(self, collection: str, doc_id: str) -> Document | None:
        """Get a document by id, or None if not found."""
        ...

    def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, Document]:
        """Fetch documents whose id is in *doc_ids*.

        Missing ids are simply absent from the result.

        Raises:
            QueryLimitError: If ``len(doc_ids)`` exceeds ``in_query_limit``.
        """
        ...

    def get_all(self, collection: str) -> dict[str, Document]:
        """Return every document of a collection."""
        ...

    def commit(self, patches: Sequence[Patch]) -> datetime:
        """Apply every patch atomically and return the server commit time.

        Raises:
            DocumentMissingError: If an ``update`` patch targets a missing document.
            VersionConflictError: If a version-checked patch is stale.
            CommitError: For any other store-level failure. Nothing is applied.
        """
        ...

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        listener: Callable[[Document | None], None],
    ) -> Callable[[], None]:
        """Push the document to *listener* now and after every commit touching it.

        Returns:
            A callable that cancels the subscription.
        """
        ...


class SubscriptionRegistry:
    """In-process listener bookkeeping shared by the store backends."""

    def __init__(self) -> None:
        self._listeners: dict[tuple[str, str], list[Callable[[Document | None], None]]] = (
            defaultdict(list)
        )

    def _add_listener(
        self,
        collection: str,
        doc_id: str,
        listener: Callable[[Document | None], None],
    ) -> Callable[[], None]:
        key = (collection, doc_id)
        self._listeners[key].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _publish(self, changed: Iterable[tuple[str, str]], read: Callable[[str, str], Any]) -> None:
        """Deliver fresh snapshots of *changed* documents to their listeners."""
        for key in changed:
            for listener in list(self._listeners.get(key, [])):
                try:
                    listener(read(*key))
                except Exception:
                    # Batch is already committed.
                    log.exception("subscription_listener_failed", collection=key[0], doc_id=key[1])


def check_patch_preconditions(patch: Patch, current: Document | None) -> None:
    """Raise if *patch* may not be applied on top of *current*."""
    if patch.check_version:
        actual = current.get("version") if current is not None else None
        if actual != patch.expected_version:
            raise VersionConflictError(
                collection=patch.collection,
                doc_id=patch.doc_id,
                expected=patch.expected_version,
                actual=actual,
            )
    if patch.kind == PatchKind.UPDATE and current is None:
        raise DocumentMissingError(collection=patch.collection, doc_id=patch.doc_id)


class MemoryDocumentStore(SubscriptionRegistry):
    """In-memory dict-based document store.

    Commits stage every patched document on deep copies and swap them in only
    after the whole batch applied cleanly, so a failing patch leaves the
    store exactly as it was.
    """

    def __init__(
        self,
        data: dict[str, dict[str, Document]] | None = None,
        *,
        in_query_limit: int = DEFAULT_IN_QUERY_LIMIT,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
        clock: Callable[[], datetime] = server_now,
    ) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Document]] = defaultdict(dict)
        for collection, docs in (data or {}).items():
            self._data[collection].update(copy.deepcopy(docs))
        self.in_query_limit = in_query_limit
        self.max_batch_operations = max_batch_operations
        self._clock = clock

    # -- Reads -----------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._data.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, Document]:
        if len(doc_ids) > self.in_query_limit:
            raise QueryLimitError(requested=len(doc_ids), limit=self.in_query_limit)
        docs = self._data.get(collection, {})
        return {i: copy.deepcopy(docs[i]) for i in doc_ids if i in docs}

    def get_all(self, collection: str) -> dict[str, Document]:
        return copy.deepcopy(dict(self._data.get(collection, {})))

    # -- Writes ----------------------------------------------------------------

    def commit(self, patches: Sequence[Patch]) -> datetime:
        committed_at = self._clock()
        now = committed_at.isoformat()

        staged: dict[tuple[str, str], Document] = {}
        for patch in patches:
            key = patch.target
            current = staged[key] if key in staged else self._data.get(key[0], {}).get(key[1])
            check_patch_preconditions(patch, current)
            staged[key] = apply_patch(current, patch, now)

        for (collection, doc_id), doc in staged.items():
            self._data[collection][doc_id] = doc

        self._publish(staged, self.get)
        return committed_at

    # -- Subscriptions ---------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        listener: Callable[[Document | None], None],
    ) -> Callable[[], None]:
        unsubscribe = self._add_listener(collection, doc_id, listener)
        listener(self.get(collection, doc_id))
        return unsubscribe

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, Document]]:
        """Return a deep copy of every collection."""
        return copy.deepcopy({c: dict(d) for c, d in self._data.items()})
