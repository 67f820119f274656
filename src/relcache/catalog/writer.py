"""Atomic batch writer.

Hands a complete patch set to the store as one all-or-nothing commit. The
batch is never split to fit the store's operation limit: an oversized batch
is rejected before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from relcache.catalog.errors import BatchTooLargeError, CommitError
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from relcache.catalog.patches import Patch
    from relcache.catalog.store import DocumentStore

log = get_logger(__name__)


@dataclass(frozen=True)
class CommitReceipt:
    """Outcome of a committed batch.

    Attributes:
        committed_at: Server time stamped on every patch of the batch.
        operations: Number of patches applied.
    """

    committed_at: datetime
    operations: int


class AtomicBatchWriter:
    """Commit patch sets atomically against a document store."""

    def __init__(self, store: DocumentStore, max_operations: int | None = None) -> None:
        self.store = store
        self.max_operations = (
            max_operations if max_operations is not None else store.max_batch_operations
        )

    def commit(self, patches: Sequence[Patch]) -> CommitReceipt:
        """Apply *patches* as a single batch.

        Args:
            patches: Ordered patch set, usually ``MutationPlan.patches``.

        Returns:
            Receipt carrying the shared commit time.

        Raises:
            BatchTooLargeError: If the batch exceeds ``max_operations``.
            CommitError: If the store rejects the batch; nothing is applied.
        """
        if len(patches) > self.max_operations:
            raise BatchTooLargeError(operations=len(patches), limit=self.max_operations)
        if not patches:
            raise CommitError("Refusing to commit an empty batch")

        try:
            committed_at = self.store.commit(patches)
        except CommitError as e:
            log.warning("batch_rejected", operations=len(patches), error=str(e))
            raise

        log.info("batch_committed", operations=len(patches), committed_at=committed_at.isoformat())
        return CommitReceipt(committed_at=committed_at, operations=len(patches))
