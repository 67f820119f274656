"""Catalog consistency error types.

These errors are raised when an edit cannot be planned, resolved, or
committed without leaving a denormalized copy out of step with its source,
similar to foreign key violations in a relational database.

Planning and resolution errors are fatal to the current edit. Invalidation
failures are never raised; they surface as warnings on the edit result.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class CatalogError(Exception):
    """Base class for every error raised by the consistency engine."""


class PermissionDeniedError(CatalogError):
    """Raised when the caller lacks the elevated privilege an operation needs."""

    def __init__(self, reason: str = "Insufficient permissions.") -> None:
        self.reason = reason
        super().__init__(reason)


@dataclass
class InvalidEditError(CatalogError):
    """Raised when an edit payload is malformed.

    Attributes:
        entity_id: The entity being edited.
        problems: Human-readable descriptions of what is wrong.
    """

    entity_id: str
    problems: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        msg = f"Invalid edit for '{self.entity_id}'"
        if self.problems:
            msg += ": " + "; ".join(self.problems)
        super().__init__(msg)


@dataclass
class EntityNotFoundError(CatalogError):
    """Raised when one or more referenced entities do not exist.

    Attributes:
        collection: Collection that was searched.
        missing: Ids that could not be found.
        context: Description of where the reference occurred.
    """

    collection: str
    missing: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        ids = ", ".join(f"'{m}'" for m in self.missing[:10])
        if len(self.missing) > 10:
            ids += f", ... and {len(self.missing) - 10} more"
        msg = f"Not found in '{self.collection}': {ids}"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)


@dataclass
class MissingSummaryError(EntityNotFoundError):
    """Raised by the planner when an added reference has no resolved summary.

    The planner fails closed: no plan is produced rather than one that
    embeds missing or stale data.
    """


@dataclass
class InvalidDocumentError(CatalogError):
    """Raised when a stored document cannot be projected onto its summary.

    The document exists but lacks a summary field (or holds one of the wrong
    type), so no copy of it can be embedded anywhere.

    Attributes:
        collection: Collection holding the document.
        doc_id: The unprojectable document.
        problems: Human-readable validation problems.
    """

    collection: str
    doc_id: str
    problems: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        msg = f"Document '{self.collection}/{self.doc_id}' cannot be summarized"
        if self.problems:
            msg += ": " + "; ".join(self.problems)
        super().__init__(msg)


@dataclass
class ResolutionError(CatalogError):
    """Raised when a chunked id-set query fails.

    Distinct from :class:`EntityNotFoundError`: the store could not answer,
    so nothing is known about whether the ids exist.

    Attributes:
        collection: Collection being queried.
        chunk: The ids of the chunk whose query failed.
        cause: Description of the underlying failure.
    """

    collection: str
    chunk: list[str] = field(default_factory=list)
    cause: str = ""

    def __post_init__(self) -> None:
        msg = f"Failed to resolve {len(self.chunk)} id(s) from '{self.collection}'"
        if self.cause:
            msg += f": {self.cause}"
        super().__init__(msg)


@dataclass
class QueryLimitError(CatalogError):
    """Raised by a store when an id-set query exceeds its cardinality cap."""

    requested: int
    limit: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Id-set query for {self.requested} ids exceeds the limit of {self.limit}"
        )


@dataclass
class BatchTooLargeError(CatalogError):
    """Raised when a patch set exceeds the store's per-batch operation limit.

    The batch is never split, because splitting would break atomicity.
    """

    operations: int
    limit: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Batch of {self.operations} operations exceeds the limit of {self.limit}"
        )


class CommitError(CatalogError):
    """Raised when the store rejects a batch. Nothing from the batch is applied."""


@dataclass
class DocumentMissingError(CommitError):
    """Raised when an update patch targets a document that does not exist."""

    collection: str
    doc_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Document '{self.collection}/{self.doc_id}' does not exist")


@dataclass
class VersionConflictError(CommitError):
    """Raised when the stored version differs from the one a plan was built on.

    Attributes:
        collection: Collection of the primary document.
        doc_id: Primary document id.
        expected: Version the plan was computed against (None = must not exist).
        actual: Version currently stored (None = document absent).
    """

    collection: str
    doc_id: str
    expected: int | None
    actual: int | None

    def __post_init__(self) -> None:
        super().__init__(
            f"Version conflict on '{self.collection}/{self.doc_id}': "
            f"expected {self._describe(self.expected)}, found {self._describe(self.actual)}. "
            "Reload the entity and retry the edit."
        )

    @staticmethod
    def _describe(version: int | None) -> str:
        return "no document" if version is None else f"version {version}"
