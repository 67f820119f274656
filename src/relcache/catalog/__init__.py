"""Catalog package - denormalized-reference consistency engine.

An edit to one entity is planned into the full set of document patches that
keep every embedded summary copy consistent, resolved against the store in
capped chunks, and committed as one atomic batch. A rebuild procedure and a
drift audit repair and detect copies the synchronous path missed.
"""

from relcache.catalog.audit import DriftFinding, DriftReport, find_drift
from relcache.catalog.auth import Principal, StaticTokenVerifier, TokenVerifier, require_admin
from relcache.catalog.cache_index import CacheIndex
from relcache.catalog.errors import (
    BatchTooLargeError,
    CatalogError,
    CommitError,
    DocumentMissingError,
    EntityNotFoundError,
    InvalidDocumentError,
    InvalidEditError,
    MissingSummaryError,
    PermissionDeniedError,
    QueryLimitError,
    ResolutionError,
    VersionConflictError,
)
from relcache.catalog.invalidation import (
    DEFAULT_CATEGORY_PAGES,
    NotificationResult,
    RevalidationNotifier,
    affected_paths,
)
from relcache.catalog.models import (
    SUMMARY_FIELDS,
    EditPayload,
    project_stored_summary,
    project_summary,
)
from relcache.catalog.patches import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Patch,
    PatchKind,
    PatchReason,
)
from relcache.catalog.planner import EditRequest, MutationPlan, RelationDiff, plan_edit
from relcache.catalog.rebuild import CacheRebuild, rebuild_aggregate_cache, rebuild_entity_cache
from relcache.catalog.relations import (
    CACHE_COLLECTION,
    RELATION_EDGES,
    EntityType,
    RelationEdge,
    RelationSide,
    sides_for,
)
from relcache.catalog.resolver import ChunkedQueryExecutor, chunked
from relcache.catalog.service import CatalogService, EditResult, RebuildResult
from relcache.catalog.sqlite_store import SqliteDocumentStore
from relcache.catalog.store import (
    DEFAULT_IN_QUERY_LIMIT,
    DEFAULT_MAX_BATCH_OPERATIONS,
    DocumentStore,
    MemoryDocumentStore,
)
from relcache.catalog.writer import AtomicBatchWriter, CommitReceipt

__all__ = [
    "CACHE_COLLECTION",
    "DEFAULT_CATEGORY_PAGES",
    "DEFAULT_IN_QUERY_LIMIT",
    "DEFAULT_MAX_BATCH_OPERATIONS",
    "DELETE_FIELD",
    "RELATION_EDGES",
    "SERVER_TIMESTAMP",
    "SUMMARY_FIELDS",
    "ArrayRemove",
    "ArrayUnion",
    "AtomicBatchWriter",
    "BatchTooLargeError",
    "CacheIndex",
    "CacheRebuild",
    "CatalogError",
    "CatalogService",
    "ChunkedQueryExecutor",
    "CommitError",
    "CommitReceipt",
    "DocumentMissingError",
    "DocumentStore",
    "DriftFinding",
    "DriftReport",
    "EditPayload",
    "EditRequest",
    "EditResult",
    "EntityNotFoundError",
    "EntityType",
    "InvalidDocumentError",
    "InvalidEditError",
    "MemoryDocumentStore",
    "MissingSummaryError",
    "MutationPlan",
    "NotificationResult",
    "Patch",
    "PatchKind",
    "PatchReason",
    "PermissionDeniedError",
    "Principal",
    "QueryLimitError",
    "RebuildResult",
    "RelationDiff",
    "RelationEdge",
    "RelationSide",
    "ResolutionError",
    "RevalidationNotifier",
    "SqliteDocumentStore",
    "StaticTokenVerifier",
    "TokenVerifier",
    "VersionConflictError",
    "affected_paths",
    "chunked",
    "find_drift",
    "plan_edit",
    "project_stored_summary",
    "project_summary",
    "rebuild_aggregate_cache",
    "rebuild_entity_cache",
    "require_admin",
    "sides_for",
]
