"""Edit and rebuild workflows.

:class:`CatalogService` is the one entry point editors go through. An edit
runs, in order: privilege check, snapshot load, resolution of newly
referenced summaries, planning, one atomic commit, and page invalidation.
Nothing is written unless every step before the commit succeeded, and
nothing after the commit can undo it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relcache.catalog.auth import StaticTokenVerifier, require_admin
from relcache.catalog.errors import VersionConflictError
from relcache.catalog.invalidation import (
    DEFAULT_CATEGORY_PAGES,
    RevalidationNotifier,
    affected_paths,
    detail_path,
)
from relcache.catalog.planner import plan_edit, required_references, validate_request
from relcache.catalog.rebuild import rebuild_aggregate_cache, rebuild_entity_cache
from relcache.catalog.resolver import ChunkedQueryExecutor
from relcache.catalog.sqlite_store import SqliteDocumentStore
from relcache.catalog.writer import AtomicBatchWriter
from relcache.observability.logging import entity_context, get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from relcache.catalog.auth import TokenVerifier
    from relcache.catalog.cache_index import CacheIndex
    from relcache.catalog.invalidation import NotificationResult
    from relcache.catalog.planner import EditRequest, MutationPlan
    from relcache.catalog.rebuild import CacheRebuild
    from relcache.catalog.relations import EntityType
    from relcache.catalog.store import DocumentStore
    from relcache.catalog.writer import CommitReceipt
    from relcache.config import CatalogConfig

log = get_logger(__name__)


@dataclass
class EditResult:
    """Outcome of a committed edit.

    Attributes:
        plan: The executed mutation plan.
        receipt: Commit receipt.
        paths: Pages submitted for revalidation.
        notification: Revalidation outcome.
        warnings: Operator-facing warnings; the edit itself succeeded.
    """

    plan: MutationPlan
    receipt: CommitReceipt
    paths: list[str]
    notification: NotificationResult
    warnings: list[str] = field(default_factory=list)


@dataclass
class RebuildResult:
    """Outcome of a cache or aggregate rebuild."""

    rebuild: CacheRebuild
    paths: list[str]
    notification: NotificationResult | None = None
    warnings: list[str] = field(default_factory=list)


def _warnings(notification: NotificationResult | None) -> list[str]:
    if notification is not None and notification.warning:
        return [notification.warning]
    return []


class CatalogService:
    """Catalog workflows over one document store.

    Args:
        store: Backing document store.
        verifier: Token verifier for the admin gate.
        notifier: Revalidation notifier; defaults to a disabled one.
        cache_index: Optional live aggregate view used as the first source
            of summaries for newly referenced ids.
        optimistic_concurrency: Reject commits made against an outdated snapshot.
        category_pages: Game category to landing pages.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        verifier: TokenVerifier,
        notifier: RevalidationNotifier | None = None,
        cache_index: CacheIndex | None = None,
        optimistic_concurrency: bool = True,
        category_pages: dict[str, list[str]] | None = None,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.notifier = notifier or RevalidationNotifier(None)
        self.cache_index = cache_index
        self.optimistic_concurrency = optimistic_concurrency
        self.category_pages = (
            category_pages if category_pages is not None else dict(DEFAULT_CATEGORY_PAGES)
        )
        self.executor = ChunkedQueryExecutor(store)
        self.writer = AtomicBatchWriter(store)

    @classmethod
    def from_config(
        cls,
        config: CatalogConfig,
        base_dir: Path,
        *,
        cache_index: bool = False,
    ) -> CatalogService:
        """Build a service over the SQLite catalog described by *config*."""
        from relcache.catalog.cache_index import CacheIndex

        store = SqliteDocumentStore(
            config.database_path(base_dir),
            in_query_limit=config.store.in_query_limit,
            max_batch_operations=config.store.max_batch_operations,
        )
        return cls(
            store,
            verifier=StaticTokenVerifier(config.tokens),
            notifier=RevalidationNotifier(
                config.revalidation.get_url(),
                attempts=config.revalidation.attempts,
                timeout=config.revalidation.timeout,
            ),
            cache_index=CacheIndex(store).start() if cache_index else None,
            optimistic_concurrency=config.optimistic_concurrency,
            category_pages=config.category_pages,
        )

    def close(self) -> None:
        if self.cache_index is not None:
            self.cache_index.close()
        if isinstance(self.store, SqliteDocumentStore):
            self.store.close()

    async def _resolve_references(
        self,
        request: EditRequest,
        previous: dict[str, Any] | None,
    ) -> dict[EntityType, dict[str, dict[str, Any]]]:
        resolved: dict[EntityType, dict[str, dict[str, Any]]] = {}
        context = f"{request.entity_type.collection}/{request.entity_id}"
        for remote_type, ids in required_references(request, previous).items():
            if self.cache_index is not None:
                found, missing = self.cache_index.lookup(remote_type, ids)
            else:
                found, missing = {}, list(ids)
            if missing:
                found.update(await self.executor.resolve(remote_type, missing, context=context))
            log.debug(
                "references_resolved",
                entity_type=remote_type.value,
                requested=len(ids),
                fetched=len(missing),
            )
            resolved[remote_type] = found
        return resolved

    async def edit(
        self,
        token: str | None,
        request: EditRequest,
        *,
        base_version: int | None = None,
    ) -> EditResult:
        """Apply one edit and every dependent update it implies.

        Args:
            token: Caller's bearer token; must carry the admin role.
            request: The edit.
            base_version: Version of the snapshot the editor worked from.
                When given, the edit is rejected if the stored version moved.

        Raises:
            PermissionDeniedError: Before any read, if the caller is not an admin.
            InvalidEditError: If the request is malformed.
            EntityNotFoundError: If a newly referenced entity does not exist.
            ResolutionError: If a chunk query fails.
            BatchTooLargeError: If the edit needs more writes than one batch allows.
            CommitError: If the store rejects the batch.
        """
        principal = require_admin(self.verifier, token)
        entity_type = request.entity_type

        with entity_context(entity_type.collection, request.entity_id, "edit"):
            validate_request(request)
            previous = await asyncio.to_thread(
                self.store.get, entity_type.collection, request.entity_id
            )
            stored_version = (previous or {}).get("version")
            if (
                self.optimistic_concurrency
                and base_version is not None
                and base_version != stored_version
            ):
                raise VersionConflictError(
                    collection=entity_type.collection,
                    doc_id=request.entity_id,
                    expected=base_version,
                    actual=stored_version,
                )

            resolved = await self._resolve_references(request, previous)
            plan = plan_edit(
                request,
                previous,
                resolved,
                check_version=self.optimistic_concurrency,
            )
            log.debug("edit_planned", **plan.summarize())

            receipt = await asyncio.to_thread(self.writer.commit, plan.patches)
            log.info(
                "edit_committed",
                uid=principal.uid,
                operations=receipt.operations,
                created=previous is None,
            )

            paths = affected_paths(plan, self.category_pages)
            notification = await self.notifier.notify(paths, principal.token)

        return EditResult(
            plan=plan,
            receipt=receipt,
            paths=paths,
            notification=notification,
            warnings=_warnings(notification),
        )

    async def rebuild_cache(
        self,
        token: str | None,
        entity_type: EntityType,
        entity_id: str,
    ) -> RebuildResult:
        """Rebuild every cache map of one entity and revalidate its page.

        Raises:
            PermissionDeniedError: If the caller is not an admin.
            EntityNotFoundError: If the entity or a referenced id is missing.
            ResolutionError: If a chunk query fails.
            CommitError: If the store rejects the write.
        """
        principal = require_admin(self.verifier, token)
        with entity_context(entity_type.collection, entity_id, "rebuild"):
            rebuild = await rebuild_entity_cache(
                self.store, self.executor, entity_type, entity_id, writer=self.writer
            )
            if rebuild.receipt is None:
                return RebuildResult(rebuild=rebuild, paths=[])

            paths = [detail_path(entity_type, entity_id)]
            notification = await self.notifier.notify(paths, principal.token)

        return RebuildResult(
            rebuild=rebuild,
            paths=paths,
            notification=notification,
            warnings=_warnings(notification),
        )

    async def rebuild_aggregate(self, token: str | None, entity_type: EntityType) -> RebuildResult:
        """Rewrite the aggregate cache of a type and revalidate its list page.

        Raises:
            PermissionDeniedError: If the caller is not an admin.
            CommitError: If the store rejects the write.
        """
        principal = require_admin(self.verifier, token)
        with entity_context("cache", entity_type.aggregate_doc_id, "rebuild-index"):
            rebuild = rebuild_aggregate_cache(self.store, entity_type, writer=self.writer)
            paths = [entity_type.route]
            notification = await self.notifier.notify(paths, principal.token)

        return RebuildResult(
            rebuild=rebuild,
            paths=paths,
            notification=notification,
            warnings=_warnings(notification),
        )
