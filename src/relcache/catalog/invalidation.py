"""Public page invalidation.

After a commit, the public site is told which statically generated pages
render data that just changed. Delivery is best effort: failures are retried
a bounded number of times, then reported as a warning. The data is already
committed, so a failed notification never undoes an edit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from relcache.catalog.relations import EntityType
from relcache.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from relcache.catalog.planner import MutationPlan

log = get_logger(__name__)

REVALIDATE_ENDPOINT = "/api/revalidate"
DEFAULT_ATTEMPTS = 3
DEFAULT_TIMEOUT = 10.0

# Series landing pages listing every game of a category
DEFAULT_CATEGORY_PAGES: dict[str, list[str]] = {
    "Ys Series": ["/ys-series"],
    "Trails Series": ["/trails-series"],
    "Ys / Trails Series": ["/ys-series", "/trails-series"],
    "Gagharv Trilogy": ["/gagharv-trilogy"],
}


def detail_path(entity_type: EntityType, entity_id: str) -> str:
    """Route of an entity's detail page."""
    return f"{entity_type.route}/{entity_id}"


def affected_paths(
    plan: MutationPlan,
    category_pages: Mapping[str, Iterable[str]] | None = None,
) -> list[str]:
    """Pages whose rendered content an edit changed.

    The edited entity's detail page is always included. A summary change
    adds its type's list page and, for games, the landing pages of the
    game's (new) category. Partners whose back-references were added or
    removed have their detail pages included. Retained partners are not,
    even when their embedded copy was refreshed.
    """
    pages = DEFAULT_CATEGORY_PAGES if category_pages is None else category_pages
    paths = [detail_path(plan.entity_type, plan.entity_id)]

    if plan.summary_changed:
        paths.append(plan.entity_type.route)
        if plan.entity_type == EntityType.GAME:
            paths.extend(pages.get(plan.summary.get("category", ""), ()))

    for diff in plan.diffs:
        for remote_id in (*diff.added, *diff.removed):
            paths.append(detail_path(diff.side.remote_type, remote_id))

    return list(dict.fromkeys(paths))


@dataclass
class NotificationResult:
    """Outcome of one revalidation request.

    Attributes:
        paths: Paths that were submitted.
        delivered: Whether an attempt succeeded.
        attempts: Number of attempts made (0 when skipped).
        skipped: True when no revalidation URL is configured.
        warning: Operator-facing warning when delivery failed.
    """

    paths: list[str] = field(default_factory=list)
    delivered: bool = False
    attempts: int = 0
    skipped: bool = False
    warning: str | None = None


class RevalidationNotifier:
    """Ask the public site to regenerate pages.

    Issues ``GET {base_url}/api/revalidate?paths=a,b`` with the editor's
    bearer token. Transport errors and non-success responses are retried
    immediately, up to ``attempts`` tries in total. A malformed URL is not
    retried.
    """

    def __init__(
        self,
        base_url: str | None,
        attempts: int = DEFAULT_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        self.base_url = base_url.rstrip("/") if base_url else None
        self.attempts = attempts
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.base_url is not None

    async def notify(self, paths: list[str], token: str) -> NotificationResult:
        """Submit *paths* for revalidation. Never raises for delivery failures."""
        if not paths:
            return NotificationResult(skipped=True)
        if self.base_url is None:
            log.info("revalidation_skipped", paths=paths, reason="no revalidation url")
            return NotificationResult(paths=list(paths), skipped=True)

        if self._client is not None:
            return await self._deliver(self._client, paths, token)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._deliver(client, paths, token)

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        paths: list[str],
        token: str,
    ) -> NotificationResult:
        url = f"{self.base_url}{REVALIDATE_ENDPOINT}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        error = ""
        for attempt in range(1, self.attempts + 1):
            if attempt > 1:
                log.warning(
                    "revalidation_retry",
                    attempt=attempt - 1,
                    retries=self.attempts - 1,
                    error=error,
                )
            try:
                response = await client.get(
                    url,
                    params={"paths": ",".join(paths)},
                    headers=headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                error = f"HTTP {e.response.status_code}"
                continue
            except httpx.InvalidURL as e:
                error = f"invalid revalidation url: {e}"
                break
            except httpx.RequestError as e:
                error = f"{type(e).__name__}: {e}"
                continue

            log.info("revalidation_sent", paths=paths, attempts=attempt)
            return NotificationResult(paths=list(paths), delivered=True, attempts=attempt)

        log.error("revalidation_failed", paths=paths, attempts=attempt, error=error)
        return NotificationResult(
            paths=list(paths),
            attempts=attempt,
            warning=f"Failed to revalidate paths ({error}). See the log for details.",
        )
