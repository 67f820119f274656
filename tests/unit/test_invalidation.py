"""Tests for page invalidation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from relcache.catalog.invalidation import (
    RevalidationNotifier,
    affected_paths,
    detail_path,
)
from relcache.catalog.planner import EditRequest, MutationPlan, plan_edit
from relcache.catalog.relations import EntityType

if TYPE_CHECKING:
    from collections.abc import Callable

GAME = {
    "name": "Ys Origin",
    "category": "Ys Series",
    "releaseDate": "2006",
    "hasCoverImage": False,
}


def _game_plan(
    fields: dict[str, object], character_ids: list[str], previous_ids: list[str]
) -> MutationPlan:
    previous = {
        **GAME,
        "characterIds": previous_ids,
        "cachedCharacters": {i: {"name": i} for i in previous_ids},
        "version": 1,
    }
    resolved = {EntityType.CHARACTER: {i: {"name": i} for i in character_ids}}
    request = EditRequest(EntityType.GAME, "origin", fields, {"characterIds": character_ids})
    return plan_edit(request, previous, resolved)


def _notifier(
    handler: Callable[[httpx.Request], httpx.Response], attempts: int = 3
) -> RevalidationNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RevalidationNotifier("https://example.org/", attempts=attempts, client=client)


class TestAffectedPaths:
    def test_detail_path(self) -> None:
        assert detail_path(EntityType.MUSIC_ALBUM, "ys8-ost") == "/music-albums/ys8-ost"

    def test_unchanged_summary_touches_detail_page_only(self) -> None:
        plan = _game_plan({**GAME, "platforms": ["PC"]}, ["hugo"], ["hugo"])
        assert affected_paths(plan) == ["/games/origin"]

    def test_category_change_uses_new_category_pages(self) -> None:
        plan = _game_plan({**GAME, "category": "Gagharv Trilogy"}, ["hugo"], ["hugo"])
        assert affected_paths(plan) == ["/games/origin", "/games", "/gagharv-trilogy"]

    def test_changed_partners_are_included(self) -> None:
        plan = _game_plan(dict(GAME), ["hugo", "yunica"], ["hugo", "toal"])
        assert affected_paths(plan) == [
            "/games/origin",
            "/characters/yunica",
            "/characters/toal",
        ]

    def test_custom_category_pages(self) -> None:
        plan = _game_plan({**GAME, "name": "Ys Origin PC"}, [], [])
        pages = {"Ys Series": ["/series/ys", "/games"]}
        assert affected_paths(plan, pages) == ["/games/origin", "/games", "/series/ys"]

    def test_non_game_summary_change_has_no_category_pages(self) -> None:
        request = EditRequest(EntityType.STAFF, "jdk", {"name": "jdk", "roles": ["Arranger"]})
        plan = plan_edit(request, {"name": "jdk", "version": 1}, {})
        assert affected_paths(plan) == ["/staff/jdk", "/staff"]


class TestRevalidationNotifier:
    @pytest.mark.asyncio
    async def test_sends_paths_with_bearer_token(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"revalidated": True})

        result = await _notifier(handler).notify(["/games/ys8", "/games"], "secret")

        assert result.delivered
        assert result.attempts == 1
        assert result.warning is None
        (request,) = requests
        assert request.url.path == "/api/revalidate"
        assert request.url.params["paths"] == "/games/ys8,/games"
        assert request.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        result = await _notifier(handler).notify(["/games"], "t")

        assert result.delivered
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_warning(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        result = await _notifier(handler, attempts=2).notify(["/games"], "t")

        assert calls == 2
        assert not result.delivered
        assert result.attempts == 2
        assert result.warning is not None
        assert "HTTP 500" in result.warning

    @pytest.mark.asyncio
    async def test_malformed_url_returns_warning(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = RevalidationNotifier("https://example.org:port", client=client)

        result = await notifier.notify(["/games"], "t")

        assert not result.delivered
        assert result.attempts == 1
        assert result.warning is not None
        assert "invalid revalidation url" in result.warning

    @pytest.mark.asyncio
    async def test_without_url_is_skipped(self) -> None:
        notifier = RevalidationNotifier(None)
        result = await notifier.notify(["/games"], "t")
        assert not notifier.enabled
        assert result.skipped
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_no_paths_is_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _notifier(handler).notify([], "t")
        assert result.skipped

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            RevalidationNotifier("https://example.org", attempts=0)

    def test_strips_trailing_slash(self) -> None:
        assert RevalidationNotifier("https://example.org/").base_url == "https://example.org"
