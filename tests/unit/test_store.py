"""Tests for MemoryDocumentStore, the in-memory document store backend."""

from __future__ import annotations

from typing import Any

import pytest

from relcache.catalog.errors import DocumentMissingError, QueryLimitError, VersionConflictError
from relcache.catalog.patches import SERVER_TIMESTAMP, ArrayUnion, Patch, PatchKind
from relcache.catalog.store import DocumentStore, MemoryDocumentStore
from tests.fixtures.catalog_fixtures import FIXED_NOW, fixed_clock


def _store() -> MemoryDocumentStore:
    return MemoryDocumentStore(
        {"games": {"ys8": {"name": "Ys VIII", "version": 1}}},
        in_query_limit=3,
        clock=fixed_clock,
    )


class TestMemoryStoreProtocol:
    def test_is_runtime_checkable(self) -> None:
        assert isinstance(MemoryDocumentStore(), DocumentStore)

    def test_default_limits(self) -> None:
        store = MemoryDocumentStore()
        assert store.in_query_limit == 30
        assert store.max_batch_operations == 500


class TestMemoryStoreReads:
    def test_get(self) -> None:
        assert _store().get("games", "ys8") == {"name": "Ys VIII", "version": 1}

    def test_get_missing_returns_none(self) -> None:
        assert _store().get("games", "nope") is None
        assert _store().get("nope", "ys8") is None

    def test_reads_return_copies(self) -> None:
        store = _store()
        doc = store.get("games", "ys8")
        assert doc is not None
        doc["name"] = "changed"
        assert store.get("games", "ys8") == {"name": "Ys VIII", "version": 1}

    def test_seed_data_is_copied(self) -> None:
        data: dict[str, Any] = {"games": {"ys8": {"name": "Ys"}}}
        store = MemoryDocumentStore(data)
        data["games"]["ys8"]["name"] = "changed"
        assert store.get("games", "ys8") == {"name": "Ys"}

    def test_get_many_skips_missing(self) -> None:
        assert list(_store().get_many("games", ["ys8", "nope"])) == ["ys8"]

    def test_get_many_enforces_limit(self) -> None:
        with pytest.raises(QueryLimitError) as exc_info:
            _store().get_many("games", ["a", "b", "c", "d"])
        assert exc_info.value.requested == 4
        assert exc_info.value.limit == 3

    def test_get_many_at_limit_is_allowed(self) -> None:
        assert _store().get_many("games", ["a", "b", "c"]) == {}

    def test_get_all(self) -> None:
        assert set(_store().get_all("games")) == {"ys8"}
        assert _store().get_all("music") == {}


class TestMemoryStoreCommit:
    def test_commit_applies_every_patch(self) -> None:
        store = _store()
        committed_at = store.commit(
            [
                Patch("games", "ys8", PatchKind.UPDATE, {"name": "Ys 8"}),
                Patch("games", "sora", PatchKind.SET, {"name": "Sky"}),
            ]
        )
        assert committed_at == FIXED_NOW
        assert store.get("games", "ys8") == {"name": "Ys 8", "version": 1}
        assert store.get("games", "sora") == {"name": "Sky"}

    def test_one_server_time_per_batch(self) -> None:
        store = _store()
        store.commit(
            [
                Patch("games", "ys8", PatchKind.UPDATE, {"updatedAt": SERVER_TIMESTAMP}),
                Patch("games", "sora", PatchKind.SET, {"updatedAt": SERVER_TIMESTAMP}),
            ]
        )
        games = [store.get("games", i) for i in ("ys8", "sora")]
        stamps = {game["updatedAt"] for game in games}  # type: ignore[index]
        assert stamps == {FIXED_NOW.isoformat()}

    def test_patches_on_same_document_compose(self) -> None:
        store = _store()
        store.commit(
            [
                Patch("games", "ys8", PatchKind.UPDATE, {"tags": ArrayUnion(("a",))}),
                Patch("games", "ys8", PatchKind.UPDATE, {"tags": ArrayUnion(("b",))}),
            ]
        )
        assert store.get("games", "ys8")["tags"] == ["a", "b"]  # type: ignore[index]

    def test_update_on_missing_document_rejects_whole_batch(self) -> None:
        store = _store()
        with pytest.raises(DocumentMissingError):
            store.commit(
                [
                    Patch("games", "ys8", PatchKind.UPDATE, {"name": "changed"}),
                    Patch("games", "ghost", PatchKind.UPDATE, {"name": "x"}),
                ]
            )
        assert store.get("games", "ys8") == {"name": "Ys VIII", "version": 1}
        assert store.get("games", "ghost") is None

    def test_merge_creates_missing_document(self) -> None:
        store = _store()
        store.commit([Patch("cache", "games", PatchKind.MERGE, {"ys8": {"name": "Ys"}})])
        assert store.get("cache", "games") == {"ys8": {"name": "Ys"}}

    def test_version_check_passes_on_match(self) -> None:
        store = _store()
        store.commit(
            [
                Patch(
                    "games",
                    "ys8",
                    PatchKind.SET,
                    {"name": "Ys 8", "version": 2},
                    check_version=True,
                    expected_version=1,
                )
            ]
        )
        assert store.get("games", "ys8") == {"name": "Ys 8", "version": 2}

    def test_version_conflict_rejects_batch(self) -> None:
        store = _store()
        with pytest.raises(VersionConflictError) as exc_info:
            store.commit(
                [
                    Patch("games", "sora", PatchKind.SET, {"name": "Sky"}),
                    Patch(
                        "games",
                        "ys8",
                        PatchKind.SET,
                        {"name": "Ys 8"},
                        check_version=True,
                        expected_version=0,
                    ),
                ]
            )
        assert exc_info.value.expected == 0
        assert exc_info.value.actual == 1
        assert store.get("games", "sora") is None

    def test_creation_check_requires_absence(self) -> None:
        """expected_version None means the document must not exist yet."""
        store = _store()
        with pytest.raises(VersionConflictError, match="expected no document, found version 1"):
            store.commit(
                [Patch("games", "ys8", PatchKind.SET, {"name": "x"}, check_version=True)]
            )


class TestMemoryStoreSubscriptions:
    def test_subscribe_delivers_current_document_immediately(self) -> None:
        store = _store()
        seen: list[Any] = []
        store.subscribe("games", "ys8", seen.append)
        assert seen == [{"name": "Ys VIII", "version": 1}]

    def test_subscribe_to_missing_document_delivers_none(self) -> None:
        seen: list[Any] = []
        _store().subscribe("cache", "games", seen.append)
        assert seen == [None]

    def test_commit_pushes_to_subscribers(self) -> None:
        store = _store()
        seen: list[Any] = []
        store.subscribe("games", "ys8", seen.append)
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "Ys 8"})])
        assert seen[-1] == {"name": "Ys 8", "version": 1}

    def test_untouched_documents_are_not_pushed(self) -> None:
        store = _store()
        seen: list[Any] = []
        store.subscribe("games", "ys8", seen.append)
        store.commit([Patch("games", "sora", PatchKind.SET, {"name": "Sky"})])
        assert len(seen) == 1

    def test_failed_commit_pushes_nothing(self) -> None:
        store = _store()
        seen: list[Any] = []
        store.subscribe("games", "ys8", seen.append)
        with pytest.raises(DocumentMissingError):
            store.commit(
                [
                    Patch("games", "ys8", PatchKind.UPDATE, {"name": "x"}),
                    Patch("games", "ghost", PatchKind.UPDATE, {"name": "x"}),
                ]
            )
        assert len(seen) == 1

    def test_unsubscribe_stops_delivery(self) -> None:
        store = _store()
        seen: list[Any] = []
        unsubscribe = store.subscribe("games", "ys8", seen.append)
        unsubscribe()
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "Ys 8"})])
        assert len(seen) == 1

    def test_failing_listener_does_not_break_commit(self) -> None:
        store = _store()

        def explode(_doc: Any) -> None:
            if _doc and _doc.get("name") == "Ys 8":
                raise RuntimeError("listener bug")

        seen: list[Any] = []
        store.subscribe("games", "ys8", explode)
        store.subscribe("games", "ys8", seen.append)
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "Ys 8"})])
        assert store.get("games", "ys8") == {"name": "Ys 8", "version": 1}
        assert seen[-1]["name"] == "Ys 8"
