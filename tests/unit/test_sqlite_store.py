"""Tests for SqliteDocumentStore, the SQLite storage backend.

Mirror the MemoryDocumentStore tests to verify both backends behave the
same for the DocumentStore protocol. Most tests use :memory: databases.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from relcache.catalog.errors import DocumentMissingError, QueryLimitError, VersionConflictError
from relcache.catalog.patches import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayUnion,
    Patch,
    PatchKind,
    PatchReason,
)
from relcache.catalog.sqlite_store import SqliteDocumentStore
from relcache.catalog.store import DocumentStore
from tests.fixtures.catalog_fixtures import FIXED_NOW, fixed_clock

if TYPE_CHECKING:
    from pathlib import Path


def _store(**kwargs: Any) -> SqliteDocumentStore:
    store = SqliteDocumentStore(clock=fixed_clock, **kwargs)
    store.commit([Patch("games", "ys8", PatchKind.SET, {"name": "Ys VIII", "version": 1})])
    return store


class TestSqliteStoreProtocol:
    def test_is_runtime_checkable(self) -> None:
        assert isinstance(SqliteDocumentStore(), DocumentStore)

    def test_limits(self) -> None:
        store = SqliteDocumentStore(in_query_limit=10, max_batch_operations=20)
        assert store.in_query_limit == 10
        assert store.max_batch_operations == 20


class TestSqliteStoreReads:
    def test_get(self) -> None:
        assert _store().get("games", "ys8") == {"name": "Ys VIII", "version": 1}

    def test_get_missing_returns_none(self) -> None:
        assert _store().get("games", "nope") is None

    def test_get_many(self) -> None:
        store = _store()
        store.commit([Patch("games", "sora", PatchKind.SET, {"name": "Sky"})])
        assert set(store.get_many("games", ["ys8", "sora", "nope"])) == {"ys8", "sora"}

    def test_get_many_empty(self) -> None:
        assert _store().get_many("games", []) == {}

    def test_get_many_enforces_limit(self) -> None:
        with pytest.raises(QueryLimitError):
            _store(in_query_limit=2).get_many("games", ["a", "b", "c"])

    def test_get_all_is_scoped_to_collection(self) -> None:
        store = _store()
        store.commit([Patch("music", "gold", PatchKind.SET, {"name": "Gold Rush"})])
        assert list(store.get_all("games")) == ["ys8"]
        assert list(store.get_all("music")) == ["gold"]


class TestSqliteStoreCommit:
    def test_commit_resolves_sentinels(self) -> None:
        store = _store()
        store.commit(
            [
                Patch(
                    "characters",
                    "adol",
                    PatchKind.MERGE,
                    {
                        "gameIds": ArrayUnion(("ys8",)),
                        "cachedGames.ys8": {"name": "Ys VIII"},
                        "updatedAt": SERVER_TIMESTAMP,
                    },
                )
            ]
        )
        assert store.get("characters", "adol") == {
            "gameIds": ["ys8"],
            "cachedGames": {"ys8": {"name": "Ys VIII"}},
            "updatedAt": FIXED_NOW.isoformat(),
        }

    def test_failed_batch_rolls_back(self) -> None:
        store = _store()
        with pytest.raises(DocumentMissingError):
            store.commit(
                [
                    Patch("games", "ys8", PatchKind.UPDATE, {"name": "changed"}),
                    Patch("games", "sora", PatchKind.SET, {"name": "Sky"}),
                    Patch("games", "ghost", PatchKind.UPDATE, {"name": "x"}),
                ]
            )
        assert store.get("games", "ys8") == {"name": "Ys VIII", "version": 1}
        assert store.get("games", "sora") is None
        assert len(store.query_patch_log()) == 1

    def test_version_conflict_rolls_back(self) -> None:
        store = _store()
        with pytest.raises(VersionConflictError):
            store.commit(
                [
                    Patch("cache", "games", PatchKind.MERGE, {"ys8": {"name": "x"}}),
                    Patch(
                        "games",
                        "ys8",
                        PatchKind.SET,
                        {"name": "x"},
                        check_version=True,
                        expected_version=7,
                    ),
                ]
            )
        assert store.get("cache", "games") is None

    def test_store_is_usable_after_rollback(self) -> None:
        store = _store()
        with pytest.raises(DocumentMissingError):
            store.commit([Patch("games", "ghost", PatchKind.UPDATE, {"name": "x"})])
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"cachedGames.x": DELETE_FIELD})])
        assert store.get("games", "ys8") == {"name": "Ys VIII", "version": 1}

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        db_path = tmp_path / "catalog.db"
        store = SqliteDocumentStore(db_path)
        store.commit([Patch("games", "ys8", PatchKind.SET, {"name": "Ys VIII"})])
        store.close()

        reopened = SqliteDocumentStore(db_path)
        assert reopened.get("games", "ys8") == {"name": "Ys VIII"}
        reopened.close()


class TestSqliteStoreSubscriptions:
    def test_subscribe_and_push(self) -> None:
        store = _store()
        seen: list[Any] = []
        store.subscribe("games", "ys8", seen.append)
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "Ys 8"})])
        assert seen == [
            {"name": "Ys VIII", "version": 1},
            {"name": "Ys 8", "version": 1},
        ]


class TestSqliteStorePatchLog:
    def test_patches_are_logged_with_reason(self) -> None:
        store = _store()
        store.commit(
            [
                Patch(
                    "characters",
                    "adol",
                    PatchKind.MERGE,
                    {"gameIds": ArrayUnion(("ys8",))},
                    reason=PatchReason.ADDED,
                )
            ]
        )
        (entry,) = store.query_patch_log(collection="characters", doc_id="adol")
        assert entry["kind"] == "merge"
        assert entry["reason"] == "added"
        assert entry["committed_at"] == FIXED_NOW.isoformat()
        assert entry["fields"] == {"gameIds": {"$arrayUnion": ["ys8"]}}

    def test_log_is_most_recent_first(self) -> None:
        store = _store()
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "a"})])
        store.commit([Patch("games", "ys8", PatchKind.UPDATE, {"name": "b"})])
        entries = store.query_patch_log(doc_id="ys8", limit=2)
        assert [e["fields"]["name"] for e in entries] == ["b", "a"]
