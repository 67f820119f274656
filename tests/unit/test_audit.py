"""Tests for the drift audit."""

from __future__ import annotations

from relcache.catalog.audit import DriftFinding, find_drift
from relcache.catalog.patches import DELETE_FIELD, ArrayRemove, Patch, PatchKind
from relcache.catalog.relations import EntityType
from relcache.catalog.store import MemoryDocumentStore


def _kinds(store: MemoryDocumentStore) -> list[tuple[str, str, str]]:
    return [(f.kind, f.entity_id, f.ref_id) for f in find_drift(store).findings]


class TestFindDrift:
    def test_consistent_catalog_is_clean(self, store: MemoryDocumentStore) -> None:
        report = find_drift(store)
        assert report.clean
        assert report.entities_checked == 9
        assert report.summary == "9 entities checked, no drift"

    def test_empty_store_is_clean(self) -> None:
        assert find_drift(MemoryDocumentStore()).clean

    def test_stale_embedded_summary(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [Patch("staffInfo", "jdk", PatchKind.UPDATE, {"cachedMusic.sunshine.name": "Old"})]
        )
        (finding,) = find_drift(store).findings
        assert finding == DriftFinding(
            "stale", EntityType.STAFF, "jdk", "cachedMusic", "sunshine"
        )
        assert finding.message == "stale: staffInfo/jdk.cachedMusic -> sunshine"

    def test_orphaned_entry(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [
                Patch(
                    "characters",
                    "dana",
                    PatchKind.UPDATE,
                    {"cachedGames.ys8": {"name": "Ys VIII: Lacrimosa of Dana"}},
                )
            ]
        )
        assert _kinds(store) == [("orphaned", "dana", "ys8")]

    def test_missing_entry(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [Patch("games", "ys8", PatchKind.UPDATE, {"cachedCharacters.adol": DELETE_FIELD})]
        )
        assert _kinds(store) == [("missing", "ys8", "adol")]

    def test_dangling_reference(self, store: MemoryDocumentStore) -> None:
        store.commit([Patch("musicAlbums", "ys8-ost", PatchKind.UPDATE, {"musicIds": ["ghost"]})])
        findings = find_drift(store)
        assert [f.ref_id for f in findings.by_kind("dangling")] == ["ghost"]
        # sunshine and gold still list the album
        assert {f.entity_id for f in findings.by_kind("backref")} == {"sunshine", "gold"}

    def test_one_sided_reference(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [Patch("characters", "adol", PatchKind.UPDATE, {"gameIds": ArrayRemove(("ys8",))})]
        )
        kinds = _kinds(store)
        assert ("backref", "ys8", "adol") in kinds
        assert ("orphaned", "adol", "ys8") in kinds

    def test_aggregate_drift(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [
                Patch(
                    "cache",
                    "characters",
                    PatchKind.UPDATE,
                    {"estelle": DELETE_FIELD, "ghost": {"name": "Ghost"}},
                )
            ]
        )
        findings = find_drift(store).by_kind("aggregate")
        assert [f.entity_id for f in findings] == ["estelle", "ghost"]
        assert findings[0].field == "cache/characters"


class TestDriftReport:
    def test_entities_to_rebuild(self, store: MemoryDocumentStore) -> None:
        store.commit(
            [
                Patch("staffInfo", "jdk", PatchKind.UPDATE, {"cachedMusic.sunshine.name": "Old"}),
                Patch("games", "ys8", PatchKind.UPDATE, {"cachedCharacters.adol": DELETE_FIELD}),
                Patch("cache", "games", PatchKind.UPDATE, {"sora": DELETE_FIELD}),
            ]
        )
        report = find_drift(store)
        assert report.entities_to_rebuild() == [
            (EntityType.GAME, "ys8"),
            (EntityType.STAFF, "jdk"),
        ]
        assert report.summary == "9 entities checked: 1 aggregate, 1 missing, 1 stale"
