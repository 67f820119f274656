"""Tests for the relation graph model."""

from __future__ import annotations

import pytest

from relcache.catalog.relations import (
    RELATION_EDGES,
    EntityType,
    cache_sides,
    is_valid_entity_id,
    parse_entity_type,
    reserved_fields,
    sides_for,
)


class TestEntityType:
    @pytest.mark.parametrize(
        ("entity_type", "collection", "route"),
        [
            (EntityType.GAME, "games", "/games"),
            (EntityType.CHARACTER, "characters", "/characters"),
            (EntityType.MUSIC_ALBUM, "musicAlbums", "/music-albums"),
            (EntityType.MUSIC_TRACK, "music", "/music"),
            (EntityType.STAFF, "staffInfo", "/staff"),
        ],
    )
    def test_storage_and_routes(
        self, entity_type: EntityType, collection: str, route: str
    ) -> None:
        assert entity_type.collection == collection
        assert entity_type.aggregate_doc_id == collection
        assert entity_type.route == route

    @pytest.mark.parametrize("value", ["staff", "staffInfo"])
    def test_parse_accepts_value_or_collection(self, value: str) -> None:
        assert parse_entity_type(value) is EntityType.STAFF

    def test_parse_unknown_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown entity type 'album'"):
            parse_entity_type("album")


class TestEntityIds:
    @pytest.mark.parametrize("entity_id", ["ys8", "Ys_VIII-2", "a"])
    def test_valid(self, entity_id: str) -> None:
        assert is_valid_entity_id(entity_id)

    @pytest.mark.parametrize("entity_id", ["", "ys.8", "a b", "a/b"])
    def test_invalid(self, entity_id: str) -> None:
        assert not is_valid_entity_id(entity_id)


class TestRelationEdges:
    def test_every_edge_is_declared_once(self) -> None:
        names = [edge.name for edge in RELATION_EDGES]
        assert sorted(names) == [
            "album-tracks",
            "game-characters",
            "game-soundtracks",
            "staff-music",
        ]

    def test_staff_music_does_not_refresh(self) -> None:
        """Track summary changes are left for the rebuild procedure."""
        edge = next(e for e in RELATION_EDGES if e.name == "staff-music")
        assert edge.refresh_on_change is False
        assert edge.reverse_cache_field is None

    def test_only_character_games_are_reverse_editable(self) -> None:
        editable = [e.name for e in RELATION_EDGES if e.reverse_editable]
        assert editable == ["game-characters"]


class TestSidesFor:
    def test_game_sides(self) -> None:
        sides = {s.local_ids_field: s for s in sides_for(EntityType.GAME)}
        assert set(sides) == {"characterIds", "soundtrackIds"}

        characters = sides["characterIds"]
        assert characters.remote_type is EntityType.CHARACTER
        assert characters.local_cache_field == "cachedCharacters"
        assert characters.remote_ids_field == "gameIds"
        assert characters.remote_cache_field == "cachedGames"
        assert characters.editable

    def test_character_side_is_reverse_of_game_characters(self) -> None:
        (side,) = sides_for(EntityType.CHARACTER)
        assert side.local_ids_field == "gameIds"
        assert side.local_cache_field == "cachedGames"
        assert side.remote_type is EntityType.GAME
        assert side.remote_ids_field == "characterIds"
        assert side.remote_cache_field == "cachedCharacters"
        assert side.editable

    def test_track_sides_are_read_only(self) -> None:
        sides = list(sides_for(EntityType.MUSIC_TRACK))
        assert {s.local_ids_field for s in sides} == {
            "dependentGameIds",
            "dependentStaffIds",
            "albumIds",
        }
        assert not any(s.editable for s in sides)
        assert all(s.local_cache_field is None for s in sides)

    def test_album_side_touches_remote_ids_only(self) -> None:
        (side,) = sides_for(EntityType.MUSIC_ALBUM)
        assert side.remote_ids_field == "albumIds"
        assert side.remote_cache_field is None
        assert side.touches_remote

    def test_reserved_fields(self) -> None:
        assert reserved_fields(EntityType.STAFF) == {
            "updatedAt",
            "version",
            "musicIds",
            "cachedMusic",
        }

    def test_cache_sides(self) -> None:
        assert [s.local_cache_field for s in cache_sides(EntityType.GAME)] == [
            "cachedCharacters",
            "cachedSoundtracks",
        ]
        assert cache_sides(EntityType.MUSIC_ALBUM) == []
