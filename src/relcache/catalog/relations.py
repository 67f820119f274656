"""Relation graph model.

Declares the entity types of the catalog, where each one is stored, and
every relation edge between them. The planner walks these declarations to
decide which dependent documents an edit touches, so the table must list
every relation: an edge missing here is an edge whose caches silently rot.

Each edge is declared once, from the side that owns the id list. A
:class:`RelationSide` is that edge viewed from either endpoint.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

CACHE_COLLECTION = "cache"

_ENTITY_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class EntityType(StrEnum):
    """The five entity types of the catalog."""

    GAME = "game"
    CHARACTER = "character"
    MUSIC_ALBUM = "musicAlbum"
    MUSIC_TRACK = "music"
    STAFF = "staff"

    @property
    def collection(self) -> str:
        """Collection holding documents of this type."""
        return COLLECTIONS[self]

    @property
    def aggregate_doc_id(self) -> str:
        """Id of this type's aggregate cache document in ``cache``."""
        return COLLECTIONS[self]

    @property
    def route(self) -> str:
        """Public list route; detail pages live at ``<route>/<id>``."""
        return ROUTES[self]


COLLECTIONS: dict[EntityType, str] = {
    EntityType.GAME: "games",
    EntityType.CHARACTER: "characters",
    EntityType.MUSIC_ALBUM: "musicAlbums",
    EntityType.MUSIC_TRACK: "music",
    EntityType.STAFF: "staffInfo",
}

ROUTES: dict[EntityType, str] = {
    EntityType.GAME: "/games",
    EntityType.CHARACTER: "/characters",
    EntityType.MUSIC_ALBUM: "/music-albums",
    EntityType.MUSIC_TRACK: "/music",
    EntityType.STAFF: "/staff",
}


def parse_entity_type(value: str) -> EntityType:
    """Parse an entity type from its value or collection name.

    Raises:
        ValueError: If *value* names no entity type.
    """
    for entity_type in EntityType:
        if value in (entity_type.value, entity_type.collection, entity_type.name.lower()):
            return entity_type
    valid = ", ".join(t.value for t in EntityType)
    raise ValueError(f"Unknown entity type {value!r} (expected one of: {valid})")


def is_valid_entity_id(entity_id: str) -> bool:
    """Check that an id is safe to embed in a dotted field path."""
    return bool(_ENTITY_ID_RE.match(entity_id))


@dataclass(frozen=True)
class RelationEdge:
    """A typed relation between two entity types.

    Attributes:
        name: Stable edge name, used in logs and plan diffs.
        from_type: Type that owns the id list.
        to_type: Type being referenced.
        ids_field: Id list on ``from_type`` documents.
        reverse_ids_field: Back-reference id list on ``to_type`` documents.
        cache_field: Map on ``from_type`` of ``to_type`` summaries.
        reverse_cache_field: Map on ``to_type`` of ``from_type`` summaries.
        reverse_editable: Whether edits of ``to_type`` may rewrite the
            reverse list (and thereby the forward lists).
        refresh_on_change: Whether a summary change on either side is pushed
            to retained partners. ``False`` leaves drift for the rebuild
            procedure to repair.
    """

    name: str
    from_type: EntityType
    to_type: EntityType
    ids_field: str
    reverse_ids_field: str | None = None
    cache_field: str | None = None
    reverse_cache_field: str | None = None
    reverse_editable: bool = False
    refresh_on_change: bool = True

    @property
    def bidirectional(self) -> bool:
        return self.reverse_ids_field is not None


@dataclass(frozen=True)
class RelationSide:
    """A relation edge oriented from one of its endpoint types.

    ``local_*`` fields live on the document being edited, ``remote_*`` fields
    on the documents it references.
    """

    edge: RelationEdge
    local_type: EntityType
    remote_type: EntityType
    local_ids_field: str
    local_cache_field: str | None
    remote_ids_field: str | None
    remote_cache_field: str | None
    editable: bool

    @property
    def touches_remote(self) -> bool:
        """Whether adding or removing a reference patches the remote document."""
        return self.remote_ids_field is not None or self.remote_cache_field is not None


RELATION_EDGES: tuple[RelationEdge, ...] = (
    RelationEdge(
        name="game-characters",
        from_type=EntityType.GAME,
        to_type=EntityType.CHARACTER,
        ids_field="characterIds",
        reverse_ids_field="gameIds",
        cache_field="cachedCharacters",
        reverse_cache_field="cachedGames",
        reverse_editable=True,
    ),
    RelationEdge(
        name="game-soundtracks",
        from_type=EntityType.GAME,
        to_type=EntityType.MUSIC_TRACK,
        ids_field="soundtrackIds",
        reverse_ids_field="dependentGameIds",
        cache_field="cachedSoundtracks",
    ),
    # Track edits do not reach staff caches; rebuild_entity_cache repairs them.
    RelationEdge(
        name="staff-music",
        from_type=EntityType.STAFF,
        to_type=EntityType.MUSIC_TRACK,
        ids_field="musicIds",
        reverse_ids_field="dependentStaffIds",
        cache_field="cachedMusic",
        refresh_on_change=False,
    ),
    RelationEdge(
        name="album-tracks",
        from_type=EntityType.MUSIC_ALBUM,
        to_type=EntityType.MUSIC_TRACK,
        ids_field="musicIds",
        reverse_ids_field="albumIds",
    ),
)


def sides_for(
    entity_type: EntityType,
    edges: tuple[RelationEdge, ...] = RELATION_EDGES,
) -> Iterator[RelationSide]:
    """Yield every relation side whose local endpoint is *entity_type*.

    Reverse sides are only yielded for bidirectional edges, since a
    one-directional edge leaves nothing on the referenced document.
    """
    for edge in edges:
        if edge.from_type == entity_type:
            yield RelationSide(
                edge=edge,
                local_type=edge.from_type,
                remote_type=edge.to_type,
                local_ids_field=edge.ids_field,
                local_cache_field=edge.cache_field,
                remote_ids_field=edge.reverse_ids_field,
                remote_cache_field=edge.reverse_cache_field,
                editable=True,
            )
        if edge.to_type == entity_type and edge.reverse_ids_field is not None:
            yield RelationSide(
                edge=edge,
                local_type=edge.to_type,
                remote_type=edge.from_type,
                local_ids_field=edge.reverse_ids_field,
                local_cache_field=edge.reverse_cache_field,
                remote_ids_field=edge.ids_field,
                remote_cache_field=edge.cache_field,
                editable=edge.reverse_editable,
            )


def reserved_fields(entity_type: EntityType) -> set[str]:
    """Field names an edit payload may not set directly for *entity_type*."""
    names = {"updatedAt", "version"}
    for side in sides_for(entity_type):
        names.add(side.local_ids_field)
        if side.local_cache_field:
            names.add(side.local_cache_field)
    return names


def cache_sides(entity_type: EntityType) -> list[RelationSide]:
    """Sides of *entity_type* that embed remote summaries locally."""
    return [side for side in sides_for(entity_type) if side.local_cache_field]
