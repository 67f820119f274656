"""Pydantic models for summary records and edit payloads."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from relcache.catalog.errors import InvalidDocumentError
from relcache.catalog.relations import EntityType

# Non-empty string type for list items
NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]

ReleaseDatePrecision = Literal["day", "month", "year"]


class SummaryModel(BaseModel):
    """Base for the small projections embedded into referencing entities."""

    model_config = ConfigDict(extra="ignore")


class GameSummary(SummaryModel):
    """Game fields shown wherever a game is referenced."""

    name: str
    category: str = ""
    releaseDate: str = ""
    hasCoverImage: bool = False


class CharacterSummary(SummaryModel):
    """Character fields shown wherever a character is referenced."""

    name: str
    category: str = ""
    hasAvatarImage: bool = False


class MusicAlbumSummary(SummaryModel):
    """Album fields shown in album pickers and lists."""

    name: str
    releaseDate: str = ""
    hasAlbumArt: bool = False


class MusicTrackSummary(SummaryModel):
    """Track fields embedded in game soundtracks and staff credits."""

    name: str
    trackNumber: int = 0
    releaseDate: str = ""


class StaffSummary(SummaryModel):
    """Staff member fields shown in staff lists."""

    name: str
    roles: list[str] = Field(default_factory=list)


SUMMARY_MODELS: dict[EntityType, type[SummaryModel]] = {
    EntityType.GAME: GameSummary,
    EntityType.CHARACTER: CharacterSummary,
    EntityType.MUSIC_ALBUM: MusicAlbumSummary,
    EntityType.MUSIC_TRACK: MusicTrackSummary,
    EntityType.STAFF: StaffSummary,
}

SUMMARY_FIELDS: dict[EntityType, tuple[str, ...]] = {
    entity_type: tuple(model.model_fields) for entity_type, model in SUMMARY_MODELS.items()
}


def project_summary(entity_type: EntityType, document: dict[str, Any]) -> dict[str, Any]:
    """Project an entity document onto its summary record.

    Args:
        entity_type: Type of the entity.
        document: Entity document (authoritative fields are read, others ignored).

    Returns:
        Plain dict holding exactly the summary fields of *entity_type*.
    """
    model = SUMMARY_MODELS[entity_type]
    return model.model_validate(document).model_dump()


def project_stored_summary(
    entity_type: EntityType, doc_id: str, document: dict[str, Any]
) -> dict[str, Any]:
    """Project a document read from the store onto its summary record.

    Raises:
        InvalidDocumentError: If the stored document lacks a valid summary field.
    """
    try:
        return project_summary(entity_type, document)
    except ValidationError as e:
        problems = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
        raise InvalidDocumentError(
            collection=entity_type.collection, doc_id=doc_id, problems=problems
        ) from e


def summary_changed(
    entity_type: EntityType,
    previous: dict[str, Any] | None,
    current: dict[str, Any],
) -> bool:
    """Compare two documents over exactly the summary fields of their type.

    A missing or unprojectable previous document always counts as a change.
    """
    if previous is None:
        return True
    try:
        old = project_summary(entity_type, previous)
    except ValidationError:
        return True
    new = project_summary(entity_type, current)
    return any(old[f] != new[f] for f in SUMMARY_FIELDS[entity_type])


def format_release_date(value: date, precision: ReleaseDatePrecision) -> str:
    """Format a release date truncated to its known precision.

    >>> format_release_date(date(2023, 9, 28), "month")
    '2023-09'
    """
    if precision == "year":
        return f"{value.year:04d}"
    if precision == "month":
        return f"{value.year:04d}-{value.month:02d}"
    return value.isoformat()


class EditPayload(BaseModel):
    """An edit request as read from a YAML or JSON payload file.

    ``fields`` fully replaces the entity's authoritative fields. ``relations``
    maps relation id-list field names to their new contents; lists that are
    omitted keep their stored value.
    """

    fields: dict[str, Any] = Field(default_factory=dict)
    relations: dict[str, list[NonEmptyStr]] = Field(default_factory=dict)
    releaseDatePrecision: ReleaseDatePrecision | None = Field(
        default=None, description="Truncate fields.releaseDate to this precision"
    )

    def normalized_fields(self) -> dict[str, Any]:
        """Return ``fields`` as JSON data, ``releaseDate`` truncated to its precision.

        Raises:
            ValueError: If ``releaseDate`` is not an ISO date.
        """
        fields: dict[str, Any] = self.model_dump(mode="json")["fields"]
        raw = fields.get("releaseDate")
        if raw and self.releaseDatePrecision is not None:
            parsed = date.fromisoformat(str(raw)[:10])
            fields["releaseDate"] = format_release_date(parsed, self.releaseDatePrecision)
        return fields
