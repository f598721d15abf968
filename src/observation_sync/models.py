"""
models.py - Observation record data structures.

An Observation is a single field sighting. It has two serialized forms:

- the document form (camelCase keys, nested ``gps``), used by the local
  cache, the pending operation log and JSON backups;
- the row form (snake_case keys, flat ``gps_lat``/``gps_lon``), used on
  the wire with the Remote Store.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from observation_sync.errors import ValidationError


class TaxonomicGroup(str, Enum):
    BIRD = "Oiseaux"
    MAMMAL = "Mammifères"
    MARINE_MAMMAL = "Mammifères marins"
    REPTILE = "Réptiles"
    AMPHIBIAN = "Amphibien"
    ODONATE = "Odonate"
    BUTTERFLY = "Papillons de jour"
    MOTH = "Papillon de nuit"
    ORTHOPTERA = "Orthoptère"
    HYMENOPTERA = "Hyménoptères"
    MANTIS = "Mantes"
    CICADA = "Cigale"
    HETEROPTERA = "Punaises"
    COLEOPTERA = "Coléoptères"
    NEUROPTERA = "Nervoptère"
    DIPTERA = "Diptères"
    PHASMID = "Phasme"
    ARACHNID = "Araignées"
    FISH = "Poisson"
    CRUSTACEAN = "Crustacé"
    CHIROPTERA = "Chiroptères"
    ORCHID = "Orchidées"
    BOTANY = "Botaniques générales"
    OTHER = "Autre"


class ConservationStatus(str, Enum):
    """IUCN Red List category."""
    NE = "NE"
    DD = "DD"
    LC = "LC"
    NT = "NT"
    VU = "VU"
    EN = "EN"
    CR = "CR"
    EW = "EW"
    EX = "EX"


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    """Accept an enum member, its value or its name; anything else maps to default."""
    if isinstance(value, enum_cls):
        return value
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        pass
    if isinstance(value, str) and value in enum_cls.__members__:
        return enum_cls[value]
    return default


def _optional_float(value: Any, name: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number", field=name, value=value) from e


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float | None = None
    lon: float | None = None


@dataclass(frozen=True, slots=True)
class Observation:
    """
    Immutable representation of an observation record.

    Frozen so a record held by the cache cannot change under it;
    use with_id() or dataclasses.replace() to derive new versions.
    """
    species_name: str
    id: str = ""
    latin_name: str = ""
    taxonomic_group: TaxonomicGroup = TaxonomicGroup.OTHER
    date: str = ""  # YYYY-MM-DD
    time: str = ""  # HH:MM
    count: int = 1
    location: str = ""
    gps: GeoPoint = field(default_factory=GeoPoint)
    municipality: str = ""
    department: str = ""
    country: str = ""
    altitude: float | None = None
    comment: str = ""
    status: ConservationStatus = ConservationStatus.NE
    atlas_code: str = ""
    protocol: str = ""
    sex: str = ""
    age: str = ""
    observation_condition: str = ""
    behaviour: str = ""
    photo: str | None = None
    sound: str | None = None
    wikipedia_image: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.species_name, str) or not self.species_name.strip():
            raise ValidationError(
                "Observation must have a species name",
                field="species_name",
                value=self.species_name,
            )
        if not isinstance(self.count, int) or self.count < 0:
            raise ValidationError(
                f"count must be a non-negative integer, got {self.count!r}",
                field="count",
                value=self.count,
            )

    def with_id(self, record_id: str) -> "Observation":
        return replace(self, id=record_id)

    def to_dict(self) -> dict[str, Any]:
        """Document form, as stored in the cache, the queue and backups."""
        return {
            "id": self.id,
            "speciesName": self.species_name,
            "latinName": self.latin_name,
            "taxonomicGroup": self.taxonomic_group.value,
            "date": self.date,
            "time": self.time,
            "count": self.count,
            "location": self.location,
            "gps": {"lat": self.gps.lat, "lon": self.gps.lon},
            "municipality": self.municipality,
            "department": self.department,
            "country": self.country,
            "altitude": self.altitude,
            "comment": self.comment,
            "status": self.status.value,
            "atlasCode": self.atlas_code,
            "protocol": self.protocol,
            "sexe": self.sex,
            "age": self.age,
            "observationCondition": self.observation_condition,
            "comportement": self.behaviour,
            "photo": self.photo,
            "sound": self.sound,
            "wikipediaImage": self.wikipedia_image,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Observation":
        if not isinstance(data, dict):
            raise ValidationError(
                f"Expected dict, got {type(data).__name__}", field="data", value=data
            )
        gps = data.get("gps") or {}
        return cls(
            id=str(data.get("id") or ""),
            species_name=data.get("speciesName", ""),
            latin_name=data.get("latinName") or "",
            taxonomic_group=_coerce_enum(
                TaxonomicGroup, data.get("taxonomicGroup"), TaxonomicGroup.OTHER
            ),
            date=data.get("date") or "",
            time=data.get("time") or "",
            count=_count(data.get("count")),
            location=data.get("location") or "",
            gps=GeoPoint(
                lat=_optional_float(gps.get("lat"), "gps.lat"),
                lon=_optional_float(gps.get("lon"), "gps.lon"),
            ),
            municipality=data.get("municipality") or "",
            department=data.get("department") or "",
            country=data.get("country") or "",
            altitude=_optional_float(data.get("altitude"), "altitude"),
            comment=data.get("comment") or "",
            status=_coerce_enum(ConservationStatus, data.get("status"), ConservationStatus.NE),
            atlas_code=data.get("atlasCode") or "",
            protocol=data.get("protocol") or "",
            sex=data.get("sexe") or "",
            age=data.get("age") or "",
            observation_condition=data.get("observationCondition") or "",
            behaviour=data.get("comportement") or "",
            photo=data.get("photo"),
            sound=data.get("sound"),
            wikipedia_image=data.get("wikipediaImage"),
        )

    def to_row(self) -> dict[str, Any]:
        """Row form sent to the Remote Store. Empty IDs are omitted."""
        row: dict[str, Any] = {
            "species_name": self.species_name,
            "latin_name": self.latin_name,
            "taxonomic_group": self.taxonomic_group.value,
            "date": self.date,
            "time": self.time,
            "count": self.count,
            "location": self.location,
            "gps_lat": self.gps.lat,
            "gps_lon": self.gps.lon,
            "municipality": self.municipality,
            "department": self.department,
            "country": self.country,
            "altitude": self.altitude,
            "comment": self.comment,
            "status": self.status.value,
            "atlas_code": self.atlas_code,
            "protocol": self.protocol,
            "sexe": self.sex,
            "age": self.age,
            "observation_condition": self.observation_condition,
            "comportement": self.behaviour,
            "photo_url": self.photo,
            "sound_url": self.sound,
            "wikipedia_image": self.wikipedia_image,
        }
        if self.id:
            row["id"] = self.id
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Observation":
        return cls(
            id=str(row.get("id") or ""),
            species_name=row.get("species_name", ""),
            latin_name=row.get("latin_name") or "",
            taxonomic_group=_coerce_enum(
                TaxonomicGroup, row.get("taxonomic_group"), TaxonomicGroup.OTHER
            ),
            date=row.get("date") or "",
            time=row.get("time") or "",
            count=_count(row.get("count")),
            location=row.get("location") or "",
            gps=GeoPoint(
                lat=_optional_float(row.get("gps_lat"), "gps_lat"),
                lon=_optional_float(row.get("gps_lon"), "gps_lon"),
            ),
            municipality=row.get("municipality") or "",
            department=row.get("department") or "",
            country=row.get("country") or "",
            altitude=_optional_float(row.get("altitude"), "altitude"),
            comment=row.get("comment") or "",
            status=_coerce_enum(ConservationStatus, row.get("status"), ConservationStatus.NE),
            atlas_code=row.get("atlas_code") or "",
            protocol=row.get("protocol") or "",
            sex=row.get("sexe") or "",
            age=row.get("age") or "",
            observation_condition=row.get("observation_condition") or "",
            behaviour=row.get("comportement") or "",
            photo=row.get("photo_url"),
            sound=row.get("sound_url"),
            wikipedia_image=row.get("wikipedia_image"),
        )


def _count(value: Any) -> int:
    if value is None or value == "":
        return 1
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("count must be an integer", field="count", value=value) from e


# Columns of the row form other than id, shared with the reference server schema
ROW_COLUMNS: tuple[str, ...] = tuple(
    Observation(species_name="_").to_row().keys()
)
