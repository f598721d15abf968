"""
test_models.py - Tests for observation records and pending operations.
"""

import pytest

from observation_sync.errors import ValidationError
from observation_sync.log.operations import (
    OperationKind,
    PendingOperation,
    delete_operation,
    insert_operation,
    update_operation,
)
from observation_sync.models import (
    ConservationStatus,
    GeoPoint,
    Observation,
    TaxonomicGroup,
)
from observation_sync.utils.ids import generate_placeholder_id, is_placeholder_id


class TestObservation:
    """Tests for record validation and serialized forms."""

    def test_species_name_required(self):
        with pytest.raises(ValidationError):
            Observation(species_name="")
        with pytest.raises(ValidationError):
            Observation(species_name="   ")

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            Observation(species_name="Merle noir", count=-1)

    def test_document_form_uses_original_keys(self):
        record = Observation(
            species_name="Merle noir",
            id="abc",
            latin_name="Turdus merula",
            taxonomic_group=TaxonomicGroup.BIRD,
            gps=GeoPoint(lat=48.85, lon=2.35),
            sex="Mâle",
            behaviour="Chant",
        )
        data = record.to_dict()
        assert data["speciesName"] == "Merle noir"
        assert data["taxonomicGroup"] == "Oiseaux"
        assert data["gps"] == {"lat": 48.85, "lon": 2.35}
        assert data["sexe"] == "Mâle"
        assert data["comportement"] == "Chant"
        assert Observation.from_dict(data) == record

    def test_row_form_flattens_gps(self):
        record = Observation(
            species_name="Hérisson",
            id="r1",
            gps=GeoPoint(lat=1.5, lon=-2.0),
            photo="https://example.org/p.jpg",
        )
        row = record.to_row()
        assert row["gps_lat"] == 1.5
        assert row["gps_lon"] == -2.0
        assert row["photo_url"] == "https://example.org/p.jpg"
        assert "gps" not in row
        assert Observation.from_row(row) == record

    def test_row_form_omits_empty_id(self):
        assert "id" not in Observation(species_name="Hérisson").to_row()

    def test_unknown_enum_values_fall_back(self):
        record = Observation.from_dict({
            "speciesName": "Inconnu",
            "taxonomicGroup": "Dragons",
            "status": "??",
        })
        assert record.taxonomic_group is TaxonomicGroup.OTHER
        assert record.status is ConservationStatus.NE

    def test_enum_member_names_accepted(self):
        record = Observation.from_dict({
            "speciesName": "Loup",
            "taxonomicGroup": "MAMMAL",
            "status": "VU",
        })
        assert record.taxonomic_group is TaxonomicGroup.MAMMAL
        assert record.status is ConservationStatus.VU

    def test_missing_count_defaults_to_one(self):
        assert Observation.from_dict({"speciesName": "Loup"}).count == 1

    def test_bad_coordinate_rejected(self):
        with pytest.raises(ValidationError):
            Observation.from_dict({"speciesName": "Loup", "gps": {"lat": "north"}})

    def test_from_dict_requires_mapping(self):
        with pytest.raises(ValidationError):
            Observation.from_dict(["not", "a", "record"])


class TestPlaceholderIds:

    def test_placeholder_format(self):
        placeholder = generate_placeholder_id()
        assert placeholder.startswith("temp-")
        assert is_placeholder_id(placeholder)

    def test_placeholders_unique(self):
        assert len({generate_placeholder_id() for _ in range(200)}) == 200

    def test_server_ids_are_not_placeholders(self):
        assert not is_placeholder_id("3f2b8c1e-0000-4000-8000-000000000000")
        assert not is_placeholder_id("")


class TestPendingOperation:

    def test_factories(self):
        record = Observation(species_name="Merle noir", id="temp-1-aa")
        assert insert_operation(record).kind is OperationKind.INSERT
        assert update_operation(record).record == record
        delete = delete_operation("abc")
        assert delete.kind is OperationKind.DELETE
        assert delete.payload == {"id": "abc"}

    def test_serialized_form(self):
        op = insert_operation(Observation(species_name="Merle noir", id="x"))
        data = op.to_dict()
        assert data["action"] == "INSERT"
        assert data["payload"]["speciesName"] == "Merle noir"
        assert isinstance(data["timestamp"], int)
        assert data["attempts"] == 0
        assert PendingOperation.from_dict(data) == op

    def test_entries_without_attempts_load(self):
        op = PendingOperation.from_dict({
            "action": "DELETE",
            "payload": {"id": "abc"},
            "timestamp": 1700000000000,
        })
        assert op.attempts == 0
        assert op.record_id == "abc"

    def test_record_id_required(self):
        with pytest.raises(ValidationError):
            PendingOperation(OperationKind.UPDATE, {}, 0)

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            PendingOperation.from_dict({"action": "UPSERT", "payload": {"id": "a"}, "timestamp": 0})

    def test_delete_has_no_record(self):
        with pytest.raises(ValidationError):
            delete_operation("abc").record

    def test_failed_counts_attempts(self):
        op = delete_operation("abc")
        assert op.failed().failed().attempts == 2
        assert op.attempts == 0
