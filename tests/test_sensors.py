"""Tests for sensor extraction"""

from vbus_pulse.models import Snapshot
from vbus_pulse.sensors import (
    DEFAULT_SENSOR_TABLE,
    NOT_AVAILABLE,
    Band,
    SensorKind,
    SensorSpec,
    extract,
    find_spec,
    parse_numeric,
)
from tests.mock_datasource import CAPTURED_AT, DEFAULT_FIELDS, make_payload, make_snapshot


class TestExtract:
    """Test extract() against the default sensor table"""

    def test_ecs_field(self):
        """Field 4 of the designated packet is the ECS temperature"""
        readings = extract(make_snapshot({4: "45.2"}))

        assert readings["ECS"].formatted == "45.2°C"
        assert readings["ECS"].numeric == 45.2
        assert readings["ECS"].key == "ecs-temperature"
        assert readings["ECS"].timestamp == CAPTURED_AT

    def test_all_sensors_present(self):
        readings = extract(make_snapshot(DEFAULT_FIELDS))

        assert set(readings) == {spec.name for spec in DEFAULT_SENSOR_TABLE}
        assert readings["Capteurs"].formatted == "65.3°C"
        assert readings["Extérieur"].formatted == "12.4°C"
        assert readings["Piscine"].numeric == 26.0

    def test_deterministic(self):
        snapshot = make_snapshot(DEFAULT_FIELDS)
        assert extract(snapshot) == extract(snapshot)

    def test_missing_designated_packet(self):
        """No second packet means no data at all, not a map of N/A values"""
        payload = make_payload({4: "45.2"})
        payload["headersets"][0]["packets"] = payload["headersets"][0]["packets"][:1]

        assert extract(Snapshot.model_validate(payload)) == {}

    def test_no_headersets(self):
        assert extract(Snapshot()) == {}

    def test_missing_field(self):
        readings = extract(make_snapshot({4: "45.2"}))

        assert readings["Tampon"].formatted == NOT_AVAILABLE
        assert readings["Tampon"].numeric == 0.0

    def test_duplicate_field_index_last_wins(self):
        payload = make_payload({})
        payload["headersets"][0]["packets"][1]["field_values"] = [
            {"field_index": 4, "value": "30.0"},
            {"field_index": 4, "value": "44.5"},
        ]

        readings = extract(Snapshot.model_validate(payload))
        assert readings["ECS"].formatted == "44.5°C"

    def test_unparsable_value(self):
        readings = extract(make_snapshot({4: "--"}))

        assert readings["ECS"].formatted == "--°C"
        assert readings["ECS"].numeric == 0.0

    def test_numeric_wire_value(self):
        """Numbers on the wire are kept as their text form"""
        payload = make_payload({})
        payload["headersets"][0]["packets"][1]["field_values"] = [
            {"field_index": 4, "value": 45.2, "raw_value": 45.2},
        ]

        readings = extract(Snapshot.model_validate(payload))
        assert readings["ECS"].formatted == "45.2°C"

    def test_status_sensor_has_no_unit(self):
        readings = extract(make_snapshot({12: "1"}))

        assert readings["Filtration"].kind is SensorKind.STATUS
        assert readings["Filtration"].formatted == "1"
        assert readings["Filtration"].numeric == 1.0

    def test_custom_table(self):
        table = (SensorSpec("Custom", "custom-temperature", 2),)
        readings = extract(make_snapshot({2: "7.5"}), table)

        assert list(readings) == ["Custom"]
        assert readings["Custom"].formatted == "7.5°C"


class TestBands:
    """Test colour bands"""

    def test_ecs_bands(self):
        ecs = find_spec(DEFAULT_SENSOR_TABLE, "ECS")

        assert ecs.color_for(45.0) == "green"
        assert ecs.color_for(41.0) == "orange"
        assert ecs.color_for(37.0) == "orange"
        assert ecs.color_for(36.9) == "black"

    def test_capteurs_band(self):
        capteurs = find_spec(DEFAULT_SENSOR_TABLE, "Capteurs")

        assert capteurs.color_for(99.9) == "green"
        assert capteurs.color_for(100.0) == "black"

    def test_band_with_several_bounds(self):
        band = Band("blue", ge=10, lt=20)

        assert band.matches(10)
        assert band.matches(19.9)
        assert not band.matches(20)
        assert not band.matches(9)

    def test_find_spec_unknown(self):
        assert find_spec(DEFAULT_SENSOR_TABLE, "Nope") is None


def test_parse_numeric():
    assert parse_numeric("12.5") == 12.5
    assert parse_numeric("-3") == -3.0
    assert parse_numeric("N/A") == 0.0
    assert parse_numeric("") == 0.0
