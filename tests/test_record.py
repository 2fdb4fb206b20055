"""Tests for the canonical record model and accessors."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from contacts.record import (
    Extension,
    Record,
    RecordId,
    StructuredName,
    TypedValue,
    extension_value,
    new_record,
    pack_address,
    primary_email,
    primary_phone,
    primary_photo,
    record_uid,
    unpack_address,
    utc_stamp,
)

pytestmark = pytest.mark.unit


class TestRecordId:
    def test_provider_and_local_constructors(self):
        assert RecordId.provider("c1").is_provider
        assert not RecordId.local("abc").is_provider

    def test_generate_is_local_uuid(self):
        uid = RecordId.generate()
        assert uid.source == "local"
        assert len(uid.value) == 36

    def test_generated_ids_are_unique(self):
        assert RecordId.generate() != RecordId.generate()

    def test_resource_name(self):
        assert RecordId.provider("c1").resource_name == "people/c1"

    def test_str_is_value(self):
        assert str(RecordId.provider("c1")) == "c1"

    def test_value_is_stripped(self):
        assert RecordId.provider("  c1 ").value == "c1"

    @pytest.mark.parametrize("value", ["", "   ", "people/c1"])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(ValidationError):
            RecordId.provider(value)

    def test_frozen(self):
        uid = RecordId.provider("c1")
        with pytest.raises(ValidationError):
            uid.value = "c2"

    def test_infer_uses_separator_heuristic(self):
        assert RecordId.infer("c123").source == "provider"
        assert RecordId.infer("6f1c2d3e-aaaa-bbbb-cccc-1234567890ab").source == "local"


class TestStructuredName:
    def test_value_round_trip(self):
        name = StructuredName(family="Doe", given="John", suffix="Jr.")
        assert name.to_value() == "Doe;John;;;Jr."
        assert StructuredName.from_value(name.to_value()) == name

    def test_short_value_padded(self):
        assert StructuredName.from_value("Doe") == StructuredName(family="Doe")

    def test_is_empty(self):
        assert StructuredName().is_empty()
        assert not StructuredName(given="A").is_empty()


class TestExtension:
    def test_key_uppercased(self):
        assert Extension(key="x-google-skill", value="v").key == "X-GOOGLE-SKILL"

    def test_non_x_key_rejected(self):
        with pytest.raises(ValidationError):
            Extension(key="NOTE", value="v")


class TestPrimaryPhone:
    def test_first_phone_when_no_mobile(self):
        record = Record(
            phones=[
                TypedValue(value="555-1111", type="work"),
                TypedValue(value="555-2222", type="home"),
            ]
        )
        assert primary_phone(record) == "555-1111"

    def test_mobile_wins_regardless_of_position(self):
        record = Record(
            phones=[
                TypedValue(value="555-1111", type="home"),
                TypedValue(value="555-2222", type="mobile"),
            ]
        )
        assert primary_phone(record) == "555-2222"

    def test_cell_counts_as_mobile(self):
        record = Record(
            phones=[TypedValue(value="1", type="work"), TypedValue(value="2", type="CELL")]
        )
        assert primary_phone(record) == "2"

    def test_no_phones(self):
        assert primary_phone(Record()) == ""


class TestAccessors:
    def test_primary_email_and_photo(self):
        record = Record(
            emails=[TypedValue(value="a@example.com"), TypedValue(value="b@example.com")],
            photos=["https://example.com/p.jpg"],
        )
        assert primary_email(record) == "a@example.com"
        assert primary_photo(record) == "https://example.com/p.jpg"
        assert primary_email(Record()) == ""
        assert primary_photo(Record()) == ""

    def test_record_uid(self):
        assert record_uid(Record()) == ""
        assert record_uid(Record(uid=RecordId.provider("c1"))) == "c1"

    def test_extension_value_case_insensitive_key(self):
        record = Record()
        record.add_extension("X-GOOGLE-ETAG", "etag-1")
        assert extension_value(record, "x-google-etag") == "etag-1"
        assert extension_value(record, "X-MISSING") is None

    def test_new_record_has_local_id(self):
        record = new_record("Jane Doe")
        assert record.formatted_name == "Jane Doe"
        assert record.uid is not None and record.uid.source == "local"

    def test_ensure_formatted_name_defaults_to_identifier(self):
        record = Record(uid=RecordId.provider("c9"))
        record.ensure_formatted_name()
        assert record.formatted_name == "c9"


class TestAddressPacking:
    def test_pack_keeps_trailing_empty_components(self):
        assert pack_address(street="1 Main St") == ";;1 Main St;;;;"

    def test_unpack_is_inverse_of_pack(self):
        packed = pack_address(po_box="PO 1", city="Springfield", country="US")
        assert unpack_address(packed) == {
            "po_box": "PO 1",
            "extended": "",
            "street": "",
            "city": "Springfield",
            "region": "",
            "postal_code": "",
            "country": "US",
        }

    def test_unpack_pads_short_values(self):
        assert unpack_address("a;b")["street"] == ""


class TestUtcStamp:
    def test_second_precision_utc(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, 999, tzinfo=UTC)
        assert utc_stamp(moment) == "20240102T030405Z"

    def test_converts_other_timezones(self):
        moment = datetime(2024, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert utc_stamp(moment) == "20240102T030000Z"
