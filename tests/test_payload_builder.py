"""
Unit tests for the payload builder

Tests:
- FieldMapping: type parsing, compiled rule chain
- FieldBuilder: value resolution, defaults, skipped fields
- PayloadBuilder: tree building, mandatory validation, merge, serialization
"""

import json
from datetime import date, datetime
from decimal import Decimal

import pytest

from src.builder.field_builder import FieldBuilder, FieldMapping
from src.builder.payload_builder import BuiltPayload, PayloadBuilder
from src.errors import (
    ErrorCode,
    MandatoryFieldMissing,
    PayloadSerializationFailed,
    SourceDataNotFound,
)
from src.schema.models import DataType
from src.transformer.rules import RuleOp


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def customer_row():
    """Source record as returned by the store: bare and TABLE.column keys"""
    return {
        "first_name": "  ada ",
        "CUSTOMER.first_name": "  ada ",
        "last_name": "Lovelace",
        "CUSTOMER.last_name": "Lovelace",
        "CUSTOMER.email": "ada@example.com",
        "created": date(2024, 6, 15),
        "balance": Decimal("1234.50"),
        "vip": "yes",
    }


@pytest.fixture
def customer_mappings():
    """Mappings for the acme tenant"""
    return [
        FieldMapping(
            "acme", "CUSTOMER", "first_name", "customer.name.first",
            transformation_rule="TRIM||UPPERCASE", is_mandatory=True, field_order=1,
        ),
        FieldMapping("acme", "CUSTOMER", "last_name", "customer.name.last", field_order=2),
        FieldMapping("acme", "CUSTOMER", "email", "customer.contact.email", field_order=3),
        FieldMapping(
            "acme", "CUSTOMER", "created", "customer.since",
            transformation_rule="DATE:yyyy-MM-dd", field_order=4,
        ),
        FieldMapping(
            "acme", "CUSTOMER", "balance", "account.balance",
            data_type=DataType.DECIMAL, field_order=5,
        ),
        FieldMapping("acme", "CUSTOMER", "vip", "account.vip", data_type="boolean", field_order=6),
    ]


@pytest.fixture
def builder():
    return PayloadBuilder()


# ============================================================================
# TEST: FieldMapping / FieldBuilder
# ============================================================================


class TestFieldBuilder:
    """Tests for FieldMapping and FieldBuilder"""

    def test_data_type_parsed_from_string(self):
        mapping = FieldMapping("acme", "T", "c", "x", data_type="integer")
        assert mapping.data_type is DataType.INTEGER

    def test_unknown_data_type_falls_back_to_string(self):
        mapping = FieldMapping("acme", "T", "c", "x", data_type="uuid")
        assert mapping.data_type is DataType.STRING

    def test_rule_chain_compiled_once(self):
        mapping = FieldMapping("acme", "T", "c", "x", transformation_rule="TRIM||LOWERCASE")

        assert [step.op for step in mapping.rule_chain] == [RuleOp.TRIM, RuleOp.LOWERCASE]

    def test_qualified_column(self):
        assert FieldMapping("acme", "CUSTOMER", "email", "x").qualified_column == "CUSTOMER.email"
        assert FieldMapping("acme", "", "email", "x").qualified_column is None

    def test_resolve_prefers_bare_column(self):
        mapping = FieldMapping("acme", "CUSTOMER", "email", "x")
        row = {"email": "bare@example.com", "CUSTOMER.email": "qualified@example.com"}

        assert FieldBuilder.resolve_value(mapping, row) == "bare@example.com"

    def test_resolve_falls_back_to_qualified(self):
        mapping = FieldMapping("acme", "CUSTOMER", "email", "x")

        assert FieldBuilder.resolve_value(mapping, {"CUSTOMER.email": "q@example.com"}) == "q@example.com"

    def test_resolve_falls_back_to_default(self):
        mapping = FieldMapping("acme", "CUSTOMER", "country", "x", default_value="BR")

        assert FieldBuilder.resolve_value(mapping, {}) == "BR"

    def test_field_without_value_or_default_is_skipped(self):
        mapping = FieldMapping("acme", "CUSTOMER", "nickname", "customer.nickname")

        assert FieldBuilder().build_field(mapping, {"first_name": "Ada"}) is None

    def test_empty_default_places_null(self):
        mapping = FieldMapping("acme", "CUSTOMER", "nickname", "customer.nickname", default_value="")

        assert FieldBuilder().build_field(mapping, {}) == ("customer.nickname", None)

    def test_build_field_applies_rule_and_type(self):
        mapping = FieldMapping(
            "acme", "ORDERS", "qty", "order.quantity",
            data_type=DataType.INTEGER, transformation_rule="TRIM",
        )

        assert FieldBuilder().build_field(mapping, {"qty": " 7 "}) == ("order.quantity", 7)

    def test_is_missing_only_for_mandatory(self):
        optional = FieldMapping("acme", "T", "c", "x")
        mandatory = FieldMapping("acme", "T", "c", "x", is_mandatory=True)

        assert FieldBuilder.is_missing(optional, {}) is False
        assert FieldBuilder.is_missing(mandatory, {}) is True
        assert FieldBuilder.is_missing(mandatory, {"c": 0}) is False


# ============================================================================
# TEST: Building
# ============================================================================


class TestBuild:
    """Tests for build / build_and_merge"""

    def test_build_nested_tree(self, builder, customer_mappings, customer_row):
        payload = builder.build(customer_mappings, customer_row)

        assert payload == {
            "customer": {
                "name": {"first": "ADA", "last": "Lovelace"},
                "contact": {"email": "ada@example.com"},
                "since": "2024-06-15",
            },
            "account": {"balance": Decimal("1234.50"), "vip": True},
        }

    def test_later_mapping_wins_on_same_path(self, builder):
        mappings = [
            FieldMapping("acme", "T", "a", "out", field_order=1),
            FieldMapping("acme", "T", "b", "out", field_order=2),
        ]

        assert builder.build(mappings, {"a": "first", "b": "second"}) == {"out": "second"}

    def test_concat_uses_whole_record(self, builder):
        mapping = FieldMapping(
            "acme", "CUSTOMER", "first_name", "customer.fullName",
            transformation_rule="CONCAT:first_name|last_name",
        )

        payload = builder.build([mapping], {"first_name": "Ada", "last_name": "Lovelace"})

        assert payload == {"customer": {"fullName": "Ada Lovelace"}}

    def test_build_and_merge_overrides_win(self, builder, customer_mappings, customer_row):
        overrides = {"customer": {"name": {"first": "Augusta"}}, "channel": "web"}

        payload = builder.build_and_merge(customer_mappings, customer_row, overrides)

        assert payload["customer"]["name"] == {"first": "Augusta", "last": "Lovelace"}
        assert payload["channel"] == "web"
        assert payload["customer"]["since"] == "2024-06-15"

    def test_validate_mandatory_reports_target_paths(self, builder, customer_mappings):
        missing = builder.validate_mandatory(customer_mappings, {"last_name": "Lovelace"})

        assert missing == ["customer.name.first"]


# ============================================================================
# TEST: Full pipeline
# ============================================================================


class TestBuildPayload:
    """Tests for build_payload"""

    def test_build_payload_serializes_compact_json(self, builder, customer_mappings, customer_row):
        built = builder.build_payload("acme", "42", customer_mappings, customer_row)

        assert isinstance(built, BuiltPayload)
        assert ": " not in built.json
        assert ", " not in built.json
        assert json.loads(built.json) == {
            "customer": {
                "name": {"first": "ADA", "last": "Lovelace"},
                "contact": {"email": "ada@example.com"},
                "since": "2024-06-15",
            },
            "account": {"balance": 1234.5, "vip": True},
        }
        assert built.size == len(built.json.encode("utf-8"))

    def test_additional_data_merged(self, builder, customer_mappings, customer_row):
        built = builder.build_payload(
            "acme", "42", customer_mappings, customer_row, additional_data={"account": {"tier": "gold"}}
        )

        assert built.tree["account"]["tier"] == "gold"
        assert built.tree["account"]["vip"] is True

    def test_empty_source_data_raises(self, builder, customer_mappings):
        with pytest.raises(SourceDataNotFound) as exc_info:
            builder.build_payload("acme", "404", customer_mappings, {}, correlation_id="corr-1")

        assert exc_info.value.code == ErrorCode.SOURCE_DATA_NOT_FOUND
        assert exc_info.value.correlation_id == "corr-1"

    def test_empty_source_data_with_mandatory_default_builds(self, builder):
        mappings = [FieldMapping("acme", "T", "country", "country", is_mandatory=True, default_value="BR")]

        built = builder.build_payload("acme", "1", mappings, {})

        assert built.tree == {"country": "BR"}

    def test_mandatory_missing_raises(self, builder, customer_mappings):
        with pytest.raises(MandatoryFieldMissing) as exc_info:
            builder.build_payload("acme", "42", customer_mappings, {"last_name": "Lovelace"})

        assert exc_info.value.missing_fields == ["customer.name.first"]
        assert exc_info.value.code == ErrorCode.MANDATORY_FIELD_MISSING
        assert "customer.name.first" in exc_info.value.message

    def test_non_finite_number_fails_serialization(self, builder):
        mappings = [FieldMapping("acme", "T", "ratio", "ratio", data_type=DataType.DOUBLE)]

        with pytest.raises(PayloadSerializationFailed) as exc_info:
            builder.build_payload("acme", "1", mappings, {"ratio": float("nan")}, correlation_id="c-9")

        assert exc_info.value.code == ErrorCode.PAYLOAD_BUILD_FAILED
        assert exc_info.value.correlation_id == "c-9"

    def test_unsupported_value_fails_serialization(self, builder):
        mappings = [FieldMapping("acme", "T", "tags", "tags", data_type=DataType.ARRAY)]

        with pytest.raises(PayloadSerializationFailed):
            builder.build_payload("acme", "1", mappings, {"tags": {"a", "b"}})


# ============================================================================
# TEST: Serialization and validation helpers
# ============================================================================


class TestSerializationAndValidation:
    """Tests for serialize / validate_payload / payload_size"""

    def test_serialize_scalars(self, builder):
        payload = {
            "whole": Decimal("3"),
            "fraction": Decimal("10.25"),
            "price": Decimal("19.90"),
            "day": date(2024, 6, 15),
            "at": datetime(2024, 6, 15, 10, 30),
            "name": "Conceição",
        }

        text = builder.serialize(payload)

        assert json.loads(text) == {
            "whole": 3,
            "fraction": 10.25,
            "price": 19.9,
            "day": "2024-06-15",
            "at": "2024-06-15T10:30:00",
            "name": "Conceição",
        }
        assert "Conceição" in text
        assert '"price":19.90' in text

    def test_serialize_keeps_decimal_precision(self, builder):
        text = builder.serialize({"amount": Decimal("12345678901234567.89"), "total": Decimal("100.00")})

        assert text == '{"amount":12345678901234567.89,"total":100.00}'

    def test_serialize_nested_nan_decimal_fails(self, builder):
        with pytest.raises(PayloadSerializationFailed):
            builder.serialize({"lines": [{"amount": Decimal("NaN")}]}, client_id="acme")

    def test_serialize_infinite_decimal_fails(self, builder):
        with pytest.raises(PayloadSerializationFailed):
            builder.serialize({"x": Decimal("Infinity")}, client_id="acme")

    def test_validate_payload(self, builder, customer_mappings):
        payload = json.dumps({"customer": {"name": {"first": "ADA"}}})

        assert builder.validate_payload(payload, customer_mappings) is True

    def test_validate_payload_null_mandatory(self, builder, customer_mappings):
        payload = json.dumps({"customer": {"name": {"first": None}}})

        assert builder.validate_payload(payload, customer_mappings) is False

    def test_validate_payload_rejects_bad_json(self, builder, customer_mappings):
        assert builder.validate_payload("{not json", customer_mappings) is False
        assert builder.validate_payload("[1, 2]", customer_mappings) is False

    def test_payload_size_counts_bytes(self):
        assert PayloadBuilder.payload_size("ção") == 5
        assert PayloadBuilder.payload_size(None) == 0
        assert PayloadBuilder.payload_size("") == 0


# ============================================================================
# RUN TESTS
# ============================================================================


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
