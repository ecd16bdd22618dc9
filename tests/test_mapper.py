"""Tests for attribute mapping, destination paths and mapping resolution."""

import pytest

from idsync.models.connection import AttributeMapping, default_attribute_mappings
from idsync.services.mapper import (
    AttributeMapper,
    build_mapping,
    compile_mappings,
    detected_fields,
    get_path,
    set_path,
    split_path,
    suggest_destination,
)

URN = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"


@pytest.mark.parametrize("path,expected", [
    ("email", ["email"]),
    ("name.given", ["name", "given"]),
    ("phoneNumbers[0].value", ["phoneNumbers", 0, "value"]),
    ("matrix[1][2]", ["matrix", 1, 2]),
    (f"{URN}:department", [URN, "department"]),
    (f"{URN}:manager.value", [URN, "manager", "value"]),
])
def test_split_path(path, expected):
    assert split_path(path) == expected


def test_set_path_creates_nested_containers():
    data = {}

    set_path(data, ["phoneNumbers", 1, "value"], "555")

    assert data == {"phoneNumbers": [None, {"value": "555"}]}


def test_get_path_returns_none_for_missing_segments():
    data = {"name": {"given": "Jane"}, "phoneNumbers": [{"value": "555"}]}

    assert get_path(data, "name.given") == "Jane"
    assert get_path(data, "phoneNumbers[0].value") == "555"
    assert get_path(data, "phoneNumbers[3].value") is None
    assert get_path(data, "name.family") is None
    assert get_path(data, "name.given.first") is None


def test_map_with_default_mappings():
    record = {
        "email": "jane@example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "username": "jdoe",
        "phone": "(555) 123-4567",
        "department": "Engineering",
        "ignored": "value",
    }

    mapped = AttributeMapper().map(record, default_attribute_mappings())

    assert mapped == {
        "email": "jane@example.com",
        "name": {"given": "Jane", "family": "Doe"},
        "username": "jdoe",
        "phoneNumbers": [{"value": "5551234567"}],
        URN: {"department": "Engineering"},
    }


def test_map_skips_absent_source_keys_but_keeps_explicit_nulls():
    mappings = [
        AttributeMapping("email", "email"),
        AttributeMapping("title", "title"),
        AttributeMapping("manager", "manager"),
    ]

    mapped = AttributeMapper().map({"email": "a@b.co", "manager": None}, mappings)

    assert mapped == {"email": "a@b.co", "manager": None}
    assert "title" not in mapped


def test_map_does_not_modify_the_source_record():
    record = {"groups": ["a", "b"], "email": "a@b.co"}
    mappings = [AttributeMapping("groups", "memberOf"), AttributeMapping("email", "email")]

    mapped = AttributeMapper().map(record, mappings)
    mapped["memberOf"].append("c")

    assert record == {"groups": ["a", "b"], "email": "a@b.co"}


def test_later_mappings_overwrite_earlier_ones_for_same_destination():
    mappings = [
        AttributeMapping("mail", "email"),
        AttributeMapping("email", "email"),
    ]

    mapped = AttributeMapper().map({"mail": "old@b.co", "email": "new@b.co"}, mappings)

    assert mapped == {"email": "new@b.co"}


def test_malformed_transform_passes_value_through_during_mapping():
    mappings = [AttributeMapping("phone", "phone_number", transform="s/(/x/")]

    mapped = AttributeMapper().map({"phone": "(555)"}, mappings)

    assert mapped == {"phone_number": "(555)"}


def test_compile_mappings_drops_incomplete_entries():
    compiled = compile_mappings([
        AttributeMapping("", "email"),
        AttributeMapping("email", ""),
        AttributeMapping("mail", "email", required=True),
    ])

    assert len(compiled) == 1
    assert compiled[0].source == "mail"
    assert compiled[0].required is True
    assert compiled[0].path == ["email"]


def test_detected_fields_is_ordered_union_of_populated_keys():
    records = [
        {"email": "a@b.co", "title": "", "phone": None},
        {"username": "bob", "email": "b@b.co", "title": "Engineer"},
        "not a record",
    ]

    assert detected_fields(records) == ["email", "username", "title"]


@pytest.mark.parametrize("field_name,expected", [
    ("workEmail", "email"),
    ("userName", "username"),
    ("loginId", "username"),
    ("FirstName", "first_name"),
    ("last_name", "last_name"),
    ("fullName", "display_name"),
    ("mobilePhone", "phone_number"),
    ("jobTitle", "title"),
    ("Department", "department"),
    ("employeeId", ""),
])
def test_suggest_destination(field_name, expected):
    assert suggest_destination(field_name) == expected


def test_build_mapping_uses_connection_mappings_when_no_field_mapping():
    configured = default_attribute_mappings()

    result = build_mapping({}, configured, ["email", "username"])

    assert result == configured


def test_build_mapping_adds_suggestions_for_unmapped_fields():
    configured = [AttributeMapping("mail", "email", required=True)]

    result = build_mapping(None, configured, ["mail", "login", "workEmail", "jobTitle"])

    assert result == [
        AttributeMapping("mail", "email", required=True),
        AttributeMapping("login", "username"),
        AttributeMapping("jobTitle", "title"),
    ]


def test_build_mapping_field_mapping_inherits_transform_and_required():
    configured = [
        AttributeMapping("phone", "phoneNumbers[0].value", transform="s/[^0-9]//g", required=True),
        AttributeMapping("mail", "email"),
    ]

    result = build_mapping(
        {"phone": "phoneNumbers[0].value", "mail": "username"},
        configured,
    )

    assert result == [
        AttributeMapping("phone", "phoneNumbers[0].value", transform="s/[^0-9]//g", required=True),
        AttributeMapping("mail", "username"),
    ]


def test_build_mapping_empty_destination_skips_the_field():
    result = build_mapping(
        {"email": "email", "fullName": ""},
        [],
        ["email", "fullName"],
    )

    assert result == [AttributeMapping("email", "email")]


def test_mapping_is_repeatable():
    record = {"email": "a@b.co", "phone": "+1 (555) 010", "tags": {"team": ["x"]}}
    mappings = default_attribute_mappings() + [AttributeMapping("tags", "meta.tags")]
    mapper = AttributeMapper()

    assert mapper.map(record, mappings) == mapper.map(record, mappings)
