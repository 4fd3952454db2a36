"""Tests for the system/user property split and key-value encoding."""
from services.properties import (
    get_system_properties,
    get_user_properties,
    is_user_property,
    split_properties,
    stringify,
    to_key_value_list,
)


class TestIsUserProperty:

    def test_colon_marks_user_property(self):
        assert is_user_property("org.example:owner") is True
        assert is_user_property("a:b:c") is True
        assert is_user_property(":") is True

    def test_plain_names_are_system(self):
        assert is_user_property("compression") is False
        assert is_user_property("") is False


class TestSplitProperties:

    def test_partition_is_exhaustive_and_exclusive(self):
        props = {
            "compression": "lz4",
            "org.example:owner": "alice",
            "quota": 1024,
            "a:b:c": True,
        }
        system, user = split_properties(props)

        assert system == {"compression": "lz4", "quota": 1024}
        assert user == {"org.example:owner": "alice", "a:b:c": True}
        assert {**system, **user} == props
        assert set(system) & set(user) == set()

    def test_empty_map(self):
        assert split_properties({}) == ({}, {})

    def test_order_is_preserved(self):
        props = {"z": 1, "x:1": 2, "a": 3, "b:2": 4}
        system, user = split_properties(props)
        assert list(system) == ["z", "a"]
        assert list(user) == ["x:1", "b:2"]

    def test_halves_match_split(self):
        props = {"atime": "off", "csi:managed": "true"}
        assert get_system_properties(props) == {"atime": "off"}
        assert get_user_properties(props) == {"csi:managed": "true"}


class TestKeyValueList:

    def test_values_are_stringified(self):
        result = to_key_value_list({"csi:size": 1024, "csi:flag": True, "csi:name": "vol"})
        assert result == [
            {"key": "csi:size", "value": "1024"},
            {"key": "csi:flag", "value": "true"},
            {"key": "csi:name", "value": "vol"},
        ]

    def test_stringify_booleans_lowercase(self):
        assert stringify(False) == "false"
        assert stringify(1.5) == "1.5"
