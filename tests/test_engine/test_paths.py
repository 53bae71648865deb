"""
Tests for path addressing in the collected-data tree.

Covers:
- KeyPath parsing (names, concrete and open indices, malformed keys)
- get_path / set_path including list materialization
- Flag and array-template helpers
"""

import pytest

from docassembly.engine.paths import (
    KeyPath,
    OpenIndex,
    add_another_key,
    concretize,
    entity_of,
    flag_key,
    get_path,
    has_value,
    instance_path,
    is_add_another_key,
    is_array_template,
    is_flag_key,
    normalize_indices,
    set_path,
    strip_flag,
)


class TestKeyPathParse:

    def test_dotted_names(self):
        assert KeyPath.parse("user.base_name.first").tokens == ("user", "base_name", "first")

    def test_concrete_index(self):
        assert KeyPath.parse("property[2].address").tokens == ("property", 2, "address")

    def test_open_index(self):
        path = KeyPath.parse("property[].address")
        assert path.tokens == ("property", OpenIndex(), "address")
        assert not path.is_concrete

    def test_nested_indices(self):
        assert KeyPath.parse("grid[1][3]").tokens == ("grid", 1, 3)

    def test_str_round_trips(self):
        for key in ("user.dob", "property[0].address.line1", "property[].value"):
            assert str(KeyPath.parse(key)) == key

    @pytest.mark.parametrize("key", ["", "  ", "user..dob", "user.dob!", "[0].x", "a.b[x]"])
    def test_malformed(self, key):
        with pytest.raises(ValueError):
            KeyPath.parse(key)


class TestGetPath:

    def test_reads_nested_value(self):
        tree = {"user": {"base_name": {"first": "Ada"}}}
        assert get_path(tree, "user.base_name.first") == "Ada"

    def test_reads_list_item(self):
        tree = {"property": [{"address": "1 Main St"}]}
        assert get_path(tree, "property[0].address") == "1 Main St"

    def test_absent_returns_default(self):
        tree = {"property": [{"address": "1 Main St"}]}
        assert get_path(tree, "property[3].address") is None
        assert get_path(tree, "user.dob", default="n/a") == "n/a"

    def test_through_scalar_returns_default(self):
        assert get_path({"user": "Ada"}, "user.dob") is None

    def test_stored_false_is_returned(self):
        assert get_path({"user": {"is_married": False}}, "user.is_married") is False

    def test_unbound_slot_rejected(self):
        with pytest.raises(ValueError, match="unbound"):
            get_path({}, "property[].address")


class TestSetPath:

    def test_materializes_mappings(self):
        tree = {}
        set_path(tree, "user.base_name.first", "Ada")
        assert tree == {"user": {"base_name": {"first": "Ada"}}}

    def test_materializes_list_slots(self):
        tree = {}
        set_path(tree, "property[1].address", "2 Side St")
        assert tree == {"property": [None, {"address": "2 Side St"}]}

    def test_keeps_siblings(self):
        tree = {"property": [{"address": "1 Main St"}]}
        set_path(tree, "property[0].value", "100")
        assert tree["property"][0] == {"address": "1 Main St", "value": "100"}

    def test_overwrites_value(self):
        tree = {"user": {"dob": "1990-01-01"}}
        set_path(tree, "user.dob", "1990-05-12")
        assert tree["user"]["dob"] == "1990-05-12"

    def test_unbound_slot_rejected(self):
        with pytest.raises(ValueError, match="unbound"):
            set_path({}, "property[].address", "x")


class TestHasValue:

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_blank_values(self, value):
        assert has_value(value) is False

    @pytest.mark.parametrize("value", ["x", 0, False, ["a"], {"a": 1}])
    def test_present_values(self, value):
        assert has_value(value) is True


class TestKeyHelpers:

    def test_flag_helpers(self):
        assert is_flag_key("user.is_married?")
        assert not is_flag_key("user.is_married")
        assert strip_flag("user.is_married?") == "user.is_married"
        assert strip_flag("user.dob") == "user.dob"
        assert flag_key("user.is_married") == "user.is_married?"

    def test_add_another(self):
        key = add_another_key("property")
        assert key == "property.add_another?"
        assert is_add_another_key(key)
        assert not is_add_another_key("property.add_another")
        assert not is_add_another_key("user.is_married?")

    def test_entity_of(self):
        assert entity_of("property[0].address") == "property"
        assert entity_of("property.add_another?") == "property"
        assert entity_of("document_date") == "document_date"

    def test_array_templates(self):
        assert is_array_template("property[].address")
        assert not is_array_template("property[0].address")
        assert concretize("property[].address", 2) == "property[2].address"
        assert concretize("a[].b[].c", 1) == "a[1].b[].c"
        assert normalize_indices("property[12].address") == "property[].address"
        assert instance_path("property", 0) == "property[0]"
