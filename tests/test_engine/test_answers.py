"""
Tests for the answer processor.

Covers:
- Type validation boundaries (date, year, day_of_month, number, choice)
- Regex validation rules, including an invalid pattern
- Empty input and optional composite sub-fields
- Rejected answers never mutate the session (idempotent re-ask)
- Flag answers: gates, add-another yes/no, custom yes/no tokens
"""

from __future__ import annotations

import pytest

from docassembly.engine.answers import apply_answer, parse_boolean, validate_answer
from docassembly.engine.resolver import resolve_field
from docassembly.engine.schema import load_schema
from docassembly.engine.state import CollectionState
from docassembly.exceptions import ValidationError


@pytest.fixture
def schema():
    return load_schema({
        "entities": {
            "user": {
                "fields": {
                    "base_name": {"_type": "name", "description": "Legal name"},
                    "dob": {"_type": "date", "description": "Date of birth"},
                    "is_veteran": {"_type": "boolean"},
                },
            },
            "spouse": {"_gate": "user.is_married", "fields": {"dob": {"_type": "date"}}},
            "property": {
                "_allow_multiple": True,
                "fields": {
                    "value": {"_type": "number", "description": "Property value"},
                    "acquired": {"_type": "year"},
                    "parcel": {
                        "_type": "text",
                        "description": "Parcel number",
                        "validationRule": "^\\d{3}-\\d{3}$",
                    },
                },
            },
        },
        "global_placeholders": {
            "recording_day": {"_type": "day_of_month"},
            "county": {"_type": "choice", "options": ["Marin", "Sonoma"]},
            "reference": {"_type": "text", "validationRule": "[unclosed"},
            "note": {"_type": "text"},
        },
    })


def make_state(schema, key, data=None) -> CollectionState:
    return CollectionState(
        session_key="test",
        collected_data=data if data is not None else {},
        schema=schema,
        current_question_key=key,
    )


def check(raw, key, schema):
    return validate_answer(raw, resolve_field(key, schema), key, schema)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestTypeValidation:

    def test_date_accepts_padded(self, schema):
        assert check("1990-05-12", "user.dob", schema) == "1990-05-12"

    @pytest.mark.parametrize(
        "raw", ["1990-5-12", "12/05/1990", "1990-05-12x", "May 12", "١٩٩٠-٠٥-١٢"]
    )
    def test_date_rejects(self, schema, raw):
        with pytest.raises(ValidationError, match="YYYY-MM-DD"):
            check(raw, "user.dob", schema)

    @pytest.mark.parametrize("raw", ["1", "31", "15"])
    def test_day_of_month_accepts(self, schema, raw):
        assert check(raw, "recording_day", schema) == raw

    @pytest.mark.parametrize("raw", ["0", "32", "-1", "1.5", "first", "٣", "３"])
    def test_day_of_month_rejects(self, schema, raw):
        with pytest.raises(ValidationError, match="between 1 and 31"):
            check(raw, "recording_day", schema)

    def test_year(self, schema):
        assert check("2004", "property[0].acquired", schema) == "2004"
        with pytest.raises(ValidationError, match="YYYY"):
            check("04", "property[0].acquired", schema)
        with pytest.raises(ValidationError, match="YYYY"):
            check("١٩٩٠", "property[0].acquired", schema)

    @pytest.mark.parametrize("raw", ["250000", "1.5e3", "-12.25"])
    def test_number_accepts(self, schema, raw):
        assert check(raw, "property[0].value", schema) == raw

    @pytest.mark.parametrize("raw", ["lots", "nan", "inf", "12,000", "١٢", "１２"])
    def test_number_rejects(self, schema, raw):
        with pytest.raises(ValidationError, match="valid number"):
            check(raw, "property[0].value", schema)

    def test_choice_is_case_sensitive(self, schema):
        assert check("Marin", "county", schema) == "Marin"
        with pytest.raises(ValidationError, match="Marin, Sonoma"):
            check("marin", "county", schema)

    def test_boolean_field_returns_bool(self, schema):
        assert check("Y", "user.is_veteran", schema) is True
        assert check("false", "user.is_veteran", schema) is False

    def test_input_is_trimmed(self, schema):
        assert check("  1990-05-12 ", "user.dob", schema) == "1990-05-12"

    def test_unknown_key_accepts_text(self, schema):
        assert validate_answer("anything", None, "mystery.key", schema) == "anything"


class TestRegexValidation:

    def test_applied_after_type_check(self, schema):
        assert check("123-456", "property[0].parcel", schema) == "123-456"

    def test_failure_names_description(self, schema):
        with pytest.raises(ValidationError, match="Invalid format for Parcel number."):
            check("123456", "property[0].parcel", schema)

    def test_invalid_pattern_is_skipped(self, schema):
        assert check("REF-1", "reference", schema) == "REF-1"


class TestEmptyInput:

    def test_rejected(self, schema):
        with pytest.raises(ValidationError, match="cannot be empty"):
            check("   ", "note", schema)

    def test_optional_middle_name_allowed(self, schema):
        assert check("", "user.base_name.middle", schema) == ""

    def test_other_name_parts_required(self, schema):
        with pytest.raises(ValidationError):
            check("", "user.base_name.first", schema)


class TestParseBoolean:

    @pytest.mark.parametrize("raw", ["yes", "YES", " y ", "True"])
    def test_affirmative(self, raw):
        assert parse_boolean(raw) is True

    @pytest.mark.parametrize("raw", ["no", "N", "false"])
    def test_negative(self, raw):
        assert parse_boolean(raw) is False

    def test_other_rejected(self):
        with pytest.raises(ValidationError, match="yes or no"):
            parse_boolean("maybe")

    def test_custom_tokens(self):
        assert parse_boolean("oui", affirmative=["oui"], negative=["non"]) is True
        with pytest.raises(ValidationError):
            parse_boolean("yes", affirmative=["oui"], negative=["non"])


# ---------------------------------------------------------------------------
# apply_answer
# ---------------------------------------------------------------------------

class TestApplyAnswer:

    def test_accepted_writes_and_clears_question(self, schema):
        state = make_state(schema, "user.dob")
        outcome = apply_answer("1990-05-12", state)
        assert outcome.accepted
        assert outcome.key == "user.dob"
        assert state.collected_data == {"user": {"dob": "1990-05-12"}}
        assert state.current_question_key is None

    def test_writes_indexed_path(self, schema):
        state = make_state(schema, "property[1].value")
        apply_answer("42", state)
        assert state.collected_data == {"property": [None, {"value": "42"}]}

    def test_rejection_does_not_mutate(self, schema):
        data = {"user": {"base_name": {"first": "Ada"}}}
        state = make_state(schema, "user.dob", data)
        before = state.to_dict()

        outcome = apply_answer("1990-5-12", state)

        assert not outcome.accepted
        assert outcome.reason == "Invalid date format. Please use YYYY-MM-DD."
        assert state.current_question_key == "user.dob"
        after = state.to_dict()
        before.pop("updated_at")
        after.pop("updated_at")
        assert after == before

    def test_rejected_twice_same_result(self, schema):
        state = make_state(schema, "recording_day")
        first = apply_answer("32", state)
        second = apply_answer("32", state)
        assert first == second
        assert state.collected_data == {}

    def test_no_pending_question(self, schema):
        outcome = apply_answer("hello", make_state(schema, None))
        assert not outcome.accepted
        assert outcome.reason == "There is no pending question."

    def test_unstorable_path(self, schema):
        state = make_state(schema, "user..dob")
        outcome = apply_answer("x", state)
        assert not outcome.accepted
        assert "could not be stored" in outcome.reason

    def test_gate_stores_boolean(self, schema):
        state = make_state(schema, "user.is_married?")
        assert apply_answer("no", state).accepted
        assert state.collected_data == {"user": {"is_married": False}}

    def test_flag_rejects_non_boolean(self, schema):
        state = make_state(schema, "user.is_married?")
        outcome = apply_answer("sometimes", state)
        assert outcome.reason == "Please answer yes or no."
        assert state.collected_data == {}

    def test_add_another_yes(self, schema):
        state = make_state(schema, "property.add_another?")
        state.current_entity_index = 0
        apply_answer("yes", state)
        assert state.current_entity_index == 1
        assert state.asked_add_another == {"property[0]"}
        assert state.collected_data == {}

    def test_add_another_no(self, schema):
        state = make_state(schema, "property.add_another?")
        state.current_entity_index = 2
        state.asked_add_another = {"property[0]", "property[1]", "vehicle[0]"}
        apply_answer("no", state)
        assert state.current_entity_index is None
        assert state.asked_add_another == {"vehicle[0]"}
        assert state.finished_entities == {"property"}

    def test_custom_tokens(self, schema):
        state = make_state(schema, "user.is_married?")
        assert apply_answer("si", state, affirmative=["si"], negative=["no"]).accepted
        assert state.collected_data["user"]["is_married"] is True
