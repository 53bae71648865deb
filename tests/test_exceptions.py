"""
Unit tests for the custom exception hierarchy.

Validates exception creation, inheritance, and attribute storage.
"""

import pytest

from docassembly.exceptions import (
    ConfigError,
    DocAssemblyError,
    MissingTemplateError,
    RuleExecutionError,
    SessionNotFoundError,
    ValidationError,
)


class TestDocAssemblyError:
    """Tests for the base exception class."""

    def test_basic_creation(self):
        err = DocAssemblyError("something broke")
        assert str(err) == "something broke"
        assert err.details == {}

    def test_with_details(self):
        err = DocAssemblyError("oops", details={"code": 42})
        assert err.details["code"] == 42

    def test_is_exception(self):
        assert issubclass(DocAssemblyError, Exception)


class TestConfigError:
    """Tests for schema/settings configuration errors."""

    def test_inherits_base(self):
        assert issubclass(ConfigError, DocAssemblyError)

    def test_stores_source(self):
        err = ConfigError("bad json", source="templates/wills/README.md")
        assert err.source == "templates/wills/README.md"

    def test_source_defaults_to_none(self):
        assert ConfigError("bad").source is None


class TestValidationError:
    """Tests for answer validation errors."""

    def test_reason_is_message(self):
        err = ValidationError("Input cannot be empty.", key="user.dob")
        assert err.reason == "Input cannot be empty."
        assert str(err) == "Input cannot be empty."
        assert err.key == "user.dob"

    def test_catchable_as_base(self):
        with pytest.raises(DocAssemblyError):
            raise ValidationError("Please answer yes or no.")


class TestMissingTemplateError:

    def test_stores_template_path(self):
        err = MissingTemplateError("gone", template_path="wills/simple_will.md")
        assert err.template_path == "wills/simple_will.md"


class TestRuleExecutionError:

    def test_stores_operation_and_marker(self):
        err = RuleExecutionError(
            "bad date", operation="format_date", marker="[INVALID_DATE_INPUT: x]"
        )
        assert err.operation == "format_date"
        assert err.marker == "[INVALID_DATE_INPUT: x]"

    def test_marker_defaults_to_none(self):
        assert RuleExecutionError("boom").marker is None


class TestSessionNotFoundError:

    def test_stores_session_key(self):
        err = SessionNotFoundError("no session", session_key="chat-42")
        assert err.session_key == "chat-42"
        assert isinstance(err, DocAssemblyError)
