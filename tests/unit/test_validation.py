"""
Unit tests for request validation helpers.

WHAT: API key format, message normalization, secret masking, Retry-After parsing
WHY: Malformed input must be rejected before any network call
HOW: Pure function checks with explicit settings
"""

import pytest

from deepweb.core.config import Settings
from deepweb.llm.validation import mask_secret, parse_retry_after, prepare_messages, validate_api_key
from deepweb.utils.exceptions import ClientError, ErrorKind
from tests.conftest import VALID_API_KEY


@pytest.mark.unit
class TestApiKeyValidation:
    """Test API key format checks."""

    def test_valid_key(self, test_settings):
        assert validate_api_key(VALID_API_KEY, test_settings) is True

    @pytest.mark.parametrize("key", [
        None,
        "",
        "not-a-key",
        "sk-short",
        "pk-" + "a" * 30,
        "sk-" + "a" * 20 + "!",
        "sk-" + "a" * 300,
        "sk_" + "a" * 30,
    ])
    def test_invalid_keys(self, key, test_settings):
        assert validate_api_key(key, test_settings) is False

    def test_pattern_from_settings(self):
        settings = Settings(_env_file=None, API_KEY_PATTERN=r"^key-[0-9]+$", API_KEY_MIN_LENGTH=5)
        assert validate_api_key("key-12345", settings) is True
        assert validate_api_key(VALID_API_KEY, settings) is False


@pytest.mark.unit
class TestPrepareMessages:
    """Test message normalization."""

    def test_passes_valid_messages(self):
        messages = [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi"},
        ]
        assert prepare_messages(messages) == messages

    def test_unknown_role_becomes_user(self):
        assert prepare_messages([{"role": "tool", "content": "x"}]) == [{"role": "user", "content": "x"}]

    def test_content_coerced_to_string(self):
        assert prepare_messages([{"role": "user", "content": 42}]) == [{"role": "user", "content": "42"}]

    def test_empty_messages_dropped(self):
        prepared = prepare_messages([
            {"role": "user", "content": None},
            {"role": "user", "content": ""},
            {"role": "user", "content": "kept"},
        ])
        assert prepared == [{"role": "user", "content": "kept"}]

    def test_input_not_mutated(self):
        original = {"role": "bogus", "content": 7, "name": "extra"}
        prepare_messages([original])
        assert original == {"role": "bogus", "content": 7, "name": "extra"}

    @pytest.mark.parametrize("messages", [[], None, [{"role": "user", "content": ""}], ["not a dict"]])
    def test_nothing_left_raises_validation(self, messages):
        with pytest.raises(ClientError) as exc_info:
            prepare_messages(messages)
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.field == "messages"


@pytest.mark.unit
class TestHelpers:
    """Test masking and header parsing."""

    def test_mask_secret(self):
        assert mask_secret(VALID_API_KEY) == f"{VALID_API_KEY[:4]}...{VALID_API_KEY[-4:]}"
        assert mask_secret("short") == "***"
        assert mask_secret(None) == "***"

    @pytest.mark.parametrize("value,expected", [
        ("30", 30.0),
        (" 1.5 ", 1.5),
        ("-1", None),
        ("Wed, 21 Oct 2015 07:28:00 GMT", None),
        (None, None),
    ])
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected
