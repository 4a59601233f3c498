"""
Tests for routing config resolution from function user config.
"""

from typing import Callable

import pytest

from trackrelay.models.routing import RoutingConfig, parse_event_codes


class TestParseEventCodes:
    """Test comma-separated event code parsing."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("700", {"700"}),
            ("700,701", {"700", "701"}),
            (" 700 , 701 ", {"700", "701"}),
            ("700,,701,", {"700", "701"}),
            (["700", 701], {"700", "701"}),
        ],
    )
    def test_parses_codes(self, raw: object, expected: set) -> None:
        """Test comma-separated codes are trimmed and split."""
        assert parse_event_codes(raw) == frozenset(expected)

    @pytest.mark.parametrize("raw", [None, "", " , ", []])
    def test_empty_falls_back_to_default(self, raw: object) -> None:
        """Test blank input falls back to 700."""
        assert parse_event_codes(raw) == frozenset({"700"})


class TestRoutingConfig:
    """Test RoutingConfig defaults and context resolution."""

    def test_defaults(self) -> None:
        """Test defaults without user config."""
        config = RoutingConfig()

        assert config.event_codes == frozenset({"700"})
        assert config.gateway_url == "dummy"
        assert config.gateway_configured is False

    def test_from_empty_context_uses_defaults(self, function_context: Callable) -> None:
        """Test an empty user config resolves to defaults."""
        config = RoutingConfig.from_context(function_context())

        assert config.event_codes == frozenset({"700"})
        assert config.gateway_configured is False

    def test_from_context(self, function_context: Callable) -> None:
        """Test user config values are resolved."""
        context = function_context(user_config={
            "event_codes": "700,710",
            "api_gateway_url": "https://gateway.example.com/exceptions",
        })

        config = RoutingConfig.from_context(context)

        assert config.event_codes == frozenset({"700", "710"})
        assert config.gateway_url == "https://gateway.example.com/exceptions"
        assert config.gateway_configured is True

    def test_blank_event_codes_never_empty(self, function_context: Callable) -> None:
        """Test a blank code list never yields an empty set."""
        config = RoutingConfig.from_context(function_context(user_config={"event_codes": ""}))
        assert config.event_codes == frozenset({"700"})
