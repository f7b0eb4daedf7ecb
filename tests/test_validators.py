"""
Tests for short code and target URL validation.
"""

import pytest

from shortlink.core.exceptions import InvalidCodeError, InvalidTargetError
from shortlink.core.validators import (
    is_valid_url,
    sanitize_short_code,
    validate_short_code,
    validate_target,
)


class TestURLValidation:
    """Test URL validation function."""

    def test_valid_urls(self):
        """Test that valid URLs are accepted."""
        valid_urls = [
            "http://example.com",
            "https://example.com",
            "https://www.example.com/path/to/page",
            "http://subdomain.example.com:8080/path?query=value",
            "http://localhost:3000/callback",
        ]
        for url in valid_urls:
            assert is_valid_url(url), f"Should be valid: {url}"

    def test_invalid_urls(self):
        """Test that invalid URLs are rejected."""
        invalid_urls = [
            "not-a-url",
            "ftp://example.com",  # FTP not supported
            "example.com",  # Missing scheme
            "",
            "http://",  # Missing domain
            "http://intranet/",  # No dot in domain
        ]
        for url in invalid_urls:
            assert not is_valid_url(url), f"Should be invalid: {url}"

    def test_denylist_matches_leading_scheme(self):
        assert not is_valid_url("javascript:alert(1)")
        assert not is_valid_url("  JavaScript:alert(1)")
        assert not is_valid_url("data:text/html,hi")

    def test_scheme_like_text_later_in_url_is_allowed(self):
        assert is_valid_url("https://en.wikipedia.org/wiki/File:Foo.png")
        assert is_valid_url("https://example.com/metadata:v1")
        assert is_valid_url("https://example.com/?next=data:x")

    def test_ip_literal_hosts(self):
        assert is_valid_url("https://[2001:db8::1]/")
        assert is_valid_url("http://192.0.2.10:8080/status")

    def test_length_limit(self):
        base = "https://example.com/"
        assert is_valid_url(base + "a" * (2048 - len(base)))
        assert not is_valid_url(base + "a" * (2049 - len(base)))

    def test_validate_target_raises_with_reason(self):
        with pytest.raises(InvalidTargetError) as exc_info:
            validate_target("file:///etc/passwd")
        assert exc_info.value.kind == "invalid_target"
        assert "file:" in exc_info.value.reason


class TestShortCodeValidation:
    @pytest.mark.parametrize("code", ["abc", "promo1", "Summer_Sale-2026", "x" * 50])
    def test_valid_codes(self, code):
        assert validate_short_code(code) == code
        assert sanitize_short_code(code) == code

    @pytest.mark.parametrize("code", ["", "ab", "x" * 51, "has space", "slash/code", "émoji"])
    def test_invalid_codes(self, code):
        with pytest.raises(InvalidCodeError):
            validate_short_code(code)
        assert sanitize_short_code(code) is None

    def test_sanitize_strips_whitespace(self):
        assert sanitize_short_code("  promo1 ") == "promo1"

    @pytest.mark.parametrize("code", ["health", "stats", "docs", "redoc", "links", "shorten", "recovery"])
    def test_route_names_are_reserved(self, code):
        with pytest.raises(InvalidCodeError) as exc_info:
            validate_short_code(code)
        assert "reserved" in exc_info.value.reason
        assert sanitize_short_code(code) is None

    def test_reserved_names_are_case_sensitive(self):
        assert validate_short_code("Health") == "Health"
