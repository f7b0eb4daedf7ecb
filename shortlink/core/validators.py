"""
Input Validators and Sanitizers

This module provides validation functions for short codes and target URLs.
Validation always runs before any storage interaction.

Security Considerations:
- Only http/https targets are accepted
- Script-executing and data URIs are rejected by their leading scheme
- Length limits prevent DoS attacks
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from shortlink.core.exceptions import InvalidCodeError, InvalidTargetError

SHORT_CODE_MIN_LENGTH = 3
SHORT_CODE_MAX_LENGTH = 50
SHORT_CODE_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')

MAX_URL_LENGTH = 2048
ALLOWED_SCHEMES = frozenset({'http', 'https'})
MALICIOUS_PATTERNS = ('javascript:', 'data:', 'vbscript:', 'file:')

# Paths served by fixed routes; a link under one of these could never resolve
RESERVED_CODES = frozenset({'docs', 'health', 'links', 'recovery', 'redoc', 'shorten', 'stats'})


def sanitize_short_code(short_code: str) -> Optional[str]:
    """
    Sanitize and validate short code format.

    Short codes are 3-50 characters of [A-Za-z0-9_-].

    Args:
        short_code: The short code to sanitize

    Returns:
        Sanitized short code if valid, None otherwise
    """
    if not short_code or not isinstance(short_code, str):
        return None

    short_code = short_code.strip()

    if not SHORT_CODE_MIN_LENGTH <= len(short_code) <= SHORT_CODE_MAX_LENGTH:
        return None

    if not SHORT_CODE_PATTERN.match(short_code):
        return None

    if short_code in RESERVED_CODES:
        return None

    return short_code


def validate_short_code(short_code: str) -> str:
    """
    Validate a caller-supplied short code.

    Raises:
        InvalidCodeError: If the code does not match the format rule or names
            a fixed route
    """
    if not isinstance(short_code, str) or not short_code:
        raise InvalidCodeError(str(short_code), reason="Short code cannot be empty")
    if len(short_code) < SHORT_CODE_MIN_LENGTH:
        raise InvalidCodeError(short_code, reason=f"Short code is too short (min {SHORT_CODE_MIN_LENGTH} characters)")
    if len(short_code) > SHORT_CODE_MAX_LENGTH:
        raise InvalidCodeError(short_code, reason=f"Short code is too long (max {SHORT_CODE_MAX_LENGTH} characters)")
    if not SHORT_CODE_PATTERN.match(short_code):
        raise InvalidCodeError(
            short_code,
            reason="Short code contains invalid characters (only alphanumeric, -, _ allowed)"
        )
    if short_code in RESERVED_CODES:
        raise InvalidCodeError(short_code, reason="Short code is reserved")
    return short_code


def validate_url_length(url: str, max_length: int = MAX_URL_LENGTH) -> bool:
    """
    Validate URL length to prevent DoS attacks.

    Args:
        url: The URL to validate
        max_length: Maximum allowed length (default: 2048 per RFC 7230)

    Returns:
        True if URL length is valid, False otherwise
    """
    return bool(url) and len(url) <= max_length


def check_target(url: str) -> Optional[str]:
    """
    Return the reason a target URL is rejected, or None when it is acceptable.

    Checks that URL uses http/https, has a host, and doesn't contain
    a malicious scheme prefix (javascript:, data:, vbscript:, file:).
    The prefix check runs on the stripped URL; the same text later in a
    path or query string is harmless.
    """
    if not url or not isinstance(url, str):
        return "URL cannot be empty"

    if not validate_url_length(url):
        return f"URL too long (max {MAX_URL_LENGTH} characters)"

    url_lower = url.strip().lower()
    for pattern in MALICIOUS_PATTERNS:
        if url_lower.startswith(pattern):
            return f"Malicious URL pattern detected ({pattern})"

    try:
        result = urlparse(url)
    except ValueError:
        return "Invalid URL format"

    if not result.scheme or result.scheme.lower() not in ALLOWED_SCHEMES:
        return "URL scheme not allowed. Only http and https are allowed"

    if not result.netloc or not result.hostname:
        return "URL must have a host"

    domain = result.hostname
    if domain != 'localhost' and '.' not in domain and not _is_ip_literal(domain):
        return "Invalid domain"

    return None


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def is_valid_url(url: str) -> bool:
    """True if the URL is an acceptable redirect target."""
    return check_target(url) is None


def validate_target(url: str) -> str:
    """
    Validate a redirect target.

    Raises:
        InvalidTargetError: If the URL is malformed, uses a disallowed scheme,
            or matches the malicious-pattern denylist
    """
    reason = check_target(url)
    if reason is not None:
        raise InvalidTargetError(str(url), reason=reason)
    return url
