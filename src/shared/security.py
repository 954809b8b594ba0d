"""
Security utilities for the account portal.

This module provides random value generation, input validation for the
values the portal collects before calling the authorization API, and the
security headers attached to every rendered page.
"""

import ipaddress
import re
import secrets
from typing import List, Optional, Tuple
from urllib.parse import urlparse


class TokenGenerator:
    """
    Secure random value generation.

    The portal never mints credentials; it only needs values that tie a
    browser round-trip together.
    """

    @staticmethod
    def generate_state() -> str:
        """
        Generate an OAuth ``state`` value for an authorize redirect.

        Returns:
            str: URL-safe state value
        """
        return secrets.token_urlsafe(16)

    @staticmethod
    def generate_session_secret() -> str:
        """
        Generate a signing key for the session cookie.

        Returns:
            str: URL-safe secret
        """
        return secrets.token_urlsafe(32)


class InputValidator:
    """
    Input validation and sanitization utilities.

    Provides validation for phone numbers, IP allow-lists, callback URLs and
    redirect targets so that obviously bad input never reaches the API.
    """

    # E.164: leading +, country code, up to 15 digits in total
    PHONE_PATTERN = re.compile(r'^\+[1-9]\d{6,14}$')
    PHONE_SEPARATORS = re.compile(r'[\s().-]')
    IP_WILDCARD = "*"
    IP_SPLIT_PATTERN = re.compile(r'[\s,]+')
    URI_SPLIT_PATTERN = re.compile(r'[\n,]+')

    @staticmethod
    def normalize_phone(phone: str) -> str:
        """
        Strip spaces, dots, dashes and parentheses from a phone number.

        Args:
            phone: Phone number as typed

        Returns:
            str: Compact phone number
        """
        if not isinstance(phone, str):
            return ""
        return InputValidator.PHONE_SEPARATORS.sub("", phone.strip())

    @staticmethod
    def validate_phone(phone: str) -> bool:
        """
        Validate an international phone number.

        Args:
            phone: Phone number, with or without separators

        Returns:
            bool: True if the number is in international format
        """
        normalized = InputValidator.normalize_phone(phone)
        return InputValidator.PHONE_PATTERN.match(normalized) is not None

    @staticmethod
    def validate_redirect_uri(redirect_uri: str, allowed_schemes: Optional[list] = None) -> bool:
        """
        Validate an OAuth redirect URI entered in the developer console.

        Args:
            redirect_uri: URI to validate
            allowed_schemes: List of allowed URI schemes (default: ['http', 'https'])

        Returns:
            bool: True if valid URI, False otherwise
        """
        if not isinstance(redirect_uri, str):
            return False

        if allowed_schemes is None:
            allowed_schemes = ['http', 'https']

        parsed = urlparse(redirect_uri)

        if parsed.scheme not in allowed_schemes:
            return False

        if not parsed.netloc:
            return False

        dangerous_chars = ['<', '>', '"', "'"]
        return not any(char in redirect_uri for char in dangerous_chars)

    @staticmethod
    def split_redirect_uris(raw: str) -> List[str]:
        """
        Split a textarea of redirect URIs on newlines and commas.

        Args:
            raw: Raw textarea value

        Returns:
            list: Trimmed, non-empty URIs in input order
        """
        if not raw:
            return []
        parts = InputValidator.URI_SPLIT_PATTERN.split(raw)
        return [uri.strip() for uri in parts if uri.strip()]

    @staticmethod
    def validate_ip_entry(entry: str) -> bool:
        """
        Validate one IP allow-list entry.

        Accepts IPv4 and IPv6 addresses, CIDR blocks, and ``*``.
        """
        if entry == InputValidator.IP_WILDCARD:
            return True
        try:
            if "/" in entry:
                ipaddress.ip_network(entry, strict=False)
            else:
                ipaddress.ip_address(entry)
        except ValueError:
            return False
        return True

    @staticmethod
    def parse_ip_list(raw: str, existing: Optional[List[str]] = None) -> Tuple[List[str], bool]:
        """
        Parse a free-form IP allow-list.

        Entries are split on whitespace and commas. Valid entries not already
        present are appended in input order.

        Args:
            raw: Raw input value
            existing: Entries already on the list

        Returns:
            tuple: (resulting_list, invalid_found)
        """
        result = list(existing or [])
        invalid_found = False

        if not raw or not raw.strip():
            return result, invalid_found

        for entry in InputValidator.IP_SPLIT_PATTERN.split(raw.strip()):
            if not entry:
                continue
            if InputValidator.validate_ip_entry(entry):
                if entry not in result:
                    result.append(entry)
            else:
                invalid_found = True

        return result, invalid_found

    @staticmethod
    def is_safe_return_path(return_to: Optional[str]) -> bool:
        """
        Check that a post-login redirect target stays on this site.

        Only absolute paths are allowed; scheme-relative URLs and
        backslash tricks are rejected.
        """
        if not return_to or not isinstance(return_to, str):
            return False
        if not return_to.startswith("/") or return_to.startswith("//"):
            return False
        if "\\" in return_to:
            return False
        parsed = urlparse(return_to)
        return not parsed.scheme and not parsed.netloc

    @staticmethod
    def sanitize_string(input_str: str, max_length: int = 1000) -> str:
        """
        Sanitize string input by removing control characters.

        Args:
            input_str: String to sanitize
            max_length: Maximum allowed length

        Returns:
            str: Sanitized string
        """
        if not isinstance(input_str, str):
            return ""

        sanitized = ''.join(char for char in input_str if ord(char) >= 32 or char in ['\n', '\r', '\t'])
        sanitized = sanitized[:max_length]
        return sanitized.strip()


class SecurityHeaders:
    """
    Security headers for HTTP responses.

    Provides standard security headers to protect against
    common web vulnerabilities.
    """

    @staticmethod
    def get_page_security_headers() -> dict:
        """
        Get security headers for rendered pages.

        Returns:
            dict: Dictionary of security headers
        """
        return {
            'X-Content-Type-Options': 'nosniff',
            'X-Frame-Options': 'DENY',
            'X-XSS-Protection': '1; mode=block',
            'Referrer-Policy': 'strict-origin-when-cross-origin',
        }

    @staticmethod
    def get_secret_display_headers() -> dict:
        """
        Get headers for pages that show a one-time secret or API key.

        Returns:
            dict: Dictionary of caching headers
        """
        return {
            'Cache-Control': 'no-cache, no-store, must-revalidate',
            'Pragma': 'no-cache',
            'Expires': '0'
        }


def generate_state() -> str:
    """Generate an OAuth state value."""
    return TokenGenerator.generate_state()


def safe_return_path(return_to: Optional[str], default: str = "/dashboard") -> str:
    """Return ``return_to`` if it stays on this site, else ``default``."""
    if InputValidator.is_safe_return_path(return_to):
        return return_to
    return default
