"""
Error message sanitization.

Error text that leaves the process (HTTP responses, ``error_message`` columns
on sync packages and items that the CRM shows to agents) must never carry the
portal credentials, connection strings, or internals. Everything that is
persisted or returned passes through ``sanitize_error_message`` first, while
the original exception is logged server-side.

Example:
    >>> sanitize_error_message("POST failed: password=hunter2")
    'POST failed: password=[REDACTED]'
    >>> sanitize_error_message("connect to postgresql://u:p@db/crm", "Database error")
    'Database error: connect to [DATABASE_URL]'
"""
import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class SanitizationResult:
    """Result of error message sanitization."""

    sanitized_message: str
    redaction_count: int
    original_length: int
    sanitized_length: int

    @property
    def was_sanitized(self) -> bool:
        return self.redaction_count > 0


class ErrorSanitizer:
    """Redacts sensitive fragments from error messages.

    Attributes:
        patterns: List of (regex_pattern, replacement) tuples
        max_message_length: Maximum length of sanitized messages
    """

    # Order matters - more specific patterns come first
    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        # Database connection strings
        (r'postgres(ql)?://[^\s\n]+', '[DATABASE_URL]'),

        # Portal credentials (form fields and XML attributes)
        (r'xe[-_]?auth[-_]?token[="\'=:\s>]+[^\s\n,;"\'<]+', 'xeAuthToken=[REDACTED]'),
        (r'auth[-_]?token[=:\s]+[^\s\n,;]+', 'auth_token=[REDACTED]'),
        (r'username[=:\s]+[^\s\n,;]+', 'username=[REDACTED]'),
        (r'password[=:\s]+[^\s\n,;]+', 'password=[REDACTED]'),
        (r'passwd[=:\s]+[^\s\n,;]+', 'passwd=[REDACTED]'),

        # Generic tokens and secrets
        (r'bearer\s+[A-Za-z0-9_\-\.]+', 'Bearer [REDACTED]'),
        (r'authorization[:\s]+[^\s\n]+', 'Authorization: [REDACTED]'),
        (r'api[-_]?key[=:\s]+[^\s\n,;]+', 'api_key=[REDACTED]'),
        (r'secret[=:\s]+[^\s\n,;]+', 'secret=[REDACTED]'),

        # Environment variable names
        (r'\b(XE_GR_BASE_URL|XE_GR_USERNAME|XE_GR_PASSWORD|XE_GR_AUTH_TOKEN)\b', '[ENV_VAR]'),
        (r'DATABASE_URL[=:\s]', '[ENV_VAR]='),

        # File paths
        (r'/(?:home|root|usr|var|etc|opt|mnt|tmp)/[^\s\n,;]+', '[FILE_PATH]'),

        # Stack traces (Python)
        (r'Traceback \(most recent call last\):[\s\S]*?(?=\n\n|\n[A-Z]|\Z)', '[STACK_TRACE]'),
        (r'File "([^"]+)", line \d+', 'File "[REDACTED]", line [REDACTED]'),

        # IP addresses (v4)
        (r'\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b', '[IP_ADDRESS]'),

        # Long base64 / hex strings (likely tokens)
        (r'\b[A-Za-z0-9+/]{40,}={0,2}\b', '[BASE64_REDACTED]'),
        (r'\b[0-9a-fA-F]{32,}\b', '[HEX_STRING]'),
    ]

    def __init__(
        self,
        patterns: Optional[list[tuple[str, str]]] = None,
        max_message_length: int = 500,
    ):
        self.patterns = list(patterns or self.DEFAULT_PATTERNS)
        self.max_message_length = max_message_length
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in self.patterns
        ]

    def sanitize(self, message: str, error_type: Optional[str] = None) -> SanitizationResult:
        """Sanitize error message for safe exposure.

        Args:
            message: Raw error message
            error_type: Optional error type/category used as a prefix

        Returns:
            SanitizationResult with sanitized message
        """
        if not message:
            return SanitizationResult(
                sanitized_message="An error occurred",
                redaction_count=0,
                original_length=0,
                sanitized_length=17,
            )

        original_length = len(message)
        sanitized = message
        redaction_count = 0

        for pattern, replacement in self._compiled_patterns:
            matches = len(pattern.findall(sanitized))
            if matches > 0:
                redaction_count += matches
                sanitized = pattern.sub(replacement, sanitized)

        if len(sanitized) > self.max_message_length:
            sanitized = sanitized[: self.max_message_length] + "... [TRUNCATED]"

        if not sanitized.strip():
            sanitized = "An error occurred"

        if error_type and not sanitized.startswith(error_type):
            sanitized = f"{error_type}: {sanitized}"

        return SanitizationResult(
            sanitized_message=sanitized,
            redaction_count=redaction_count,
            original_length=original_length,
            sanitized_length=len(sanitized),
        )

    def add_pattern(self, pattern: str, replacement: str) -> None:
        """Add a custom sanitization pattern."""
        self.patterns.append((pattern, replacement))
        self._compiled_patterns.append(
            (re.compile(pattern, re.IGNORECASE), replacement)
        )

    def is_safe(self, message: str) -> bool:
        """True if no pattern would redact anything in ``message``."""
        return not any(pattern.search(message) for pattern, _ in self._compiled_patterns)


_default_sanitizer: Optional[ErrorSanitizer] = None


def get_sanitizer() -> ErrorSanitizer:
    """Get the default error sanitizer instance."""
    global _default_sanitizer
    if _default_sanitizer is None:
        _default_sanitizer = ErrorSanitizer()
    return _default_sanitizer


def sanitize_error_message(
    message: str,
    error_type: Optional[str] = None,
) -> str:
    """Convenience function to sanitize error messages."""
    return get_sanitizer().sanitize(message, error_type).sanitized_message
