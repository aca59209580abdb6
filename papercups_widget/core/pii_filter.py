"""PII (Personally Identifiable Information) logging filter.

Customer metadata flows through debug logs (e-mail, host, browser details),
so widget log records are redacted before they reach any handler.
"""

import logging
import re
from typing import Any, Pattern


class PIIFilter(logging.Filter):
    """Logging filter that redacts PII from log messages."""

    PATTERNS: list[tuple[Pattern, str]] = [
        # Email addresses
        (re.compile(r"\b[\w\.\+-]+@[\w\.-]+\.\w+\b"), "[EMAIL]"),
        # Phone numbers (various formats)
        (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]"),
        # IP addresses (both IPv4 and IPv6)
        (
            re.compile(
                r"\b(?:\d{1,3}\.){3}\d{1,3}\b|(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b"
            ),
            "[IP_ADDRESS]",
        ),
        # Bearer tokens in headers or URLs
        (re.compile(r"(bearer\s+)[\w\-\.=]+", re.I), r"\1[TOKEN]"),
        # API keys and tokens passed as key=value
        (
            re.compile(r"((?:api[_-]?key|token)[_-]?[:=]\s*)['\"]?[\w\-]{12,}['\"]?", re.I),
            r"\1[REDACTED]",
        ),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record by redacting PII from message.

        Args:
            record: The log record to filter

        Returns:
            True (always allow the record, but with redacted content)
        """
        if record.msg:
            record.msg = self._redact_string(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_value(v) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        return True

    def _redact_value(self, value: Any) -> Any:
        # Containers (metadata dicts, payloads) are redacted via their repr
        if isinstance(value, (dict, list, tuple)):
            return self._redact_string(repr(value))
        if isinstance(value, str):
            return self._redact_string(value)
        return value

    def _redact_string(self, value: str) -> str:
        redacted = value
        for pattern, replacement in self.PATTERNS:
            redacted = pattern.sub(replacement, redacted)
        return redacted
