"""
Structured logging configuration with PII redaction and context binding.

This module provides:
- Structlog processors for request context (request_id, trace_id, actor)
- PII/PHI redaction for sensitive fields
- Service identification for log shipping
"""

import re
from typing import Any

import structlog
from django.conf import settings

# Fields that should be redacted in logs. Matched against whole underscore
# separated tokens of the key, so "requester_email" matches but "description"
# does not match "ip".
PII_FIELDS = {
    "email",
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "ssn",
    "phone",
    "phone_number",
    "address",
    "ip",
    "ip_address",
    "dob",
    "date_of_birth",
    "mrn",
    "medical_record_number",
    "cleaned_data",
    "raw_values",
}

# Regex patterns for PII detection
PII_PATTERNS = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"), "[EMAIL_REDACTED]"),
    (re.compile(r"\b\d{3}[-.]?\d{2}[-.]?\d{4}\b"), "[SSN_REDACTED]"),
]


def is_pii_field(field_name: str) -> bool:
    """Return True if the key names a PII/PHI field."""
    field_lower = field_name.lower()
    if field_lower in PII_FIELDS:
        return True
    tokens = field_lower.split("_")
    for size in (1, 2, 3):
        for start in range(len(tokens) - size + 1):
            if "_".join(tokens[start : start + size]) in PII_FIELDS:
                return True
    return False


def redact_value(value: Any, field_name: str = "") -> Any:
    """
    Redact PII from a value based on field name or content patterns.

    Args:
        value: The value to potentially redact
        field_name: The name of the field (used for field-based redaction)

    Returns:
        The redacted value or original if no redaction needed
    """
    if field_name and is_pii_field(field_name):
        if isinstance(value, dict):
            return {k: "[REDACTED]" for k in value}
        return "[REDACTED]"

    # Check string values for PII patterns
    if isinstance(value, str):
        result = value
        for pattern, replacement in PII_PATTERNS:
            result = pattern.sub(replacement, result)
        return result

    return value


def redact_dict(data: dict, depth: int = 0, max_depth: int = 5) -> dict:
    """
    Recursively redact PII from a dictionary.

    Args:
        data: Dictionary to redact
        depth: Current recursion depth
        max_depth: Maximum recursion depth

    Returns:
        Dictionary with PII redacted
    """
    if depth > max_depth:
        return data

    result = {}
    for key, value in data.items():
        if isinstance(value, dict) and not is_pii_field(key):
            result[key] = redact_dict(value, depth + 1, max_depth)
        elif isinstance(value, list) and not is_pii_field(key):
            result[key] = [
                redact_dict(v, depth + 1, max_depth)
                if isinstance(v, dict)
                else redact_value(v, key)
                for v in value
            ]
        else:
            result[key] = redact_value(value, key)
    return result


def pii_redactor(logger, method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor that redacts PII from log events.

    Respects AUDIT_PII_POLICY setting:
    - 'mask': Replace PII with [REDACTED] (default)
    - 'drop': Remove PII fields entirely
    """
    pii_policy = getattr(settings, "AUDIT_PII_POLICY", "mask")

    if pii_policy == "drop":
        for field in list(event_dict.keys()):
            if is_pii_field(field):
                del event_dict[field]
    else:
        for key in list(event_dict.keys()):
            if key in ("event", "message", "timestamp", "level"):
                continue
            value = event_dict[key]
            if isinstance(value, dict) and not is_pii_field(key):
                event_dict[key] = redact_dict(value)
            else:
                event_dict[key] = redact_value(value, key)

    return event_dict


def add_request_context(logger, method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor that adds request context from context-local storage.

    Adds: request_id, trace_id, actor, path, method
    """
    from config.observability import get_request_context

    context = get_request_context()
    if context:
        for key, value in context.items():
            event_dict.setdefault(key, value)
    return event_dict


def add_service_info(logger, method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor that adds service identification info.
    """
    event_dict["service"] = "edc-api"
    event_dict["environment"] = getattr(settings, "ENVIRONMENT", "development")
    return event_dict


def get_logger(name: str = None):
    """
    Get a structlog logger with the given name.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", extra_field="value")
    """
    return structlog.get_logger(name)
