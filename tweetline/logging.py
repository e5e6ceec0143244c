from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Correlation id for the request currently being handled
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID for request tracing."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set or generate a correlation ID for the current request context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to add correlation_id to all log entries."""
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


# Request and record fields that carry credentials or bearer tokens
_SECRET_FIELDS = frozenset({
    "password",
    "old_password",
    "confirm_password",
    "access_token",
    "refresh_token",
    "email_verify_token",
    "forgot_password_token",
    "authorization",
    "private_key",
    "smtp_password",
})

_JWT_PATTERN = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")


def _mask_address(value: str) -> str:
    local, _, domain = value.partition("@")
    return f"{local[:2]}***@{domain}" if domain else "***"


def _token_fingerprint(value: str) -> str:
    # Same token, same fingerprint
    return "tok:" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def _redact_pii(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor that masks credentials, tokens and addresses in log entries.

    Token-bearing fields become a short sha256 fingerprint, passwords and
    keys are dropped, and email addresses keep two characters and the domain.
    """
    for key, value in list(event_dict.items()):
        if not isinstance(value, str) or not value:
            continue
        lower_key = key.lower()
        if lower_key in _SECRET_FIELDS or lower_key.endswith("_key"):
            if "token" in lower_key or lower_key == "authorization":
                event_dict[key] = _token_fingerprint(value)
            else:
                event_dict[key] = "[redacted]"
        elif lower_key in {"email", "to", "to_email"}:
            event_dict[key] = _mask_address(value)
        elif key != "event":
            event_dict[key] = _JWT_PATTERN.sub(
                lambda m: _token_fingerprint(m.group(0)), value
            )
    return event_dict


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import
_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
_json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}
_dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=_log_level,
    json_output=_json_output,
    development_mode=_dev_mode,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with correlation ID support."""
    return structlog.get_logger(name)


# Fragments of store, codec and SMTP errors that must not reach a client
_SENSITIVE_ERROR_PATTERNS = [
    # psycopg constraint and statement detail
    r'(?i)DETAIL:\s+Key \([^)]*\)=\([^)]*\)[^\n]*',
    r'(?i)(select|insert into|update|delete from)\s+(app_user|refresh_token|follower)\b.{0,80}',
    # DSNs with inline credentials (postgresql://, redis://)
    r'(?i)\b(postgres(?:ql)?|redis|rediss)://[^\s]+',
    # Bearer tokens and raw JWTs
    r'(?i)bearer\s+[^\s]+',
    r'\beyJ[\w-]+\.[\w-]+\.[\w-]+',
    # Signing key material and key files
    r'-----BEGIN [A-Z ]+-----[\s\S]*?(-----END [A-Z ]+-----|$)',
    r'(?i)/(?:home|var|etc|usr|opt|tmp|srv)/[^\s]+',
    # Addresses of users and SMTP accounts
    r'[\w.+-]+@[\w-]+(?:\.[\w-]+)+',
    r'(?i)traceback\s*\(most recent call last\)',
]

_SENSITIVE_PATTERNS_COMPILED = [re.compile(p) for p in _SENSITIVE_ERROR_PATTERNS]


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Sanitize an error message before it is attached to an API response.

    Strips constraint detail, DSNs, tokens, key material, paths and
    addresses, then caps the length at 500 characters.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"

    result = error
    for pattern in _SENSITIVE_PATTERNS_COMPILED:
        result = pattern.sub(replacement, result)

    if len(result) > 500:
        result = result[:497] + "..."

    return result
