"""
Logging utilities for catalog-sync.

Provides helper functions for formatting log messages with error codes,
the repository currently being reconciled, and sanitized data.

Usage:
    from catalog_sync.logging_utils import format_error_log, get_log_extra

    logger.error(
        format_error_log("SYNC-CHUNK-001", "Failed to publish index", repo=name),
        extra=get_log_extra("SYNC-CHUNK-001")
    )
"""

import contextlib
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

_current_repo: ContextVar[Optional[str]] = ContextVar("catalog_sync_repo", default=None)

# Sensitive field names that should be redacted in logs
SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
    "authorization",
    "ssh-privatekey",
    "private_key",
    "ca_bundle",
}


def get_current_repo() -> Optional[str]:
    """Return the repository name bound to the current reconciliation, if any."""
    return _current_repo.get()


@contextlib.contextmanager
def repo_context(name: str) -> Iterator[None]:
    """Bind a repository name to log records emitted inside the block."""
    token = _current_repo.set(name)
    try:
        yield
    finally:
        _current_repo.reset(token)


def format_error_log(error_code: str, message: str, **context) -> str:
    """
    Format an error log message with error code and optional context.

    Args:
        error_code: Error code in format SYNC-{AREA}-{NUMBER}
        message: Human-readable error message
        **context: Additional context key-value pairs to include

    Returns:
        Formatted log message: "[{ERROR_CODE}] message key1=value1 key2=value2"

    Examples:
        >>> format_error_log("SYNC-GIT-001", "Fetch failed", url="https://example.com")
        '[SYNC-GIT-001] Fetch failed url=https://example.com'
    """
    parts = [f"[{error_code}]", message]

    if context:
        context_str = " ".join(f"{k}={v}" for k, v in context.items())
        parts.append(context_str)

    return " ".join(parts)


def get_log_extra(error_code: str) -> Dict[str, Any]:
    """
    Build the extra dict for logging with error_code and repository name.

    Args:
        error_code: Error code to include in extra dict

    Returns:
        Dictionary with error_code and repo (if bound)
    """
    extra: Dict[str, Any] = {"error_code": error_code}

    repo = get_current_repo()
    if repo:
        extra["repo"] = repo

    return extra


def sanitize_for_logging(data: Any) -> Any:
    """
    Sanitize data for logging by redacting sensitive information.

    Examples:
        >>> sanitize_for_logging({"username": "admin", "password": "secret"})
        {'username': 'admin', 'password': '***REDACTED***'}
    """
    if data is None:
        return None

    if not isinstance(data, dict):
        return data

    sanitized = {}
    for key, value in data.items():
        if str(key).lower() in SENSITIVE_FIELDS:
            sanitized[key] = "***REDACTED***"
        else:
            sanitized[key] = value

    return sanitized
