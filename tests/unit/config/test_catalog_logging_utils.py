"""
Unit tests for catalog_sync logging helpers.
"""

from catalog_sync.logging_utils import (
    format_error_log,
    get_current_repo,
    get_log_extra,
    repo_context,
    sanitize_for_logging,
)


class TestFormatErrorLog:
    def test_code_and_message(self):
        assert format_error_log("SYNC-GIT-001", "Fetch failed") == "[SYNC-GIT-001] Fetch failed"

    def test_context_pairs_appended(self):
        result = format_error_log("SYNC-GIT-001", "Fetch failed", url="https://x", attempt=2)

        assert result == "[SYNC-GIT-001] Fetch failed url=https://x attempt=2"


class TestRepoContext:
    """The current repository name is bound for the duration of a block."""

    def test_bound_inside_block_only(self):
        assert get_current_repo() is None
        with repo_context("charts"):
            assert get_current_repo() == "charts"
            assert get_log_extra("SYNC-SCHED-001") == {
                "error_code": "SYNC-SCHED-001",
                "repo": "charts",
            }
        assert get_current_repo() is None

    def test_extra_without_repo(self):
        assert get_log_extra("SYNC-SCHED-002") == {"error_code": "SYNC-SCHED-002"}


class TestSanitizeForLogging:
    def test_sensitive_fields_redacted(self):
        data = {"username": "admin", "password": "hunter2", "ca_bundle": "PEM"}

        result = sanitize_for_logging(data)

        assert result == {
            "username": "admin",
            "password": "***REDACTED***",
            "ca_bundle": "***REDACTED***",
        }
        assert data["password"] == "hunter2"

    def test_non_dict_passthrough(self):
        assert sanitize_for_logging("plain") == "plain"
        assert sanitize_for_logging(None) is None
