"""
Git error classifier for chart repository commands.

Classifies git stderr output so that callers and logs can tell local
working-copy corruption (the checkout must be recreated) from transient
network or authentication failures (retrying later may succeed).
"""

from typing import List


class GitCommandError(Exception):
    """
    Raised when a git command against a chart repository fails.

    Attributes:
        category: One of "corruption", "transient", or "unknown".
        stderr: The raw stderr output of the failed command.
    """

    def __init__(self, message: str, category: str, stderr: str):
        super().__init__(message)
        self.category = category
        self.stderr = stderr


# Patterns indicating a broken local object database or checkout.
CORRUPTION_PATTERNS: List[str] = [
    "Could not read",
    "pack has",
    "unresolved deltas",
    "invalid index-pack output",
    "is corrupt",
    "bad object",
    "not a git repository",
    "unable to read tree",
]

# Patterns indicating network, DNS, TLS or credential problems.
TRANSIENT_PATTERNS: List[str] = [
    "Could not resolve host",
    "Connection refused",
    "Connection timed out",
    "Network is unreachable",
    "SSL",
    "unable to access",
    "Authentication failed",
    "Permission denied",
    "timed out",
]


def classify_git_error(stderr: str) -> str:
    """
    Classify a git failure from its stderr output.

    Corruption patterns are checked first, then transient ones.

    Returns:
        "corruption", "transient" or "unknown"
    """
    for pattern in CORRUPTION_PATTERNS:
        if pattern in stderr:
            return "corruption"

    for pattern in TRANSIENT_PATTERNS:
        if pattern in stderr:
            return "transient"

    return "unknown"
