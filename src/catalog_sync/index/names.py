"""Deterministic, storage-safe object names."""

import hashlib

MAX_NAME_LENGTH = 63


def _is_alphanumeric(char: str) -> bool:
    return ("a" <= char <= "z") or ("0" <= char <= "9")


def safe_concat_name(*parts: str) -> str:
    """
    Join name parts with "-" and keep the result a valid object name.

    Names shorter than 64 characters are returned as-is. Longer names are cut
    and suffixed with a short SHA-256 digest of the full name, so distinct
    inputs stay distinct after truncation.

    Examples:
        >>> safe_concat_name("rancher-charts", "0", "5d3b")
        'rancher-charts-0-5d3b'
    """
    full_name = "-".join(parts)
    if len(full_name) <= MAX_NAME_LENGTH:
        return full_name

    digest = hashlib.sha256(full_name.encode("utf-8")).hexdigest()
    # The cut point may land on a separator; object names must end alphanumeric
    if _is_alphanumeric(full_name[56]):
        return full_name[:57] + "-" + digest[:5]
    return full_name[:56] + "-" + digest[:6]
