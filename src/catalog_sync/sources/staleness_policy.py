"""
Staleness policy: decides whether a repository's published index needs a refresh.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from ..models import RepositoryDescriptor, RepositoryStatus

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def should_refresh(
    spec: RepositoryDescriptor,
    status: RepositoryStatus,
    interval: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    """
    Return True if any refresh trigger fires, checked in order:

    1. git source and the synced branch differs from the declared branch
    2. http source and the synced URL differs from the declared URL
    3. git source and the synced URL differs from the declared URL
    4. no index object recorded
    5. a forced update is requested after the last download and not in the future
    6. the last download is older than ``interval``
    """
    if now is None:
        now = datetime.now(timezone.utc)
    download_time = status.download_time or _NEVER

    if spec.source_kind == "git" and status.branch != spec.git_branch:
        return True
    if spec.source_kind == "http" and status.url != spec.url:
        return True
    if spec.source_kind == "git" and status.url != spec.git_repo:
        return True
    if not status.index_config_map_name:
        return True
    # Future force_update values are ignored until they pass
    if (
        spec.force_update is not None
        and spec.force_update > download_time
        and spec.force_update < now
    ):
        return True
    return now - interval > download_time
