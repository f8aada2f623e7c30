"""
Condition reporting for repository status handlers.

Wraps a status handler so that its condition is set True on success and
False (reason "Error") on failure. On failure the caller's original status is
kept and only the condition changes.
"""

import copy
from datetime import datetime, timezone
from typing import Callable, Optional

from ..models import Condition, Repository, RepositoryStatus

StatusHandler = Callable[[Repository, RepositoryStatus], RepositoryStatus]

ERROR_REASON = "Error"


class StatusHandlerError(Exception):
    """
    A status handler failed.

    Attributes:
        status: The status to persist (original status plus the failed condition)
        cause: The exception raised by the handler
    """

    def __init__(self, status: RepositoryStatus, cause: Exception):
        super().__init__(str(cause))
        self.status = status
        self.cause = cause


def set_condition(
    status: RepositoryStatus,
    condition_type: str,
    value: str,
    reason: str = "",
    message: str = "",
    now: Optional[datetime] = None,
) -> Condition:
    """Set a condition on ``status``; the timestamp moves only when something changes."""
    condition = status.get_condition(condition_type)
    if condition is None:
        condition = Condition(type=condition_type)
        status.conditions.append(condition)

    if (condition.status, condition.reason, condition.message) != (value, reason, message):
        condition.status = value
        condition.reason = reason
        condition.message = message
        condition.last_update_time = now or datetime.now(timezone.utc)
    return condition


def with_condition(condition_type: str, handler: StatusHandler) -> StatusHandler:
    """
    Wrap ``handler`` with condition reporting.

    The handler receives a copy of the status. Failures are re-raised as
    StatusHandlerError carrying the original status with the condition set
    False; the handler's partial changes are discarded.
    """

    def wrapped(repo: Repository, status: RepositoryStatus) -> RepositoryStatus:
        original = copy.deepcopy(status)
        try:
            new_status = handler(repo, copy.deepcopy(status))
        except Exception as e:
            set_condition(original, condition_type, "False", ERROR_REASON, str(e))
            raise StatusHandlerError(original, e) from e

        set_condition(new_status, condition_type, "True")
        return new_status

    wrapped.__name__ = getattr(handler, "__name__", "status_handler")
    return wrapped
