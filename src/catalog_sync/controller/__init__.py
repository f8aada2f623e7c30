"""
Reconciliation controller: status handlers, condition reporting and scheduling.
"""

from .repo_handler import RepoHandler, register_repos, register_repos_for_followers
from .scheduler import ReconcileScheduler

__all__ = [
    "RepoHandler",
    "ReconcileScheduler",
    "register_repos",
    "register_repos_for_followers",
]
