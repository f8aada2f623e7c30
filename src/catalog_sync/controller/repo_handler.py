"""
Reconciliation handler for catalog repositories.

Two status handlers share this class:

- the leader path (``download_status_handler``) fetches the repository's
  index when it is stale and publishes it as an owned chunk chain;
- the follower path (``ensure_status_handler``) only keeps a local git
  working copy in step with what the leader last downloaded.

Both re-arm the periodic refresh timer on every invocation.
"""

import copy
import logging
from datetime import timedelta
from typing import Optional, Protocol

from ..config import DEFAULT_REFRESH_INTERVAL
from ..index.chunker import IndexChunker
from ..models import (
    FOLLOWER_REPO_DOWNLOADED,
    REPO_DOWNLOADED,
    OwnerReference,
    Repository,
    RepositoryDescriptor,
    RepositoryStatus,
    ResourceMetadata,
    owner_reference_for,
)
from ..sources.source_fetcher import SourceFetcher
from ..sources.staleness_policy import should_refresh
from ..storage.object_store import ObjectNotFoundError, ObjectStore
from .conditions import with_condition

logger = logging.getLogger(__name__)

DOWNLOAD_HANDLER_NAME = "helm-clusterrepo-download"
ENSURE_HANDLER_NAME = "helm-clusterrepo-ensure"


class Enqueuer(Protocol):
    def enqueue_after(self, name: str, delay: timedelta) -> None:
        ...


class HandlerRegistry(Enqueuer, Protocol):
    def register_handler(self, name: str, handler) -> None:
        ...


class RepoHandler:
    """Leader and follower status handlers for repository resources."""

    def __init__(
        self,
        enqueuer: Enqueuer,
        fetcher: SourceFetcher,
        object_store: Optional[ObjectStore] = None,
        chunker: Optional[IndexChunker] = None,
        interval: timedelta = timedelta(seconds=DEFAULT_REFRESH_INTERVAL),
    ):
        self.enqueuer = enqueuer
        self.fetcher = fetcher
        self.object_store = object_store
        self.chunker = chunker
        self.interval = interval

    # ------------------------------------------------------------------
    # Status handlers
    # ------------------------------------------------------------------

    def download_status_handler(
        self, repo: Repository, status: RepositoryStatus
    ) -> RepositoryStatus:
        """
        Leader path: refresh the published index if it is stale.

        The timer is re-armed before any work so that failures are retried
        at the normal interval as well.
        """
        self.enqueuer.enqueue_after(repo.name, self.interval)

        self.ensure_index_object(repo, status)
        if not should_refresh(repo.spec, status, self.interval):
            return status

        logger.info(f"Refreshing index for repository {repo.name}")
        return self.download(repo.spec, status, repo.metadata, owner_reference_for(repo))

    def ensure_status_handler(
        self, repo: Repository, status: RepositoryStatus
    ) -> RepositoryStatus:
        """
        Follower path: keep a local checkout of the leader's last download.

        Does nothing until the leader has recorded a download of the
        declared branch.
        """
        self.enqueuer.enqueue_after(repo.name, self.interval)

        if not status.branch or status.branch != repo.spec.git_branch:
            return status

        status.observed_generation = repo.metadata.generation
        self.fetcher.ensure_checkout(repo.spec, status, repo.metadata)
        return status

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def ensure_index_object(self, repo: Repository, status: RepositoryStatus) -> None:
        """
        Clear a status reference to a chunk-chain root that no longer exists.

        Only git repositories are checked. A missing root leaves the status
        without an index reference, which makes the next staleness check
        rebuild it.

        Raises:
            Any lookup error other than ObjectNotFoundError
        """
        if repo.spec.source_kind != "git" or not status.index_config_map_name:
            return

        try:
            self.object_store.get_object(
                status.index_config_map_namespace, status.index_config_map_name
            )
        except ObjectNotFoundError:
            logger.warning(
                f"Index object {status.index_config_map_namespace}/"
                f"{status.index_config_map_name} for repository {repo.name} is missing, "
                "scheduling rebuild"
            )
            status.clear_index_reference()

    def download(
        self,
        spec: RepositoryDescriptor,
        status: RepositoryStatus,
        metadata: ResourceMetadata,
        owner: OwnerReference,
    ) -> RepositoryStatus:
        """
        Fetch the index and publish it as a chunk chain.

        Returns:
            Updated status; the input status is not modified

        Raises:
            Any fetch, encoding or storage error
        """
        status = copy.deepcopy(status)
        status.observed_generation = metadata.generation

        result = self.fetcher.fetch(spec, status, metadata)
        if result.document is None:
            return result.status

        result.document.sort_entries()
        identity = self.chunker.publish(metadata.namespace, result.document, owner)

        status = result.status
        status.index_config_map_name = identity.name
        status.index_config_map_namespace = identity.namespace
        status.index_config_map_resource_version = identity.resource_version
        status.download_time = result.download_time
        status.commit = result.commit
        return status


def register_repos(
    scheduler: HandlerRegistry,
    fetcher: SourceFetcher,
    object_store: ObjectStore,
    chunker: IndexChunker,
    interval: timedelta = timedelta(seconds=DEFAULT_REFRESH_INTERVAL),
) -> RepoHandler:
    """Register the leader download handler on ``scheduler``."""
    handler = RepoHandler(
        scheduler, fetcher, object_store=object_store, chunker=chunker, interval=interval
    )
    scheduler.register_handler(
        DOWNLOAD_HANDLER_NAME,
        with_condition(REPO_DOWNLOADED, handler.download_status_handler),
    )
    return handler


def register_repos_for_followers(
    scheduler: HandlerRegistry,
    fetcher: SourceFetcher,
    interval: timedelta = timedelta(seconds=DEFAULT_REFRESH_INTERVAL),
) -> RepoHandler:
    """Register the follower ensure handler on ``scheduler``."""
    handler = RepoHandler(scheduler, fetcher, interval=interval)
    scheduler.register_handler(
        ENSURE_HANDLER_NAME,
        with_condition(FOLLOWER_REPO_DOWNLOADED, handler.ensure_status_handler),
    )
    return handler
