"""
Lifecycle manager for the catalog-sync controller.

Wires the stores, the source fetcher, the index chunker and the reconcile
scheduler from a SyncConfig, registers the leader or follower handler, and
coordinates startup and shutdown. Repository changes made through the manager
are queued for reconciliation right away.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import SyncConfig
from .controller.repo_handler import (
    RepoHandler,
    register_repos,
    register_repos_for_followers,
)
from .controller.scheduler import ReconcileScheduler
from .index.chunker import IndexChunker
from .models import Repository, RepositoryDescriptor
from .sources.secrets import SecretLookup
from .sources.source_fetcher import SourceFetcher
from .storage.object_store import SqliteObjectStore
from .storage.repository_store import RepositoryNotFoundError, SqliteRepositoryStore

logger = logging.getLogger(__name__)


class CatalogSyncLifecycleManager:
    """
    Owns every long-lived component of one controller replica.

    A leader replica downloads and publishes indexes; a follower replica only
    keeps local git checkouts in step with the leader's recorded status.
    """

    def __init__(self, config: SyncConfig, secrets: SecretLookup, leader: bool = True):
        """
        Initialize the lifecycle manager.

        Args:
            config: Controller configuration
            secrets: Secret lookup used for repository credentials
            leader: Register the download handler (True) or the follower handler
        """
        self.config = config
        self.leader = leader

        Path(config.data_dir).mkdir(parents=True, exist_ok=True)
        Path(config.git.state_dir).mkdir(parents=True, exist_ok=True)

        self.repository_store = SqliteRepositoryStore(config.database_path)
        self.object_store = SqliteObjectStore(config.database_path)

        self.fetcher = SourceFetcher(
            secrets,
            state_dir=config.git.state_dir,
            system_catalog=config.refresh.system_catalog,
            system_namespace=config.chunking.system_namespace,
            git_timeout=config.git.command_timeout_seconds,
            http_timeout=config.http.timeout_seconds,
            max_redirects=config.http.max_redirects,
            bundled_repositories=config.refresh.bundled_repositories,
        )
        self.chunker = IndexChunker(
            self.object_store,
            max_chunk_size=config.chunking.max_chunk_size,
            system_namespace=config.chunking.system_namespace,
        )
        self.scheduler = ReconcileScheduler(
            self.repository_store,
            workers=config.scheduler.workers,
            base_backoff_seconds=config.scheduler.base_backoff_seconds,
            max_backoff_seconds=config.scheduler.max_backoff_seconds,
        )

        self.handler: Optional[RepoHandler] = None
        if leader:
            self.handler = register_repos(
                self.scheduler,
                self.fetcher,
                self.object_store,
                self.chunker,
                interval=config.refresh.interval,
            )
        else:
            self.handler = register_repos_for_followers(
                self.scheduler, self.fetcher, interval=config.refresh.interval
            )

    def is_running(self) -> bool:
        return self.scheduler.is_running()

    def start(self) -> None:
        """
        Start the reconcile scheduler.

        Idempotent: Safe to call multiple times
        """
        logging.getLogger("catalog_sync").setLevel(self.config.log_level.upper())
        role = "leader" if self.leader else "follower"
        logger.info(f"Starting catalog-sync as {role} with data dir {self.config.data_dir}")
        self.scheduler.start()

    def stop(self) -> None:
        """
        Stop the scheduler and close database connections.

        Idempotent: Safe to call multiple times
        """
        self.scheduler.stop()
        self.object_store.close()
        self.repository_store.close()
        logger.info("catalog-sync stopped")

    # ------------------------------------------------------------------
    # Repository changes
    # ------------------------------------------------------------------

    def apply_repository(
        self, name: str, spec: RepositoryDescriptor, namespace: str = ""
    ) -> Repository:
        """
        Create or update a repository and queue it for immediate reconciliation.

        An unchanged descriptor keeps the current generation but is still
        queued.

        Returns:
            The stored repository
        """
        try:
            repo = self.repository_store.get_repository(name)
        except RepositoryNotFoundError:
            repo = self.repository_store.create_repository(name, spec, namespace=namespace)
        else:
            if repo.spec != spec:
                repo = self.repository_store.update_spec(name, spec)
                logger.info(f"Updated repository {name} to generation {repo.metadata.generation}")

        self.scheduler.enqueue(name)
        return repo

    def delete_repository(self, name: str) -> int:
        """
        Delete a repository and its published index.

        Returns:
            Number of owned objects removed

        Raises:
            RepositoryNotFoundError: If the repository does not exist
        """
        return self.repository_store.delete_repository(name)
