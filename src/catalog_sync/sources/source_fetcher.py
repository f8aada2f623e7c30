"""
Source fetcher: turns a repository descriptor into a fresh index document.

Selects the git or HTTP branch from the descriptor's location, resolves
credentials, and short-circuits when a git source has not moved since the
last successful download.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, Optional

from ..config import DEFAULT_SYSTEM_NAMESPACE
from ..index.document import IndexDocument
from ..models import RepositoryDescriptor, RepositoryStatus, ResourceMetadata
from .git_repository import GitRepository
from .http_index import download_index
from .secrets import Credential, SecretLookup, get_secret

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FetchResult:
    """
    Outcome of one fetch.

    ``document`` is None when there is nothing to publish: no location, an
    unchanged git commit, or an empty remote index.
    """

    status: RepositoryStatus
    document: Optional[IndexDocument] = None
    commit: str = ""
    download_time: Optional[datetime] = None


class SourceFetcher:
    """Fetches index documents from git or HTTP chart repositories."""

    def __init__(
        self,
        secrets: SecretLookup,
        state_dir: str,
        system_catalog: str = "external",
        system_namespace: str = DEFAULT_SYSTEM_NAMESPACE,
        git_timeout: int = 120,
        http_timeout: float = 30.0,
        max_redirects: int = 10,
        git_factory: Callable[..., GitRepository] = GitRepository,
        index_downloader: Callable[..., Optional[IndexDocument]] = download_index,
        clock: Callable[[], datetime] = _utcnow,
        bundled_repositories: Collection[str] = (),
    ):
        self.secrets = secrets
        self.state_dir = state_dir
        self.system_catalog = system_catalog
        self.system_namespace = system_namespace
        self.git_timeout = git_timeout
        self.http_timeout = http_timeout
        self.max_redirects = max_redirects
        self.git_factory = git_factory
        self.index_downloader = index_downloader
        self.clock = clock
        self.bundled_repositories = frozenset(bundled_repositories)

    def _credential(
        self, spec: RepositoryDescriptor, metadata: ResourceMetadata
    ) -> Optional[Credential]:
        return get_secret(self.secrets, spec, metadata.namespace, self.system_namespace)

    def git_repository(
        self,
        credential: Optional[Credential],
        spec: RepositoryDescriptor,
        metadata: ResourceMetadata,
        url: str,
    ) -> GitRepository:
        return self.git_factory(
            credential,
            metadata.namespace,
            metadata.name,
            url,
            insecure_skip_tls_verify=spec.insecure_skip_tls_verify,
            ca_bundle=spec.ca_bundle,
            state_dir=self.state_dir,
            timeout=self.git_timeout,
            bundled=metadata.name in self.bundled_repositories,
        )

    def fetch(
        self,
        spec: RepositoryDescriptor,
        status: RepositoryStatus,
        metadata: ResourceMetadata,
    ) -> FetchResult:
        """
        Fetch the repository's current index.

        ``status`` is updated in place with the synced URL and branch and is
        returned inside the result.

        Raises:
            SecretNotFoundError: If the referenced secret is missing
            GitCommandError: On git failures
            IndexDownloadError: On HTTP failures
            IndexParseError: If the index content is malformed
        """
        credential = self._credential(spec, metadata)
        download_time = self.clock()

        if spec.source_kind == "git":
            repo = self.git_repository(credential, spec, metadata, spec.git_repo)
            if not status.index_config_map_name:
                commit = repo.head(spec.git_branch)
                status.url = spec.git_repo
                status.branch = spec.git_branch
            else:
                commit = repo.check_update(spec.git_branch, self.system_catalog)
                status.url = spec.git_repo
                status.branch = spec.git_branch
                if status.commit == commit:
                    logger.debug(
                        f"{metadata.name}: {spec.git_repo}@{spec.git_branch} unchanged at {commit}"
                    )
                    status.download_time = download_time
                    return FetchResult(status=status, commit=commit, download_time=download_time)

            document = repo.build_or_get_index()
            return FetchResult(
                status=status, document=document, commit=commit, download_time=download_time
            )

        if spec.source_kind == "http":
            status.url = spec.url
            status.branch = ""
            document = self.index_downloader(
                credential,
                spec.url,
                ca_bundle=spec.ca_bundle,
                insecure_skip_tls_verify=spec.insecure_skip_tls_verify,
                disable_same_origin_check=spec.disable_same_origin_check,
                timeout=self.http_timeout,
                max_redirects=self.max_redirects,
            )
            return FetchResult(status=status, document=document, download_time=download_time)

        logger.debug(f"{metadata.name}: no source location configured")
        return FetchResult(status=status)

    def ensure_checkout(
        self,
        spec: RepositoryDescriptor,
        status: RepositoryStatus,
        metadata: ResourceMetadata,
    ) -> None:
        """Make sure a local working copy of ``status.url`` at ``status.branch`` exists."""
        credential = self._credential(spec, metadata)
        repo = self.git_repository(credential, spec, metadata, status.url)
        repo.ensure(status.branch)
