"""
Unit tests for SourceFetcher branch selection and change detection.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest

from catalog_sync.index.document import ChartVersion, IndexDocument
from catalog_sync.models import (
    GitLocation,
    HttpLocation,
    RepositoryDescriptor,
    RepositoryStatus,
    ResourceMetadata,
    SecretReference,
)
from catalog_sync.sources.git_error_classifier import GitCommandError
from catalog_sync.sources.secrets import Credential, MappingSecretStore, SecretNotFoundError
from catalog_sync.sources.source_fetcher import SourceFetcher

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
GIT_URL = "https://git.example.com/charts.git"
HTTP_URL = "https://charts.example.com"
METADATA = ResourceMetadata(name="charts", namespace="", uid="uid-1", generation=3)


def _document():
    doc = IndexDocument()
    doc.add(ChartVersion(name="nginx", version="1.0.0"))
    return doc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def git_repo():
    repo = MagicMock()
    repo.head.return_value = "commit-1"
    repo.check_update.return_value = "commit-2"
    repo.build_or_get_index.return_value = _document()
    return repo


@pytest.fixture
def git_factory(git_repo):
    return Mock(return_value=git_repo)


@pytest.fixture
def downloader():
    return Mock(return_value=_document())


@pytest.fixture
def secrets():
    return MappingSecretStore()


@pytest.fixture
def fetcher(secrets, git_factory, downloader, tmp_path):
    return SourceFetcher(
        secrets,
        state_dir=str(tmp_path),
        git_factory=git_factory,
        index_downloader=downloader,
        clock=lambda: NOW,
    )


def _git_spec(branch="main", **kwargs):
    return RepositoryDescriptor(location=GitLocation(url=GIT_URL, branch=branch), **kwargs)


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class TestGitFirstClone:
    """Without an index reference the branch head is cloned."""

    def test_head_used_and_status_updated(self, fetcher, git_repo):
        result = fetcher.fetch(_git_spec(), RepositoryStatus(), METADATA)

        git_repo.head.assert_called_once_with("main")
        git_repo.check_update.assert_not_called()
        assert result.commit == "commit-1"
        assert result.document is not None
        assert result.download_time == NOW
        assert result.status.url == GIT_URL
        assert result.status.branch == "main"

    def test_git_handle_built_from_descriptor(self, fetcher, git_factory, tmp_path):
        spec = _git_spec(insecure_skip_tls_verify=True, ca_bundle=b"PEM")

        fetcher.fetch(spec, RepositoryStatus(), METADATA)

        git_factory.assert_called_once_with(
            None,
            "",
            "charts",
            GIT_URL,
            insecure_skip_tls_verify=True,
            ca_bundle=b"PEM",
            state_dir=str(tmp_path),
            timeout=120,
            bundled=False,
        )


class TestGitUpdateCheck:
    """With an index reference the branch is checked for new commits."""

    def _status(self, commit):
        return RepositoryStatus(
            url=GIT_URL,
            branch="main",
            commit=commit,
            index_config_map_name="charts-0-uid-1",
        )

    def test_unchanged_commit_short_circuits(self, fetcher, git_repo):
        git_repo.check_update.return_value = "same"

        result = fetcher.fetch(_git_spec(), self._status("same"), METADATA)

        assert result.document is None
        assert result.status.download_time == NOW
        git_repo.build_or_get_index.assert_not_called()

    def test_changed_commit_rebuilds_index(self, fetcher, git_repo):
        result = fetcher.fetch(_git_spec(), self._status("old"), METADATA)

        git_repo.check_update.assert_called_once_with("main", "external")
        git_repo.head.assert_not_called()
        assert result.commit == "commit-2"
        assert result.document is not None

    def test_baseline_comes_from_system_catalog(self, secrets, git_factory, git_repo, tmp_path):
        fetcher = SourceFetcher(
            secrets, state_dir=str(tmp_path), system_catalog="bundled", git_factory=git_factory
        )

        fetcher.fetch(_git_spec(), self._status("old"), METADATA)

        git_repo.check_update.assert_called_once_with("main", "bundled")

    def test_only_listed_repositories_are_bundled(self, secrets, git_factory, tmp_path):
        fetcher = SourceFetcher(
            secrets,
            state_dir=str(tmp_path),
            git_factory=git_factory,
            bundled_repositories=["system-charts"],
        )
        system = ResourceMetadata(name="system-charts", uid="uid-2")

        fetcher.fetch(_git_spec(), self._status("old"), system)
        fetcher.fetch(_git_spec(), self._status("old"), METADATA)

        assert [c.kwargs["bundled"] for c in git_factory.call_args_list] == [True, False]

    def test_empty_committed_index_yields_no_document(self, fetcher, git_repo):
        git_repo.build_or_get_index.return_value = None

        result = fetcher.fetch(_git_spec(), self._status("old"), METADATA)

        assert result.document is None
        assert result.commit == "commit-2"

    def test_git_error_propagates(self, fetcher, git_repo):
        git_repo.check_update.side_effect = GitCommandError("fetch failed", "transient", "")

        with pytest.raises(GitCommandError):
            fetcher.fetch(_git_spec(), self._status("old"), METADATA)


# ---------------------------------------------------------------------------
# HTTP / none
# ---------------------------------------------------------------------------


class TestHttp:
    def test_always_downloads_and_clears_branch(self, fetcher, downloader):
        spec = RepositoryDescriptor(
            location=HttpLocation(url=HTTP_URL), disable_same_origin_check=True
        )
        status = RepositoryStatus(url="https://old.example.com", branch="main")

        result = fetcher.fetch(spec, status, METADATA)

        downloader.assert_called_once_with(
            None,
            HTTP_URL,
            ca_bundle=None,
            insecure_skip_tls_verify=False,
            disable_same_origin_check=True,
            timeout=30.0,
            max_redirects=10,
        )
        assert result.status.url == HTTP_URL
        assert result.status.branch == ""
        assert result.commit == ""
        assert result.document is not None

    def test_absent_index_yields_no_document(self, fetcher, downloader):
        downloader.return_value = None
        spec = RepositoryDescriptor(location=HttpLocation(url=HTTP_URL))

        result = fetcher.fetch(spec, RepositoryStatus(), METADATA)

        assert result.document is None


class TestNoLocation:
    def test_no_location_is_a_no_op(self, fetcher, git_factory, downloader):
        status = RepositoryStatus(url="keep")

        result = fetcher.fetch(RepositoryDescriptor(), status, METADATA)

        assert result.status is status
        assert result.status.url == "keep"
        assert result.document is None
        git_factory.assert_not_called()
        downloader.assert_not_called()


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_credential_passed_to_git(self, fetcher, secrets, git_factory):
        secrets.put("cattle-system", "auth", {"username": b"u", "password": b"p"})
        spec = _git_spec(client_secret=SecretReference(name="auth"))

        fetcher.fetch(spec, RepositoryStatus(), METADATA)

        assert git_factory.call_args[0][0] == Credential(username="u", password="p")

    def test_missing_secret_propagates(self, fetcher, git_factory):
        spec = _git_spec(client_secret=SecretReference(name="gone"))

        with pytest.raises(SecretNotFoundError):
            fetcher.fetch(spec, RepositoryStatus(), METADATA)

        git_factory.assert_not_called()


class TestEnsureCheckout:
    def test_ensures_status_url_and_branch(self, fetcher, git_factory, git_repo):
        status = RepositoryStatus(url="https://git.example.com/synced.git", branch="main")

        fetcher.ensure_checkout(_git_spec(), status, METADATA)

        assert git_factory.call_args[0][3] == "https://git.example.com/synced.git"
        git_repo.ensure.assert_called_once_with("main")
