"""
Git handle for chart repositories.

Maintains a local working copy per (namespace, name, url) and exposes the
operations the reconciler needs: resolve a branch head, check for updates
against a baseline, ensure a checkout exists, and build the index document
from the checked-out tree.

Credentials and TLS settings are passed to git through GIT_CONFIG_* and
GIT_SSH_COMMAND environment variables so they never appear in argv.
"""

import base64
import contextlib
import hashlib
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import yaml

from ..index.document import ChartVersion, IndexDocument, parse_index_yaml
from .git_error_classifier import GitCommandError, classify_git_error
from .secrets import Credential

logger = logging.getLogger(__name__)

INDEX_FILE = "index.yaml"
CHART_FILE = "Chart.yaml"
BUNDLED = "bundled"


def repo_directory(state_dir: str, namespace: str, name: str, url: str) -> Path:
    """Local working copy location for one repository source."""
    url_hash = hashlib.sha256(url.encode("utf-8")).hexdigest()
    return Path(state_dir) / (namespace or "_cluster") / name / url_hash


class GitRepository:
    """
    Local working copy of a git chart repository.

    All methods block on git subprocesses and raise GitCommandError on failure.
    """

    def __init__(
        self,
        credential: Optional[Credential],
        namespace: str,
        name: str,
        url: str,
        insecure_skip_tls_verify: bool = False,
        ca_bundle: Optional[bytes] = None,
        state_dir: str = "",
        timeout: int = 120,
        bundled: bool = False,
    ):
        """
        Initialize the handle. No git command is run until an operation is called.

        Args:
            credential: Optional credential bundle for private repositories
            namespace: Namespace of the owning repository resource
            name: Name of the owning repository resource
            url: Git remote URL
            insecure_skip_tls_verify: Disable TLS verification for https remotes
            ca_bundle: PEM CA bundle trusted for https remotes
            state_dir: Root directory for local working copies
            timeout: Per-command timeout in seconds
            bundled: The working copy ships pre-populated with the controller
        """
        if not url:
            raise ValueError("Git repository URL must not be empty")

        self.credential = credential
        self.url = url
        self.insecure_skip_tls_verify = insecure_skip_tls_verify
        self.ca_bundle = ca_bundle
        self.timeout = timeout
        self.bundled = bundled
        self.directory = repo_directory(state_dir or tempfile.gettempdir(), namespace, name, url)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def head(self, branch: str) -> str:
        """Fetch ``branch`` from the remote, check it out and return its commit."""
        self._init_if_missing()
        self._fetch(branch)
        self._checkout(branch)
        commit = self._current_commit()
        logger.info(f"Resolved {self.url}@{branch} to {commit}")
        return commit

    def check_update(self, branch: str, baseline: str) -> str:
        """
        Return the latest commit of ``branch``, updating the checkout if needed.

        When the baseline is "bundled", this working copy is one of the
        bundled system catalogs and a checkout of the branch already exists,
        the local commit is returned without contacting the remote. Every
        other repository always fetches.
        """
        if baseline == BUNDLED and self.bundled and self._has_local_branch(branch):
            commit = self._branch_commit(branch)
            logger.debug(f"Using bundled checkout of {self.url}@{branch} at {commit}")
            return commit

        self._init_if_missing()
        previous = self._branch_commit(branch) if self._has_local_branch(branch) else ""
        self._fetch(branch)
        self._checkout(branch)
        commit = self._current_commit()

        if commit != previous:
            logger.info(f"Updated {self.url}@{branch} from {previous or '<none>'} to {commit}")
        return commit

    def ensure(self, branch: str) -> None:
        """Make sure a working copy of ``branch`` exists locally."""
        if self._has_local_branch(branch):
            self._checkout_local(branch)
            return
        logger.info(f"No local checkout of {self.url}@{branch}, cloning")
        self.head(branch)

    def build_or_get_index(self) -> Optional[IndexDocument]:
        """
        Return the index of the checked-out tree.

        A committed index.yaml at the repository root is used as-is, and an
        empty one yields None; otherwise the index is built from every
        Chart.yaml in the tree.
        """
        index_file = self.directory / INDEX_FILE
        if index_file.is_file():
            return parse_index_yaml(index_file.read_bytes())

        document = IndexDocument()
        for chart_file in self._chart_files():
            chart_version = self._load_chart(chart_file)
            if chart_version is not None:
                document.add(chart_version)

        logger.info(
            f"Built index for {self.url} with {len(document.entries)} chart(s) "
            f"from {self.directory}"
        )
        return document

    # ------------------------------------------------------------------
    # Index building
    # ------------------------------------------------------------------

    def _chart_files(self) -> List[Path]:
        files = []
        for root, dirs, filenames in os.walk(self.directory):
            dirs[:] = sorted(d for d in dirs if d != ".git")
            if CHART_FILE in filenames:
                files.append(Path(root) / CHART_FILE)
        return sorted(files)

    def _load_chart(self, chart_file: Path) -> Optional[ChartVersion]:
        raw = chart_file.read_bytes()
        try:
            metadata = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Skipping unreadable chart metadata {chart_file}: {e}")
            return None

        if not isinstance(metadata, dict) or not metadata.get("name"):
            logger.warning(f"Skipping chart metadata without a name: {chart_file}")
            return None

        relative_dir = chart_file.parent.relative_to(self.directory).as_posix()
        metadata["urls"] = [f"file://./{relative_dir}"]
        metadata["digest"] = hashlib.sha256(raw).hexdigest()
        return ChartVersion.model_validate(metadata)

    # ------------------------------------------------------------------
    # Git plumbing
    # ------------------------------------------------------------------

    def _init_if_missing(self) -> None:
        if (self.directory / ".git").exists():
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        self._run(["init", "--quiet"])
        self._run(["remote", "add", "origin", self.url])

    def _fetch(self, branch: str) -> None:
        self._run(
            [
                "fetch",
                "--quiet",
                "origin",
                f"+refs/heads/{branch}:refs/remotes/origin/{branch}",
            ],
            network=True,
        )

    def _checkout(self, branch: str) -> None:
        self._run(["checkout", "--quiet", "--force", "-B", branch, f"origin/{branch}"])
        self._run(["clean", "--quiet", "-fdx"])

    def _checkout_local(self, branch: str) -> None:
        self._run(["checkout", "--quiet", "--force", branch])

    def _has_local_branch(self, branch: str) -> bool:
        if not (self.directory / ".git").exists():
            return False
        try:
            self._run(
                ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
                log_failure=False,
            )
        except GitCommandError:
            return False
        return True

    def _current_commit(self) -> str:
        return self._run(["rev-parse", "HEAD"]).strip()

    def _branch_commit(self, branch: str) -> str:
        return self._run(["rev-parse", f"refs/heads/{branch}"]).strip()

    def _config_entries(self) -> Dict[str, str]:
        entries: Dict[str, str] = {}
        if self.insecure_skip_tls_verify:
            entries["http.sslVerify"] = "false"
        if self.credential is not None and self.credential.has_basic_auth:
            token = base64.b64encode(
                f"{self.credential.username}:{self.credential.password}".encode("utf-8")
            ).decode("ascii")
            entries["http.extraHeader"] = f"Authorization: Basic {token}"
        return entries

    @contextlib.contextmanager
    def _environment(self, network: bool) -> Iterator[Dict[str, str]]:
        """Build the git environment; temporary key/CA files live for the block."""
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"

        if not network:
            yield env
            return

        with tempfile.TemporaryDirectory(prefix="catalog-sync-git-") as tmp:
            entries = self._config_entries()

            if self.ca_bundle:
                ca_path = Path(tmp) / "ca.pem"
                ca_path.write_bytes(self.ca_bundle)
                entries["http.sslCAInfo"] = str(ca_path)

            if self.credential is not None and self.credential.ssh_private_key:
                key_path = Path(tmp) / "id_key"
                key_path.write_bytes(self.credential.ssh_private_key)
                key_path.chmod(0o600)
                env["GIT_SSH_COMMAND"] = (
                    f"ssh -i {key_path} -o IdentitiesOnly=yes "
                    "-o StrictHostKeyChecking=accept-new"
                )

            env["GIT_CONFIG_COUNT"] = str(len(entries))
            for i, (key, value) in enumerate(entries.items()):
                env[f"GIT_CONFIG_KEY_{i}"] = key
                env[f"GIT_CONFIG_VALUE_{i}"] = value

            yield env

    def _run(
        self, args: List[str], network: bool = False, log_failure: bool = True
    ) -> str:
        """
        Run a git command in the working copy.

        Returns:
            Command stdout

        Raises:
            GitCommandError: On non-zero exit or timeout
        """
        with self._environment(network) as env:
            try:
                result = subprocess.run(
                    ["git", *args],
                    cwd=str(self.directory),
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    env=env,
                )
            except subprocess.TimeoutExpired:
                raise GitCommandError(
                    f"git {args[0]} timed out after {self.timeout}s for {self.url}",
                    category="transient",
                    stderr="",
                )

        if result.returncode != 0:
            category = classify_git_error(result.stderr)
            if log_failure:
                logger.warning(
                    f"git {args[0]} failed for {self.url} "
                    f"(category={category}): {result.stderr.strip()}"
                )
            raise GitCommandError(
                f"git {args[0]} failed for {self.url}",
                category=category,
                stderr=result.stderr,
            )

        return result.stdout
