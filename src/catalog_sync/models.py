"""
Data model for catalog repository reconciliation.

Defines the desired state (RepositoryDescriptor), the controller-owned
observed state (RepositoryStatus) and the identity records shared by the
handler, the chunker and the storage layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

# Condition types reported by the two reconciliation paths
REPO_DOWNLOADED = "RepoDownloaded"
FOLLOWER_REPO_DOWNLOADED = "FollowerRepoDownloaded"

CATALOG_API_VERSION = "catalog.cattle.io/v1"
CLUSTER_REPO_KIND = "ClusterRepo"


@dataclass(frozen=True)
class GitLocation:
    """Git repository source: chart tree at a branch."""

    url: str
    branch: str = "master"


@dataclass(frozen=True)
class HttpLocation:
    """Plain HTTP(S) Helm repository serving an index.yaml."""

    url: str


Location = Union[GitLocation, HttpLocation, None]


@dataclass(frozen=True)
class SecretReference:
    """Pointer to the secret holding repository credentials."""

    name: str
    namespace: str = ""


@dataclass
class ResourceMetadata:
    """Identity and bookkeeping fields of a repository resource."""

    name: str
    namespace: str = ""
    uid: str = ""
    generation: int = 0
    resource_version: str = ""


@dataclass
class RepositoryDescriptor:
    """
    Declared desired state of one catalog repository.

    ``location`` is a tagged variant: a GitLocation, an HttpLocation, or None
    when no source is configured (reconciliation is then a no-op).
    """

    location: Location = None
    insecure_skip_tls_verify: bool = False
    ca_bundle: Optional[bytes] = None
    disable_same_origin_check: bool = False
    force_update: Optional[datetime] = None
    client_secret: Optional[SecretReference] = None

    @property
    def source_kind(self) -> str:
        if isinstance(self.location, GitLocation):
            return "git"
        if isinstance(self.location, HttpLocation):
            return "http"
        return "none"

    @property
    def git_repo(self) -> str:
        if isinstance(self.location, GitLocation):
            return self.location.url
        return ""

    @property
    def git_branch(self) -> str:
        if isinstance(self.location, GitLocation):
            return self.location.branch
        return ""

    @property
    def url(self) -> str:
        if isinstance(self.location, HttpLocation):
            return self.location.url
        return ""


@dataclass
class Condition:
    """Observability record for one reconciliation path."""

    type: str
    status: str = "Unknown"
    reason: str = ""
    message: str = ""
    last_update_time: Optional[datetime] = None


@dataclass
class RepositoryStatus:
    """
    Last observed synchronization outcome, owned by the controller.

    ``branch`` is written only by a successful leader download; the follower
    path reads it to decide whether the leader has finished.
    """

    url: str = ""
    branch: str = ""
    commit: str = ""
    index_config_map_name: str = ""
    index_config_map_namespace: str = ""
    index_config_map_resource_version: str = ""
    download_time: Optional[datetime] = None
    observed_generation: int = 0
    conditions: List[Condition] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def clear_index_reference(self) -> None:
        """Forget the chunk-chain root so the next check forces a rebuild."""
        self.index_config_map_name = ""
        self.index_config_map_namespace = ""
        self.index_config_map_resource_version = ""


@dataclass
class Repository:
    """A repository resource: metadata, desired spec and observed status."""

    metadata: ResourceMetadata
    spec: RepositoryDescriptor = field(default_factory=RepositoryDescriptor)
    status: RepositoryStatus = field(default_factory=RepositoryStatus)

    @property
    def name(self) -> str:
        return self.metadata.name


@dataclass(frozen=True)
class OwnerReference:
    """Parent identity stamped on every generated storage object."""

    api_version: str
    kind: str
    name: str
    uid: str


@dataclass(frozen=True)
class ObjectIdentity:
    """Name, namespace and revision token of a stored object."""

    name: str
    namespace: str
    resource_version: str


def owner_reference_for(repo: Repository) -> OwnerReference:
    """Build the owner reference stamped on a repository's chunk objects."""
    return OwnerReference(
        api_version=CATALOG_API_VERSION,
        kind=CLUSTER_REPO_KIND,
        name=repo.metadata.name,
        uid=repo.metadata.uid,
    )
