"""
Credential lookup for private chart repositories.

Repositories may reference a secret holding either basic-auth fields
(``username``/``password``) or an SSH key (``ssh-privatekey``). Public
repositories reference no secret and resolve to no credential.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Tuple

from ..config import DEFAULT_SYSTEM_NAMESPACE
from ..models import RepositoryDescriptor

logger = logging.getLogger(__name__)

USERNAME_KEY = "username"
PASSWORD_KEY = "password"
SSH_PRIVATE_KEY = "ssh-privatekey"


class SecretNotFoundError(Exception):
    """Raised when a referenced secret does not exist."""

    def __init__(self, namespace: str, name: str):
        super().__init__(f"Secret {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


@dataclass(frozen=True)
class Credential:
    """Resolved credential bundle; fields absent from the secret are None."""

    username: Optional[str] = None
    password: Optional[str] = None
    ssh_private_key: Optional[bytes] = None

    @property
    def has_basic_auth(self) -> bool:
        return self.username is not None and self.password is not None

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password=***, ssh_private_key=***)"


class SecretLookup(Protocol):
    """Read-through secret cache contract."""

    def get(self, namespace: str, name: str) -> Mapping[str, bytes]:
        ...


class MappingSecretStore:
    """In-memory SecretLookup keyed by (namespace, name)."""

    def __init__(self, secrets: Optional[Dict[Tuple[str, str], Mapping[str, bytes]]] = None):
        self._secrets: Dict[Tuple[str, str], Mapping[str, bytes]] = dict(secrets or {})

    def put(self, namespace: str, name: str, data: Mapping[str, bytes]) -> None:
        self._secrets[(namespace, name)] = dict(data)

    def get(self, namespace: str, name: str) -> Mapping[str, bytes]:
        try:
            return self._secrets[(namespace, name)]
        except KeyError:
            raise SecretNotFoundError(namespace, name)


def get_secret(
    secrets: SecretLookup,
    spec: RepositoryDescriptor,
    namespace: str,
    system_namespace: str = DEFAULT_SYSTEM_NAMESPACE,
) -> Optional[Credential]:
    """
    Resolve the credential referenced by a repository descriptor.

    The secret's own namespace wins; otherwise the repository namespace is
    used, and cluster-scoped repositories fall back to the system namespace.

    Returns:
        Credential, or None when the descriptor references no secret

    Raises:
        SecretNotFoundError: If the referenced secret does not exist
    """
    if spec.client_secret is None:
        return None

    secret_namespace = spec.client_secret.namespace or namespace or system_namespace
    data = secrets.get(secret_namespace, spec.client_secret.name)
    logger.debug(
        f"Resolved secret {secret_namespace}/{spec.client_secret.name} "
        f"with keys {sorted(data)}"
    )

    def _text(key: str) -> Optional[str]:
        value = data.get(key)
        return value.decode("utf-8") if value is not None else None

    return Credential(
        username=_text(USERNAME_KEY),
        password=_text(PASSWORD_KEY),
        ssh_private_key=data.get(SSH_PRIVATE_KEY),
    )
