"""
HTTP index download for plain Helm chart repositories.

Fetches ``<url>/index.yaml`` with httpx and parses it into an IndexDocument.
Redirects are followed manually so that basic-auth credentials are only sent
to the repository's own origin, unless the descriptor disables that check.
"""

import logging
import ssl
from typing import Optional, Union

import httpx

from ..index.document import IndexDocument, parse_index_yaml
from .secrets import Credential

logger = logging.getLogger(__name__)


class IndexDownloadError(Exception):
    """Raised when the remote index cannot be downloaded."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def index_url_for(url: str) -> str:
    """Return the index.yaml location for a repository URL."""
    if url.endswith("index.yaml"):
        return url
    return url.rstrip("/") + "/index.yaml"


def _same_origin(a: httpx.URL, b: httpx.URL) -> bool:
    return (a.scheme, a.host, a.port) == (b.scheme, b.host, b.port)


def _verify_setting(
    ca_bundle: Optional[bytes], insecure_skip_tls_verify: bool
) -> Union[bool, ssl.SSLContext]:
    if insecure_skip_tls_verify:
        return False
    if ca_bundle:
        return ssl.create_default_context(cadata=ca_bundle.decode("utf-8"))
    return True


def download_index(
    credential: Optional[Credential],
    url: str,
    ca_bundle: Optional[bytes] = None,
    insecure_skip_tls_verify: bool = False,
    disable_same_origin_check: bool = False,
    timeout: float = 30.0,
    max_redirects: int = 10,
    transport: Optional[httpx.BaseTransport] = None,
) -> Optional[IndexDocument]:
    """
    Download and parse a repository's index.yaml.

    Args:
        credential: Optional basic-auth credential
        url: Repository base URL (or a direct index.yaml URL)
        ca_bundle: PEM CA bundle to trust
        insecure_skip_tls_verify: Disable TLS verification
        disable_same_origin_check: Send credentials to redirect targets on other origins
        timeout: Request timeout in seconds
        max_redirects: Maximum number of redirects to follow
        transport: Optional httpx transport (tests)

    Returns:
        IndexDocument, or None when the index is absent (404) or empty

    Raises:
        IndexDownloadError: On non-success status or too many redirects
        IndexParseError: If the payload is not a valid index
        httpx.HTTPError: On transport failures
    """
    origin = httpx.URL(index_url_for(url))
    current = origin
    basic_auth = None
    if credential is not None and credential.has_basic_auth:
        basic_auth = httpx.BasicAuth(credential.username, credential.password)

    with httpx.Client(
        verify=_verify_setting(ca_bundle, insecure_skip_tls_verify),
        timeout=timeout,
        follow_redirects=False,
        transport=transport,
    ) as client:
        for _ in range(max_redirects + 1):
            send_auth = basic_auth
            if basic_auth is not None and not disable_same_origin_check:
                if not _same_origin(origin, current):
                    send_auth = None

            response = client.get(current, auth=send_auth)

            if response.is_redirect:
                location = response.headers.get("location", "")
                current = current.join(location)
                logger.debug(f"Following redirect for {origin} to {current}")
                continue

            if response.status_code == 404:
                logger.info(f"No index found at {current}")
                return None

            if not response.is_success:
                raise IndexDownloadError(
                    f"Failed to download index from {current}: HTTP {response.status_code}",
                    url=str(current),
                    status_code=response.status_code,
                )

            document = parse_index_yaml(response.content)
            if document is not None:
                logger.info(
                    f"Downloaded index from {current} with {len(document.entries)} chart(s)"
                )
            return document

    raise IndexDownloadError(
        f"Too many redirects downloading index from {origin}", url=str(origin)
    )
