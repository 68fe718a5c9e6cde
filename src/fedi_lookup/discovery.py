"""Nodeinfo discovery client.

Finds out which server software a fediverse instance runs by walking its
self-description in two hops:

1. ``GET https://{domain}/.well-known/nodeinfo`` returns a list of typed links.
2. The best nodeinfo link is fetched and ``software.name`` /
   ``software.version`` are read from it.

Each hop has a fixed timeout and nothing is retried. Every failure is raised
as a subclass of :class:`~fedi_lookup.errors.DiscoveryError`.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fedi_lookup.errors import (
    DiscoveryBadStatus,
    DiscoveryMalformed,
    DiscoveryUnreachable,
    InvalidDomain,
    NoDiscoveryLink,
    NodeInfoBadStatus,
    NodeInfoMalformed,
    NodeInfoUnreachable,
)
from fedi_lookup.models import NodeInfo

logger = logging.getLogger("fedi_lookup.discovery")

DEFAULT_TIMEOUT = 10.0
WELL_KNOWN_PATH = "/.well-known/nodeinfo"
SCHEMA_2_REL = "nodeinfo.diaspora.software/ns/schema/2"
GENERIC_REL = "nodeinfo"

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "fedi-lookup (nodeinfo discovery)",
}


def normalize_domain(instance: str) -> str:
    """Reduce user input to the bare, lower-cased instance domain.

    A leading ``http://`` or ``https://`` is removed, then everything from
    the first ``/``, ``?`` or ``#`` on. ``"HTTPS://Mastodon.Social/"`` becomes
    ``"mastodon.social"``.

    Raises:
        InvalidDomain: If nothing is left after normalization, or the result
            carries userinfo (``user@host``) or whitespace.
    """
    value = instance.strip()
    for scheme in ("https://", "http://"):
        if value.lower().startswith(scheme):
            value = value[len(scheme):]
            break
    domain = re.split(r"[/?#]", value, maxsplit=1)[0].lower()
    if not domain or "@" in domain or any(char.isspace() for char in domain):
        raise InvalidDomain(f"not an instance domain: {instance!r}")
    return domain


class DiscoveryLink(BaseModel):
    """One ``{rel, href}`` entry from the well-known document."""

    rel: str = Field(default="", description="Link relation (schema namespace)")
    href: str = Field(default="", description="Target URL")

    model_config = ConfigDict(extra="ignore")


class DiscoveryDocument(BaseModel):
    """The ``/.well-known/nodeinfo`` document."""

    links: list[DiscoveryLink] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class _Software(BaseModel):
    name: str
    version: str | None = None

    model_config = ConfigDict(extra="ignore")


class NodeInfoDocument(BaseModel):
    """The subset of the nodeinfo document this client reads."""

    software: _Software

    model_config = ConfigDict(extra="ignore")


def select_nodeinfo_link(links: Iterable[DiscoveryLink]) -> str | None:
    """Pick the nodeinfo URL from the discovery links.

    The first link whose ``rel`` mentions the schema-2 namespace wins
    outright. Otherwise the first link whose ``rel`` contains ``"nodeinfo"``
    is used, even if it appears before a later schema-2 link is found. Links
    with an empty ``href`` are skipped in both cases.

    Returns:
        The chosen ``href``, or None if no link qualifies.
    """
    fallback: str | None = None
    for link in links:
        if not link.href:
            continue
        if SCHEMA_2_REL in link.rel:
            return link.href
        if fallback is None and GENERIC_REL in link.rel:
            fallback = link.href
    return fallback


class DiscoveryClient:
    """Synchronous nodeinfo client over ``httpx``.

    The client is safe to share between threads; each ``discover`` call
    issues its own requests.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        http: httpx.Client | None = None,
    ):
        """Create the client.

        Args:
            timeout: Per-request timeout in seconds (applies to each hop).
            http: Optional shared ``httpx.Client``. If omitted, one is created
                and owned by this instance.
        """
        self._timeout = timeout
        self._owns_http = http is None
        self._http = http or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        """Close the HTTP client if this instance owns it."""
        if self._owns_http and not self._http.is_closed:
            self._http.close()

    def __enter__(self) -> "DiscoveryClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Protocol steps
    # ------------------------------------------------------------------ #

    def _get(self, url: str) -> httpx.Response:
        return self._http.get(url, timeout=self._timeout)

    def fetch_discovery_links(self, domain: str) -> list[DiscoveryLink]:
        """Hop 1: fetch and parse the well-known discovery document."""
        url = f"https://{domain}{WELL_KNOWN_PATH}"
        try:
            response = self._get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DiscoveryUnreachable(
                f"well-known request failed: {e}", domain=domain, url=url
            ) from e

        if response.status_code != httpx.codes.OK:
            raise DiscoveryBadStatus(
                f"well-known returned status {response.status_code}",
                domain=domain,
                url=url,
                status_code=response.status_code,
            )

        try:
            document = DiscoveryDocument.model_validate(_json_object(response))
        except (ValueError, ValidationError) as e:
            raise DiscoveryMalformed(
                f"invalid well-known document: {e}", domain=domain, url=url
            ) from e
        return document.links

    def fetch_nodeinfo(self, domain: str, url: str) -> NodeInfo:
        """Hop 2: fetch the node-information document and read the software.

        A non-200 answer fails with ``NodeInfoBadStatus`` before any parsing,
        mirroring the check on hop 1.
        """
        try:
            response = self._get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NodeInfoUnreachable(
                f"nodeinfo request failed: {e}", domain=domain, url=url
            ) from e

        if response.status_code != httpx.codes.OK:
            raise NodeInfoBadStatus(
                f"nodeinfo returned status {response.status_code}",
                domain=domain,
                url=url,
                status_code=response.status_code,
            )

        try:
            document = NodeInfoDocument.model_validate(_json_object(response))
        except (ValueError, ValidationError) as e:
            raise NodeInfoMalformed(
                f"invalid nodeinfo document: {e}", domain=domain, url=url
            ) from e

        return NodeInfo(
            software=document.software.name.lower(),
            version=document.software.version or "",
        )

    def discover(self, instance: str) -> NodeInfo:
        """Run the full two-hop discovery for ``instance``.

        Args:
            instance: Domain or URL of the instance; normalized first.

        Returns:
            The instance's software name (lower-cased) and version.

        Raises:
            InvalidDomain: If ``instance`` does not normalize to a domain.
            DiscoveryError: On any failure in either hop.
        """
        domain = normalize_domain(instance)
        well_known_url = f"https://{domain}{WELL_KNOWN_PATH}"
        links = self.fetch_discovery_links(domain)

        href = select_nodeinfo_link(links)
        if not href:
            raise NoDiscoveryLink(
                "no nodeinfo link found", domain=domain, url=well_known_url
            )

        try:
            # Some servers publish relative hrefs
            nodeinfo_url = str(httpx.URL(well_known_url).join(href))
        except httpx.InvalidURL as e:
            raise NodeInfoUnreachable(
                f"invalid nodeinfo link {href!r}: {e}", domain=domain, url=href
            ) from e

        info = self.fetch_nodeinfo(domain, nodeinfo_url)
        logger.debug(f"Discovered {domain}: {info.software} {info.version}")
        return info


def _json_object(response: httpx.Response) -> Mapping[str, Any]:
    """Decode a response body that must be a JSON object."""
    payload = response.json()
    if not isinstance(payload, Mapping):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload
