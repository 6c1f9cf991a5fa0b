"""
The starting point for interacting with an Elasticsearch cluster.
"""

from __future__ import annotations

import random
import typing as t
from enum import Enum

import httpx
import structlog

from elastica.coercion import to_es_key, to_index_expression
from elastica.config import DEFAULT_HOSTS, ClusterSettings
from elastica.url import base_url, build_url

log = structlog.get_logger(__name__)

Host = tuple[str, int | None]


class Cluster:
    """
    Handle on a set of candidate Elasticsearch hosts.

    Every request picks one host uniformly at random. There is no health
    checking and no failover: a request sent to a dead host fails.

    Parameters
    ----------
    hosts : typing.Sequence[tuple[str, int | None]] | None, optional
        ``(hostname, port)`` pairs. Defaults to ``localhost:9200``.
    scheme : str, optional
        ``"http"`` or ``"https"``.
    timeout_seconds : float, optional
        Per-request timeout applied by the HTTP client.
    username, password : str | None, optional
        Basic authentication credentials.
    api_key : str | None, optional
        Encoded API key sent as ``Authorization: ApiKey <key>``.
    verify_certs : bool, optional
        Verify TLS certificates for ``https`` hosts.
    """

    def __init__(
        self,
        hosts: t.Sequence[Host] | None = None,
        scheme: str = "http",
        timeout_seconds: float = 30.0,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        verify_certs: bool = True,
    ) -> None:
        self._hosts: list[Host] = list(hosts) if hosts is not None else list(DEFAULT_HOSTS)
        if not self._hosts:
            raise ValueError("A cluster needs at least one host")
        self._scheme = scheme
        self._timeout_seconds = timeout_seconds
        self._headers: dict[str, str] = {"accept": "application/json"}
        self._auth: tuple[str, str] | None = None
        if api_key:
            self._headers["authorization"] = f"ApiKey {api_key}"
        elif username and password:
            self._auth = (username, password)
        self._verify_certs = verify_certs
        self._random = random.Random()
        self._client_factory: t.Callable[[], httpx.AsyncClient] = lambda: httpx.AsyncClient(
            timeout=self._timeout_seconds,
            headers=self._headers,
            auth=self._auth,
            verify=self._verify_certs,
        )

        log.debug(
            event="Initialized Cluster",
            hosts=[f"{hostname}:{port}" for hostname, port in self._hosts],
            scheme=scheme,
            timeout_seconds=timeout_seconds,
            authenticated=bool(api_key or self._auth),
        )

    @classmethod
    def from_settings(cls, settings: ClusterSettings | None = None) -> Cluster:
        """
        Create a cluster handle from settings, reading the environment by default.

        Parameters
        ----------
        settings : ClusterSettings | None, optional
            Explicit settings. When omitted, :meth:`ClusterSettings.from_env`
            is used.

        Returns
        -------
        Cluster
            Configured cluster handle.
        """
        settings = settings or ClusterSettings.from_env()
        return cls(
            hosts=settings.hosts,
            scheme=settings.scheme,
            timeout_seconds=settings.timeout_seconds,
            username=settings.username,
            password=settings.password,
            api_key=settings.api_key,
            verify_certs=settings.verify_certs,
        )

    @property
    def hosts(self) -> list[Host]:
        return list(self._hosts)

    def select_host(self) -> Host:
        """Pick the host for the next request."""
        return self._random.choice(self._hosts)

    def base_url(self) -> str:
        """Return the base URL of a randomly selected host."""
        hostname, port = self.select_host()
        return base_url(self._scheme, hostname, port)

    def url(
        self,
        *,
        indices: str | Enum | t.Sequence[str | Enum] | None = None,
        segments: t.Sequence[str | Enum] = (),
        query: t.Mapping[str, t.Any] | None = None,
    ) -> str:
        """
        Build a request URL against one host of the cluster.

        Parameters
        ----------
        indices : str | Enum | typing.Sequence[str | Enum] | None, optional
            Index names or patterns, rendered as one comma-joined segment.
        segments : typing.Sequence[str | Enum], optional
            Fixed path pieces such as ``"_bulk"`` or ``"_doc"`` and ids.
        query : typing.Mapping[str, typing.Any] | None, optional
            Query-string parameters; ``None`` values are dropped.

        Returns
        -------
        str
            Absolute URL.
        """
        path: list[str] = []
        if indices is not None:
            path.append(to_index_expression(indices))
        path.extend(to_es_key(segment) for segment in segments)
        hostname, port = self.select_host()
        return build_url(
            scheme=self._scheme,
            hostname=hostname,
            port=port,
            segments=path,
            query=query,
        )

    def client(self) -> httpx.AsyncClient:
        """Open a new HTTP client for one request."""
        return self._client_factory()

    def __repr__(self) -> str:
        hosts = ",".join(f"{hostname}:{port}" for hostname, port in self._hosts)
        return f"Cluster(scheme={self._scheme!r}, hosts={hosts!r})"
