"""
Environment-driven settings for clusters and batch processors.

Values are read from ``ELASTICA_*`` environment variables after loading a
``.env`` file, then validated with pydantic.
"""

from __future__ import annotations

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, Field, computed_field, field_validator

ENV_PREFIX = "ELASTICA_"
DEFAULT_HOSTS: list[tuple[str, int]] = [("localhost", 9200)]
MAX_INTAKE_BUFFER_SIZE = 1024


def _read_env(*, keys: t.Mapping[str, str]) -> dict[str, str]:
    """
    Collect the environment variables that are set.

    Parameters
    ----------
    keys : typing.Mapping[str, str]
        Mapping of settings field name to environment variable suffix.

    Returns
    -------
    dict[str, str]
        Raw values keyed by field name.
    """
    values: dict[str, str] = {}
    for field_name, suffix in keys.items():
        raw = os.getenv(f"{ENV_PREFIX}{suffix}")
        if raw is not None and raw != "":
            values[field_name] = raw
    return values


def _none_if_disabled(value: t.Any) -> t.Any:
    if isinstance(value, str) and value.strip().lower() in {"none", "off", "disabled"}:
        return None
    return value


class ClusterSettings(BaseModel):
    """Connection settings for a :class:`elastica.cluster.Cluster`."""

    hosts: list[tuple[str, int]] = Field(default_factory=lambda: list(DEFAULT_HOSTS))
    scheme: t.Literal["http", "https"] = "http"
    timeout_seconds: float = Field(default=30.0, gt=0)
    username: str | None = None
    password: str | None = None
    api_key: str | None = None
    verify_certs: bool = True

    @field_validator("hosts", mode="before")
    @classmethod
    def parse_hosts(cls, value: t.Any) -> t.Any:
        """
        Accept ``"host:port,host:port"`` strings as well as host pairs.

        Parameters
        ----------
        value : typing.Any
            Raw hosts value.

        Returns
        -------
        typing.Any
            List of ``(hostname, port)`` pairs, or the input for pydantic to
            validate.
        """
        if not isinstance(value, str):
            return value
        hosts: list[tuple[str, int]] = []
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            hostname, _, port = entry.rpartition(":")
            if not hostname:
                hostname, port = port, "9200"
            hosts.append((hostname, int(port)))
        return hosts

    @field_validator("hosts")
    @classmethod
    def require_hosts(cls, value: list[tuple[str, int]]) -> list[tuple[str, int]]:
        if not value:
            raise ValueError("At least one host is required")
        return value

    @classmethod
    def from_env(cls, *, dotenv: bool = True, **overrides: t.Any) -> ClusterSettings:
        """
        Build settings from ``ELASTICA_*`` environment variables.

        Parameters
        ----------
        dotenv : bool, optional
            Load a ``.env`` file before reading the environment.
        **overrides : typing.Any
            Explicit values that win over the environment.

        Returns
        -------
        ClusterSettings
            Validated settings.
        """
        if dotenv:
            load_dotenv(override=False)
        values: dict[str, t.Any] = _read_env(
            keys={
                "hosts": "HOSTS",
                "scheme": "SCHEME",
                "timeout_seconds": "TIMEOUT",
                "username": "USERNAME",
                "password": "PASSWORD",
                "api_key": "API_KEY",
                "verify_certs": "VERIFY_CERTS",
            }
        )
        values.update(overrides)
        return cls.model_validate(values)


class BatchSettings(BaseModel):
    """
    Batching policy for a :class:`elastica.batch.BatchProcessor`.

    Any of ``count``, ``max_bytes`` and ``interval_seconds`` can be set to
    ``None`` to disable that flush trigger.
    """

    name: str = "elastica"
    count: int | None = Field(default=1000, ge=1)
    max_bytes: int | None = Field(default=5 * 1024 * 1024, ge=1)
    interval_seconds: float | None = Field(default=5.0, gt=0)
    concurrency: int = Field(default=8, ge=1)
    buffer_size: int | None = Field(default=None, ge=1)

    @field_validator("count", "max_bytes", "interval_seconds", mode="before")
    @classmethod
    def allow_disabled(cls, value: t.Any) -> t.Any:
        return _none_if_disabled(value)

    @computed_field
    @property
    def intake_buffer_size(self) -> int:
        """Capacity of the bounded intake queue."""
        if self.buffer_size is not None:
            return self.buffer_size
        if self.count is None:
            return MAX_INTAKE_BUFFER_SIZE
        return min(MAX_INTAKE_BUFFER_SIZE, 2 * self.count)

    @classmethod
    def from_env(cls, *, dotenv: bool = True, **overrides: t.Any) -> BatchSettings:
        """
        Build settings from ``ELASTICA_BATCH_*`` environment variables.

        Parameters
        ----------
        dotenv : bool, optional
            Load a ``.env`` file before reading the environment.
        **overrides : typing.Any
            Explicit values that win over the environment.

        Returns
        -------
        BatchSettings
            Validated settings.
        """
        if dotenv:
            load_dotenv(override=False)
        values: dict[str, t.Any] = _read_env(
            keys={
                "name": "BATCH_NAME",
                "count": "BATCH_COUNT",
                "max_bytes": "BATCH_MAX_BYTES",
                "interval_seconds": "BATCH_INTERVAL",
                "concurrency": "BATCH_CONCURRENCY",
                "buffer_size": "BATCH_BUFFER_SIZE",
            }
        )
        values.update(overrides)
        return cls.model_validate(values)
