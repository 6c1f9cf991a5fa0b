"""
Index administration: existence checks, creation, deletion and mappings.
"""

from __future__ import annotations

import typing as t
from enum import Enum

import structlog

from elastica import request as es_request
from elastica.coercion import to_es_key, to_index_name
from elastica.exceptions import HTTPError
from elastica.request import HttpRequest, exists_response

if t.TYPE_CHECKING:
    from elastica.cluster import Cluster

log = structlog.get_logger(__name__)

Indices = str | Enum | t.Sequence[str | Enum]

DEFAULT_SHARDS = 5
DEFAULT_REPLICAS = 1


async def index_exists(cluster: Cluster, index: str | Enum) -> bool:
    """Return whether ``index`` exists on ``cluster``."""
    return await es_request.run(
        cluster,
        HttpRequest(
            method="HEAD",
            indices=index,
            response_xform=exists_response,
        ),
    )


async def create_index(
    cluster: Cluster,
    index: str | Enum,
    mappings: t.Mapping[str, t.Any] | None = None,
    shards: int = DEFAULT_SHARDS,
    replicas: int = DEFAULT_REPLICAS,
) -> bool:
    """
    Create ``index``.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    index : str | Enum
        Name of the index to create.
    mappings : typing.Mapping[str, typing.Any] | None, optional
        Index mappings, for example ``{"properties": {"title": {"type": "text"}}}``.
    shards : int, optional
        Number of primary shards.
    replicas : int, optional
        Number of replicas per primary shard.

    Returns
    -------
    bool
        Whether the cluster acknowledged the creation.

    Raises
    ------
    HTTPError
        If the index already exists or the request is rejected.
    """
    name = to_index_name(index)
    body: dict[str, t.Any] = {
        "settings": {"number_of_shards": shards, "number_of_replicas": replicas},
    }
    if mappings is not None:
        body["mappings"] = mappings
    response = await es_request.run(cluster, HttpRequest(method="PUT", indices=name, body=body))
    log.info(event="Created index", index=name, shards=shards, replicas=replicas)
    return bool(response.get("acknowledged"))


async def delete_index(cluster: Cluster, index: str | Enum) -> bool:
    """Delete ``index`` and return whether the cluster acknowledged it."""
    name = to_index_name(index)
    response = await es_request.run(cluster, HttpRequest(method="DELETE", indices=name))
    log.info(event="Deleted index", index=name)
    return bool(response.get("acknowledged"))


async def ensure_index(
    cluster: Cluster,
    index: str | Enum,
    mappings: t.Mapping[str, t.Any] | None = None,
    shards: int = DEFAULT_SHARDS,
    replicas: int = DEFAULT_REPLICAS,
) -> bool:
    """
    Create ``index`` unless it already exists.

    Returns
    -------
    bool
        ``True`` if the index was created by this call, ``False`` if it
        already existed.
    """
    if await index_exists(cluster, index):
        return False
    try:
        await create_index(cluster, index, mappings=mappings, shards=shards, replicas=replicas)
    except HTTPError as error:
        # Lost a creation race with another client.
        if error.error_type == "resource_already_exists_exception":
            log.debug(event="Index created concurrently", index=to_es_key(index))
            return False
        raise
    return True


async def get_index(cluster: Cluster, index: Indices) -> dict[str, t.Any]:
    """Return the settings, mappings and aliases of ``index``, keyed by index name."""
    return await es_request.run(
        cluster,
        HttpRequest(method="GET", indices=index),
    )


async def index_mappings(cluster: Cluster, indices: Indices) -> dict[str, t.Any]:
    """Return the mappings of ``indices``, keyed by index name."""
    return await es_request.run(
        cluster,
        HttpRequest(method="GET", indices=indices, segments=("_mapping",)),
    )


async def put_mapping(
    cluster: Cluster,
    indices: Indices,
    properties: t.Mapping[str, t.Any],
) -> bool:
    """
    Add field mappings to existing indices.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    indices : str | Enum | typing.Sequence[str | Enum]
        Indices to update.
    properties : typing.Mapping[str, typing.Any]
        Field mappings, keyed by field name.

    Returns
    -------
    bool
        Whether the cluster acknowledged the change.
    """
    response = await es_request.run(
        cluster,
        HttpRequest(
            method="PUT",
            indices=indices,
            segments=("_mapping",),
            body={"properties": properties},
        ),
    )
    return bool(response.get("acknowledged"))
