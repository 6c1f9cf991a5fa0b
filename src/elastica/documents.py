"""
Single-document operations, search and suggestions.

Every call here issues one REST request immediately. For high write volumes
queue the writes on a :class:`~elastica.batch.BatchProcessor` instead.

Responses are returned as decoded JSON mappings; the accessor functions at the
bottom of this module read the common metadata fields out of them.
"""

from __future__ import annotations

import typing as t
from enum import Enum

from elastica import request as es_request
from elastica.bulk import (
    Operation,
    UpdateBody,
    delete_operation,
    index_operation,
    update_operation,
    upsert_operation,
)
from elastica.coercion import compact, to_doc_id, to_index_name
from elastica.request import HttpRequest, RawResponse, default_response_xform

if t.TYPE_CHECKING:
    from elastica.cluster import Cluster

Document = dict[str, t.Any]
Indices = str | Enum | t.Sequence[str | Enum]


def _get_response(response: RawResponse) -> t.Any:
    # A missing index is still an error; only a missing document maps to None.
    if response.status == 404 and isinstance(response.body, dict):
        if response.body.get("found") is False:
            return None
    return default_response_xform(response)


def _delete_response(response: RawResponse) -> t.Any:
    if response.status == 404 and isinstance(response.body, dict):
        if response.body.get("result") == "not_found":
            return response.body
    return default_response_xform(response)


def _write_query(operation: Operation, refresh: bool | str | None) -> dict[str, t.Any]:
    # Action-line options are query parameters on the single-document endpoints.
    (metadata,) = operation.action_line().values()
    query = {key: value for key, value in metadata.items() if key not in ("_index", "_id")}
    query["refresh"] = refresh
    return compact(query)


async def get(
    cluster: Cluster,
    index: str | Enum,
    id: str | int,
    routing: str | None = None,
) -> Document | None:
    """
    Fetch one document.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    index : str | Enum
        Index holding the document.
    id : str | int
        Document id.
    routing : str | None, optional
        Shard routing value used when the document was indexed.

    Returns
    -------
    Document | None
        The document with its metadata (``_index``, ``_id``, ``_version``,
        ``_source``), or ``None`` when it does not exist.
    """
    return await es_request.run(
        cluster,
        HttpRequest(
            method="GET",
            indices=to_index_name(index),
            segments=("_doc", to_doc_id(id)),
            query={"routing": routing},
            response_xform=_get_response,
        ),
    )


async def put(
    cluster: Cluster,
    index: str | Enum,
    doc: t.Mapping[str, t.Any],
    id: str | int | None = None,
    refresh: bool | str | None = None,
    **options: t.Any,
) -> Document:
    """
    Index ``doc``, replacing any document with the same id.

    Without ``id`` the document is POSTed and Elasticsearch generates the id.
    ``options`` accepts ``routing``, ``version``, ``version_type``,
    ``pipeline`` and ``op_type``. Use :func:`is_created` on the response to
    tell a fresh document from a replacement.
    """
    operation = index_operation(index, doc, id=id, **options)
    segments: tuple[str, ...] = ("_doc",) if operation.id is None else ("_doc", operation.id)
    return await es_request.run(
        cluster,
        HttpRequest(
            method="POST" if operation.id is None else "PUT",
            indices=operation.index,
            segments=segments,
            query=_write_query(operation, refresh),
            body=operation.source_line(),
        ),
    )


async def update(
    cluster: Cluster,
    index: str | Enum,
    id: str | int,
    doc_or_script: UpdateBody,
    refresh: bool | str | None = None,
    **options: t.Any,
) -> Document:
    """
    Merge a partial document, or run a script, against an existing document.

    Raises :class:`~elastica.exceptions.HTTPError` with status 404 when the
    document does not exist. ``options`` accepts ``detect_noop``,
    ``retry_on_conflict`` and ``routing``.
    """
    operation = update_operation(index, id, doc_or_script, **options)
    return await _run_update(cluster=cluster, operation=operation, refresh=refresh)


async def upsert(
    cluster: Cluster,
    index: str | Enum,
    id: str | int,
    insert_doc: t.Mapping[str, t.Any],
    doc_or_script: UpdateBody,
    refresh: bool | str | None = None,
    **options: t.Any,
) -> Document:
    """
    Update a document, inserting ``insert_doc`` when it does not exist yet.

    Accepts the same options as :func:`update`.
    """
    operation = upsert_operation(index, id, insert_doc, doc_or_script, **options)
    return await _run_update(cluster=cluster, operation=operation, refresh=refresh)


async def _run_update(
    *,
    cluster: Cluster,
    operation: Operation,
    refresh: bool | str | None,
) -> Document:
    return await es_request.run(
        cluster,
        HttpRequest(
            method="POST",
            indices=operation.index,
            segments=("_update", t.cast(str, operation.id)),
            query=_write_query(operation, refresh),
            body=operation.source_line(),
        ),
    )


async def delete(
    cluster: Cluster,
    index: str | Enum,
    id: str | int,
    refresh: bool | str | None = None,
    **options: t.Any,
) -> Document:
    """
    Delete one document.

    Deleting a document that does not exist is not an error: the response has
    ``result == "not_found"`` and :func:`is_found` returns ``False``.
    """
    operation = delete_operation(index, id, **options)
    return await es_request.run(
        cluster,
        HttpRequest(
            method="DELETE",
            indices=operation.index,
            segments=("_doc", t.cast(str, operation.id)),
            query=_write_query(operation, refresh),
            response_xform=_delete_response,
        ),
    )


async def search(
    cluster: Cluster,
    indices: Indices,
    query: t.Mapping[str, t.Any] | None = None,
    sorts: t.Sequence[t.Any] | None = None,
    start: int | None = None,
    size: int | None = None,
    explain: bool | None = None,
    source: t.Any = None,
) -> Document:
    """
    Run ``query`` across ``indices``.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    indices : str | Enum | typing.Sequence[str | Enum]
        Index names, aliases or wildcard patterns.
    query : typing.Mapping[str, typing.Any] | None, optional
        Query clause, for example ``{"match": {"title": "python"}}``. All
        documents match when omitted.
    sorts : typing.Sequence[typing.Any] | None, optional
        Sort clauses.
    start, size : int | None, optional
        Offset and page size. Prefer ``search_after`` for deep paging.
    explain : bool | None, optional
        Ask for score explanations.
    source : typing.Any, optional
        ``_source`` filtering (``False``, field list or include/exclude mapping).

    Returns
    -------
    Document
        Decoded search response. Hits carry ``_version``.
    """
    body = compact(
        {
            "query": query,
            "sort": sorts,
            "from": start,
            "size": size,
            "explain": explain,
            "_source": source,
            "version": True,
        }
    )
    return await es_request.run(
        cluster,
        HttpRequest(method="POST", indices=indices, segments=("_search",), body=body),
    )


async def suggest(
    cluster: Cluster,
    indices: Indices,
    suggestions: t.Mapping[str, t.Any],
) -> dict[str, t.Any]:
    """
    Return matches for named ``suggestions`` across ``indices``.

    Returns
    -------
    dict[str, typing.Any]
        The ``suggest`` section of the response, keyed by suggestion name.
    """
    response = await es_request.run(
        cluster,
        HttpRequest(
            method="POST",
            indices=indices,
            segments=("_search",),
            body={"size": 0, "suggest": suggestions},
        ),
    )
    return response.get("suggest", {})


def doc_index(doc: t.Mapping[str, t.Any]) -> str | None:
    """Return the index ``doc`` was read from or written to."""
    return doc.get("_index")


def doc_id(doc: t.Mapping[str, t.Any]) -> str | None:
    return doc.get("_id")


def doc_version(doc: t.Mapping[str, t.Any]) -> int | None:
    return doc.get("_version")


def doc_score(doc: t.Mapping[str, t.Any]) -> float | None:
    """Return the score a search hit achieved."""
    return doc.get("_score")


def doc_source(doc: t.Mapping[str, t.Any]) -> dict[str, t.Any] | None:
    return doc.get("_source")


def is_created(doc: t.Mapping[str, t.Any]) -> bool:
    """Tell whether the last write created the document rather than replacing it."""
    return doc.get("result") == "created"


def is_found(doc: t.Mapping[str, t.Any]) -> bool:
    """
    Tell whether the document was found by the last operation.

    Reads ``found`` on get responses and ``result`` on delete responses.
    """
    if "found" in doc:
        return bool(doc["found"])
    return doc.get("result") not in (None, "not_found")


def hits(response: t.Mapping[str, t.Any]) -> list[Document]:
    """Return the hits of a search response."""
    return list(response.get("hits", {}).get("hits", []))
