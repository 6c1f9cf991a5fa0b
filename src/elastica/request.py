"""
Request runner.

Every REST call is described by an :class:`HttpRequest` and flows through an
interceptor pipeline. Interceptor ``before`` stages run in order, then the
``after`` stages run in reverse order, each receiving and returning the
context mapping. The HTTP interceptor resolves the URL and serializes the
body in ``before`` and performs the single network call in ``after``.
"""

from __future__ import annotations

import inspect
import json
import time
import typing as t
from dataclasses import dataclass
from enum import Enum

import httpx
import structlog

from elastica.coercion import compact, to_es
from elastica.exceptions import HTTPError, TransportError

if t.TYPE_CHECKING:
    from elastica.cluster import Cluster

log = structlog.get_logger(__name__)

Context = dict[str, t.Any]
Stage = t.Callable[[Context], Context | t.Awaitable[Context]]
ResponseXform = t.Callable[["RawResponse"], t.Any]

SUCCESS_STATUSES = frozenset({200, 201})
JSON_CONTENT_TYPE = "application/json"
NDJSON_CONTENT_TYPE = "application/x-ndjson"
_METHODS = frozenset({"GET", "PUT", "POST", "DELETE", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class HttpRequest:
    """
    Declarative description of one REST call.

    Parameters
    ----------
    method : str
        HTTP verb.
    indices : str | Enum | typing.Sequence[str | Enum] | None
        Index names or patterns forming the first path segment.
    segments : tuple[str, ...]
        Fixed path pieces following the indices (``"_doc"``, ids, ``"_bulk"``).
    query : typing.Mapping[str, typing.Any] | None
        Query-string parameters.
    body : typing.Any
        JSON-serializable body, coerced through :func:`elastica.coercion.to_es`.
    content : str | bytes | None
        Pre-serialized body, used as is (bulk NDJSON payloads).
    content_type : str | None
        Content type for ``content``; defaults to JSON.
    response_xform : typing.Callable | None
        Turns the :class:`RawResponse` into the call result. Defaults to
        :func:`default_response_xform`.
    """

    method: str
    indices: str | Enum | t.Sequence[str | Enum] | None = None
    segments: tuple[str, ...] = ()
    query: t.Mapping[str, t.Any] | None = None
    body: t.Any = None
    content: str | bytes | None = None
    content_type: str | None = None
    response_xform: ResponseXform | None = None

    def __post_init__(self) -> None:
        if self.method.upper() not in _METHODS:
            raise ValueError(f"Unrecognized HTTP verb: {self.method}")
        if self.body is not None and self.content is not None:
            raise ValueError("HttpRequest accepts either body or content, not both")


@dataclass(frozen=True)
class RawResponse:
    """Response handed to response transforms."""

    status: int
    method: str
    url: str
    headers: dict[str, str]
    body: t.Any


@dataclass(frozen=True)
class Interceptor:
    """
    One step of the request pipeline.

    Parameters
    ----------
    id : str
        Interceptor identifier, used in logs.
    before : Stage | None
        Called on the way in, in pipeline order.
    after : Stage | None
        Called on the way out, in reverse pipeline order.
    """

    id: str
    before: Stage | None = None
    after: Stage | None = None


async def _run_stage(*, stage: Stage, context: Context) -> Context:
    result = stage(context)
    if inspect.isawaitable(result):
        result = await result
    return t.cast(Context, result)


async def execute(*, context: Context, interceptors: t.Sequence[Interceptor]) -> Context:
    """
    Run a context through an interceptor pipeline.

    Parameters
    ----------
    context : Context
        Initial context.
    interceptors : typing.Sequence[Interceptor]
        Pipeline, outermost first.

    Returns
    -------
    Context
        Context after every ``before`` and ``after`` stage ran.
    """
    for interceptor in interceptors:
        if interceptor.before is not None:
            context = await _run_stage(stage=interceptor.before, context=context)
    for interceptor in reversed(interceptors):
        if interceptor.after is not None:
            context = await _run_stage(stage=interceptor.after, context=context)
    return context


def _decode_body(*, response: httpx.Response) -> t.Any:
    """
    Decode a response body.

    Parameters
    ----------
    response : httpx.Response
        Response to decode.

    Returns
    -------
    typing.Any
        Parsed JSON, the raw text if the body is not JSON, or ``None`` when empty.
    """
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def default_response_xform(response: RawResponse) -> t.Any:
    """Return the body on 200/201, otherwise an :class:`HTTPError`."""
    if response.status in SUCCESS_STATUSES:
        return response.body
    return HTTPError(
        status=response.status,
        method=response.method,
        url=response.url,
        es_error=response.body,
    )


def exists_response(response: RawResponse) -> t.Any:
    """Map 200 to ``True`` and 404 to ``False``; anything else is an error."""
    if response.status == 200:
        return True
    if response.status == 404:
        return False
    return default_response_xform(response)


def _http_before(context: Context) -> Context:
    request: HttpRequest = context["request"]
    cluster: Cluster = context["cluster"]
    headers: dict[str, str] = {}
    content: str | bytes | None = None
    if request.content is not None:
        content = request.content
        headers["content-type"] = request.content_type or JSON_CONTENT_TYPE
    elif request.body is not None:
        content = json.dumps(to_es(request.body))
        headers["content-type"] = JSON_CONTENT_TYPE
    context["http"] = {
        "method": request.method.upper(),
        "url": cluster.url(
            indices=request.indices,
            segments=request.segments,
            query=compact(request.query),
        ),
        "headers": headers,
        "content": content,
    }
    return context


async def _http_after(context: Context) -> Context:
    request: HttpRequest = context["request"]
    cluster: Cluster = context["cluster"]
    http = context["http"]
    method: str = http["method"]
    url: str = http["url"]
    try:
        async with cluster.client() as client:
            response = await client.request(
                method=method,
                url=url,
                headers=http["headers"],
                content=http["content"],
            )
    except httpx.TransportError as error:
        log.error(
            event="Request transport failure",
            method=method,
            url=url,
            error=str(object=error),
        )
        transport_error = TransportError(method=method, url=url, reason=str(object=error))
        transport_error.__cause__ = error
        context["result"] = transport_error
        return context

    raw = RawResponse(
        status=response.status_code,
        method=method,
        url=url,
        headers={key.lower(): value for key, value in response.headers.items()},
        body=_decode_body(response=response),
    )
    context["response"] = raw
    xform = request.response_xform or default_response_xform
    context["result"] = xform(raw)
    return context


def _timing_before(context: Context) -> Context:
    context["started_at"] = time.perf_counter()
    return context


def _timing_after(context: Context) -> Context:
    http = context.get("http", {})
    response: RawResponse | None = context.get("response")
    elapsed_ms = (time.perf_counter() - context["started_at"]) * 1000
    log.debug(
        event="Request completed",
        method=http.get("method"),
        url=http.get("url"),
        status=response.status if response is not None else None,
        elapsed_ms=round(elapsed_ms, 2),
        failed=isinstance(context.get("result"), BaseException),
    )
    return context


http_interceptor = Interceptor(id="elastica.http", before=_http_before, after=_http_after)
timing_interceptor = Interceptor(id="elastica.timing", before=_timing_before, after=_timing_after)
DEFAULT_INTERCEPTORS: tuple[Interceptor, ...] = (timing_interceptor, http_interceptor)


async def run(
    cluster: Cluster,
    request: HttpRequest,
    interceptors: t.Sequence[Interceptor] | None = None,
) -> t.Any:
    """
    Perform one REST call and return its normalized result.

    Parameters
    ----------
    cluster : Cluster
        Cluster handle providing host selection and the HTTP client.
    request : HttpRequest
        Request description.
    interceptors : typing.Sequence[Interceptor] | None, optional
        Pipeline to use instead of :data:`DEFAULT_INTERCEPTORS`.

    Returns
    -------
    typing.Any
        Result produced by the request's response transform.

    Raises
    ------
    HTTPError
        If Elasticsearch answered with a failure status.
    TransportError
        If no response was received.
    """
    context = await execute(
        context={"cluster": cluster, "request": request},
        interceptors=DEFAULT_INTERCEPTORS if interceptors is None else interceptors,
    )
    result = context.get("result")
    if isinstance(result, BaseException):
        raise result
    return result
