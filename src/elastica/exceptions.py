"""
Elastica-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class ElasticaError(RuntimeError):
    """Base class for every error raised by elastica."""


class HTTPError(ElasticaError):
    """
    Elasticsearch answered with a status that is not a success.

    Parameters
    ----------
    status : int
        HTTP status code of the response.
    method : str
        HTTP method of the failed request.
    url : str
        URL of the failed request.
    es_error : typing.Any, optional
        Decoded error body returned by Elasticsearch.
    """

    def __init__(
        self,
        *,
        status: int,
        method: str,
        url: str,
        es_error: t.Any = None,
    ) -> None:
        self.status = status
        self.method = method
        self.url = url
        self.es_error = es_error
        super().__init__(f"HTTP {status} from {method} {url}")

    @property
    def error_type(self) -> str | None:
        """
        Return the Elasticsearch error type, if the body carries one.

        Returns
        -------
        str | None
            Value of ``error.type`` in the response body.
        """
        if isinstance(self.es_error, dict):
            error = self.es_error.get("error")
            if isinstance(error, dict):
                return error.get("type")
        return None


class TransportError(ElasticaError):
    """The request never produced an HTTP response (refused, timed out, reset)."""

    def __init__(self, *, method: str, url: str, reason: str) -> None:
        self.method = method
        self.url = url
        self.reason = reason
        super().__init__(f"{method} {url} failed: {reason}")


class InvalidIdentifierError(ElasticaError, ValueError):
    """An index name, field name or document id was rejected at the boundary."""


class BatchEncodingError(ElasticaError):
    """A queued operation could not be serialized into bulk lines."""


class BatchCancelledError(ElasticaError):
    """The task submitting a batch was cancelled before the batch settled."""


class ProcessorStateError(ElasticaError):
    """The batch processor is not in a state that accepts the call."""


class ProcessorClosedError(ProcessorStateError):
    """The batch processor has been closed and no longer accepts operations."""


def is_not_found_error(*, error: BaseException) -> bool:
    """
    Detect whether an exception chain was caused by an HTTP 404.

    Parameters
    ----------
    error : BaseException
        Top-level exception to inspect.

    Returns
    -------
    bool
        ``True`` when the exception or any nested cause/context is an
        :class:`HTTPError` with status 404.
    """
    seen: set[int] = set()
    to_visit: list[BaseException] = [error]
    while to_visit:
        current = to_visit.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))

        if isinstance(current, HTTPError) and current.status == 404:
            return True

        for nested in (current.__cause__, current.__context__):
            if isinstance(nested, BaseException):
                to_visit.append(nested)

    return False
