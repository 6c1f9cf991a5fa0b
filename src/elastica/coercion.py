"""
Conversions between Python values and the shapes Elasticsearch expects.

Index names, field names and document ids are canonical strings in elastica.
They are validated once, at the public API boundary, and passed around as
plain ``str`` afterwards.
"""

from __future__ import annotations

import datetime as dt
import typing as t
from collections.abc import Mapping
from enum import Enum

from elastica.exceptions import InvalidIdentifierError

Identifier = str | Enum

_INDEX_NAME_FORBIDDEN = frozenset('\\/*?"<>| ,#:')
_INDEX_NAME_FORBIDDEN_PREFIXES = ("-", "_", "+")
_INDEX_NAME_MAX_BYTES = 255


def to_es_key(value: Identifier) -> str:
    """
    Coerce a field or segment name into its canonical string form.

    Parameters
    ----------
    value : str | Enum
        Name to coerce. Enum members contribute their value.

    Returns
    -------
    str
        Non-empty string name.

    Raises
    ------
    InvalidIdentifierError
        If the value is not a string/enum or is empty.
    """
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        raise InvalidIdentifierError(f"Expected a string identifier, got {type(value).__name__}")
    if not value:
        raise InvalidIdentifierError("Identifiers cannot be empty")
    return value


def to_index_name(value: Identifier) -> str:
    """
    Validate an index name against the Elasticsearch naming rules.

    Parameters
    ----------
    value : str | Enum
        Candidate index name.

    Returns
    -------
    str
        Validated index name.
    """
    name = to_es_key(value)
    if name in (".", ".."):
        raise InvalidIdentifierError(f"Index name cannot be {name!r}")
    if name != name.lower():
        raise InvalidIdentifierError(f"Index name must be lowercase: {name!r}")
    if name.startswith(_INDEX_NAME_FORBIDDEN_PREFIXES):
        raise InvalidIdentifierError(f"Index name cannot start with -, _ or +: {name!r}")
    forbidden = _INDEX_NAME_FORBIDDEN.intersection(name)
    if forbidden:
        raise InvalidIdentifierError(
            f"Index name {name!r} contains forbidden characters: {''.join(sorted(forbidden))}"
        )
    if len(name.encode("utf-8")) > _INDEX_NAME_MAX_BYTES:
        raise InvalidIdentifierError(f"Index name is longer than {_INDEX_NAME_MAX_BYTES} bytes")
    return name


def to_index_names(value: Identifier | t.Sequence[Identifier]) -> list[str]:
    """
    Normalize one index name or a sequence of them.

    Wildcards are not accepted here on purpose: they are valid in search paths
    only, see :func:`to_index_expression`.
    """
    if isinstance(value, (str, Enum)):
        return [to_index_name(value)]
    names = [to_index_name(item) for item in value]
    if not names:
        raise InvalidIdentifierError("At least one index name is required")
    return names


def to_index_expression(value: Identifier | t.Sequence[Identifier]) -> str:
    """
    Render index names or patterns into a comma-separated path segment.

    Parameters
    ----------
    value : str | Enum | typing.Sequence[str | Enum]
        Index names, aliases or wildcard patterns such as ``logs-*``.

    Returns
    -------
    str
        Comma-joined expression usable as a single path segment.
    """
    items = [value] if isinstance(value, (str, Enum)) else list(value)
    if not items:
        raise InvalidIdentifierError("At least one index name is required")
    keys = [to_es_key(item) for item in items]
    for key in keys:
        if "/" in key or "," in key:
            raise InvalidIdentifierError(f"Invalid index expression: {key!r}")
    return ",".join(keys)


def to_doc_id(value: str | int) -> str:
    """
    Coerce a document id into a string.

    Parameters
    ----------
    value : str | int
        Document id. Integers are rendered in base 10.

    Returns
    -------
    str
        Non-empty id.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidIdentifierError(f"Document ids must be str or int, got {type(value).__name__}")
    doc_id = str(value)
    if not doc_id:
        raise InvalidIdentifierError("Document ids cannot be empty")
    if len(doc_id.encode("utf-8")) > 512:
        raise InvalidIdentifierError("Document ids cannot be longer than 512 bytes")
    return doc_id


def to_es(value: t.Any) -> t.Any:
    """
    Coerce a value into a structure that serializes to JSON without error.

    Mapping keys become canonical strings, enums contribute their value,
    tuples and sets become lists and dates become ISO-8601 strings.
    Objects exposing ``to_es()`` are rendered through it.
    """
    if hasattr(value, "to_es") and callable(value.to_es):
        return to_es(value.to_es())
    if isinstance(value, Mapping):
        return {to_es_key(key): to_es(item) for key, item in value.items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_es(item) for item in value]
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    return value


def to_query_value(value: t.Any) -> str:
    """
    Render a query-string parameter value.

    Booleans are rendered in lowercase and sequences are comma-joined, as the
    REST API expects.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_query_value(item) for item in value)
    return str(value)


def compact(mapping: Mapping[str, t.Any] | None) -> dict[str, t.Any]:
    """Return a copy of ``mapping`` without ``None`` values."""
    if not mapping:
        return {}
    return {key: value for key, value in mapping.items() if value is not None}
