"""
Bulk codec: queued write operations and the ``_bulk`` wire format.

A bulk body is newline-delimited JSON. Each operation contributes an action
line and, except for deletes, a source line. The body ends with a newline.
"""

from __future__ import annotations

import copy
import json
import typing as t
from dataclasses import dataclass, field
from enum import Enum, StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from elastica.coercion import compact, to_doc_id, to_es, to_index_name
from elastica.exceptions import BatchEncodingError
from elastica.script import Script

UpdateBody = t.Mapping[str, t.Any] | Script


class OperationType(StrEnum):
    INDEX = "index"
    DELETE = "delete"
    UPDATE = "update"
    UPSERT = "upsert"


# Options that belong on the action line, by operation type.
_ACTION_OPTIONS: dict[OperationType, frozenset[str]] = {
    OperationType.INDEX: frozenset({"routing", "version", "version_type", "pipeline", "op_type"}),
    OperationType.DELETE: frozenset({"routing", "version", "version_type"}),
    OperationType.UPDATE: frozenset({"routing", "retry_on_conflict"}),
    OperationType.UPSERT: frozenset({"routing", "retry_on_conflict"}),
}
# Options that belong in the update source line.
_UPDATE_SOURCE_OPTIONS = frozenset({"detect_noop", "doc_as_upsert", "scripted_upsert"})


@dataclass(frozen=True)
class Operation:
    """
    One pending write destined for a bulk request.

    Build operations with :func:`index_operation`, :func:`update_operation`,
    :func:`upsert_operation` and :func:`delete_operation`, which validate the
    identifiers. Mappings are deep-copied so later changes to the caller's
    objects do not leak into a queued operation.
    """

    op_type: OperationType
    index: str
    id: str | None = None
    payload: t.Mapping[str, t.Any] | None = None
    script: Script | None = None
    insert_doc: t.Mapping[str, t.Any] | None = None
    options: t.Mapping[str, t.Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", copy.deepcopy(self.payload))
        object.__setattr__(self, "insert_doc", copy.deepcopy(self.insert_doc))
        object.__setattr__(self, "options", dict(compact(self.options)))

    def action_line(self) -> dict[str, t.Any]:
        """Render the action/metadata line."""
        action = OperationType.UPDATE if self.op_type is OperationType.UPSERT else self.op_type
        metadata: dict[str, t.Any] = {"_index": self.index}
        if self.id is not None:
            metadata["_id"] = self.id
        allowed = _ACTION_OPTIONS[self.op_type]
        metadata.update({key: value for key, value in self.options.items() if key in allowed})
        return {action.value: to_es(metadata)}

    def source_line(self) -> dict[str, t.Any] | None:
        """Render the source line, or ``None`` for deletes."""
        if self.op_type is OperationType.DELETE:
            return None
        if self.op_type is OperationType.INDEX:
            return to_es(self.payload or {})

        source: dict[str, t.Any] = {}
        if self.script is not None:
            source["script"] = self.script.to_es()
        else:
            source["doc"] = to_es(self.payload or {})
        if self.op_type is OperationType.UPSERT:
            source["upsert"] = to_es(self.insert_doc or {})
        source.update(
            {key: value for key, value in self.options.items() if key in _UPDATE_SOURCE_OPTIONS}
        )
        return source


def _split_update_body(
    doc_or_script: UpdateBody,
) -> tuple[t.Mapping[str, t.Any] | None, Script | None]:
    if isinstance(doc_or_script, Script):
        return None, doc_or_script
    return doc_or_script, None


def index_operation(
    index: str | Enum,
    doc: t.Mapping[str, t.Any],
    id: str | int | None = None,
    **options: t.Any,
) -> Operation:
    """
    Build an operation that indexes ``doc`` into ``index``.

    When ``id`` is omitted Elasticsearch generates one. Supported options:
    ``routing``, ``version``, ``version_type``, ``pipeline`` and ``op_type``.
    """
    return Operation(
        op_type=OperationType.INDEX,
        index=to_index_name(index),
        id=to_doc_id(id) if id is not None else None,
        payload=doc,
        options=options,
    )


def update_operation(
    index: str | Enum,
    id: str | int,
    doc_or_script: UpdateBody,
    **options: t.Any,
) -> Operation:
    """
    Build an operation that merges a partial document (or runs a script)
    against an existing document.

    Supported options: ``routing``, ``retry_on_conflict``, ``detect_noop``
    and ``doc_as_upsert``.
    """
    payload, script = _split_update_body(doc_or_script)
    return Operation(
        op_type=OperationType.UPDATE,
        index=to_index_name(index),
        id=to_doc_id(id),
        payload=payload,
        script=script,
        options=options,
    )


def upsert_operation(
    index: str | Enum,
    id: str | int,
    insert_doc: t.Mapping[str, t.Any],
    doc_or_script: UpdateBody,
    **options: t.Any,
) -> Operation:
    """
    Build an update that inserts ``insert_doc`` when the document is missing.
    """
    payload, script = _split_update_body(doc_or_script)
    return Operation(
        op_type=OperationType.UPSERT,
        index=to_index_name(index),
        id=to_doc_id(id),
        payload=payload,
        script=script,
        insert_doc=insert_doc,
        options=options,
    )


def delete_operation(index: str | Enum, id: str | int, **options: t.Any) -> Operation:
    """Build an operation that deletes one document."""
    return Operation(
        op_type=OperationType.DELETE,
        index=to_index_name(index),
        id=to_doc_id(id),
        options=options,
    )


def encode_operation(operation: Operation) -> list[str]:
    """
    Serialize one operation into its bulk lines.

    Parameters
    ----------
    operation : Operation
        Operation to serialize.

    Returns
    -------
    list[str]
        One or two JSON lines, without trailing newlines.

    Raises
    ------
    BatchEncodingError
        If the operation contains values that cannot be serialized.
    """
    try:
        lines = [json.dumps(operation.action_line(), separators=(",", ":"))]
        source = operation.source_line()
        if source is not None:
            lines.append(json.dumps(source, separators=(",", ":")))
    except (TypeError, ValueError) as error:
        raise BatchEncodingError(
            f"Cannot encode {operation.op_type.value} operation for index {operation.index!r}: "
            f"{error}"
        ) from error
    return lines


def encode_bulk(operations: t.Iterable[Operation]) -> str:
    """Serialize operations into a complete NDJSON bulk body."""
    return join_lines(line for operation in operations for line in encode_operation(operation))


def join_lines(lines: t.Iterable[str]) -> str:
    """Join encoded lines into a bulk body terminated by a newline."""
    body = "\n".join(lines)
    return f"{body}\n" if body else ""


class BulkItem(BaseModel):
    """Outcome of one operation inside a bulk response."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    action: str
    index: str | None = Field(default=None, validation_alias=AliasChoices("_index", "index"))
    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    version: int | None = Field(default=None, validation_alias=AliasChoices("_version", "version"))
    status: int
    result: str | None = None
    error: dict[str, t.Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


class BulkResponse(BaseModel):
    """
    Decoded ``_bulk`` response.

    A successful bulk call can still contain failed items; check
    :attr:`errors` or :meth:`failed_items`.
    """

    model_config = ConfigDict(extra="allow")

    took: int = 0
    errors: bool = False
    items: list[BulkItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def flatten_items(cls, data: t.Any) -> t.Any:
        """Turn ``{"index": {...}}`` items into flat items with an ``action`` key."""
        if not isinstance(data, dict):
            return data
        items = data.get("items")
        if not isinstance(items, list):
            return data
        flattened = []
        for item in items:
            if isinstance(item, dict) and "action" not in item and len(item) == 1:
                action, details = next(iter(item.items()))
                flattened.append({"action": action, **details})
            else:
                flattened.append(item)
        return {**data, "items": flattened}

    def item(self, position: int) -> BulkItem:
        return self.items[position]

    def failed_items(self) -> list[tuple[int, BulkItem]]:
        """Return ``(position, item)`` for every failed operation."""
        return [(position, item) for position, item in enumerate(self.items) if not item.ok]
