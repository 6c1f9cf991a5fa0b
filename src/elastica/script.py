"""
Scripts usable as the body of updates and upserts.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

from elastica.coercion import to_es, to_es_key


@dataclass(frozen=True)
class Script:
    """
    An inline or stored script.

    Exactly one of ``source`` (inline script text) and ``id`` (stored script)
    must be given.
    """

    source: str | None = None
    id: str | None = None
    lang: str | None = "painless"
    params: t.Mapping[str, t.Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.source is None) == (self.id is None):
            raise ValueError("A script needs exactly one of source or id")
        if self.id is not None:
            to_es_key(self.id)

    def to_es(self) -> dict[str, t.Any]:
        rendered: dict[str, t.Any] = {}
        if self.source is not None:
            rendered["source"] = self.source
            if self.lang:
                rendered["lang"] = self.lang
        else:
            rendered["id"] = self.id
        if self.params:
            rendered["params"] = to_es(self.params)
        return rendered
