"""
structlog configuration for elastica.

Library modules only call ``structlog.get_logger(__name__)``; applications opt
into rendering by calling :func:`setup_logging`.
"""

import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Document payloads can be large or sensitive; never render them.
_DROP_LOG_FIELDS = frozenset(
    {
        "body",
        "content",
        "doc",
        "headers",
        "payload",
        "source",
    }
)


def drop_payload_fields(
    logger: t.Any,
    method_name: str,
    event_dict: dict[str, t.Any],
) -> dict[str, t.Any]:
    """
    Remove payload-bearing keys from a structlog event.

    Parameters
    ----------
    logger : typing.Any
        Wrapped logger (unused).
    method_name : str
        Log method name (unused).
    event_dict : dict[str, typing.Any]
        Event being processed.

    Returns
    -------
    dict[str, typing.Any]
        Event without the dropped keys.
    """
    for key in _DROP_LOG_FIELDS.intersection(event_dict):
        del event_dict[key]
    return event_dict


def setup_logging(level: int = logging.DEBUG, json_output: bool = False) -> None:
    logging.getLogger("elastica").setLevel(level)
    renderer: t.Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            drop_payload_fields,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**required_context: t.Any) -> Iterator[None]:
    """Bind context vars for the duration of the block, keeping keys already bound."""
    current = structlog.contextvars.get_contextvars()
    to_bind = {key: value for key, value in required_context.items() if key not in current}

    if not to_bind:
        yield
        return
    with structlog.contextvars.bound_contextvars(**to_bind):
        yield
