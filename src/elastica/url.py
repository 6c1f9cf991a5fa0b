"""
URL construction for REST requests.
"""

import typing as t
from urllib.parse import quote, urlencode

from elastica.coercion import compact, to_query_value


def query_string(params: t.Mapping[str, t.Any] | None) -> str:
    """
    Build a query string from a parameter mapping.

    Parameters
    ----------
    params : typing.Mapping[str, typing.Any] | None
        Query parameters. ``None`` values are dropped.

    Returns
    -------
    str
        ``"?k=v&..."`` or an empty string when there is nothing to encode.
    """
    compacted = compact(params)
    if not compacted:
        return ""
    return "?" + urlencode({key: to_query_value(value) for key, value in compacted.items()})


def base_url(scheme: str, hostname: str, port: int | None = None) -> str:
    """
    Build ``scheme://hostname[:port]``.

    Parameters
    ----------
    scheme : str
        ``"http"`` or ``"https"``.
    hostname : str
        Host name or address.
    port : int | None, optional
        TCP port; omitted from the URL when ``None``.

    Returns
    -------
    str
        Base URL without a trailing slash.
    """
    if not scheme or not hostname:
        raise ValueError("Both scheme and hostname are required to build a URL")
    if port is None:
        return f"{scheme}://{hostname}"
    return f"{scheme}://{hostname}:{port}"


def build_url(
    *,
    scheme: str = "http",
    hostname: str = "localhost",
    port: int | None = None,
    segments: t.Sequence[str] = (),
    query: t.Mapping[str, t.Any] | None = None,
) -> str:
    """
    Build a full request URL.

    Every segment is percent-encoded as one path piece, so a document id
    containing ``/`` cannot escape its segment. Commas and wildcards stay
    literal so multi-index expressions survive.
    """
    path = "/".join(quote(str(segment), safe=",*") for segment in segments if segment)
    return f"{base_url(scheme, hostname, port)}/{path}{query_string(query)}"
