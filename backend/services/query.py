"""Query translation — inbound parameters to upstream URLs.

The upstream API expects array filters as repeated ``key[]=value`` pairs
(``includes[]=cover_art&includes[]=author``). Inbound parameters are grouped
once into ``Single`` / ``Multi`` values so nothing downstream has to guess
whether a value is a list.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union
from urllib.parse import quote, urlencode

from errors import InvalidParameter

READ_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class Single:
    value: str


@dataclass(frozen=True)
class Multi:
    values: tuple[str, ...]


ParamValue = Union[Single, Multi]
Params = dict[str, ParamValue]


@dataclass
class ProxyRequest:
    """A read request destined for the upstream JSON API."""
    path: str  # upstream endpoint, e.g. "manga" or "statistics/manga"
    params: Params = field(default_factory=dict)
    method: str = "GET"
    resource_id: Optional[str] = None  # identifier embedded in the path


def _has_control_chars(text: str) -> bool:
    return any(ord(c) < 32 or ord(c) == 127 for c in text)


def _scalar(key: str, value) -> str:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        text = str(value)
    else:
        raise InvalidParameter(
            f"Invalid value for parameter '{key}'",
            details=f"unsupported type {type(value).__name__}",
        )
    if _has_control_chars(text):
        raise InvalidParameter(f"Invalid value for parameter '{key}'", details="control characters are not allowed")
    return text


def _check_key(key) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidParameter("Parameter names must be non-empty strings")
    if _has_control_chars(key):
        raise InvalidParameter("Invalid parameter name", details=repr(key))
    return key


def to_param(key: str, value) -> ParamValue:
    """Coerce a Python value into a parameter variant."""
    if isinstance(value, (Single, Multi)):
        return value
    if isinstance(value, (list, tuple)):
        return Multi(tuple(_scalar(key, v) for v in value))
    return Single(_scalar(key, value))


def params_from_mapping(mapping: dict) -> Params:
    return {_check_key(k): to_param(k, v) for k, v in mapping.items()}


def params_from_pairs(pairs: Iterable[tuple[str, str]]) -> Params:
    """Group inbound query pairs, keeping first-seen key order.

    A key ending in ``[]`` or appearing more than once becomes ``Multi``.
    """
    grouped: dict[str, list[str]] = {}
    for key, value in pairs:
        grouped.setdefault(_check_key(key), []).append(_scalar(key, value))

    params: Params = {}
    for key, values in grouped.items():
        if key.endswith("[]") or len(values) > 1:
            params[key] = Multi(tuple(values))
        else:
            params[key] = Single(values[0])
    return params


def build_query_string(params: Params, exclude: Iterable[str] = ()) -> str:
    """Serialize parameters as ``k=v`` pairs, one pair per ``Multi`` element."""
    skip = set(exclude)
    pairs: list[tuple[str, str]] = []
    for key, param in params.items():
        if key in skip:
            continue
        if isinstance(param, Multi):
            pairs.extend((key, v) for v in param.values)
        elif isinstance(param, Single):
            pairs.append((key, param.value))
        else:
            raise InvalidParameter(f"Invalid value for parameter '{key}'")
    # brackets stay literal so array keys read as the API documents them
    return urlencode(pairs, safe="[]")


def build_upstream_url(
    base_url: str,
    path: str,
    params: Optional[Params] = None,
    resource_id: Optional[str] = None,
) -> str:
    """Resolve ``{base}/{path}[/{id}][?query]``.

    When ``resource_id`` is given it is excluded from the query string.
    """
    url = f"{base_url.rstrip('/')}/{path.strip('/')}"
    exclude = ()
    if resource_id is not None:
        if not resource_id or "/" in resource_id or resource_id in (".", ".."):
            raise InvalidParameter("Invalid resource identifier", details=repr(resource_id))
        url = f"{url}/{quote(resource_id, safe='')}"
        exclude = ("id",)

    query = build_query_string(params or {}, exclude=exclude)
    return f"{url}?{query}" if query else url


def resolve(base_url: str, request: ProxyRequest) -> str:
    return build_upstream_url(base_url, request.path, request.params, request.resource_id)
