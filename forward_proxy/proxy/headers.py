from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from starlette.datastructures import MutableHeaders

from forward_proxy.vars import CORS_ALLOW_METHODS, PLATFORM_HEADER_PREFIXES

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


def _joined_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive lookup joining every value sent under ``name``."""
    name_lower = name.lower()
    values = [value for key, value in headers.items() if key.lower() == name_lower]
    if not values:
        return None
    return _separator(name_lower).join(values)


def _separator(name_lower: str) -> str:
    return "; " if name_lower == "cookie" else ", "


def filter_headers(
    headers: Iterable[Tuple[str, str]], keep: Callable[[str], bool]
) -> Dict[str, str]:
    """
    Copy the (name, value) pairs whose name passes ``keep``.
    Repeated names are folded into one entry, values in arrival order.
    """
    result: Dict[str, str] = {}
    seen: Dict[str, str] = {}
    for name, value in headers:
        if not keep(name):
            continue
        name_lower = name.lower()
        if name_lower in seen:
            first_name = seen[name_lower]
            result[first_name] = (
                f"{result[first_name]}{_separator(name_lower)}{value}"
            )
        else:
            seen[name_lower] = name
            result[name] = value
    return result


def is_forwardable_request_header(
    name: str, prefixes: Optional[Sequence[str]] = None
) -> bool:
    """
    Whether an inbound header may be sent to the upstream.
    Platform metadata (by prefix), hop-by-hop headers and Host never are.
    """
    if prefixes is None:
        prefixes = PLATFORM_HEADER_PREFIXES
    name_lower = name.lower()
    if name_lower == "host" or name_lower in HOP_BY_HOP_HEADERS:
        return False
    return not any(name_lower.startswith(prefix) for prefix in prefixes)


def build_outbound_headers(
    request_headers: Mapping[str, str],
    target_host: str,
    prefixes: Optional[Sequence[str]] = None,
) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the target server.

    The Cookie header is re-set explicitly so it survives whatever the
    filter drops, and Host is pointed at the target so virtual-hosted
    upstreams route correctly.
    """
    headers = filter_headers(
        request_headers.items(),
        lambda name: is_forwardable_request_header(name, prefixes),
    )

    cookie = _joined_header(request_headers, "cookie")
    if cookie is not None:
        for name in [n for n in headers if n.lower() == "cookie"]:
            del headers[name]
        headers["cookie"] = cookie

    headers["host"] = target_host
    return headers


def upstream_response_headers(
    upstream_headers, exclude: Iterable[str] = ()
) -> List[Tuple[str, str]]:
    """
    Copy upstream response headers, keeping repeated headers (Set-Cookie)
    as separate entries and skipping hop-by-hop ones.
    """
    skipped = HOP_BY_HOP_HEADERS | {name.lower() for name in exclude}
    return [
        (name, value)
        for name, value in upstream_headers.multi_items()
        if name.lower() not in skipped
    ]


def forward_set_cookies(headers: MutableHeaders, set_cookies: Sequence[str]) -> None:
    """Make sure every upstream Set-Cookie value is present exactly once."""
    present = headers.getlist("set-cookie")
    for value in set_cookies:
        if value not in present:
            headers.append("set-cookie", value)
            present.append(value)


def apply_no_cache_headers(headers: MutableHeaders) -> None:
    headers["Cache-Control"] = "no-store"


def apply_cors_headers(headers: MutableHeaders) -> None:
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    headers["Access-Control-Allow-Headers"] = "*"


def finalize_response_headers(
    headers: MutableHeaders, set_cookies: Sequence[str] = ()
) -> None:
    """Policy applied to every proxied response except redirects."""
    forward_set_cookies(headers, set_cookies)
    apply_no_cache_headers(headers)
    apply_cors_headers(headers)
