"""
Rewriting of upstream responses so the client keeps browsing through the proxy.

Two things get rewritten:
- the Location header of redirects, which is turned back into a
  ``/<percent-encoded absolute URL>`` path served by this proxy;
- root-relative ``href``/``src``/``action`` attributes in HTML documents.
"""

import html
import re
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from forward_proxy.proxy.errors import RewriteError

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}

# href="/x", src='/x', action="/x" but never protocol-relative "//host/x"
RELATIVE_PATH_PATTERN = re.compile(r"((href|src|action)=[\"'])/(?!/)")

RELATIVE_VALUE_PATTERN = re.compile(
    r"(?P<prefix>(?:href|src|action)=(?P<quote>[\"']))/(?!/)"
    r"(?P<path>(?:(?!(?P=quote)).)*)"
)

# Characters encodeURIComponent leaves alone besides alphanumerics and "-_.~"
_URI_COMPONENT_SAFE = "!*'()"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def is_redirect_status(status_code: int) -> bool:
    return status_code in REDIRECT_STATUS_CODES


def _normalize_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme in ("http", "https") and parts.netloc and not parts.path:
        parts = parts._replace(path="/")
    return urlunsplit(parts)


def resolve_location(location: str, base_url: str) -> str:
    """Resolve a (possibly relative) Location against the URL that was fetched."""
    try:
        return _normalize_url(urljoin(base_url, location))
    except ValueError as e:
        raise RewriteError(f"Invalid redirect location '{location}': {e}") from e


def rewrite_redirect_location(location: str, base_url: str) -> str:
    """
    Rewrite a Location header from the target server into a proxy path.

    The result re-enters the proxy's own dispatch convention, so a chain
    of redirects keeps being proxied.
    """
    return "/" + encode_uri_component(resolve_location(location, base_url))


def rewrite_relative_paths(text: str, scheme: str, host: str) -> str:
    """Point root-relative links at the proxy's own origin."""
    replacement = f"{scheme}://{host}/"
    return RELATIVE_PATH_PATTERN.sub(lambda m: m.group(1) + replacement, text)


def rewrite_relative_paths_to_target(text: str, target_origin: str) -> str:
    """
    Turn root-relative links into ``/<percent-encoded upstream URL>`` so they
    are fetched from the upstream origin through the proxy.
    """

    def _replace(match: re.Match) -> str:
        absolute = f"{target_origin}/{html.unescape(match.group('path'))}"
        return f"{match.group('prefix')}/{encode_uri_component(absolute)}"

    return RELATIVE_VALUE_PATTERN.sub(_replace, text)


def decode_html(content: bytes, encoding: str) -> str:
    try:
        return content.decode(encoding, errors="replace")
    except LookupError as e:
        raise RewriteError(f"Unsupported HTML charset '{encoding}'") from e


def encode_html(text: str, encoding: str) -> bytes:
    try:
        return text.encode(encoding)
    except (LookupError, UnicodeEncodeError) as e:
        raise RewriteError(f"Failed to re-encode HTML as '{encoding}': {e}") from e
