import logging
import re
from typing import Optional
from urllib.parse import quote, unquote_to_bytes, urlsplit

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace

from forward_proxy.proxy.errors import InvalidTargetError, UpstreamFetchError
from forward_proxy.proxy.headers import (
    build_outbound_headers,
    finalize_response_headers,
    upstream_response_headers,
)
from forward_proxy.proxy.rewriting import (
    decode_html,
    encode_html,
    is_redirect_status,
    rewrite_redirect_location,
    rewrite_relative_paths,
    rewrite_relative_paths_to_target,
)
from forward_proxy.utils import redact_headers
from forward_proxy.utils.traced_requests import traced_request
from forward_proxy.vars import HTML_REWRITE_MODE, PROXY_TIMEOUT

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# "%" not followed by two hex digits
MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# Dropped from rewritten HTML: the body length changes and httpx already decoded it
REWRITTEN_BODY_HEADERS = {"content-length", "content-encoding"}


def create_upstream_client() -> httpx.AsyncClient:
    """One client per request; redirects are surfaced to the caller, never followed."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=False,
    )


def raw_request_path(request: Request) -> str:
    """The request path exactly as the client percent-encoded it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return quote(request.url.path, safe="/")


def decode_target_path(raw_path: str) -> str:
    """Strip the leading slash and percent-decode the rest as UTF-8."""
    raw_target = raw_path[1:] if raw_path.startswith("/") else raw_path
    if MALFORMED_ESCAPE.search(raw_target):
        raise InvalidTargetError(f"URI malformed: '{raw_path}'")
    try:
        return unquote_to_bytes(raw_target).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidTargetError(f"URI malformed: '{raw_path}'") from e


def ensure_protocol(url: str, scheme: str) -> str:
    """Targets without an explicit scheme use the scheme the client reached us with."""
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"{scheme.rstrip(':')}://{url}"


def build_target_url(raw_target: str, scheme: str, query: Optional[str]) -> str:
    target_url = ensure_protocol(raw_target, scheme)
    if query:
        target_url = f"{target_url}?{query}"
    return target_url


def parse_target_url(target_url: str) -> httpx.URL:
    try:
        url = httpx.URL(target_url)
    except (httpx.InvalidURL, ValueError, TypeError) as e:
        raise InvalidTargetError(f"Invalid URL: '{target_url}' ({e})") from e
    if url.scheme not in ("http", "https") or not url.raw_host:
        raise InvalidTargetError(f"Invalid URL: '{target_url}'")
    return url


def host_header(url: httpx.URL) -> str:
    """Hostname of the target (no port), bracketed when it is an IPv6 literal."""
    host = url.raw_host.decode("ascii")
    return f"[{host}]" if ":" in host else host


def _origin(url: httpx.URL) -> str:
    parts = urlsplit(str(url))
    return f"{parts.scheme}://{parts.netloc}"


def error_response(message: str, status_code: int = 500) -> JSONResponse:
    response = JSONResponse(
        {"error": message},
        status_code=status_code,
        media_type="application/json; charset=utf-8",
    )
    finalize_response_headers(response.headers)
    return response


def _redirect_response(upstream: httpx.Response, base_url: str) -> Response:
    """
    Send the client back through the proxy instead of straight to the upstream.
    Only Location and Set-Cookie are carried over.
    """
    response = Response(content=upstream.content, status_code=upstream.status_code)
    response.headers["Location"] = rewrite_redirect_location(
        upstream.headers["location"], base_url
    )
    for cookie in upstream.headers.get_list("set-cookie"):
        response.headers.append("Set-Cookie", cookie)
    return response


def _html_response(
    upstream: httpx.Response, request: Request, url: httpx.URL
) -> Response:
    encoding = upstream.encoding or "utf-8"
    text = decode_html(upstream.content, encoding)

    if HTML_REWRITE_MODE == "target":
        text = rewrite_relative_paths_to_target(text, _origin(url))
    else:
        text = rewrite_relative_paths(text, request.url.scheme, request.url.netloc)

    response = Response(
        content=encode_html(text, encoding), status_code=upstream.status_code
    )
    for name, value in upstream_response_headers(
        upstream.headers, exclude=REWRITTEN_BODY_HEADERS
    ):
        response.headers.append(name, value)
    return response


def _passthrough_response(
    upstream: httpx.Response, client: httpx.AsyncClient
) -> StreamingResponse:
    async def stream_upstream():
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()
            await client.aclose()

    response = StreamingResponse(stream_upstream(), status_code=upstream.status_code)
    for name, value in upstream_response_headers(upstream.headers):
        response.headers.append(name, value)
    return response


async def forward_request(request: Request) -> Response:
    """
    Forward a request whose path encodes the target URL.

    Redirects get their Location rewritten back into a proxy path, HTML
    documents get their root-relative links rewritten, everything else is
    streamed through untouched. Every response except redirects leaves with
    caching disabled and CORS opened up.
    """
    raw_target = decode_target_path(raw_request_path(request))
    target_url = build_target_url(raw_target, request.url.scheme, request.url.query)

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target_url=target_url,
        start_message=f"[Proxy] {request.method} -> {target_url}",
    ) as span:
        url = parse_target_url(target_url)
        headers = build_outbound_headers(request.headers, host_header(url))
        logger.debug(f"[Proxy] Outbound headers: {redact_headers(headers)}")

        body = await request.body()
        client = create_upstream_client()
        try:
            upstream = await client.send(
                client.build_request(
                    request.method, url, headers=headers, content=body
                ),
                stream=True,
            )
        except httpx.HTTPError as e:
            await client.aclose()
            span.set_attribute("proxy.error", type(e).__name__)
            raise UpstreamFetchError(str(e) or type(e).__name__) from e

        span.set_attribute("proxy.status_code", upstream.status_code)
        set_cookies = upstream.headers.get_list("set-cookie")

        is_redirect = (
            is_redirect_status(upstream.status_code) and "location" in upstream.headers
        )
        # HEAD has no body to rewrite; passing it through keeps Content-Length
        is_html = (
            request.method != "HEAD"
            and "text/html" in upstream.headers.get("content-type", "")
        )

        if not (is_redirect or is_html):
            span.set_attribute("proxy.branch", "passthrough")
            response = _passthrough_response(upstream, client)
            finalize_response_headers(response.headers, set_cookies)
            return response

        try:
            await upstream.aread()
        except httpx.HTTPError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            raise UpstreamFetchError(str(e) or type(e).__name__) from e
        finally:
            await upstream.aclose()
            await client.aclose()

        if is_redirect:
            span.set_attribute("proxy.branch", "redirect")
            response = _redirect_response(upstream, str(url))
            span.set_attribute("proxy.rewritten_location", response.headers["location"])
            return response

        span.set_attribute("proxy.branch", "html")
        response = _html_response(upstream, request, url)
        finalize_response_headers(response.headers, set_cookies)
        return response
