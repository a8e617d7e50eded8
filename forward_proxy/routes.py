import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, Response

from forward_proxy.landing import LANDING_PAGE_HTML
from forward_proxy.proxy import ProxyError, error_response, forward_request
from forward_proxy.proxy.headers import finalize_response_headers
from forward_proxy.utils.exception_logging import (
    find_exception_in_exception_groups,
    format_exception_message,
    log_exception_with_details,
)

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@router.api_route("/", methods=PROXY_METHODS, include_in_schema=False)
async def landing_page() -> Response:
    """The root path is never proxied."""
    response = HTMLResponse(LANDING_PAGE_HTML, media_type="text/html; charset=utf-8")
    finalize_response_headers(response.headers)
    return response


# Registered last so it does not shadow the routes above
@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str) -> Response:
    """Catch-all route: the path is the percent-encoded target URL."""
    try:
        return await forward_request(request)
    except Exception as e:
        proxy_error = find_exception_in_exception_groups(e, ProxyError)
        log_exception_with_details(
            logger,
            "[Proxy]",
            e,
            level=logging.WARNING if proxy_error else logging.ERROR,
        )
        return error_response(format_exception_message(proxy_error or e))
