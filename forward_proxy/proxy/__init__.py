from .errors import (
    ProxyError,
    InvalidTargetError,
    UpstreamFetchError,
    RewriteError,
)
from .forwarder import forward_request, error_response

__all__ = [
    "ProxyError",
    "InvalidTargetError",
    "UpstreamFetchError",
    "RewriteError",
    "forward_request",
    "error_response",
]
