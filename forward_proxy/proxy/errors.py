class ProxyError(Exception):
    """Base class for failures while forwarding a single request."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTargetError(ProxyError):
    """The request path does not decode to a usable absolute URL."""


class UpstreamFetchError(ProxyError):
    """The outbound request could not be completed (DNS, TLS, refused, timeout)."""


class RewriteError(ProxyError):
    """The upstream response could not be rewritten."""
