from typing import Callable, List, Optional

import httpx


class FakeUpstream:
    """
    In-memory stand-in for the servers the proxy forwards to.
    Every outbound request is recorded; responses come from ``handler``.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.clients: List[httpx.AsyncClient] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, text="ok")
        )

    def respond_with(
        self,
        status_code: int = 200,
        headers: Optional[list] = None,
        content: bytes = b"",
        chunks: Optional[List[bytes]] = None,
    ) -> None:
        """Answer every request with the given response; ``chunks`` makes the body a stream."""

        def _handler(request: httpx.Request) -> httpx.Response:
            if chunks is not None:
                return httpx.Response(
                    status_code, headers=headers, stream=_ChunkStream(chunks)
                )
            return httpx.Response(status_code, headers=headers, content=content)

        self.handler = _handler

    def fail_with(self, exception: Exception) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            raise exception

        self.handler = _handler

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return _as_stream(self.handler(request))

    def create_client(self) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(self._handle), follow_redirects=False
        )
        self.clients.append(client)
        return client

    @property
    def last_request(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


def _as_stream(response: httpx.Response) -> httpx.Response:
    """
    httpx loads ``content=`` bodies eagerly; a network transport never does.
    Re-wrap such responses so the proxy always receives an unread stream.
    """
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=_ChunkStream([response.content]),
    )


class _ChunkStream(httpx.AsyncByteStream):
    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
