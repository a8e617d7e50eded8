import httpx
import pytest
from starlette.datastructures import MutableHeaders

from forward_proxy.proxy.headers import (
    build_outbound_headers,
    filter_headers,
    finalize_response_headers,
    forward_set_cookies,
    is_forwardable_request_header,
    upstream_response_headers,
)


@pytest.fixture
def inbound_headers():
    return {
        "host": "proxy.example",
        "user-agent": "test-agent",
        "accept": "text/html",
        "cf-connecting-ip": "203.0.113.7",
        "CF-Ray": "8a1b2c3d4e5f",
        "connection": "keep-alive",
        "cookie": "session=abc123; theme=dark",
    }


class TestBuildOutboundHeaders:
    def test_platform_headers_removed(self, inbound_headers):
        result = build_outbound_headers(inbound_headers, "example.com")

        assert "cf-connecting-ip" not in result
        assert "CF-Ray" not in result

    def test_host_points_at_target(self, inbound_headers):
        result = build_outbound_headers(inbound_headers, "example.com")

        hosts = [v for k, v in result.items() if k.lower() == "host"]
        assert hosts == ["example.com"]

    def test_other_headers_pass_through(self, inbound_headers):
        result = build_outbound_headers(inbound_headers, "example.com")

        assert result["user-agent"] == "test-agent"
        assert result["accept"] == "text/html"

    def test_hop_by_hop_headers_removed(self, inbound_headers):
        result = build_outbound_headers(inbound_headers, "example.com")

        assert "connection" not in result

    def test_cookie_forwarded_verbatim(self, inbound_headers):
        result = build_outbound_headers(inbound_headers, "example.com")

        assert result["cookie"] == "session=abc123; theme=dark"

    def test_cookie_forwarded_with_mixed_case_name(self):
        result = build_outbound_headers({"Cookie": "a=1"}, "example.com")

        cookies = [v for k, v in result.items() if k.lower() == "cookie"]
        assert cookies == ["a=1"]

    def test_no_cookie_when_none_inbound(self):
        result = build_outbound_headers({"accept": "*/*"}, "example.com")

        assert not any(k.lower() == "cookie" for k in result)

    def test_cookie_survives_even_when_prefix_matches(self):
        # A prefix list that would otherwise filter the cookie away
        result = build_outbound_headers(
            {"cookie": "a=1"}, "example.com", prefixes=["coo"]
        )

        assert result["cookie"] == "a=1"

    def test_custom_prefixes(self):
        result = build_outbound_headers(
            {"x-vercel-id": "abc", "cf-ray": "1", "accept": "*/*"},
            "example.com",
            prefixes=["x-vercel-"],
        )

        assert "x-vercel-id" not in result
        assert result["cf-ray"] == "1"

    def test_works_with_starlette_headers(self):
        from starlette.datastructures import Headers

        headers = Headers(
            raw=[
                (b"host", b"proxy.example"),
                (b"cookie", b"a=1"),
                (b"cf-ipcountry", b"NL"),
            ]
        )

        result = build_outbound_headers(headers, "example.com")

        assert result == {"cookie": "a=1", "host": "example.com"}

    def test_repeated_headers_folded(self):
        from starlette.datastructures import Headers

        headers = Headers(
            raw=[
                (b"cookie", b"a=1"),
                (b"x-forwarded-for", b"1.1.1.1"),
                (b"cookie", b"b=2"),
                (b"x-forwarded-for", b"2.2.2.2"),
            ]
        )

        result = build_outbound_headers(headers, "example.com")

        assert result["cookie"] == "a=1; b=2"
        assert result["x-forwarded-for"] == "1.1.1.1, 2.2.2.2"


class TestFilterHeaders:
    def test_filtering_is_idempotent(self, inbound_headers):
        once = filter_headers(inbound_headers.items(), is_forwardable_request_header)
        twice = filter_headers(once.items(), is_forwardable_request_header)

        assert once == twice

    def test_filtering_keeps_repeated_values(self):
        result = filter_headers(
            [("Accept", "text/html"), ("accept", "*/*"), ("Host", "proxy.example")],
            is_forwardable_request_header,
        )

        assert result == {"Accept": "text/html, */*"}

    @pytest.mark.parametrize(
        "name", ["Host", "HOST", "cf-ray", "CF-Visitor", "Transfer-Encoding"]
    )
    def test_not_forwardable(self, name):
        assert not is_forwardable_request_header(name)

    @pytest.mark.parametrize("name", ["accept", "authorization", "x-cf-custom"])
    def test_forwardable(self, name):
        assert is_forwardable_request_header(name)


class TestResponseHeaders:
    def test_upstream_headers_keep_repeated_set_cookie(self):
        headers = httpx.Headers(
            [
                ("content-type", "text/plain"),
                ("set-cookie", "a=1; Path=/"),
                ("set-cookie", "b=2; Path=/"),
                ("transfer-encoding", "chunked"),
            ]
        )

        result = upstream_response_headers(headers)

        assert ("set-cookie", "a=1; Path=/") in result
        assert ("set-cookie", "b=2; Path=/") in result
        assert all(name != "transfer-encoding" for name, _ in result)

    def test_upstream_headers_exclude(self):
        headers = httpx.Headers(
            {"content-length": "10", "content-encoding": "gzip", "x-a": "1"}
        )

        result = upstream_response_headers(
            headers, exclude={"Content-Length", "content-encoding"}
        )

        assert result == [("x-a", "1")]

    def test_finalize_sets_cache_and_cors(self):
        headers = MutableHeaders()
        headers["Cache-Control"] = "public, max-age=3600"

        finalize_response_headers(headers)

        assert headers["cache-control"] == "no-store"
        assert headers["access-control-allow-origin"] == "*"
        assert headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE"
        assert headers["access-control-allow-headers"] == "*"

    def test_cors_methods_configurable(self, monkeypatch):
        monkeypatch.setattr(
            "forward_proxy.proxy.headers.CORS_ALLOW_METHODS", "GET, OPTIONS"
        )
        headers = MutableHeaders()

        finalize_response_headers(headers)

        assert headers["access-control-allow-methods"] == "GET, OPTIONS"

    def test_set_cookie_reassert_is_a_no_op_when_present(self):
        headers = MutableHeaders()
        headers.append("set-cookie", "a=1")

        forward_set_cookies(headers, ["a=1"])
        forward_set_cookies(headers, ["a=1"])

        assert headers.getlist("set-cookie") == ["a=1"]

    def test_set_cookie_added_when_missing(self):
        headers = MutableHeaders()

        finalize_response_headers(headers, ["a=1", "b=2"])

        assert headers.getlist("set-cookie") == ["a=1", "b=2"]
