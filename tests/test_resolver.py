"""Tests for per-request tag resolution."""

import datetime

import pytest
from starlette.responses import PlainTextResponse
from starlette.routing import Route, Router

from accesslog.services.resolver import FieldResolver, route_path
from accesslog.services.timestamp import TimestampCache

from conftest import make_scope


@pytest.fixture
def resolver():
    return FieldResolver()


class TestRequestFields:
    def test_method_and_path(self, resolver, make_exchange):
        ex = make_exchange(path="/users/42", method="DELETE")
        assert resolver.resolve("method", ex) == "DELETE"
        assert resolver.resolve("path", ex) == "/users/42"

    def test_url_keeps_query_string(self, resolver, make_exchange):
        ex = make_exchange(path="/search", query_string=b"q=log&page=2")
        assert resolver.resolve("url", ex) == "/search?q=log&page=2"
        assert resolver.resolve("path", ex) == "/search"

    def test_ip_and_forwarded_for(self, resolver, make_exchange):
        ex = make_exchange(headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert resolver.resolve("ip", ex) == "10.0.0.7"
        assert resolver.resolve("ips", ex) == "203.0.113.9, 10.0.0.1"

    def test_unknown_client(self, resolver, make_exchange):
        assert resolver.resolve("ip", make_exchange(client=None)) == ""

    def test_host_and_protocol(self, resolver, make_exchange):
        ex = make_exchange(headers={"Host": "api.example.com"}, scheme="https")
        assert resolver.resolve("host", ex) == "api.example.com"
        assert resolver.resolve("protocol", ex) == "https"

    def test_request_protocol(self, resolver, make_exchange):
        assert resolver.resolve("request-protocol", make_exchange(http_version="1.1")) == "HTTP/1.1"
        assert resolver.resolve("request-protocol", make_exchange(http_version="2")) == "unknown"
        assert resolver.resolve("request-protocol", make_exchange(http_version="1.0")) == "unknown"

    def test_body(self, resolver, make_exchange):
        ex = make_exchange()
        ex.body = "naïve".encode("utf-8")
        assert resolver.resolve("body", ex) == "naïve"


class TestResponseFields:
    def test_status_and_byte_counts(self, resolver, make_exchange):
        ex = make_exchange(status_code=201)
        ex.bytes_sent = 1234
        ex.bytes_received = 56
        assert resolver.resolve("status", ex) == "201"
        assert resolver.resolve("bytes-sent", ex) == "1234"
        assert resolver.resolve("bytes-received", ex) == "56"

    def test_error_raised(self, resolver, make_exchange):
        ex = make_exchange()
        assert resolver.resolve("error", ex) == ""
        ex.error = RuntimeError("disk full")
        assert resolver.resolve("error", ex) == "disk full"

    def test_error_attached_to_request_state(self, resolver, make_exchange):
        ex = make_exchange(state={"error": ValueError("bad token")})
        assert resolver.resolve("error", ex) == "bad token"

    def test_latency_is_not_resolved_here(self, resolver, make_exchange):
        assert resolver.resolve("latency", make_exchange()) == ""


class TestCombinedLogHeaders:
    def test_missing_headers_outside_combined_log(self, resolver, make_exchange):
        ex = make_exchange()
        assert resolver.resolve("referer", ex) == ""
        assert resolver.resolve("user-agent", ex) == ""

    def test_missing_headers_in_combined_log(self, make_exchange):
        resolver = FieldResolver(combined_log=True)
        ex = make_exchange()
        assert resolver.resolve("referer", ex) == "-"
        assert resolver.resolve("user-agent", ex) == "-"

    def test_present_headers(self, make_exchange):
        ex = make_exchange(headers={"Referer": "https://example.com/", "User-Agent": "curl/8.0"})
        for resolver in (FieldResolver(), FieldResolver(combined_log=True)):
            assert resolver.resolve("referer", ex) == "https://example.com/"
            assert resolver.resolve("user-agent", ex) == "curl/8.0"


class TestParameterizedTags:
    def test_header_lookup_is_case_insensitive(self, resolver, make_exchange):
        ex = make_exchange(headers={"Authorization": "Bearer abc"})
        assert resolver.resolve("header:authorization", ex) == "Bearer abc"
        assert resolver.resolve("header:Authorization", ex) == "Bearer abc"
        assert resolver.resolve("header:X-Missing", ex) == ""

    def test_query_first_value(self, resolver, make_exchange):
        ex = make_exchange(query_string=b"tag=a&tag=b&page=3")
        assert resolver.resolve("query:page", ex) == "3"
        assert resolver.resolve("query:tag", ex) == "a"
        assert resolver.resolve("query:missing", ex) == ""

    def test_cookie(self, resolver, make_exchange):
        ex = make_exchange(headers={"Cookie": "session=xyz; theme=dark"})
        assert resolver.resolve("cookie:theme", ex) == "dark"
        assert resolver.resolve("cookie:nope", ex) == ""

    def test_form(self, resolver, make_exchange):
        ex = make_exchange(method="POST")
        ex.form = {"name": "ada"}
        assert resolver.resolve("form:name", ex) == "ada"
        assert resolver.resolve("form:email", ex) == ""


class TestTimeAndUnknownTags:
    def test_time_without_cache_is_empty(self, resolver, make_exchange):
        assert resolver.resolve("time", make_exchange()) == ""

    def test_time_from_cache(self, make_exchange):
        cache = TimestampCache("%H:%M", clock=lambda: datetime.datetime(2021, 1, 1, 9, 15))
        resolver = FieldResolver(timestamp=cache)
        assert resolver.resolve("time", make_exchange()) == "09:15"

    def test_unknown_tag_is_empty(self, resolver, make_exchange):
        assert resolver.resolve("not-a-real-tag", make_exchange()) == ""
        assert resolver.resolve("header", make_exchange()) == ""

    def test_short_aliases(self, resolver, make_exchange):
        ex = make_exchange(headers={"User-Agent": "curl/8.0"}, status_code=200)
        ex.bytes_sent = 9
        assert resolver.resolve("ua", ex) == "curl/8.0"
        assert resolver.resolve("bytesSent", ex) == "9"
        assert resolver.resolve("reqProtocol", ex) == "HTTP/1.1"


class TestRoutePath:
    def test_route_recorded_in_scope(self):
        class MatchedRoute:
            path = "/test/{param}/suffix"

        scope = make_scope(path="/test/af593469/suffix", route=MatchedRoute())
        assert route_path(scope) == "/test/{param}/suffix"

    def test_route_matched_through_router(self):
        async def item(request):
            return PlainTextResponse("ok")

        router = Router(routes=[Route("/items/{item_id}", item)])
        scope = make_scope(path="/items/5", router=router)
        assert route_path(scope) == "/items/{item_id}"

    def test_no_route(self):
        assert route_path(make_scope()) == ""
