"""
Tests for the gateway proxy engine
Outbound request construction, response relay and failure mapping, with
httpx.MockTransport standing in for the backends
"""
import asyncio
import json

import httpx
import pytest

from storefront.core.config import Settings
from storefront.core.dispatch import DispatchRule, DispatchTable, ResolvedRoute
from storefront.core.exceptions import BackendUnreachableError, OutboundConstructionError
from storefront.core.proxy import (
    BackendResponse,
    InboundRequest,
    ProxyEngine,
    create_http_client,
    strip_hop_by_hop,
)


def backend_response(status_code, body=b"", headers=None):
    """A streamed response, as a real transport would return it"""
    headers = list(headers or [])
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


def json_response(status_code, payload, extra_headers=None):
    body = json.dumps(payload).encode()
    headers = [("Content-Type", "application/json; charset=utf-8"),
               ("Content-Length", str(len(body)))]
    return backend_response(status_code, body, headers + list(extra_headers or []))


def make_engine(handler, strip=False):
    settings = Settings(_env_file=None)
    table = DispatchTable([
        DispatchRule(prefix="/inventory", target="http://inventory.local:8081", name="inventory"),
        DispatchRule(prefix="/orders", target="http://orders.local:8082", name="orders"),
    ])
    client = create_http_client(settings, transport=httpx.MockTransport(handler))
    return ProxyEngine(table, client, strip_hop_by_hop_headers=strip)


def inbound(method, path, headers=None, body=None, query_string=b""):
    return InboundRequest(
        method=method,
        path=path,
        headers=[(k.encode(), v.encode()) for k, v in (headers or [])],
        query_string=query_string,
        body=body
    )


async def send(engine, request):
    route = engine.resolve(request.path)
    assert route is not None
    return await engine.forward(request, route)


class TestOutboundRequest:
    """The request the backend receives"""

    @pytest.mark.asyncio
    async def test_inventory_request_reaches_inventory_backend(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {"id": "42"})

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/inventory/products/42"))

        assert len(seen) == 1
        assert seen[0].url.host == "inventory.local"
        assert seen[0].url.port == 8081
        assert seen[0].url.path == "/products/42"
        assert seen[0].method == "GET"

    @pytest.mark.asyncio
    async def test_orders_request_reaches_orders_backend(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, [])

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/orders/orders"))

        assert seen[0].url.host == "orders.local"
        assert seen[0].url.port == 8082
        assert seen[0].url.path == "/orders"

    @pytest.mark.asyncio
    async def test_exact_mount_point_targets_backend_root(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, [])

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/orders"))

        assert seen[0].url.path == "/"
        assert seen[0].extensions["target"] == b"/"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path,expected", [
        ("/inventory/a/../b", b"/a/../b"),
        ("/inventory/products/./42", b"/products/./42"),
        ("/inventory//products/%2E%2E/a%20b", b"//products/%2E%2E/a%20b"),
    ])
    async def test_dot_segments_reach_backend_unmodified(self, path, expected):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {})

        engine = make_engine(handler)
        await send(engine, inbound("GET", path))

        assert seen[0].extensions["target"] == expected
        assert seen[0].url.host == "inventory.local"

    @pytest.mark.asyncio
    async def test_wire_target_carries_raw_query(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {})

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/inventory/a/../products", query_string=b"ids={1|2}"))

        assert seen[0].extensions["target"] == b"/a/../products?ids={1|2}"

    @pytest.mark.asyncio
    async def test_query_string_passed_through(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {"products": []})

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/inventory/products",
                                   query_string=b"category=toys&min_price=5&page=2"))

        assert seen[0].url.query == b"category=toys&min_price=5&page=2"
        assert seen[0].url.params["category"] == "toys"

    @pytest.mark.asyncio
    async def test_headers_copied_except_host(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {})

        engine = make_engine(handler)
        await send(engine, inbound("GET", "/inventory/products", headers=[
            ("Host", "gateway.example:8080"),
            ("X-Request-Id", "abc-123"),
            ("Accept", "application/json"),
            ("X-Tag", "one"),
            ("X-Tag", "two"),
            ("Connection", "keep-alive"),
        ]))

        headers = seen[0].headers
        assert headers["host"] == "inventory.local:8081"
        assert headers["x-request-id"] == "abc-123"
        assert headers["accept"] == "application/json"
        assert headers.get_list("x-tag") == ["one", "two"]
        # Hop-by-hop headers are forwarded verbatim unless stripping is enabled
        assert headers["connection"] == "keep-alive"
        assert "user-agent" not in headers

    @pytest.mark.asyncio
    async def test_method_and_body_forwarded(self):
        received = {}

        async def handler(request):
            received["method"] = request.method
            received["body"] = await request.aread()
            received["content_type"] = request.headers["content-type"]
            return json_response(201, {"id": "o1"})

        payload = b'{"products":{"sku1":2}}'
        engine = make_engine(handler)
        await send(engine, inbound(
            "POST", "/orders",
            headers=[("Content-Type", "application/json"), ("Content-Length", str(len(payload)))],
            body=payload
        ))

        assert received == {
            "method": "POST",
            "body": payload,
            "content_type": "application/json",
        }

    @pytest.mark.asyncio
    async def test_streamed_body_forwarded_byte_for_byte(self):
        received = {}

        async def handler(request):
            received["body"] = await request.aread()
            return backend_response(204)

        async def chunks():
            yield b'{"name": "lamp", '
            yield b'"price": 19.5, '
            yield b'"note": "\xc3\xa9t\xc3\xa9"}'

        engine = make_engine(handler)
        await send(engine, inbound(
            "PATCH", "/inventory/products/7",
            headers=[("Content-Type", "application/json"), ("Transfer-Encoding", "chunked")],
            body=chunks()
        ))

        assert received["body"] == b'{"name": "lamp", "price": 19.5, "note": "\xc3\xa9t\xc3\xa9"}'

    @pytest.mark.asyncio
    async def test_custom_method_forwarded(self):
        seen = []

        def handler(request):
            seen.append(request.method)
            return backend_response(200)

        engine = make_engine(handler)
        await send(engine, inbound("PURGE", "/inventory/cache"))

        assert seen == ["PURGE"]

    def test_per_rule_timeout_applied(self):
        engine = make_engine(lambda request: backend_response(200))
        route = ResolvedRoute(
            rule=DispatchRule(prefix="/slow", target="http://slow.local", timeout=1.5),
            remainder="/x"
        )

        outbound = engine.build_outbound(inbound("GET", "/slow/x"), route)

        assert outbound.extensions["timeout"] == {"connect": 1.5, "read": 1.5, "write": 1.5, "pool": 1.5}

    def test_default_timeout_from_settings(self):
        engine = make_engine(lambda request: backend_response(200))
        route = engine.resolve("/inventory/products")

        outbound = engine.build_outbound(inbound("GET", "/inventory/products"), route)

        assert outbound.extensions["timeout"]["read"] == Settings(_env_file=None).PROXY_READ_TIMEOUT


class TestRelay:
    """What the caller gets back"""

    @pytest.mark.asyncio
    async def test_backend_error_status_relayed_unchanged(self):
        engine = make_engine(lambda request: json_response(404, {"error": "Product not found"}))

        result = await send(engine, inbound("GET", "/inventory/products/42"))

        assert isinstance(result, BackendResponse)
        assert result.status_code == 404
        assert result.body == b'{"error": "Product not found"}'
        assert result.content_type == "application/json; charset=utf-8"

    @pytest.mark.asyncio
    async def test_server_error_relayed_not_raised(self):
        engine = make_engine(lambda request: json_response(500, {"error": "boom"}))

        result = await send(engine, inbound("GET", "/orders/orders"))

        assert result.status_code == 500
        assert json.loads(result.body) == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_all_headers_relayed(self):
        engine = make_engine(lambda request: json_response(
            200, {"ok": True},
            extra_headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("X-Backend", "inventory")]
        ))

        result = await send(engine, inbound("GET", "/inventory/products"))

        assert result.headers.count((b"set-cookie", b"a=1")) == 1
        assert result.headers.count((b"set-cookie", b"b=2")) == 1
        assert (b"x-backend", b"inventory") in result.headers
        assert (b"content-type", b"application/json; charset=utf-8") in result.headers

    @pytest.mark.asyncio
    async def test_compressed_body_not_decoded(self):
        compressed = b"\x1f\x8b\x08\x00fake-gzip-payload"
        engine = make_engine(lambda request: backend_response(200, compressed, [
            ("Content-Type", "application/json"),
            ("Content-Encoding", "gzip"),
            ("Content-Length", str(len(compressed))),
        ]))

        result = await send(engine, inbound("GET", "/inventory/products"))

        assert result.body == compressed
        assert (b"content-encoding", b"gzip") in result.headers

    @pytest.mark.asyncio
    async def test_chunked_response_gets_content_length(self):
        engine = make_engine(lambda request: backend_response(200, b"[1,2,3]", [
            ("Content-Type", "application/json"),
            ("Transfer-Encoding", "chunked"),
        ]))

        result = await send(engine, inbound("GET", "/orders/orders"))

        names = [name for name, _ in result.headers]
        assert b"transfer-encoding" not in names
        assert (b"content-length", b"7") in result.headers

    @pytest.mark.asyncio
    async def test_no_content_has_no_length_added(self):
        engine = make_engine(lambda request: backend_response(204))

        result = await send(engine, inbound("DELETE", "/inventory/discounts/d1"))

        assert result.status_code == 204
        assert result.body == b""
        assert all(name != b"content-length" for name, _ in result.headers)

    @pytest.mark.asyncio
    async def test_redirect_relayed_not_followed(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return backend_response(307, headers=[("Location", "/orders/")])

        engine = make_engine(handler)
        result = await send(engine, inbound("GET", "/orders/orders"))

        assert result.status_code == 307
        assert (b"location", b"/orders/") in result.headers
        assert calls == ["/orders"]


class TestFailures:
    """Gateway-local failures"""

    @pytest.mark.asyncio
    async def test_connection_refused_is_backend_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

        engine = make_engine(handler)

        with pytest.raises(BackendUnreachableError) as exc_info:
            await send(engine, inbound("GET", "/inventory/products"))

        error = exc_info.value
        assert error.status_code == 502
        assert error.method == "GET"
        assert error.path == "/inventory/products"
        assert error.target == "http://inventory.local:8081/products"
        assert "Connection refused" in error.message

    @pytest.mark.asyncio
    async def test_timeout_is_backend_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        engine = make_engine(handler)

        with pytest.raises(BackendUnreachableError) as exc_info:
            await send(engine, inbound("GET", "/orders/orders"))

        assert exc_info.value.to_dict()["error_type"] == "backend_unreachable"

    @pytest.mark.asyncio
    async def test_invalid_url_is_construction_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return backend_response(200)

        engine = make_engine(handler)
        route = ResolvedRoute(
            rule=engine.dispatch_table.rules[0],
            remainder="/products/\x00bad"
        )

        with pytest.raises(OutboundConstructionError) as exc_info:
            await engine.forward(inbound("GET", "/inventory/products/\x00bad"), route)

        assert exc_info.value.status_code == 500
        assert calls == []

    @pytest.mark.asyncio
    async def test_engine_usable_after_failure(self):
        attempts = []

        def handler(request):
            attempts.append(request.url.host)
            if request.url.host == "inventory.local":
                raise httpx.ConnectError("refused", request=request)
            return json_response(200, [])

        engine = make_engine(handler)

        with pytest.raises(BackendUnreachableError):
            await send(engine, inbound("GET", "/inventory/products"))
        result = await send(engine, inbound("GET", "/orders/orders"))

        assert result.status_code == 200
        # No retry on failure
        assert attempts == ["inventory.local", "orders.local"]


class TestHopByHop:
    """Optional stripping of connection-management headers"""

    def test_strip_removes_listed_headers(self):
        headers = [
            (b"connection", b"keep-alive, X-Private"),
            (b"keep-alive", b"timeout=5"),
            (b"x-private", b"secret"),
            (b"upgrade", b"websocket"),
            (b"content-type", b"application/json"),
        ]

        assert strip_hop_by_hop(headers) == [(b"content-type", b"application/json")]

    @pytest.mark.asyncio
    async def test_strip_mode_applies_both_directions(self):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {}, extra_headers=[("Connection", "close"), ("Keep-Alive", "timeout=5")])

        engine = make_engine(handler, strip=True)
        result = await send(engine, inbound("GET", "/inventory/products", headers=[
            ("Connection", "keep-alive"),
            ("Proxy-Authorization", "Basic abc"),
            ("X-Request-Id", "r1"),
        ]))

        assert "proxy-authorization" not in seen[0].headers
        assert seen[0].headers["x-request-id"] == "r1"
        names = [name for name, _ in result.headers]
        assert b"connection" not in names
        assert b"keep-alive" not in names


class TestConcurrency:
    """Requests to different mount points are independent"""

    @pytest.mark.asyncio
    async def test_slow_backend_does_not_delay_other_mount_point(self):
        release = asyncio.Event()

        async def handler(request):
            if request.url.host == "inventory.local":
                await release.wait()
                return json_response(200, {"backend": "inventory"})
            return json_response(200, {"backend": "orders"})

        engine = make_engine(handler)
        slow = asyncio.create_task(send(engine, inbound("GET", "/inventory/products")))
        fast = asyncio.create_task(send(engine, inbound("GET", "/orders/orders")))

        done, pending = await asyncio.wait({slow, fast}, timeout=2, return_when=asyncio.FIRST_COMPLETED)

        assert fast in done
        assert slow in pending
        assert json.loads(fast.result().body) == {"backend": "orders"}

        release.set()
        result = await asyncio.wait_for(slow, timeout=2)
        assert json.loads(result.body) == {"backend": "inventory"}

    @pytest.mark.asyncio
    async def test_many_concurrent_requests_complete_independently(self):
        async def handler(request):
            await asyncio.sleep(0.01)
            return json_response(200, {"path": request.url.path})

        engine = make_engine(handler)
        paths = [f"/inventory/products/{i}" for i in range(10)] + [f"/orders/orders/{i}" for i in range(10)]

        results = await asyncio.gather(*(send(engine, inbound("GET", p)) for p in paths))

        expected = [p.split("/", 2)[2] for p in paths]
        assert [json.loads(r.body)["path"] for r in results] == ["/" + e for e in expected]
