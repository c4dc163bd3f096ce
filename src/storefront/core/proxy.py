"""
Gateway Proxy Engine
Forwards one inbound request to the backend chosen by the dispatch table and relays the result
"""
from dataclasses import dataclass
from typing import AsyncIterable, List, Optional, Sequence, Tuple, Union

import httpx

from storefront.core.config import Settings
from storefront.core.dispatch import DispatchTable, ResolvedRoute
from storefront.core.exceptions import BackendUnreachableError, OutboundConstructionError
from storefront.core.logging import get_logger

logger = get_logger(__name__)

RawHeaders = Sequence[Tuple[bytes, bytes]]
Body = Union[bytes, AsyncIterable[bytes], None]

# RFC 7230 section 6.1
HOP_BY_HOP_HEADERS = frozenset({
    b"connection", b"keep-alive", b"proxy-authenticate", b"proxy-authorization",
    b"te", b"trailer", b"trailers", b"transfer-encoding", b"upgrade",
})


@dataclass(frozen=True)
class InboundRequest:
    """The parts of a client request the engine forwards"""

    method: str
    path: str
    headers: RawHeaders
    query_string: bytes = b""
    body: Body = None

    def has_body(self) -> bool:
        """Whether the client framed a body (Content-Length or Transfer-Encoding)"""
        return any(
            name.lower() in (b"content-length", b"transfer-encoding")
            for name, _ in self.headers
        )


@dataclass(frozen=True)
class BackendResponse:
    """A fully buffered backend response"""

    status_code: int
    headers: List[Tuple[bytes, bytes]]
    body: bytes

    @property
    def content_type(self) -> Optional[str]:
        for name, value in self.headers:
            if name == b"content-type":
                return value.decode("latin-1")
        return None


def create_http_client(settings: Settings,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Build the pooled outbound client

    Timeouts and pool limits bound how long a request may block and how many
    backend connections may be open at once.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.PROXY_CONNECT_TIMEOUT,
            read=settings.PROXY_READ_TIMEOUT,
            write=settings.PROXY_WRITE_TIMEOUT,
            pool=settings.PROXY_POOL_TIMEOUT
        ),
        limits=httpx.Limits(
            max_connections=settings.PROXY_MAX_CONNECTIONS,
            max_keepalive_connections=settings.PROXY_MAX_KEEPALIVE_CONNECTIONS
        ),
        # Redirects are relayed to the caller, not followed
        follow_redirects=False,
        trust_env=False,
        transport=transport
    )


def strip_hop_by_hop(headers: RawHeaders) -> List[Tuple[bytes, bytes]]:
    """Remove hop-by-hop headers, including any listed in the Connection header"""
    named = set(HOP_BY_HOP_HEADERS)
    for name, value in headers:
        if name.lower() == b"connection":
            named.update(token.strip().lower() for token in value.split(b",") if token.strip())
    return [(name, value) for name, value in headers if name.lower() not in named]


class ProxyEngine:
    """Stateless request forwarder; safe to call concurrently for unrelated requests"""

    def __init__(self, dispatch_table: DispatchTable, http_client: httpx.AsyncClient,
                 strip_hop_by_hop_headers: bool = False):
        self.dispatch_table = dispatch_table
        self.http_client = http_client
        self.strip_hop_by_hop_headers = strip_hop_by_hop_headers

    def resolve(self, path: str) -> Optional[ResolvedRoute]:
        return self.dispatch_table.resolve(path)

    def build_outbound(self, inbound: InboundRequest, route: ResolvedRoute) -> httpx.Request:
        """
        Derive the outbound request from the inbound one

        The scheme and authority come from the backend base URL, the path is
        the remainder after the mount point and the query string is passed
        through as received. Method, headers and body are carried over; Host
        is left to the transport so it names the backend.

        Raises:
            OutboundConstructionError: If the target URL or headers are malformed
        """
        target_url = route.target + route.remainder
        if inbound.query_string:
            target_url += "?" + inbound.query_string.decode("latin-1")

        headers = [(name, value) for name, value in inbound.headers if name.lower() != b"host"]
        if self.strip_hop_by_hop_headers:
            headers = strip_hop_by_hop(headers)

        timeout = httpx.Timeout(route.rule.timeout) if route.rule.timeout else self.http_client.timeout

        try:
            # The URL parser drops "." and ".." segments; the wire target keeps them
            request_target = (route.remainder or "/").encode("latin-1")
            if inbound.query_string:
                request_target += b"?" + inbound.query_string

            return httpx.Request(
                method=inbound.method,
                url=target_url,
                headers=headers,
                content=inbound.body if inbound.has_body() else None,
                extensions={"timeout": timeout.as_dict(), "target": request_target}
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            raise OutboundConstructionError(
                f"Invalid outbound request: {e}",
                method=inbound.method,
                path=inbound.path,
                target=target_url
            ) from e

    async def forward(self, inbound: InboundRequest, route: ResolvedRoute) -> BackendResponse:
        """
        Execute one request against the resolved backend

        Args:
            inbound: The client request
            route: Dispatch result for the request path

        Returns:
            BackendResponse with the backend's status, headers and raw body.
            Backend 4xx/5xx responses are returned, not raised.

        Raises:
            OutboundConstructionError: Request could not be built or sent as built
            BackendUnreachableError: Connection, DNS, timeout or transfer failure
        """
        outbound = self.build_outbound(inbound, route)
        target = str(outbound.url)

        logger.info(
            "Proxying request",
            method=inbound.method,
            path=inbound.path,
            target=target,
            backend=route.rule.name or route.rule.prefix
        )

        try:
            response = await self.http_client.send(outbound, stream=True)
            try:
                body = b"".join([chunk async for chunk in response.aiter_raw()])
            finally:
                await response.aclose()
        except (httpx.UnsupportedProtocol, httpx.LocalProtocolError) as e:
            logger.error("Outbound request rejected", method=inbound.method, path=inbound.path,
                         target=target, error=str(e))
            raise OutboundConstructionError(
                f"Invalid outbound request: {e}",
                method=inbound.method,
                path=inbound.path,
                target=target
            ) from e
        except httpx.TransportError as e:
            detail = str(e) or e.__class__.__name__
            logger.error("Backend unreachable", method=inbound.method, path=inbound.path,
                         target=target, error=detail)
            raise BackendUnreachableError(
                f"Bad Gateway: unable to reach backend ({detail})",
                method=inbound.method,
                path=inbound.path,
                target=target
            ) from e

        result = BackendResponse(
            status_code=response.status_code,
            headers=self._relay_headers(response.status_code, response.headers.raw, body),
            body=body
        )

        logger.info(
            "Request forwarded",
            method=inbound.method,
            path=inbound.path,
            target=target,
            status_code=result.status_code,
            response_size=len(body),
            content_type=result.content_type
        )
        return result

    def _relay_headers(self, status_code: int, raw_headers: RawHeaders, body: bytes) -> List[Tuple[bytes, bytes]]:
        """
        Copy backend headers for the caller

        The body has been buffered, so chunked framing no longer applies: the
        Transfer-Encoding header is dropped and a Content-Length is supplied
        when the backend did not send one and the status allows a body.
        """
        headers = [(name.lower(), value) for name, value in raw_headers]
        if self.strip_hop_by_hop_headers:
            headers = strip_hop_by_hop(headers)
        headers = [(name, value) for name, value in headers if name != b"transfer-encoding"]

        has_length = any(name == b"content-length" for name, _ in headers)
        if not has_length and status_code >= 200 and status_code not in (204, 304):
            headers.append((b"content-length", str(len(body)).encode("latin-1")))
        return headers
