"""
Gateway API Routes
A single catch-all endpoint that hands every request to the dispatch table and proxy engine
"""
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from storefront.core.exceptions import GatewayError, RouteNotFoundError
from storefront.core.logging import get_logger
from storefront.core.proxy import BackendResponse, InboundRequest, ProxyEngine

logger = get_logger(__name__)


def get_proxy_engine(request: Request) -> ProxyEngine:
    """The engine built in the application lifespan"""
    engine = getattr(request.app.state, "proxy_engine", None)
    if engine is None:
        raise RuntimeError("Proxy engine not initialized")
    return engine


def request_path(request: Request) -> str:
    """Raw request path, still percent-encoded, without the query string"""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


def relay_response(result: BackendResponse) -> Response:
    """Turn a buffered backend response into the caller's response, headers untouched"""
    response = Response(content=result.body, status_code=result.status_code)
    response.raw_headers = list(result.headers)
    return response


async def proxy_request(request: Request) -> Response:
    """Route the request by mount point and relay the backend's answer"""
    engine = get_proxy_engine(request)
    path = request_path(request)

    route = engine.resolve(path)
    if route is None:
        raise RouteNotFoundError(request.method, path)

    inbound = InboundRequest(
        method=request.method,
        path=path,
        headers=request.headers.raw,
        query_string=request.scope.get("query_string", b""),
        body=request.stream()
    )
    result = await engine.forward(inbound, route)
    return relay_response(result)


async def gateway_error_handler(request: Request, exc: GatewayError):
    """Render gateway-local failures as structured JSON"""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Gateway request failed",
        error_type=exc.error_code,
        status_code=exc.status_code,
        method=exc.method or request.method,
        path=exc.path or request.url.path,
        target=exc.target,
        error=exc.message
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_routes(app: FastAPI) -> None:
    """
    Install the catch-all proxy route

    Registered directly on the application (not through an APIRouter) so the
    route keeps ``methods=None`` and accepts every HTTP method.
    """
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_route("/{path:path}", proxy_request, include_in_schema=False)
