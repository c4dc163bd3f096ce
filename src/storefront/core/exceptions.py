"""
Gateway exceptions.

Every failure that originates inside the gateway (as opposed to an error
status returned by a backend, which is relayed untouched) is raised as a
``GatewayError`` subclass. Each class carries the HTTP status the caller
receives and renders itself as the JSON error payload.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base exception for gateway-local request failures.

    Attributes:
        status_code: HTTP status returned to the caller
        error_code: Stable machine-readable identifier
        method: Inbound request method
        path: Inbound request path
        target: Outbound URL, when one was computed
    """

    status_code: int = 500
    default_error_code: str = "gateway_error"

    def __init__(self, message: str,
                 method: Optional[str] = None,
                 path: Optional[str] = None,
                 target: Optional[str] = None,
                 error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.method = method
        self.path = path
        self.target = target
        self.error_code = error_code or self.default_error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the JSON error payload."""
        payload: Dict[str, Any] = {
            "error": self.message,
            "error_type": self.error_code,
            "method": self.method,
            "path": self.path,
        }
        if self.target is not None:
            payload["target"] = self.target
        return payload


class RouteNotFoundError(GatewayError):
    """No dispatch rule matches the request path."""

    status_code = 404
    default_error_code = "route_not_found"

    def __init__(self, method: str, path: str):
        super().__init__(f"No route for {path}", method=method, path=path)


class OutboundConstructionError(GatewayError):
    """The outbound request could not be built, e.g. invalid characters in the URL."""

    status_code = 500
    default_error_code = "outbound_construction_error"


class BackendUnreachableError(GatewayError):
    """The backend could not be reached: refused connection, DNS failure, timeout or broken transfer."""

    status_code = 502
    default_error_code = "backend_unreachable"
