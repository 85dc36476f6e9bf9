from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from hf_proxy.setting import ProxySettings

ALLOW_METHODS = "GET,POST,OPTIONS"
ALLOW_HEADERS = "Content-Type,Authorization"

# Sent instead of a real origin when the caller is not on the allow-list.
DENIED_ORIGIN = "null"


def resolve_allow_origin(allowed_origins: tuple[str, ...], origin: str | None) -> tuple[str, bool]:
    """Return the Access-Control-Allow-Origin value and whether to add ``Vary: Origin``."""
    if not allowed_origins or "*" in allowed_origins:
        return "*", False
    if origin and origin in allowed_origins:
        return origin, True
    return DENIED_ORIGIN, False


def apply_cors_headers(response: Response, allowed_origins: tuple[str, ...], origin: str | None) -> None:
    allow_origin, vary = resolve_allow_origin(allowed_origins, origin)
    response.headers["Access-Control-Allow-Origin"] = allow_origin
    response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
    response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
    if vary:
        response.headers["Vary"] = "Origin"


class CORSRelayMiddleware(BaseHTTPMiddleware):
    """Answers preflight requests and stamps CORS headers on every response.

    Disallowed origins are still served; only the browser-visible grant is
    withheld by sending the ``null`` origin.
    """

    def __init__(self, app: ASGIApp, settings: ProxySettings):
        super().__init__(app)
        self.allowed_origins = settings.allowed_origins

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")

        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)

        apply_cors_headers(response, self.allowed_origins, origin)
        return response
