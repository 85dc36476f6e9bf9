import json
import logging
from typing import Annotated, Any, AsyncIterator
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from hf_proxy.schema import ProxyError
from hf_proxy.setting import ProxySettings
from hf_proxy.utils import is_json_content_type

logger = logging.getLogger(__name__)

router = APIRouter()

RELAY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]
BODYLESS_METHODS = ("GET", "HEAD")


class InboundBodyError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def get_settings(request: Request) -> ProxySettings:
    return request.app.state.settings


async def get_http_client(
    settings: Annotated[ProxySettings, Depends(get_settings)],
) -> AsyncIterator[httpx.AsyncClient]:
    """One client per request; nothing is pooled across requests."""
    async with httpx.AsyncClient(timeout=settings.timeout) as client:
        yield client


def downstream_path(request: Request, route_prefix: str) -> str:
    """The request path below the relay prefix, still percent-encoded."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(request.url.path)
    if path.startswith(route_prefix):
        path = path[len(route_prefix):]
    return path


def build_upstream_url(settings: ProxySettings, path: str) -> str:
    """Swap the relay prefix for the upstream one, e.g. ``/models/gpt2`` -> ``.../hf-inference/models/gpt2``."""
    return f"{settings.upstream_url}/{path.lstrip('/')}"


def build_upstream_headers(settings: ProxySettings, content_type: str | None) -> dict[str, str]:
    """Get headers for the outbound request. Only Content-Type is taken from the caller."""
    headers = {"Content-Type": content_type or "application/json"}
    if settings.credential:
        headers["Authorization"] = f"Bearer {settings.credential}"
    return headers


async def read_inbound_body(request: Request, max_bytes: int) -> bytes:
    """Read the body, giving up as soon as it is known to exceed ``max_bytes``."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise InboundBodyError(413, f"Request body exceeds {max_bytes} bytes")

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            raise InboundBodyError(413, f"Request body exceeds {max_bytes} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def parse_inbound_body(raw: bytes, content_type: str | None) -> Any:
    """Parse a JSON request body, returning None when there is nothing to forward."""
    if not raw or not is_json_content_type(content_type):
        return None
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InboundBodyError(400, f"Invalid JSON body: {e}") from e


def build_upstream_body(method: str, payload: Any) -> bytes | None:
    if method.upper() in BODYLESS_METHODS:
        return None
    if isinstance(payload, (dict, list)) and payload:
        return json.dumps(payload).encode("utf-8")
    return None


@router.api_route("/{path:path}", methods=RELAY_METHODS)
async def relay(
    request: Request,
    settings: Annotated[ProxySettings, Depends(get_settings)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
):
    """
    Forward the request to the inference router with the server-held key.
    Status, content-type and body come back exactly as upstream sent them.
    """
    upstream_url = build_upstream_url(settings, downstream_path(request, settings.route_prefix))
    content_type = request.headers.get("content-type")

    body = None
    if request.method not in BODYLESS_METHODS:
        raw = await read_inbound_body(request, settings.max_body_bytes)
        body = build_upstream_body(request.method, parse_inbound_body(raw, content_type))

    headers = build_upstream_headers(settings, content_type)

    if settings.debug:
        logger.info(f"Proxying {request.method} to: {upstream_url}")
        if body:
            logger.info(f"Body length: {len(body)} bytes")

    try:
        upstream = await client.request(
            request.method,
            upstream_url,
            headers=headers,
            content=body,
        )
    except httpx.RequestError as e:
        logger.error(f"Proxy error: {e!r}")
        message = str(e) or "Proxy error"
        return JSONResponse(ProxyError(error=message).model_dump(), status_code=500)

    response_headers = {}
    upstream_content_type = upstream.headers.get("content-type")
    if upstream_content_type:
        response_headers["content-type"] = upstream_content_type

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=response_headers,
    )
