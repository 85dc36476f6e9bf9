import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from mangum import Mangum

from hf_proxy.cors import CORSRelayMiddleware
from hf_proxy.routers import relay
from hf_proxy.schema import ProxyError
from hf_proxy.setting import DESCRIPTION, SUMMARY, TITLE, VERSION, ProxySettings, load_settings

config = {
    "title": TITLE,
    "description": DESCRIPTION,
    "summary": SUMMARY,
    "version": VERSION,
}

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def ready_message(settings: ProxySettings) -> str:
    upstream = urlparse(settings.upstream_base_url).netloc + settings.upstream_path_prefix
    return (
        f"HF proxy server listening on http://localhost:{settings.port} "
        f"(proxying {settings.route_prefix} -> {upstream})"
    )


def create_app(settings: ProxySettings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(ready_message(settings))
        yield

    app = FastAPI(lifespan=lifespan, **config)
    app.state.settings = settings

    app.add_middleware(CORSRelayMiddleware, settings=settings)
    app.include_router(relay.router, prefix=settings.route_prefix)

    @app.get("/health")
    async def health():
        """For health check if needed"""
        return {"status": "OK"}

    @app.exception_handler(relay.InboundBodyError)
    async def inbound_body_exception_handler(request, exc):
        logger.warning(
            "Rejected request body: %s %s - %s",
            request.method,
            request.url.path,
            exc.message,
        )
        return JSONResponse(ProxyError(error=exc.message).model_dump(), status_code=exc.status_code)

    return app


app = create_app(load_settings())

handler = Mangum(app)


def main():
    settings = app.state.settings
    # Bind to 0.0.0.0 for production container environments
    uvicorn.run(app, host=settings.host, port=settings.port, reload=False)  # nosec B104


if __name__ == "__main__":
    main()
