import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

TITLE = "Hugging Face Inference Proxy"
SUMMARY = "Keeps the Hugging Face API key on the server"
VERSION = "0.1.0"
DESCRIPTION = """
Forwards requests under the relay prefix to the Hugging Face inference router,
attaching the server-held API key.
"""

DEFAULT_PORT = 3000
DEFAULT_ROUTE_PREFIX = "/api/hf"
DEFAULT_UPSTREAM_BASE_URL = "https://router.huggingface.co"
DEFAULT_UPSTREAM_PATH_PREFIX = "/hf-inference"
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024
DEFAULT_TIMEOUT = 120.0


def parse_origins(raw: str | None) -> tuple[str, ...]:
    """Split a comma separated origin list. ``"*"`` and blank mean any origin."""
    if raw is None or raw.strip() in ("", "*"):
        return ("*",)
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class ProxySettings:
    """Process-wide configuration, built once at startup."""

    credential: str | None = field(default=None, repr=False)
    allowed_origins: tuple[str, ...] = ("*",)
    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"  # nosec B104
    route_prefix: str = DEFAULT_ROUTE_PREFIX
    upstream_base_url: str = DEFAULT_UPSTREAM_BASE_URL
    upstream_path_prefix: str = DEFAULT_UPSTREAM_PATH_PREFIX
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    timeout: float = DEFAULT_TIMEOUT
    debug: bool = False

    @property
    def upstream_url(self) -> str:
        return self.upstream_base_url.rstrip("/") + self.upstream_path_prefix

    @property
    def allows_any_origin(self) -> bool:
        return not self.allowed_origins or "*" in self.allowed_origins


def load_settings() -> ProxySettings:
    """Read ProxySettings from the environment (and ``.env`` when present)."""
    load_dotenv()

    credential = os.environ.get("HUGGINGFACE_API_KEY") or os.environ.get("HF_TOKEN") or None
    origins = os.environ.get("ALLOWED_ORIGINS", os.environ.get("ALLOWED_ORIGIN"))

    settings = ProxySettings(
        credential=credential,
        allowed_origins=parse_origins(origins),
        port=int(os.environ.get("PORT", str(DEFAULT_PORT))),
        host=os.environ.get("HOST", "0.0.0.0"),  # nosec B104
        route_prefix=os.environ.get("API_ROUTE_PREFIX", DEFAULT_ROUTE_PREFIX).rstrip("/"),
        upstream_base_url=os.environ.get("UPSTREAM_BASE_URL", DEFAULT_UPSTREAM_BASE_URL),
        upstream_path_prefix=os.environ.get("UPSTREAM_PATH_PREFIX", DEFAULT_UPSTREAM_PATH_PREFIX),
        max_body_bytes=int(os.environ.get("MAX_BODY_BYTES", str(DEFAULT_MAX_BODY_BYTES))),
        timeout=float(os.environ.get("UPSTREAM_TIMEOUT", str(DEFAULT_TIMEOUT))),
        debug=os.environ.get("DEBUG", "false").lower() != "false",
    )

    if settings.credential is None:
        logger.warning(
            "HUGGINGFACE_API_KEY (or HF_TOKEN) is not set. Requests will fail without a valid key."
        )
    if settings.allows_any_origin:
        logger.warning(
            "CORS is configured to allow all origins (*). Set ALLOWED_ORIGINS environment variable to restrict access."
        )

    return settings
