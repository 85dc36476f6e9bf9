"""Async helper for calling the inference proxy from Python callers.

The proxy attaches the API key, so nothing here ever sees or sends one.
"""

import base64
import logging
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import httpx

from hf_proxy.schema import GeneratedImage, InferenceOptions, InferenceRequest
from hf_proxy.utils import is_json_content_type

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000/api/hf/models"
DEFAULT_TEXT_MODEL = "gpt2"
DEFAULT_IMAGE_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
DEFAULT_TEXT_PARAMETERS = {"max_length": 100, "num_return_sequences": 1}
FALLBACK_TEXT = "No response generated"

LOCAL_HOSTS = ("localhost", "127.0.0.1")


class InferenceError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def extract_generated_text(response: Any) -> str:
    """Pull the display string out of a text-generation response.

    Handles ``[{"generated_text": ...}]`` and ``{"generated_text": ...}``;
    anything else yields FALLBACK_TEXT.
    """
    if isinstance(response, list) and response:
        first = response[0]
        if isinstance(first, dict) and isinstance(first.get("generated_text"), str):
            return first["generated_text"]
    elif isinstance(response, dict) and isinstance(response.get("generated_text"), str):
        return response["generated_text"]
    return FALLBACK_TEXT


def unauthorized_hint(base_url: str) -> str:
    if urlparse(base_url).hostname in LOCAL_HOSTS:
        return "Make sure your dev proxy or server is running and HUGGINGFACE_API_KEY is set in the environment."
    return "Ensure your production proxy is attaching a valid Hugging Face API key."


def error_message(response: httpx.Response, base_url: str) -> str:
    if response.status_code == 401:
        return f"API Error: 401 Unauthorized — upstream rejected the request. {unauthorized_hint(base_url)}"

    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"API Error: {response.status_code} {response.reason_phrase}".rstrip()


def to_data_url(content: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"


def _require_prompt(prompt: str) -> None:
    if not prompt or not prompt.strip():
        raise ValueError("Prompt cannot be empty")


class ProxyClient:
    """Talks to the proxy's ``/api/hf/models`` route.

    Pass ``http_client`` to reuse or mock the transport; otherwise each call
    opens its own client.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self.timeout = timeout

    def model_url(self, model_id: str) -> str:
        return f"{self.base_url}/{model_id.lstrip('/')}"

    async def _post(self, model_id: str, payload: InferenceRequest) -> httpx.Response:
        url = self.model_url(model_id)
        body = payload.model_dump(exclude_none=True)
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body)
        except httpx.RequestError as e:
            logger.error(f"Error querying Hugging Face API: {e!r}")
            raise InferenceError(str(e) or "Failed to reach the inference proxy") from e

        if not response.is_success:
            message = error_message(response, self.base_url)
            logger.error(f"Error querying Hugging Face API: {message}")
            raise InferenceError(message, status_code=response.status_code)
        return response

    async def query(
        self,
        model_id: str,
        inputs: Any,
        parameters: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> Any:
        """POST ``{inputs, parameters}`` for ``model_id``.

        JSON responses come back parsed and unmodified (None for an empty JSON
        body); anything else, such as image or audio bytes, comes back raw.
        """
        payload = InferenceRequest(inputs=inputs, parameters=parameters or {}, options=options)
        response = await self._post(model_id, payload)
        if not is_json_content_type(response.headers.get("content-type")):
            return response.content
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise InferenceError(f"Invalid JSON response: {e}", status_code=response.status_code) from e

    async def generate_text(
        self,
        prompt: str,
        model_id: str = DEFAULT_TEXT_MODEL,
        parameters: dict[str, Any] | None = None,
    ) -> str:
        _require_prompt(prompt)
        response = await self.query(
            model_id,
            prompt,
            parameters if parameters is not None else DEFAULT_TEXT_PARAMETERS,
        )
        return extract_generated_text(response)

    async def generate_image(self, prompt: str, model_id: str = DEFAULT_IMAGE_MODEL) -> GeneratedImage:
        _require_prompt(prompt)
        payload = InferenceRequest(inputs=prompt, parameters=None, options=InferenceOptions().model_dump())
        response = await self._post(model_id, payload)

        content_type = response.headers.get("content-type", "application/octet-stream")
        return GeneratedImage(
            content=response.content,
            content_type=content_type,
            url=to_data_url(response.content, content_type),
        )


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class InferenceSession:
    """Tracks the latest call for a UI binding: idle, loading, then success or error."""

    def __init__(self, client: ProxyClient | None = None):
        self.client = client or ProxyClient()
        self.reset()

    def reset(self) -> None:
        self.status = SessionStatus.IDLE
        self.data: Any = None
        self.error: str | None = None

    @property
    def loading(self) -> bool:
        return self.status is SessionStatus.LOADING

    async def _run(self, call, fallback_error: str):
        self.status = SessionStatus.LOADING
        self.error = None
        try:
            result = await call
        except Exception as e:
            self.status = SessionStatus.ERROR
            self.error = str(e) or fallback_error
            raise
        self.status = SessionStatus.SUCCESS
        self.data = result
        return result

    async def generate_text(self, prompt: str, model_id: str = DEFAULT_TEXT_MODEL) -> str:
        _require_prompt(prompt)
        return await self._run(self.client.generate_text(prompt, model_id), "Failed to generate text")

    async def generate_image(self, prompt: str, model_id: str = DEFAULT_IMAGE_MODEL) -> GeneratedImage:
        _require_prompt(prompt)
        return await self._run(self.client.generate_image(prompt, model_id), "Failed to generate image")
