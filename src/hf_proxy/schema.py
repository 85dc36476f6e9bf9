from typing import Any

from pydantic import BaseModel, Field


class InferenceRequest(BaseModel):
    inputs: Any
    parameters: dict[str, Any] | None = Field(default_factory=dict)
    options: dict[str, Any] | None = None


class InferenceOptions(BaseModel):
    wait_for_model: bool = True
    use_cache: bool = False


class ProxyError(BaseModel):
    error: str


class GeneratedImage(BaseModel):
    content: bytes
    content_type: str = "image/png"
    url: str
