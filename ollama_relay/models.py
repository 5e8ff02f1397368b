# ollama_relay/models.py

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from config import settings, Settings

class GenerationRequest(BaseModel):
    """
    Inbound body shared by every completion and streaming endpoint.
    """
    prompt: str = Field(
        ...,
        min_length=1,
        max_length=settings.MAX_PROMPT_LENGTH,
        description="The text prompt forwarded to the model."
    )


class GenerationResponse(BaseModel):
    """
    The response model for one-shot (non-streaming) completion.
    """
    text: str


class ErrorResponse(BaseModel):
    """Body returned with every non-2xx status."""
    error: str
    details: Optional[str] = None
    issues: Optional[List[Dict[str, Any]]] = None


class BackendConfig(BaseModel):
    """
    Connection parameters for one inference backend.

    Passed explicitly to the client and relays so that nothing below the
    HTTP layer reads process-wide settings.
    """
    base_url: str = Field(description="Root URL of the Ollama-compatible server.")
    model: str = Field(description="Model identifier sent with every request.")
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Longest allowed gap between streamed chunks. None disables it."
    )
    max_line_length: int = Field(
        default=1_048_576,
        gt=0,
        description="Upper bound on an unterminated stream line, in characters."
    )

    @classmethod
    def from_settings(cls, source: Settings) -> "BackendConfig":
        return cls(
            base_url=source.OLLAMA_BASE_URL.rstrip("/"),
            model=source.OLLAMA_MODEL,
            connect_timeout=source.CONNECT_TIMEOUT,
            read_timeout=source.READ_TIMEOUT,
            max_line_length=source.MAX_LINE_LENGTH,
        )
