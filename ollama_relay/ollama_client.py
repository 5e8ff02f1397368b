# ollama_relay/ollama_client.py

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from ollama_relay.errors import BackendProtocolError, BackendUnavailable
from ollama_relay.models import BackendConfig
from ollama_relay.ndjson import parse_ollama_record, parse_openai_sse_record
from ollama_relay.relay import TextRelay

GENERATE_PATH = "/api/generate"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
TAGS_PATH = "/api/tags"


class OllamaClient:
    """
    An asynchronous client for an Ollama-compatible inference server.

    Speaks both the native /api/generate protocol and the OpenAI-compatible
    /v1/chat/completions protocol. All connection parameters come from the
    BackendConfig it is given; an httpx transport can be injected for tests.
    """

    def __init__(self, config: BackendConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.read_timeout, connect=config.connect_timeout),
            transport=transport,
        )
        logger.info(f"OllamaClient ready for {config.base_url} (model '{config.model}').")

    def _generate_payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        return {"model": self.config.model, "prompt": prompt, "stream": stream}

    def _chat_payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": stream,
        }

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Sends a one-shot request and returns the decoded JSON object."""
        try:
            response = await self.client.post(path, json=payload)
        except httpx.TransportError as e:
            logger.error(f"Could not reach backend at {self.config.base_url}{path}: {e}")
            raise BackendUnavailable(str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.error(f"Backend returned {response.status_code} for {path}")
            raise BackendUnavailable(response.text or response.reason_phrase, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise BackendProtocolError(f"Backend returned a non-JSON body: {e}") from e
        if not isinstance(data, dict):
            raise BackendProtocolError("Backend returned JSON that is not an object")
        return data

    async def _open(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        """
        Sends a streaming request and returns the response with its body unread.
        The caller owns the response and must close it.
        """
        request = self.client.build_request("POST", path, json=payload)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            logger.error(f"Could not reach backend at {self.config.base_url}{path}: {e}")
            raise BackendUnavailable(str(e) or type(e).__name__) from e

        if not response.is_success:
            try:
                detail = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.HTTPError:
                detail = ""
            finally:
                await response.aclose()
            logger.error(f"Backend stream request returned {response.status_code} for {path}")
            raise BackendUnavailable(detail or response.reason_phrase, status_code=response.status_code)

        if response.status_code == 204 or response.stream is None:
            await response.aclose()
            raise BackendProtocolError("Missing response body")
        return response

    async def generate(self, prompt: str) -> str:
        """One-shot completion through /api/generate."""
        data = await self._post_json(GENERATE_PATH, self._generate_payload(prompt, stream=False))
        text = data.get("response")
        return text if isinstance(text, str) else ""

    async def chat(self, prompt: str) -> str:
        """One-shot completion through the OpenAI-compatible chat endpoint."""
        data = await self._post_json(CHAT_COMPLETIONS_PATH, self._chat_payload(prompt, stream=False))
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendProtocolError(f"Chat completion has no message content: {e!r}") from e
        return content if isinstance(content, str) else ""

    async def open_stream(self, prompt: str) -> httpx.Response:
        return await self._open(GENERATE_PATH, self._generate_payload(prompt, stream=True))

    async def open_chat_stream(self, prompt: str) -> httpx.Response:
        return await self._open(CHAT_COMPLETIONS_PATH, self._chat_payload(prompt, stream=True))

    def stream_relay(self, prompt: str, request_id: str = "-") -> TextRelay:
        """A relay over the native NDJSON generate stream."""
        return TextRelay(
            lambda: self.open_stream(prompt),
            parse_ollama_record,
            max_line_length=self.config.max_line_length,
            request_id=request_id,
        )

    def chat_stream_relay(self, prompt: str, request_id: str = "-") -> TextRelay:
        """A relay over the OpenAI-compatible server-sent event stream."""
        return TextRelay(
            lambda: self.open_chat_stream(prompt),
            parse_openai_sse_record,
            max_line_length=self.config.max_line_length,
            request_id=request_id,
        )

    async def is_alive(self) -> bool:
        try:
            response = await self.client.get(TAGS_PATH)
        except httpx.HTTPError as e:
            logger.warning(f"Backend health probe failed: {e}")
            return False
        return response.is_success

    async def close(self):
        """Gracefully closes the connection pool."""
        await self.client.aclose()
        logger.info("Ollama client connection closed.")
