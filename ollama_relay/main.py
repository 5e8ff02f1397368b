from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from contextlib import asynccontextmanager
from loguru import logger
import asyncio
import uuid
import uvicorn

from ollama_relay.logging_config import setup_logging
from ollama_relay.ollama_client import OllamaClient
from ollama_relay.errors import RelayError
from ollama_relay.relay import TextRelay
from ollama_relay.models import BackendConfig, ErrorResponse, GenerationRequest, GenerationResponse
from config import settings

# Setup logging as the very first step
setup_logging()

# Holds the shared Ollama client for the lifetime of the process.
app_state = {}

# Streamed text must reach the browser as soon as it is produced.
STREAM_HEADERS = {"Cache-Control": "no-store", "X-Accel-Buffering": "no"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup: creates the Ollama client from the configured settings.
    On shutdown: closes its connection pool.
    """
    logger.info("Application startup sequence initiated...")
    client = OllamaClient(BackendConfig.from_settings(settings))
    app_state["ollama_client"] = client
    yield
    logger.info("Application shutdown sequence initiated...")
    await client.close()
    app_state.clear()


app = FastAPI(
    title="Ollama Relay Service",
    description="Relays prompts to a local Ollama-compatible server as one-shot JSON or a live text stream.",
    version="1.0.0",
    lifespan=lifespan
)


def get_client() -> OllamaClient:
    return app_state["ollama_client"]


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def error_response(error: str, exc: RelayError) -> JSONResponse:
    body = ErrorResponse(error=error, details=str(exc))
    return JSONResponse(status_code=502, content=body.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Rejects malformed bodies with 400 and the list of validation issues."""
    logger.info(f"Rejected invalid request to {request.url.path}")
    body = ErrorResponse(error="Invalid request", issues=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


@app.get("/health", tags=["Monitoring"])
async def health_check():
    """Simple health check endpoint to confirm the service is running."""
    return {"status": "ok", "service": "Ollama Relay Service"}


@app.get("/health/backend", tags=["Monitoring"])
async def backend_health_check(client: OllamaClient = Depends(get_client)):
    """Reports whether the inference backend answers."""
    if await client.is_alive():
        return {"status": "ok", "backend": client.config.base_url}
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "backend": client.config.base_url},
    )


async def relay_response(relay: TextRelay) -> StreamingResponse:
    """
    Connects the relay before any header is sent, so a backend failure can
    still be answered with a JSON error instead of a broken stream.
    """
    try:
        await relay.start()
    except RelayError as e:
        logger.error(f"Failed to open stream for {relay.request_id}: {e}")
        return error_response("Backend stream error", e)

    async def stream_generator():
        try:
            async for chunk in relay.iter_bytes():
                yield chunk
            logger.info(f"Stream completed for request: {relay.request_id}")
        except asyncio.CancelledError:
            # The client disconnected before the stream finished.
            logger.warning(f"Client disconnected for request: {relay.request_id}")
            raise
        except RelayError as e:
            logger.error(f"Stream failed for request {relay.request_id}: {e}")
            raise
        finally:
            await relay.aclose()

    return StreamingResponse(
        stream_generator(),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
        background=BackgroundTask(relay.aclose),
    )


@app.post("/api/completion", response_model=GenerationResponse, tags=["Inference"])
async def completion(request: GenerationRequest, client: OllamaClient = Depends(get_client)):
    """Generates the full completion through the native Ollama protocol."""
    request_id = new_request_id()
    logger.info(f"Received completion request: {request_id}")
    try:
        text = await client.generate(request.prompt)
    except RelayError as e:
        logger.error(f"Failed to process request {request_id}: {e}")
        return error_response("Backend request error", e)
    logger.info(f"Completed completion request: {request_id}")
    return GenerationResponse(text=text)


@app.post("/api/stream", tags=["Inference"])
async def stream(request: GenerationRequest, client: OllamaClient = Depends(get_client)):
    """Streams generated text as it arrives from the native Ollama protocol."""
    request_id = new_request_id()
    logger.info(f"Received streaming request: {request_id}")
    return await relay_response(client.stream_relay(request.prompt, request_id))


@app.post("/api/ai/completion", response_model=GenerationResponse, tags=["Inference"])
async def chat_completion(request: GenerationRequest, client: OllamaClient = Depends(get_client)):
    """Generates the full completion through the OpenAI-compatible endpoint."""
    request_id = new_request_id()
    logger.info(f"Received chat completion request: {request_id}")
    try:
        text = await client.chat(request.prompt)
    except RelayError as e:
        logger.error(f"Failed to process request {request_id}: {e}")
        return error_response("Backend request error", e)
    logger.info(f"Completed chat completion request: {request_id}")
    return GenerationResponse(text=text)


@app.post("/api/ai/stream", tags=["Inference"])
async def chat_stream(request: GenerationRequest, client: OllamaClient = Depends(get_client)):
    """Streams generated text from the OpenAI-compatible event stream."""
    request_id = new_request_id()
    logger.info(f"Received chat streaming request: {request_id}")
    return await relay_response(client.chat_stream_relay(request.prompt, request_id))


def run():
    uvicorn.run("ollama_relay.main:app", host=settings.HOST, port=settings.PORT, workers=settings.WORKERS)


if __name__ == "__main__":
    run()
