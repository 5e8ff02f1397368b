import httpx
import pytest
import pytest_asyncio

from helpers import chunked
from ollama_relay.main import app, get_client


# --- Pytest Fixtures ---
@pytest.fixture
def backend(make_client):
    """
    Installs a fake Ollama backend behind the app. Tests assign `backend.handler`
    before making requests.
    """
    class FakeBackend:
        handler = None

    fake = FakeBackend()
    client = make_client(lambda request: fake.handler(request))
    app.dependency_overrides[get_client] = lambda: client
    yield fake
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client():
    """An httpx.AsyncClient that talks to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def create_payload(prompt, **kwargs):
    """Helper to create the JSON payload for requests, making tests cleaner."""
    payload = {"prompt": prompt}
    payload.update(kwargs)
    return payload


@pytest.mark.asyncio
async def test_health_check(async_client: httpx.AsyncClient):
    """1. The /health endpoint answers without touching the backend."""
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_backend_health(async_client: httpx.AsyncClient, backend):
    """2. /health/backend reflects whether /api/tags answers."""
    backend.handler = lambda request: httpx.Response(200, json={"models": []})
    assert (await async_client.get("/health/backend")).status_code == 200

    backend.handler = lambda request: httpx.Response(500)
    response = await async_client.get("/health/backend")
    assert response.status_code == 503
    assert response.json()["status"] == "unavailable"


# === ONE-SHOT ENDPOINT TESTS ===

@pytest.mark.asyncio
async def test_completion_success(async_client: httpx.AsyncClient, backend):
    """3. /api/completion returns the backend text as {"text": ...}."""
    backend.handler = lambda request: httpx.Response(200, json={"response": "Paris"})
    response = await async_client.post("/api/completion", json=create_payload("Capital of France?"))
    assert response.status_code == 200
    assert response.json() == {"text": "Paris"}


@pytest.mark.asyncio
async def test_completion_backend_failure(async_client: httpx.AsyncClient, backend):
    """4. A backend error becomes a 5xx JSON error with diagnostic details."""
    backend.handler = lambda request: httpx.Response(500, text="out of memory")
    response = await async_client.post("/api/completion", json=create_payload("hi"))
    assert response.status_code == 502
    data = response.json()
    assert data["error"] == "Backend request error"
    assert "out of memory" in data["details"]


@pytest.mark.asyncio
async def test_ai_completion_success(async_client: httpx.AsyncClient, backend):
    """5. /api/ai/completion goes through the chat completions endpoint."""
    backend.handler = lambda request: httpx.Response(
        200, json={"choices": [{"message": {"content": "Hello from chat"}}]}
    )
    response = await async_client.post("/api/ai/completion", json=create_payload("hi"))
    assert response.status_code == 200
    assert response.json() == {"text": "Hello from chat"}


# === VALIDATION TESTS ===

@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/completion", "/api/stream", "/api/ai/completion", "/api/ai/stream"])
@pytest.mark.parametrize("payload", [{}, {"prompt": 42}, {"prompt": ""}, {"prompt": "x" * 4001}])
async def test_invalid_prompt_is_rejected(async_client: httpx.AsyncClient, backend, path, payload):
    """6. Bad bodies never reach the backend and come back as 400 with issues."""
    backend.handler = lambda request: pytest.fail("backend must not be called")
    response = await async_client.post(path, json=payload)
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid request"
    assert len(data["issues"]) > 0


@pytest.mark.asyncio
async def test_non_json_body_is_rejected(async_client: httpx.AsyncClient, backend):
    """7. A body that is not JSON at all is a validation error too."""
    response = await async_client.post(
        "/api/stream", content=b"prompt=hi", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


# === STREAMING ENDPOINT TESTS ===

@pytest.mark.asyncio
async def test_stream_relays_plain_text(async_client: httpx.AsyncClient, backend):
    """8. /api/stream turns NDJSON records into plain text with no-buffering headers."""
    backend.handler = lambda request: httpx.Response(
        200,
        content=chunked(b'{"response":"Hel"}\n{"resp', b'onse":"lo"}\n{"done":true}\n'),
    )
    full_response = ""
    async with async_client.stream("POST", "/api/stream", json=create_payload("Say hello")) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["x-accel-buffering"] == "no"
        async for chunk in response.aiter_text():
            full_response += chunk
    assert full_response == "Hello"


@pytest.mark.asyncio
async def test_stream_backend_500(async_client: httpx.AsyncClient, backend):
    """9. An HTTP 500 on connect yields an error response and no text."""
    backend.handler = lambda request: httpx.Response(500, text="backend exploded")
    response = await async_client.post("/api/stream", json=create_payload("hi"))
    assert response.status_code == 502
    data = response.json()
    assert data["error"] == "Backend stream error"
    assert "500" in data["details"]


@pytest.mark.asyncio
async def test_stream_backend_unreachable(async_client: httpx.AsyncClient, backend):
    """10. A refused connection is reported the same way."""
    def refuse(request):
        raise httpx.ConnectError("Connection refused", request=request)

    backend.handler = refuse
    response = await async_client.post("/api/stream", json=create_payload("hi"))
    assert response.status_code == 502
    assert "Connection refused" in response.json()["details"]


@pytest.mark.asyncio
async def test_stream_truncated_upstream(async_client: httpx.AsyncClient, backend):
    """11. A dropped connection mid-record ends the stream cleanly with no text."""
    backend.handler = lambda request: httpx.Response(200, content=chunked(b'{"respon'))
    response = await async_client.post("/api/stream", json=create_payload("hi"))
    assert response.status_code == 200
    assert response.text == ""


@pytest.mark.asyncio
async def test_ai_stream_relays_plain_text(async_client: httpx.AsyncClient, backend):
    """12. /api/ai/stream turns chat completion events into plain text."""
    backend.handler = lambda request: httpx.Response(
        200,
        content=chunked(
            b'data: {"choices":[{"delta":{"content":"Good"},"finish_reason":null}]}\n\n',
            b'data: {"choices":[{"delta":{"content":"bye"},"finish_reason":null}]}\n\n',
            b"data: [DONE]\n\n",
        ),
    )
    response = await async_client.post("/api/ai/stream", json=create_payload("hi"))
    assert response.status_code == 200
    assert response.text == "Goodbye"
