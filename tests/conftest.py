import os

# Keep test runs from writing rotated log files.
os.environ.setdefault("LOG_FILE", "")

import httpx
import pytest

from ollama_relay.models import BackendConfig
from ollama_relay.ollama_client import OllamaClient


@pytest.fixture
def backend_config():
    return BackendConfig(base_url="http://ollama.test", model="tinyllama", max_line_length=1024)


@pytest.fixture
def make_client(backend_config):
    """Builds an OllamaClient whose requests are answered by the given handler."""
    def _make(handler):
        return OllamaClient(backend_config, transport=httpx.MockTransport(handler))
    return _make

