# ollama_relay/errors.py

from typing import Optional


class RelayError(Exception):
    """Base class for every failure raised while talking to the inference backend."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class BackendUnavailable(RelayError):
    """
    The backend could not be reached, returned a non-success status,
    or the connection broke while streaming.
    """

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(detail)
        self.status_code = status_code

    def __str__(self):
        if self.status_code is None:
            return f"Backend unavailable: {self.detail}"
        return f"Backend request failed with {self.status_code}: {self.detail}"


class BackendProtocolError(RelayError):
    """The backend answered with a success status but the body is unusable."""


class MalformedRecord(RelayError):
    """A single stream line could not be decoded. The relay skips these."""
