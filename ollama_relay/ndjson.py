# ollama_relay/ndjson.py

import codecs
import json
from typing import List, NamedTuple, Optional

from ollama_relay.errors import BackendProtocolError, BackendUnavailable, MalformedRecord


class Record(NamedTuple):
    """One decoded stream line: the incremental text and the completion flag."""
    text: str
    done: bool


class LineReassembler:
    """
    Turns arbitrarily fragmented bytes into complete newline-delimited lines.

    The buffer always holds exactly the decoded text received so far that has
    not yet been terminated by a newline. Newlines are delimiters only and never
    appear in returned lines. Blank lines are dropped.
    """

    def __init__(self, max_line_length: int = 1_048_576):
        self.max_line_length = max_line_length
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The unterminated tail waiting for more bytes."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[str]:
        text = self._decoder.decode(chunk)
        if "\n" in text:
            *lines, self._buffer = (self._buffer + text).split("\n")
        else:
            lines = []
            self._buffer += text

        if len(self._buffer) > self.max_line_length:
            raise BackendProtocolError(
                f"Stream line exceeded {self.max_line_length} characters without a newline"
            )
        return [line for line in lines if line.strip()]

    def flush(self) -> Optional[str]:
        """Returns the residual fragment as a final line at end-of-stream, if any."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return tail if tail.strip() else None

    def reset(self):
        self._decoder.reset()
        self._buffer = ""


def _load_object(payload: str) -> dict:
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedRecord(f"Invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise MalformedRecord(f"Expected a JSON object, got {type(value).__name__}")
    return value


def parse_ollama_record(line: str) -> Record:
    """
    Decodes one line of Ollama's /api/generate stream.

    `response` carries the incremental text; `done: true` marks the final record.
    Raises MalformedRecord when the line is not a JSON object.
    """
    obj = _load_object(line.strip())
    text = obj.get("response")
    return Record(
        text=text if isinstance(text, str) else "",
        done=obj.get("done") is True,
    )


def parse_openai_sse_record(line: str) -> Optional[Record]:
    """
    Decodes one line of an OpenAI-compatible chat completion event stream.

    Only `data:` lines carry records; comments and other SSE fields yield None.
    An `error` event raises BackendUnavailable.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if payload == "[DONE]":
        return Record(text="", done=True)

    obj = _load_object(payload)
    error = obj.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, dict) else None
        raise BackendUnavailable(f"Backend reported an error mid-stream: {message or error}")

    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return Record(text="", done=False)

    choice = choices[0]
    delta = choice.get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return Record(
        text=content if isinstance(content, str) else "",
        done=choice.get("finish_reason") is not None,
    )
