# ollama_relay/relay.py

import asyncio
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx
from loguru import logger

from ollama_relay.errors import BackendUnavailable, MalformedRecord, RelayError
from ollama_relay.ndjson import LineReassembler, Record

UpstreamOpener = Callable[[], Awaitable[httpx.Response]]
RecordParser = Callable[[str], Optional[Record]]

TEXT_ENCODING = "utf-8"


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class TextRelay:
    """
    Relays a backend's line-delimited record stream as plain text bytes.

    The relay is pull-driven: nothing is read from the backend until the
    consumer asks for the next chunk, and each pull reads only as many upstream
    chunks as it takes to produce at least one text fragment. A record with the
    completion flag ends the relay at once, leaving any unread upstream bytes
    unread. Each instance owns its own line buffer and upstream response.
    """

    def __init__(
        self,
        open_upstream: UpstreamOpener,
        parse_record: RecordParser,
        max_line_length: int = 1_048_576,
        request_id: str = "-",
    ):
        self._open_upstream = open_upstream
        self._parse_record = parse_record
        self._reassembler = LineReassembler(max_line_length)
        self._response: Optional[httpx.Response] = None
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self._released = False
        self.request_id = request_id
        self.state = RelayState.IDLE

    @property
    def pending(self) -> str:
        """Buffered text not yet terminated by a newline."""
        return self._reassembler.pending

    async def start(self):
        """Opens the upstream connection. Raises the backend's RelayError on failure."""
        if self.state is not RelayState.IDLE:
            return
        try:
            self._response = await self._open_upstream()
        except RelayError:
            self.state = RelayState.FAILED
            raise
        self._chunks = self._response.aiter_bytes()
        self.state = RelayState.STREAMING
        logger.debug(f"Relay {self.request_id} connected to backend.")

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yields encoded text fragments in arrival order until the relay is finished."""
        try:
            await self.start()
            while self.state is RelayState.STREAMING:
                for fragment in await self._pull():
                    yield self._emit(fragment)
        except asyncio.CancelledError:
            logger.debug(f"Relay {self.request_id} cancelled by consumer.")
            raise
        finally:
            await self.aclose()

    async def aclose(self):
        """
        Releases the upstream connection and the line buffer.

        Safe to call any number of times. A relay that has not failed ends in DONE.
        """
        if self._released:
            return
        self._released = True
        if self.state is not RelayState.FAILED:
            self.state = RelayState.DONE
        self._reassembler.reset()

        chunks, self._chunks = self._chunks, None
        response, self._response = self._response, None
        if response is None:
            return
        try:
            if chunks is not None:
                await chunks.aclose()
            await response.aclose()
        except httpx.HTTPError as e:
            logger.debug(f"Relay {self.request_id} ignored error while closing upstream: {e}")

    async def _pull(self) -> List[str]:
        fragments: List[str] = []
        try:
            while self.state is RelayState.STREAMING and not fragments:
                try:
                    chunk = await self._chunks.__anext__()
                except StopAsyncIteration:
                    fragments.extend(self._drain())
                    break
                except httpx.TransportError as e:
                    raise BackendUnavailable(f"Stream interrupted: {e}") from e

                for line in self._reassembler.feed(chunk):
                    record = self._extract(line)
                    if record is None:
                        continue
                    if record.text:
                        fragments.append(record.text)
                    if record.done:
                        logger.debug(f"Relay {self.request_id} received completion flag.")
                        self.state = RelayState.DONE
                        break
        except RelayError:
            self.state = RelayState.FAILED
            raise
        return fragments

    def _drain(self) -> List[str]:
        self.state = RelayState.DRAINING
        tail = self._reassembler.flush()
        self.state = RelayState.DONE
        if tail is None:
            return []
        try:
            record = self._parse_record(tail)
        except MalformedRecord:
            # The generation may have been truncated; the fragment is dropped.
            logger.warning(f"Relay {self.request_id} dropped an undecodable final fragment: {tail[:80]!r}")
            return []
        return [record.text] if record is not None and record.text else []

    def _extract(self, line: str) -> Optional[Record]:
        try:
            return self._parse_record(line)
        except MalformedRecord as e:
            logger.debug(f"Relay {self.request_id} skipped malformed line: {e.detail}")
            return None

    @staticmethod
    def _emit(fragment: str) -> bytes:
        return fragment.encode(TEXT_ENCODING)
