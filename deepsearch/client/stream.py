"""Consumer side of the deep search frame stream.

A malformed frame is logged and skipped; the frames around it are still
delivered. Frame types this client does not know are dropped silently.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator

import httpx

from deepsearch.client.reducer import ClientViewState, reduce
from deepsearch.errors import TransportFailure
from deepsearch.models.events import SSEEvent
from deepsearch.services import logger as log_service

DATA_PREFIX = "data:"


def decode_frame(line: str) -> SSEEvent | None:
    """Parse one frame line. Returns None for unknown frame types.

    Accepts either a bare JSON object or an SSE ``data:`` line.
    """
    text = line.strip()
    if text.startswith(DATA_PREFIX):
        text = text[len(DATA_PREFIX):].strip()
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransportFailure(f"invalid JSON frame: {exc}", raw=line) from exc
    if not isinstance(raw, dict):
        raise TransportFailure("frame is not an object", raw=line)
    try:
        return SSEEvent.from_dict(raw)
    except (KeyError, ValueError, TypeError, ArithmeticError) as exc:
        raise TransportFailure(f"malformed {raw.get('type')} frame: {exc}", raw=line) from exc


def _is_frame_line(line: str) -> bool:
    return line.lstrip().startswith(DATA_PREFIX)


def _decode_or_skip(line: str) -> SSEEvent | None:
    try:
        return decode_frame(line)
    except TransportFailure as e:
        log_service.log_event(
            event_type="frame_skipped",
            message="Skipping malformed frame",
            error=str(e),
            raw=e.raw[:200],
        )
        return None


def iter_frames(lines: Iterable[str]) -> Iterator[SSEEvent]:
    for line in lines:
        if not _is_frame_line(line):
            continue
        frame = _decode_or_skip(line)
        if frame is not None:
            yield frame


async def aiter_frames(lines: AsyncIterable[str]) -> AsyncIterator[SSEEvent]:
    async for line in lines:
        if not _is_frame_line(line):
            continue
        frame = _decode_or_skip(line)
        if frame is not None:
            yield frame


class DeepSearchClient:
    """HTTP client for a running deep search service."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        # Streams stay open for the whole run.
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def frames(self, topic: str, session_id: str, depth: str = "basic") -> AsyncIterator[SSEEvent]:
        payload = {"topic": topic, "sessionId": session_id, "depth": depth}
        async with self._client() as client:
            async with client.stream("POST", "/api/deep-search", json=payload) as response:
                response.raise_for_status()
                async for frame in aiter_frames(response.aiter_lines()):
                    yield frame

    async def research(
        self, topic: str, session_id: str, depth: str = "basic"
    ) -> AsyncIterator[ClientViewState]:
        """Yield the folded view state after every frame."""
        state = ClientViewState()
        async for frame in self.frames(topic, session_id, depth):
            state = reduce(state, frame)
            yield state

    async def recover(self, message_id: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"/api/deep-search/{message_id}/recovery")
            response.raise_for_status()
            return response.json()
