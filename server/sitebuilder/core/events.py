# sitebuilder/core/events.py
"""
Progress events emitted by a generation run, and the sinks that receive them.

Every run ends with exactly one terminal event (complete, failed, timeout,
cancelled or error). Events are serialised as newline-delimited JSON:
{"event": <phase>, "payload": {...}}.
"""
import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Phase = Literal[
    "start", "analyzing", "loading_files", "plan", "generate", "retry", "generating",
    "validate", "file_complete", "step_complete", "heartbeat", "timeout", "complete",
    "failed", "cancelled", "error",
]

TERMINAL_PHASES = frozenset({"complete", "failed", "timeout", "cancelled", "error"})


class ProgressEvent(BaseModel):
    phase: Phase
    run_id: str
    elapsed: float = 0.0
    ts: float = Field(default_factory=time.time)
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_ndjson(self) -> str:
        payload = dict(self.details)
        payload.update({"run_id": self.run_id, "elapsed": round(self.elapsed, 2)})
        try:
            return json.dumps({"event": self.phase, "payload": payload}, ensure_ascii=False) + "\n"
        except (TypeError, ValueError):
            logger.exception("failed to serialize %s event", self.phase)
            return json.dumps({"event": "error", "payload": {"message": f"failed to serialize {self.phase}"}}) + "\n"


class ProgressSink(Protocol):
    async def emit(self, event: ProgressEvent) -> None:
        ...


class ListSink:
    """Collects events in memory."""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def phases(self) -> List[str]:
        return [e.phase for e in self.events]

    @property
    def terminal(self) -> Optional[ProgressEvent]:
        for e in reversed(self.events):
            if e.terminal:
                return e
        return None


class QueueSink:
    """
    asyncio.Queue-backed sink for streaming to a live consumer. The queue is
    closed (None sentinel) right after the terminal event.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("dropping %s event after close", event.phase)
            return
        await self._queue.put(event)
        if event.terminal:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
