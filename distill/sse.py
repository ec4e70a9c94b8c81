"""Server-Sent Events output for streaming pipeline progress."""

from __future__ import annotations

import io
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


class Stage(str, Enum):
    """A pipeline processing stage."""

    EMBEDDING = "embedding"
    CLUSTERING = "clustering"
    SELECTION = "selection"
    COMPRESS = "compress"
    MMR = "mmr"


StageLike = Union[Stage, str]


def _stage_value(stage: StageLike) -> str:
    return stage.value if isinstance(stage, Stage) else str(stage)


@dataclass
class ProgressEvent:
    """Progress of a stage, optionally with stage-level stats."""

    stage: StageLike
    progress: float
    stats: Optional[Any] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stage": _stage_value(self.stage), "progress": self.progress}
        if self.stats is not None:
            data["stats"] = self.stats
        return data


@dataclass
class CompleteEvent:
    """The final chunks and stats of a finished run."""

    chunks: Any
    stats: Any

    def to_dict(self) -> dict[str, Any]:
        return {"chunks": self.chunks, "stats": self.stats}


@dataclass
class ErrorEvent:
    """A processing failure, optionally tied to a stage."""

    error: str
    stage: StageLike = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.error}
        stage = _stage_value(self.stage)
        if stage:
            data["stage"] = stage
        return data


_SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}


class SSEWriter:
    """Writes typed events to a flushable stream in SSE format.

    The stream must provide ``write`` and ``flush``. Text streams receive
    ``str``; any other stream receives UTF-8 encoded ``bytes``. The response
    headers a server should send are available as ``headers``.
    """

    status_code = 200

    def __init__(self, stream: Any) -> None:
        if not callable(getattr(stream, "write", None)) or not callable(
            getattr(stream, "flush", None)
        ):
            raise TypeError("stream must support write() and flush() for event streaming")
        self._stream = stream
        self._text = isinstance(stream, io.TextIOBase)
        self.headers: dict[str, str] = dict(_SSE_HEADERS)
        stream.flush()

    def send_progress(self, stage: StageLike, progress: float) -> None:
        """Emit a progress event for a stage."""
        self._send("progress", ProgressEvent(stage, progress).to_dict())

    def send_progress_with_stats(self, stage: StageLike, progress: float, stats: Any) -> None:
        """Emit a progress event carrying stage-level stats."""
        self._send("progress", ProgressEvent(stage, progress, stats).to_dict())

    def send_complete(self, chunks: Any, stats: Any) -> None:
        """Emit the final complete event."""
        self._send("complete", CompleteEvent(chunks, stats).to_dict())

    def send_error(self, stage: StageLike, message: str) -> None:
        """Emit an error event."""
        self._send("error", ErrorEvent(message, stage).to_dict())

    def _send(self, event_type: str, data: dict[str, Any]) -> None:
        payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        message = f"event: {event_type}\ndata: {payload}\n\n"
        self._stream.write(message if self._text else message.encode("utf-8"))
        self._stream.flush()


class StageTimer:
    """Measures elapsed time for a pipeline stage."""

    def __init__(self, stage: StageLike) -> None:
        self.stage = stage
        self._started = time.perf_counter()

    def elapsed(self) -> float:
        """Return seconds since the timer started."""
        return time.perf_counter() - self._started

    def elapsed_ms(self) -> int:
        """Return whole milliseconds since the timer started."""
        return int(self.elapsed() * 1000)