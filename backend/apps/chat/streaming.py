"""
Frame decoding for incremental backend responses.

Backends stream either newline-delimited JSON (Ollama) or server-sent
events (Gemini, Together). Both are decoded line by line into JSON
frames; the backend then picks the text delta out of each frame.
Malformed frames and control frames are skipped.
"""
import json
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

import httpx

from apps.chat.errors import BackendError, StreamReadError

logger = logging.getLogger(__name__)

# Sentinel some OpenAI-compatible APIs send as the last SSE frame
SSE_DONE = "[DONE]"

Frame = Dict[str, Any]


def _load_frame(raw: str) -> Optional[Frame]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed frame: {raw[:100]!r}")
        return None
    if not isinstance(frame, dict):
        logger.debug(f"Skipping non-object frame: {raw[:100]!r}")
        return None
    return frame


def iter_ndjson_frames(lines: Iterable[str]) -> Iterator[Frame]:
    """Decode newline-delimited JSON objects, one per line."""
    for line in lines:
        line = line.strip()
        if not line:
            continue
        frame = _load_frame(line)
        if frame is not None:
            yield frame


def iter_sse_frames(lines: Iterable[str]) -> Iterator[Frame]:
    """
    Decode server-sent events carrying JSON in their data field.

    A frame is dispatched as soon as its data lines form a complete JSON
    value; data split over several lines is joined with newlines first.
    Comments, event/id/retry fields and keep-alives are ignored. The
    [DONE] sentinel ends iteration.
    """
    data_lines = []

    for line in lines:
        line = line.rstrip("\r\n")

        if not line:
            if data_lines:
                logger.debug(f"Skipping incomplete event: {data_lines!r}")
                data_lines = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if field != "data":
            continue
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)

        data = "\n".join(data_lines)
        if data.strip() == SSE_DONE:
            return
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            # May continue on the next data line
            continue
        data_lines = []
        if isinstance(frame, dict):
            yield frame
        else:
            logger.debug(f"Skipping non-object frame: {data[:100]!r}")

    if data_lines:
        logger.debug(f"Skipping incomplete event at end of stream: {data_lines!r}")


def frame_error(frame: Frame) -> Optional[str]:
    """Message of an in-stream error frame ({"error": "..."} or {"error": {"message": "..."}})."""
    error = frame.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or error)
    return str(error)


def relay(
    lines: Iterable[str],
    decode: Callable[[Iterable[str]], Iterator[Frame]],
    extract_delta: Callable[[Frame], Optional[str]],
    backend: Optional[str] = None,
) -> Iterator[str]:
    """
    Yield text deltas from a line stream, in order.

    Args:
        lines: Lines read from the backend response body
        decode: Frame decoder (iter_ndjson_frames or iter_sse_frames)
        extract_delta: Returns the text delta of a frame, or None for
            control frames
        backend: Backend name carried by a BackendError

    Raises:
        BackendError: If the backend sends an error frame
        StreamReadError: If the underlying transport fails mid-stream
    """
    try:
        for frame in decode(lines):
            error = frame_error(frame)
            if error is not None:
                logger.error(f"{backend or 'Backend'} error frame: {error}")
                raise BackendError(error, backend=backend)
            delta = extract_delta(frame)
            if delta:
                yield delta
    except (httpx.TransportError, httpx.StreamError) as e:
        logger.error(f"Backend stream interrupted: {e}")
        raise StreamReadError(f"Stream interrupted: {e}") from e
