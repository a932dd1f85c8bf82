"""
Incremental Server-Sent Events parser.

WHAT: Turn arbitrarily split byte/text chunks into discrete SSE frames
WHY: Network reads never line up with SSE line boundaries
HOW: Incremental UTF-8 decode, buffer the trailing partial line, classify each line
"""

import codecs
import enum
import json
import re
from dataclasses import dataclass
from typing import Any, Optional

DONE_SENTINEL = "[DONE]"

# SSE line terminators only; str.splitlines() would also split on U+2028 etc.
_LINE_END = re.compile(r"\r\n|\r|\n")


class FrameType(str, enum.Enum):
    DATA = "data"
    DONE = "done"
    INVALID = "invalid"
    EVENT = "event"
    RETRY = "retry"
    ID = "id"
    COMMENT = "comment"


@dataclass(frozen=True)
class SSEFrame:
    """One logical SSE line."""
    type: FrameType
    raw: str
    data: Optional[dict[str, Any]] = None  # parsed JSON for DATA frames
    value: Optional[str] = None  # event name, id, comment text
    retry_ms: Optional[int] = None
    error: Optional[str] = None  # JSON error for INVALID frames


class SSEFrameParser:
    """
    Feed chunks in, get complete frames out.

    Feeding the same stream split at any boundaries yields the same frames
    once flush() has been called at the end.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[SSEFrame]:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []

        self._buffer += text
        lines = []
        start = 0
        for match in _LINE_END.finditer(self._buffer):
            # A trailing "\r" may be the first half of "\r\n"
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            lines.append(self._buffer[start:match.start()])
            start = match.end()
        self._buffer = self._buffer[start:]

        return _parse_lines(lines)

    def flush(self) -> list[SSEFrame]:
        """Emit whatever is left in the buffer as a final line."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return _parse_lines(_LINE_END.split(rest))

    def discard(self) -> str:
        """Drop the unterminated tail (a line cut off by a dropped connection) and return it."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return rest


def _parse_lines(lines: list[str]) -> list[SSEFrame]:
    frames = []
    for line in lines:
        frame = parse_line(line)
        if frame is not None:
            frames.append(frame)
    return frames


def parse_line(line: str) -> Optional[SSEFrame]:
    """Classify one SSE line; blank and unknown lines yield None."""
    line = line.strip()
    if not line:
        return None

    if line.startswith(":"):
        return SSEFrame(FrameType.COMMENT, raw=line, value=line[1:].strip())

    name, sep, value = line.partition(":")
    if not sep:
        return None
    value = value.strip()

    if name == "data":
        if value == DONE_SENTINEL:
            return SSEFrame(FrameType.DONE, raw=line)
        try:
            payload = json.loads(value)
        except json.JSONDecodeError as e:
            return SSEFrame(FrameType.INVALID, raw=line, error=str(e))
        if not isinstance(payload, dict):
            return SSEFrame(FrameType.INVALID, raw=line, error="Payload is not a JSON object")
        return SSEFrame(FrameType.DATA, raw=line, data=payload)

    if name == "event":
        return SSEFrame(FrameType.EVENT, raw=line, value=value)

    if name == "retry":
        try:
            return SSEFrame(FrameType.RETRY, raw=line, retry_ms=int(value))
        except ValueError:
            return None

    if name == "id":
        return SSEFrame(FrameType.ID, raw=line, value=value)

    return None
