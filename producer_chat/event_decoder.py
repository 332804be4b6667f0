"""Incremental decoder for the workflow engine's newline-delimited event stream."""

from __future__ import annotations

import codecs
import json
import logging
import re
from typing import Any, AsyncIterable, AsyncIterator, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_LINE_SPLIT = re.compile(r"\r?\n")


class EventStreamDecoder:
    """
    Turns raw byte chunks into decoded JSON events.

    Notes:
    - Chunks may split lines (and multi-byte characters) anywhere; the
      incomplete tail is buffered until the next chunk.
    - Lines may carry an SSE-style ``data:`` prefix.
    - ``[DONE]`` lines and malformed JSON are skipped, decoding continues.
    """

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.lines_discarded = 0

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Consume one network read. Returns events completed by it."""
        self._buffer += self._utf8.decode(chunk)
        lines = _LINE_SPLIT.split(self._buffer)
        self._buffer = lines.pop()
        events = []
        for line in lines:
            event = self._decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> None:
        """End of transport. A trailing partial line is dropped, never raised."""
        self._buffer += self._utf8.decode(b"", final=True)
        if self._buffer.strip():
            logger.debug("Dropping unterminated trailing line (%d chars)", len(self._buffer))
            self.lines_discarded += 1
        self._buffer = ""

    def _decode_line(self, raw_line: str) -> Optional[dict[str, Any]]:
        line = raw_line.strip()
        if not line:
            return None
        if line.startswith(DATA_PREFIX):
            line = line[len(DATA_PREFIX):].strip()
        if not line or line == DONE_SENTINEL:
            return None
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Workflow stream: invalid JSON line")
            self.lines_discarded += 1
            return None
        if not isinstance(event, dict):
            logger.debug("Workflow stream: non-object event ignored")
            self.lines_discarded += 1
            return None
        return event


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded events from a byte stream until the transport ends."""
    decoder = EventStreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    decoder.finish()
