"""
Incremental decoder for JSON array bodies.
"""

import json
import re
from typing import Any, List

from shared.errors import EncodingError

_WHITESPACE = re.compile(r"[ \t\n\r]*")

# Longest token fragment that can still complete with more input: "-Infinity"
# or a "\uXXXX" escape, plus a dangling number suffix.
_PENDING_TOKEN_CHARS = 10


class JsonArrayDecoder:
    """Decode the elements of a top-level JSON array as text arrives.

    Feed text chunks in order; each call returns the elements completed so far.
    Elements are returned whatever their JSON type; callers decide what to keep.
    Only the unfinished tail of the body is held in memory, and a syntax error
    is raised as soon as enough text has arrived to rule out truncation.
    """

    def __init__(self):
        self._decoder = json.JSONDecoder()
        self._buffer = ""
        self._started = False
        self._finished = False
        self._expect_value = True
        self._count = 0

    def feed(self, chunk: str) -> List[Any]:
        """Consume a text chunk and return the elements it completed."""
        self._buffer += chunk
        items: List[Any] = []
        pos = 0

        while True:
            pos = _WHITESPACE.match(self._buffer, pos).end()
            if pos >= len(self._buffer):
                break

            char = self._buffer[pos]

            if self._finished:
                raise EncodingError("Unexpected data after JSON array", {"position": pos})

            if not self._started:
                if char != "[":
                    raise EncodingError("Upstream response is not a JSON array")
                self._started = True
                pos += 1
                continue

            if char == "]":
                if self._expect_value and self._count:
                    raise EncodingError("Trailing comma in JSON array")
                self._finished = True
                pos += 1
                continue

            if char == ",":
                if self._expect_value:
                    raise EncodingError("Unexpected comma in JSON array")
                self._expect_value = True
                pos += 1
                continue

            if not self._expect_value:
                raise EncodingError("Missing comma between JSON array elements")

            try:
                value, end = self._decoder.raw_decode(self._buffer, pos)
            except json.JSONDecodeError as e:
                if self._may_complete(e):
                    break
                raise EncodingError(
                    "Malformed JSON in upstream response",
                    {"error": e.msg, "position": e.pos}
                )

            # A bare number at the end of the buffer may continue in the next chunk.
            if end >= len(self._buffer) and isinstance(value, (int, float)) and not isinstance(value, bool):
                break

            items.append(value)
            self._count += 1
            self._expect_value = False
            pos = end

        self._buffer = self._buffer[pos:]
        return items

    def _may_complete(self, error: json.JSONDecodeError) -> bool:
        """Whether more input could still turn the failed element into valid JSON."""
        if error.msg.startswith("Unterminated string"):
            return True
        return len(self._buffer) - error.pos <= _PENDING_TOKEN_CHARS

    def finish(self):
        """Check that the body ended with a complete array.

        An empty body is treated as an empty array.
        """
        if self._buffer.strip():
            raise EncodingError("Malformed JSON in upstream response")
        if self._started and not self._finished:
            raise EncodingError("Upstream response ended before the JSON array was closed")
