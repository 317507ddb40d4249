"""Incremental byte-to-line reassembly."""

from __future__ import annotations

import codecs


class LineReassembler:
    """
    Turns arbitrarily chunked bytes into complete lines.

    The trailing fragment after the last newline is kept until a later chunk
    completes it.  UTF-8 decoding is incremental, so a multi-byte character
    split between chunks survives intact.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> list[str]:
        """Add *data* and return every line it completed (without ``\\n``)."""
        self._buffer += self._decoder.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def finish(self) -> list[str]:
        """Flush the decoder and return the final unterminated line, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return [rest] if rest else []

    @property
    def pending(self) -> str:
        return self._buffer
