"""Line splitting for backend stdout."""

import codecs


class LineBuffer:
    """Accumulates raw byte chunks and hands back complete lines.

    The trailing unterminated segment stays in `pending` until a later chunk
    finishes it. Multi-byte UTF-8 sequences split across chunks are decoded
    incrementally, so a chunk boundary never corrupts a character.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.pending = ""

    def append(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completes, in order.

        Empty lines are returned as-is; callers decide whether to skip them.
        """
        text = self.pending + self._decoder.decode(chunk)
        lines = text.split("\n")
        self.pending = lines.pop()
        return lines

    def flush(self) -> str:
        """Return and clear whatever partial line is left at end of stream."""
        rest = self.pending + self._decoder.decode(b"", final=True)
        self.pending = ""
        return rest
