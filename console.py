"""Character sources and output sinks bound to an interpreter."""

from __future__ import annotations
import sys
from typing import Callable, List, Optional, TextIO


OutputSink = Callable[[str], None]


class CharSource:
    """Pull-based character input with pushback.

    Subclasses implement ``_pull``. Pushed-back characters are delivered
    before the underlying input is consulted again.
    """

    def __init__(self) -> None:
        self._pushback: List[str] = []

    @property
    def interactive(self) -> bool:
        return False

    @property
    def blocking(self) -> bool:
        """True when a read may wait on something outside the process."""
        return False

    def _pull(self) -> Optional[str]:
        raise NotImplementedError

    def read_char(self) -> Optional[str]:
        if self._pushback:
            return self._pushback.pop()
        return self._pull()

    def unread(self, ch: str) -> None:
        self._pushback.append(ch)

    def read_line(self) -> Optional[str]:
        chars: List[str] = []
        while True:
            ch = self.read_char()
            if ch is None:
                if not chars:
                    return None
                break
            if ch == "\n":
                break
            chars.append(ch)
        if chars and chars[-1] == "\r":
            chars.pop()
        return "".join(chars)

    def read_word(self) -> Optional[str]:
        ch = self.read_char()
        while ch is not None and ch.isspace():
            ch = self.read_char()
        if ch is None:
            return None
        chars: List[str] = []
        while ch is not None and not ch.isspace():
            chars.append(ch)
            ch = self.read_char()
        if ch is not None:
            self.unread(ch)
        return "".join(chars)


class StringSource(CharSource):
    def __init__(self, text: str) -> None:
        super().__init__()
        self.text = text
        self.index = 0

    def _pull(self) -> Optional[str]:
        if self.index >= len(self.text):
            return None
        ch = self.text[self.index]
        self.index += 1
        return ch


class StreamSource(CharSource):
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        super().__init__()
        self.stream = stream if stream is not None else sys.stdin

    @property
    def interactive(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    @property
    def blocking(self) -> bool:
        return True

    def _pull(self) -> Optional[str]:
        ch = self.stream.read(1)
        return ch if ch else None


def stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class BufferSink:
    """Collects output fragments in memory."""

    def __init__(self) -> None:
        self.fragments: List[str] = []

    def __call__(self, text: str) -> None:
        self.fragments.append(text)

    def getvalue(self) -> str:
        return "".join(self.fragments)

    def clear(self) -> None:
        self.fragments.clear()
