"""Message records and line framing shared by every node of the cluster."""

from __future__ import annotations

import codecs
import enum
from dataclasses import dataclass, field
from typing import Any

BUFFER_SIZE = 256
CONTENT_LIMIT = BUFFER_SIZE - 1


class MessageType(enum.IntEnum):
    """Kind of payload a message carries."""

    TEXT = 1
    FILE = 2
    CONTROL = 3
    ERROR = 4


def fit_content(text: str) -> str:
    """Trim text so its UTF-8 form fits a message buffer, never splitting a character."""
    raw = text.encode("utf-8")
    if len(raw) <= CONTENT_LIMIT:
        return text
    return raw[:CONTENT_LIMIT].decode("utf-8", errors="ignore")


def frame_content(msg_id: int, content: str) -> str:
    """Wrap content as ``|id|content|`` plus newline, trimmed to the buffer size."""
    return fit_content(f"|{msg_id}|{content}|\n")


@dataclass
class Message:
    """A unit of work travelling from a client through the balancer to a worker."""

    msg_id: int
    content: str = ""
    type: MessageType = MessageType.TEXT
    client: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.content = fit_content(self.content)
        self.type = MessageType(self.type)

    def same_id(self, other: "Message") -> bool:
        """Return True when both messages carry the same identifier."""
        return self.msg_id == other.msg_id


class LineSplitter:
    """Reassembles newline-terminated messages from arbitrary stream chunks."""

    def __init__(self, strip_cr: bool = False) -> None:
        self.strip_cr = strip_cr
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: str | bytes | bytearray) -> list[str]:
        """Add a chunk and return every line it completed, without the newline."""
        if isinstance(data, (bytes, bytearray)):
            data = self._decoder.decode(bytes(data))
        self._pending += data
        *lines, self._pending = self._pending.split("\n")
        if self.strip_cr:
            lines = [line[:-1] if line.endswith("\r") else line for line in lines]
        return lines