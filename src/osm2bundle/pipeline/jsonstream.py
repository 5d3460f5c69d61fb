"""
Incremental JSON writing.

JsonStreamWriter emits JSON tokens one at a time into a binary sink and can
forward an already-encoded stream of array elements verbatim. Documents of
any size are produced without building them in memory.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, BinaryIO


def encode_json(value: Any) -> bytes:
    """Compact, deterministic UTF-8 encoding for one JSON value."""
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


class JsonStreamError(RuntimeError):
    """Tokens were emitted in an order that would produce invalid JSON."""
    pass


class JsonStreamWriter:
    """
    Token-level JSON writer.

    Example:
        writer = JsonStreamWriter(sink)
        writer.begin_object()
        writer.field("version", "2025-01-31")
        writer.key("items")
        writer.begin_array()
        writer.forward(chunks, count=3)
        writer.end_array()
        writer.end_object()
    """

    def __init__(self, sink: BinaryIO):
        self._sink = sink
        # Each frame: [kind, element_count]; kind is "object" or "array"
        self._stack: list[list] = []
        self._key_pending = False
        self._root_written = False

    @property
    def depth(self) -> int:
        return len(self._stack)

    def _before_value(self) -> None:
        if not self._stack:
            if self._root_written:
                raise JsonStreamError("document already has a root value")
            self._root_written = True
            return
        frame = self._stack[-1]
        if frame[0] == "array":
            if frame[1]:
                self._sink.write(b",")
            frame[1] += 1
        else:
            if not self._key_pending:
                raise JsonStreamError("object member needs a key before its value")
            self._key_pending = False

    def begin_object(self) -> None:
        self._before_value()
        self._sink.write(b"{")
        self._stack.append(["object", 0])

    def end_object(self) -> None:
        if not self._stack or self._stack[-1][0] != "object" or self._key_pending:
            raise JsonStreamError("no open object to close")
        self._stack.pop()
        self._sink.write(b"}")

    def begin_array(self) -> None:
        self._before_value()
        self._sink.write(b"[")
        self._stack.append(["array", 0])

    def end_array(self) -> None:
        if not self._stack or self._stack[-1][0] != "array":
            raise JsonStreamError("no open array to close")
        self._stack.pop()
        self._sink.write(b"]")

    def key(self, name: str) -> None:
        if not self._stack or self._stack[-1][0] != "object" or self._key_pending:
            raise JsonStreamError(f"key {name!r} outside of an object")
        frame = self._stack[-1]
        if frame[1]:
            self._sink.write(b",")
        frame[1] += 1
        self._sink.write(encode_json(str(name)))
        self._sink.write(b":")
        self._key_pending = True

    def value(self, value: Any) -> None:
        self._before_value()
        self._sink.write(encode_json(value))

    def field(self, name: str, value: Any) -> None:
        self.key(name)
        self.value(value)

    def forward(self, chunks: Iterable[bytes], count: int) -> None:
        """
        Copy pre-encoded array elements into the open array.

        ``chunks`` must concatenate to ``count`` comma-separated JSON values
        with no leading or trailing separator.
        """
        if not self._stack or self._stack[-1][0] != "array":
            raise JsonStreamError("forward() requires an open array")
        if count <= 0:
            return
        frame = self._stack[-1]
        if frame[1]:
            self._sink.write(b",")
        for chunk in chunks:
            self._sink.write(chunk)
        frame[1] += count
