"""
Incremental decoding of a watch response body.

The API server writes one JSON object per line, but any whitespace between
successive objects is accepted, including objects spread over several lines.
A value is decoded as soon as it is complete; an incomplete tail is kept
until more bytes arrive. At end of stream, leftover bytes that do not form a
complete object mean the stream was cut short.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterator, Iterator
from typing import Any

import aiohttp

from ..errors import WatchDecodeError


class WatchStreamDecoder:
    """Feed bytes in, get decoded JSON values out."""

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._json = json.JSONDecoder()
        self._buffer = ""

    def feed(self, chunk: bytes) -> Iterator[Any]:
        try:
            self._buffer += self._utf8.decode(chunk)
        except UnicodeDecodeError as e:
            raise WatchDecodeError(f"watch stream is not valid UTF-8: {e}") from e

        yield from self._drain(final=False)

    def finish(self) -> Iterator[Any]:
        """Flush at end of stream.

        Raises:
            WatchDecodeError: the stream ended in the middle of an object.
        """
        try:
            self._buffer += self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise WatchDecodeError(f"unexpected EOF inside a UTF-8 sequence: {e}") from e

        yield from self._drain(final=True)

    def _drain(self, final: bool) -> Iterator[Any]:
        buffer = self._buffer
        length = len(buffer)
        index = 0
        try:
            while True:
                while index < length and buffer[index].isspace():
                    index += 1
                if index >= length:
                    return
                try:
                    value, index = self._json.raw_decode(buffer, index)
                except json.JSONDecodeError as e:
                    if final:
                        raise WatchDecodeError(
                            f"unexpected EOF during watch stream event decoding: {e}"
                        ) from e
                    # JSON tokens never span a newline, so an error with a
                    # newline after it cannot be cured by more bytes.
                    if "\n" in buffer[e.pos:]:
                        raise WatchDecodeError(
                            f"unable to decode an event from the watch stream: {e}"
                        ) from e
                    return
                yield value
        finally:
            self._buffer = buffer[index:]


async def iter_watch_objects(response: aiohttp.ClientResponse) -> AsyncIterator[Any]:
    """Yield each JSON value of a watch response until the server closes it."""
    decoder = WatchStreamDecoder()
    async for chunk in response.content.iter_any():
        for value in decoder.feed(chunk):
            yield value
    for value in decoder.finish():
        yield value
