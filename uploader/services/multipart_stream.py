"""
Streaming access to ``multipart/form-data`` request bodies.

``MultipartStream`` wraps an async iterator of raw body chunks and exposes the
parts it contains as a lazy, single-pass sequence. Chunks are pushed into
python-multipart's ``MultipartParser`` only when the consumer asks for more
data, so at most one incoming chunk's worth of parsed events is held in memory
and nothing is spooled to disk.

Each ``MultipartPart`` is readable only while it is the current part. Moving
on to the next part drains whatever the consumer left unread; reading an
earlier part afterwards raises ``RuntimeError``.
"""

from __future__ import annotations

from collections import deque
from typing import AsyncIterable, AsyncIterator, Deque, Dict, List, Optional, Tuple

from python_multipart.exceptions import MultipartParseError as _ParserError
from python_multipart.multipart import MultipartParser, parse_options_header

from uploader.exception import InvalidRequestError, MultipartParseError
from uploader.services.progress import UploadProgressListener

_Event = Tuple[str, object]

_PART = "part"
_DATA = "data"
_PART_END = "part_end"


def is_multipart_content(content_type: Optional[str]) -> bool:
    """True when ``content_type`` declares a ``multipart/*`` body."""
    if not content_type:
        return False
    media_type, _ = parse_options_header(content_type)
    return media_type.lower().startswith(b"multipart/")


def _decode_param(value: bytes, param: str) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MultipartParseError(
            f"Content-Disposition {param} is not valid utf-8.",
            detail={"reason": f"invalid utf-8 in {param}"},
        ) from exc


class MultipartPart:
    """One part of a multipart body; iterate it for its bytes."""

    def __init__(
        self,
        stream: "MultipartStream",
        *,
        name: str,
        filename: Optional[str],
        headers: Dict[str, str],
    ) -> None:
        self._stream = stream
        self.name = name
        self.filename = filename
        self.headers = headers
        self._finished = False
        self._released = False

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def is_form_field(self) -> bool:
        return self.filename is None

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._next_chunk()
            if chunk is None:
                return
            yield chunk

    async def _next_chunk(self) -> Optional[bytes]:
        if self._released:
            raise RuntimeError(f"Part {self.name!r} was advanced past and can no longer be read.")
        if self._finished:
            return None

        event = await self._stream._next_event()
        if event is None or event[0] == _PART_END:
            self._finished = True
            return None
        if event[0] != _DATA:
            raise MultipartParseError(detail={"part": self.name, "reason": "part did not terminate"})
        return event[1]  # type: ignore[return-value]

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    async def read_text(self, encoding: str = "utf-8") -> str:
        data = await self.read()
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as exc:
            raise MultipartParseError(
                f"Field {self.name!r} is not valid {encoding} text.",
                detail={"field": self.name},
            ) from exc

    async def drain(self) -> None:
        async for _ in self:
            pass

    def _release(self) -> None:
        self._released = True


class MultipartStream:
    """
    Lazy, single-pass sequence of the parts in a multipart body.

    Args:
        content_type: The request's Content-Type header, including ``boundary``.
        chunks: Raw body chunks, e.g. ``request.stream()``.
        listener: Optional progress listener told about every chunk read.

    Raises:
        InvalidRequestError: ``content_type`` has no boundary parameter.
        MultipartParseError: While iterating, if the body is malformed or truncated.
    """

    def __init__(
        self,
        content_type: str,
        chunks: AsyncIterable[bytes],
        *,
        listener: Optional[UploadProgressListener] = None,
    ) -> None:
        _, options = parse_options_header(content_type)
        boundary = options.get(b"boundary")
        if not boundary:
            raise InvalidRequestError("Multipart boundary is missing.")

        self._chunks = chunks.__aiter__()
        self._listener = listener
        self._events: Deque[_Event] = deque()
        self._ended = False
        self._started = False
        self._current: Optional[MultipartPart] = None
        # Body start counts as a line break, so a delimiter there needs no CRLF.
        self._delimiter = b"\r\n--" + boundary
        self._preamble: Optional[bytes] = b"\r\n"

        self._header_field = b""
        self._header_value = b""
        self._headers: List[Tuple[str, str]] = []

        self._parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    def __aiter__(self) -> AsyncIterator[MultipartPart]:
        if self._started:
            raise RuntimeError("A multipart stream can only be iterated once.")
        self._started = True
        return self._parts()

    async def _parts(self) -> AsyncIterator[MultipartPart]:
        while True:
            if self._current is not None:
                await self._current.drain()
                self._current._release()
                self._current = None

            event = await self._next_event()
            if event is None:
                return
            kind, payload = event
            if kind != _PART:
                raise MultipartParseError(detail={"reason": f"unexpected {kind} outside of a part"})
            self._current = payload  # type: ignore[assignment]
            yield self._current

    async def _next_event(self) -> Optional[_Event]:
        while not self._events:
            if self._ended:
                return None
            await self._feed()
        return self._events.popleft()

    async def _feed(self) -> None:
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            raise MultipartParseError(
                "Multipart body ended before the closing boundary.",
                detail={"reason": "truncated"},
            ) from None

        if self._listener is not None:
            self._listener.update(len(chunk))
        if self._preamble is not None:
            chunk = self._skip_preamble(chunk)
            if not chunk:
                return
        try:
            self._parser.write(chunk)
        except _ParserError as exc:
            raise MultipartParseError(detail={"reason": str(exc)}) from exc

    def _skip_preamble(self, chunk: bytes) -> bytes:
        """Drop anything before the first delimiter; the parser must start on it."""
        buffered = self._preamble + chunk
        index = buffered.find(self._delimiter)
        if index == -1:
            self._preamble = buffered[-(len(self._delimiter) - 1):]
            return b""
        self._preamble = None
        return buffered[index + 2:]

    # Parser callbacks; invoked synchronously from ``MultipartParser.write``.

    def _on_part_begin(self) -> None:
        self._headers = []

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers.append(
            (self._header_field.decode("latin-1").lower(), self._header_value.decode("latin-1"))
        )
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        headers = dict(self._headers)
        disposition = headers.get("content-disposition")
        if disposition is None:
            raise MultipartParseError(detail={"reason": "part without Content-Disposition header"})

        _, options = parse_options_header(disposition.encode("latin-1"))
        if b"name" not in options:
            raise MultipartParseError(detail={"reason": "Content-Disposition without name"})

        filename = options.get(b"filename")
        part = MultipartPart(
            self,
            name=_decode_param(options[b"name"], "name"),
            filename=_decode_param(filename, "filename") if filename is not None else None,
            headers=headers,
        )
        self._events.append((_PART, part))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._events.append((_DATA, data[start:end]))

    def _on_part_end(self) -> None:
        self._events.append((_PART_END, None))

    def _on_end(self) -> None:
        self._ended = True
        if self._listener is not None:
            self._listener.finish()
