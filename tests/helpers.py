"""Multipart body builders and fake collaborators shared by the tests."""

from typing import AsyncIterator, List, Optional, Sequence, Tuple
from uuid import UUID

BOUNDARY = "----uploaderTestBoundary7MA4YWxkTrZu0gW"
MULTIPART_CONTENT_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


def field(name: str, value: str) -> Tuple:
    return ("field", name, value)


def file_part(name: str, filename: str, content: bytes) -> Tuple:
    return ("file", name, filename, content)


def encode_multipart(parts: Sequence[Tuple], boundary: str = BOUNDARY) -> bytes:
    """Encode ``parts`` in order as a multipart/form-data body."""
    lines: List[bytes] = []
    for part in parts:
        lines.append(f"--{boundary}\r\n".encode())
        if part[0] == "field":
            _, name, value = part
            lines.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode())
            lines.append(value.encode("utf-8") if isinstance(value, str) else value)
        else:
            _, name, filename, content = part
            lines.append(
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                "Content-Type: application/octet-stream\r\n\r\n".encode()
            )
            lines.append(content)
        lines.append(b"\r\n")
    lines.append(f"--{boundary}--\r\n".encode())
    return b"".join(lines)


async def aiter_chunks(body: bytes, chunk_size: int = 7) -> AsyncIterator[bytes]:
    """Yield ``body`` in small chunks so part boundaries straddle chunk edges."""
    for start in range(0, len(body), chunk_size):
        yield body[start:start + chunk_size]


class RecordingStorage:
    """In-memory storage collaborator that drains each stream it is given."""

    def __init__(self, source: Optional[str] = None) -> None:
        self.calls: List[Tuple[UUID, str, bytes]] = []
        self._source = source

    async def upload(self, stream, org_id: UUID, filename: str) -> str:
        content = b"".join([chunk async for chunk in stream])
        self.calls.append((org_id, filename, content))
        return self._source or filename
