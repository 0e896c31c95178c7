"""
Multiplexed log stream handling.

Isolated units hand back stdout and stderr as one byte stream made of frames:

    [stream id: 1 byte][padding: 3 bytes][payload length: 4 bytes, big-endian][payload]

Stream id 1 is stdout, 2 is stderr. A buffer that does not start with a known
stream id is not framed and is taken to be plain stdout.
"""
import struct
from typing import Iterable, Tuple

STDOUT = 1
STDERR = 2
HEADER_SIZE = 8
_HEADER = struct.Struct(">B3xI")


def is_multiplexed(buffer: bytes) -> bool:
    return len(buffer) > 0 and buffer[0] in (STDOUT, STDERR)


def demux_log_stream(buffer: bytes) -> Tuple[str, str]:
    """Split a log buffer into (stdout, stderr)."""
    if not buffer:
        return "", ""

    if not is_multiplexed(buffer):
        return buffer.decode("utf-8", errors="replace"), ""

    stdout_parts = []
    stderr_parts = []
    offset = 0
    while offset + HEADER_SIZE <= len(buffer):
        stream_id, size = _HEADER.unpack_from(buffer, offset)
        start = offset + HEADER_SIZE
        end = start + size
        if end > len(buffer):
            # truncated trailing frame
            break
        payload = buffer[start:end]
        if stream_id == STDOUT:
            stdout_parts.append(payload)
        elif stream_id == STDERR:
            stderr_parts.append(payload)
        offset = end

    return (
        b"".join(stdout_parts).decode("utf-8", errors="replace"),
        b"".join(stderr_parts).decode("utf-8", errors="replace"),
    )


def frame(stream_id: int, payload: bytes) -> bytes:
    return _HEADER.pack(stream_id, len(payload)) + payload


def mux_frames(frames: Iterable[Tuple[int, bytes]]) -> bytes:
    """Encode (stream id, payload) pairs into the multiplexed format. Empty payloads are skipped."""
    return b"".join(frame(stream_id, payload) for stream_id, payload in frames if payload)


def tail(text: str, limit: int = 4000) -> str:
    """Last ``limit`` characters of a log, for error details."""
    if len(text) <= limit:
        return text
    return text[-limit:]
