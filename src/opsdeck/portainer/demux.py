"""Docker multiplexed log stream parsing.

Containers started without a TTY return logs as a sequence of frames::

    [stream_type:1][0][0][0][length:4, big-endian][payload:length]

where stream_type is 0 (stdin), 1 (stdout) or 2 (stderr). Containers with a
TTY return plain text. Malformed or truncated frames end parsing early; the
frames read so far are kept.
"""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from opsdeck.errors import ProtocolError

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
MAX_FRAME_BYTES = 10_000_000
_HEADER = struct.Struct(">B3xI")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


class StreamType(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


@dataclass(frozen=True, slots=True)
class LogFrame:
    stream_type: StreamType
    length: int
    payload: bytes


def is_multiplexed(buffer: bytes) -> bool:
    return (
        len(buffer) >= HEADER_SIZE
        and buffer[0] in (StreamType.STDOUT, StreamType.STDERR)
        and buffer[1:4] == b"\x00\x00\x00"
    )


def read_frame(buffer: bytes, offset: int) -> LogFrame:
    """Read the frame starting at offset or raise ProtocolError."""
    if offset + HEADER_SIZE > len(buffer):
        raise ProtocolError(f"incomplete frame header at offset {offset}")
    stream_type, length = _HEADER.unpack_from(buffer, offset)
    if stream_type not in StreamType.__members__.values():
        raise ProtocolError(f"unknown stream type {stream_type} at offset {offset}")
    if length <= 0 or length > MAX_FRAME_BYTES:
        raise ProtocolError(f"implausible frame length {length} at offset {offset}")
    start = offset + HEADER_SIZE
    end = start + length
    if end > len(buffer):
        raise ProtocolError(
            f"frame at offset {offset} declares {length} bytes, {len(buffer) - start} available"
        )
    return LogFrame(stream_type=StreamType(stream_type), length=length, payload=buffer[start:end])


def iter_frames(buffer: bytes) -> Iterator[LogFrame]:
    offset = 0
    while offset + HEADER_SIZE <= len(buffer):
        try:
            frame = read_frame(buffer, offset)
        except ProtocolError as exc:
            logger.debug("stopping frame parse: %s", exc)
            return
        yield frame
        offset += HEADER_SIZE + frame.length


def demultiplex(buffer: bytes) -> str:
    """Return the concatenated payloads (or the plain text) decoded as UTF-8."""
    if not is_multiplexed(buffer):
        return buffer.decode("utf-8", errors="replace")
    frames = list(iter_frames(buffer))
    logger.debug("parsed %d multiplexed frames from %d bytes", len(frames), len(buffer))
    return b"".join(frame.payload for frame in frames).decode("utf-8", errors="replace")


def strip_control_characters(text: str) -> str:
    """Drop non-printable control characters, keeping tabs, newlines and carriage returns."""
    return _CONTROL_CHARS.sub("", text)
