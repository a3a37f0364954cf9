import struct

import pytest

from opsdeck.errors import ProtocolError
from opsdeck.portainer.demux import (
    StreamType,
    demultiplex,
    is_multiplexed,
    iter_frames,
    read_frame,
    strip_control_characters,
)


def _frame(stream: int, payload: bytes) -> bytes:
    return struct.pack(">B3xI", stream, len(payload)) + payload


def test_concatenates_payloads_in_order() -> None:
    parts = [(1, b"hello "), (2, b"warn\n"), (1, "héllo".encode())]
    buffer = b"".join(_frame(stream, payload) for stream, payload in parts)
    assert demultiplex(buffer) == "hello warn\nhéllo"
    frames = list(iter_frames(buffer))
    assert [frame.stream_type for frame in frames] == [
        StreamType.STDOUT,
        StreamType.STDERR,
        StreamType.STDOUT,
    ]


def test_truncated_buffer_keeps_complete_frames() -> None:
    buffer = _frame(1, b"first\n") + _frame(1, b"second\n")
    assert demultiplex(buffer[:-3]) == "first\n"
    assert demultiplex(buffer[: len(_frame(1, b"first\n")) + 5]) == "first\n"


def test_implausible_length_stops_parsing() -> None:
    bogus = struct.pack(">B3xI", 1, 20_000_000) + b"x" * 16
    assert demultiplex(_frame(1, b"ok") + bogus) == "ok"
    with pytest.raises(ProtocolError):
        read_frame(bogus, 0)


def test_plain_text_passes_through() -> None:
    text = b"2024-01-01 started\nlistening on :80\n"
    assert not is_multiplexed(text)
    assert demultiplex(text) == text.decode()


def test_invalid_utf8_does_not_fail() -> None:
    assert demultiplex(_frame(1, b"ok\xff!")) == "ok�!"


def test_strip_control_characters_keeps_whitespace() -> None:
    assert strip_control_characters("a\x00b\x1b[0m\tc\r\n") == "ab[0m\tc\r\n"
