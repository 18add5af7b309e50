"""
Tests for the WebSocket frame codec.

These verify:
1. Minimal-width length encoding at the 126 / 65536 thresholds
2. Masking on every outbound frame
3. Re-entrant parsing of partial and back-to-back frames
"""

import struct

import pytest

from safari_markdown.frames import (
    Opcode,
    ReceiveBuffer,
    apply_mask,
    encode_frame,
    encode_pong_frame,
    encode_text_frame,
    parse_frame,
)

MASK = b"\x11\x22\x33\x44"


def server_frame(opcode: int, payload: bytes) -> bytes:
    """Unmasked frame as a server would send it (short payloads only)."""
    assert len(payload) < 126
    return bytes([0x80 | opcode, len(payload)]) + payload


class TestLengthEncoding:
    """Length field selection."""

    def test_125_uses_7bit_form(self):
        frame = encode_frame(Opcode.TEXT, b"a" * 125, MASK)
        assert frame[1] == 0x80 | 125
        assert frame[2:6] == MASK
        assert len(frame) == 2 + 4 + 125

    def test_126_uses_16bit_form(self):
        frame = encode_frame(Opcode.TEXT, b"a" * 126, MASK)
        assert frame[1] == 0x80 | 126
        assert struct.unpack("!H", frame[2:4])[0] == 126
        assert frame[4:8] == MASK

    def test_65535_uses_16bit_form(self):
        frame = encode_frame(Opcode.TEXT, b"a" * 65535, MASK)
        assert frame[1] == 0x80 | 126
        assert struct.unpack("!H", frame[2:4])[0] == 65535

    def test_65536_uses_64bit_form(self):
        frame = encode_frame(Opcode.TEXT, b"a" * 65536, MASK)
        assert frame[1] == 0x80 | 127
        assert struct.unpack("!Q", frame[2:10])[0] == 65536
        assert frame[10:14] == MASK

    def test_fin_bit_always_set(self):
        assert encode_frame(Opcode.TEXT, b"x", MASK)[0] == 0x81
        assert encode_pong_frame(b"x")[0] == 0x8A


class TestMasking:
    """Client frames are always masked."""

    def test_payload_is_xored_with_key(self):
        frame = encode_frame(Opcode.TEXT, b"abcde", MASK)
        body = frame[6:]
        expected = bytes(b ^ MASK[i % 4] for i, b in enumerate(b"abcde"))
        assert body == expected

    def test_mask_is_its_own_inverse(self):
        payload = bytes(range(256)) * 3
        assert apply_mask(apply_mask(payload, MASK), MASK) == payload

    def test_random_key_when_omitted(self):
        frame = encode_text_frame("hello")
        assert frame[1] & 0x80
        parsed, _ = parse_frame(frame)
        assert parsed.payload == b"hello"

    def test_rejects_bad_key_length(self):
        with pytest.raises(ValueError):
            apply_mask(b"abc", b"\x00\x01")


class TestRoundTrip:
    """Encoding then decoding yields the original payload."""

    @pytest.mark.parametrize("length", [0, 125, 126, 65535, 65536])
    def test_round_trip(self, length):
        payload = bytes(i % 251 for i in range(length))
        frame = encode_frame(Opcode.TEXT, payload)

        parsed = parse_frame(frame)

        assert parsed is not None
        decoded, consumed = parsed
        assert consumed == len(frame)
        assert decoded.opcode == Opcode.TEXT
        assert decoded.masked is True
        assert decoded.payload == payload


class TestPartialParsing:
    """Incomplete frames are never consumed."""

    def test_single_byte_is_incomplete(self):
        assert parse_frame(b"\x81") is None

    def test_missing_extended_length_is_incomplete(self):
        frame = encode_frame(Opcode.TEXT, b"a" * 70000, MASK)
        assert parse_frame(frame[:5]) is None

    def test_missing_mask_key_is_incomplete(self):
        frame = encode_frame(Opcode.TEXT, b"abc", MASK)
        assert parse_frame(frame[:4]) is None

    def test_missing_payload_is_incomplete(self):
        frame = encode_frame(Opcode.TEXT, b"abcdef", MASK)
        assert parse_frame(frame[:-1]) is None

    def test_unmasked_server_frame(self):
        decoded, consumed = parse_frame(server_frame(Opcode.TEXT, b"hello"))
        assert decoded.payload == b"hello"
        assert decoded.masked is False
        assert consumed == 7


class TestReceiveBuffer:
    """Reassembly across reads."""

    def test_byte_at_a_time_yields_one_frame(self):
        frame = encode_text_frame('{"method":"turn/completed"}')
        buffer = ReceiveBuffer()
        frames = []

        for i in range(len(frame)):
            buffer.feed(frame[i:i + 1])
            frames.extend(buffer.frames())
            if i < len(frame) - 1:
                assert frames == []
                assert len(buffer) == i + 1

        assert len(frames) == 1
        assert frames[0].payload == b'{"method":"turn/completed"}'
        assert len(buffer) == 0

    def test_chunked_feed_matches_whole_feed(self):
        frame = encode_frame(Opcode.TEXT, b"x" * 300, MASK)

        whole = ReceiveBuffer()
        whole.feed(frame)
        expected = list(whole.frames())

        chunked = ReceiveBuffer()
        got = []
        for start in range(0, len(frame), 7):
            chunked.feed(frame[start:start + 7])
            got.extend(chunked.frames())

        assert got == expected

    def test_two_frames_in_one_buffer(self):
        buffer = ReceiveBuffer()
        buffer.feed(server_frame(Opcode.TEXT, b"first") + server_frame(Opcode.TEXT, b"second"))

        frames = list(buffer.frames())

        assert [f.payload for f in frames] == [b"first", b"second"]
        assert len(buffer) == 0

    def test_trailing_partial_frame_is_kept(self):
        second = server_frame(Opcode.TEXT, b"second")
        buffer = ReceiveBuffer()
        buffer.feed(server_frame(Opcode.TEXT, b"first") + second[:3])

        frames = list(buffer.frames())

        assert [f.payload for f in frames] == [b"first"]
        assert len(buffer) == 3
        buffer.feed(second[3:])
        assert [f.payload for f in buffer.frames()] == [b"second"]

    def test_stopping_early_leaves_later_frames(self):
        buffer = ReceiveBuffer()
        buffer.feed(server_frame(Opcode.CLOSE, b"") + server_frame(Opcode.TEXT, b"late"))

        first = next(buffer.frames())

        assert first.opcode == Opcode.CLOSE
        assert len(buffer) == len(server_frame(Opcode.TEXT, b"late"))

    def test_clear_discards_partial_frame(self):
        buffer = ReceiveBuffer()
        buffer.feed(b"\x81\x05he")
        buffer.clear()
        assert len(buffer) == 0
        assert list(buffer.frames()) == []
