"""WebSocket frame codec (RFC 6455, client side).

Only what a loopback JSON-RPC peer needs:
- FIN is always set on outbound frames (no fragmentation is ever produced)
- Outbound frames are always masked
- Inbound parsing is re-entrant: a partial frame stays in the buffer untouched
  until the rest of its bytes arrive
"""

import os
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Optional


class Opcode(IntEnum):
    """Frame opcodes."""
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


FIN_BIT = 0x80
MASK_BIT = 0x80

# Length thresholds for the 7-bit / 16-bit / 64-bit length encodings
MAX_SHORT_LENGTH = 125
EXTENDED_16 = 126
EXTENDED_64 = 127
MAX_16BIT_LENGTH = 0xFFFF


@dataclass(frozen=True)
class Frame:
    """One decoded frame. `payload` is always unmasked."""
    opcode: int
    payload: bytes
    fin: bool = True
    masked: bool = False


def apply_mask(payload: bytes, mask_key: bytes) -> bytes:
    """XOR `payload` with the 4-byte `mask_key`. Applying it twice is a no-op."""
    if len(mask_key) != 4:
        raise ValueError("mask key must be 4 bytes")
    if not payload:
        return b""
    # XOR the whole buffer as one big integer
    repeated = (mask_key * (len(payload) // 4 + 1))[: len(payload)]
    masked = int.from_bytes(payload, "big") ^ int.from_bytes(repeated, "big")
    return masked.to_bytes(len(payload), "big")


def encode_length(length: int, masked: bool = True) -> bytes:
    """Encode the payload length field with the minimal width."""
    mask_bit = MASK_BIT if masked else 0
    if length <= MAX_SHORT_LENGTH:
        return bytes([length | mask_bit])
    if length <= MAX_16BIT_LENGTH:
        return bytes([EXTENDED_16 | mask_bit]) + struct.pack("!H", length)
    return bytes([EXTENDED_64 | mask_bit]) + struct.pack("!Q", length)


def encode_frame(opcode: int, payload: bytes, mask_key: Optional[bytes] = None) -> bytes:
    """Build a masked, unfragmented frame.

    Args:
        opcode: Frame opcode (see `Opcode`)
        payload: Raw (unmasked) payload bytes
        mask_key: 4-byte masking key; a random one is drawn when omitted

    Returns:
        The frame bytes ready to be written to the socket
    """
    if mask_key is None:
        mask_key = os.urandom(4)
    header = bytes([FIN_BIT | opcode]) + encode_length(len(payload))
    return header + mask_key + apply_mask(payload, mask_key)


def encode_text_frame(text: str) -> bytes:
    """Encode `text` as a masked text frame."""
    return encode_frame(Opcode.TEXT, text.encode("utf-8"))


def encode_pong_frame(payload: bytes) -> bytes:
    """Encode a masked pong echoing a ping's payload."""
    return encode_frame(Opcode.PONG, payload)


def parse_frame(buffer) -> Optional[tuple[Frame, int]]:
    """Try to parse one frame from the front of `buffer`.

    Returns:
        (frame, bytes consumed), or None when `buffer` does not yet hold a
        complete frame. Nothing is consumed in the None case.
    """
    available = len(buffer)
    if available < 2:
        return None

    b0, b1 = buffer[0], buffer[1]
    fin = bool(b0 & FIN_BIT)
    opcode = b0 & 0x0F
    masked = bool(b1 & MASK_BIT)
    length = b1 & 0x7F
    offset = 2

    if length == EXTENDED_16:
        if available < 4:
            return None
        (length,) = struct.unpack_from("!H", buffer, 2)
        offset = 4
    elif length == EXTENDED_64:
        if available < 10:
            return None
        (length,) = struct.unpack_from("!Q", buffer, 2)
        offset = 10

    mask_key = b""
    if masked:
        if available < offset + 4:
            return None
        mask_key = bytes(buffer[offset:offset + 4])
        offset += 4

    end = offset + length
    if available < end:
        return None

    payload = bytes(buffer[offset:end])
    if masked:
        payload = apply_mask(payload, mask_key)
    return Frame(opcode=opcode, payload=payload, fin=fin, masked=masked), end


class ReceiveBuffer:
    """Bytes read from the socket but not yet parsed into frames."""

    def __init__(self):
        self._data = bytearray()

    def __len__(self) -> int:
        return len(self._data)

    def feed(self, data: bytes) -> None:
        """Append freshly read bytes."""
        self._data.extend(data)

    def frames(self) -> Iterator[Frame]:
        """Yield every complete frame currently buffered, oldest first.

        Each frame is removed from the buffer just before it is yielded, so a
        consumer that stops iterating (e.g. on a close frame) leaves any later
        frames in place.
        """
        while True:
            parsed = parse_frame(self._data)
            if parsed is None:
                return
            frame, consumed = parsed
            del self._data[:consumed]
            yield frame

    def clear(self) -> None:
        """Drop all buffered bytes, including any partial frame."""
        self._data.clear()
