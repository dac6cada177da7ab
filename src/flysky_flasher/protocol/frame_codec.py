"""
FlySky bootloader frame codec.

Two frame kinds travel over the link:

HOST frames (computer -> transmitter):
    [ len_lo | len_hi | payload... | chk_lo | chk_hi ]
    len = len(payload) + 4, the total frame length.

DEVICE frames (transmitter -> computer):
    [ 0x55 | size_lo | size_hi | payload... | chk_lo | chk_hi ]
    size = len(payload) + 5, the total frame length.

The checksum covers every byte before it (length/marker header plus payload).
It starts at 0xFFFF and subtracts each byte modulo 2^16, stored little-endian.
This only catches accidental corruption; two compensating byte errors can
cancel each other out.
"""

import logging
from enum import Enum
from typing import Callable

from flysky_flasher.errors import BadMarker, ChecksumMismatch, FrameLengthError

logger = logging.getLogger(__name__)

DEVICE_MARKER = 0x55
CHECKSUM_SIZE = 2
HOST_HEADER_SIZE = 2
DEVICE_HEADER_SIZE = 3
MAX_FRAME_SIZE = 0xFFFF

ReadExact = Callable[[int], bytes]


class FrameKind(Enum):
    """Direction-specific frame layouts."""
    HOST = "host"
    DEVICE = "device"


def frame_checksum(data: bytes) -> bytes:
    """
    Calculate the 16-bit subtractive checksum.

    Args:
        data: Header and payload bytes (never the checksum itself)

    Returns:
        2-byte little-endian checksum
    """
    checksum = 0xFFFF
    for byte in data:
        checksum = (checksum - byte) & 0xFFFF
    return checksum.to_bytes(2, "little")


def _check_size(total: int) -> None:
    if total > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {total} bytes (max {MAX_FRAME_SIZE})")


def encode_host_frame(payload: bytes) -> bytes:
    """
    Build a HOST frame.

    Example:
        >>> encode_host_frame(b"\\xC0").hex()
        '0500c03aff'
    """
    total = len(payload) + HOST_HEADER_SIZE + CHECKSUM_SIZE
    _check_size(total)
    head = total.to_bytes(2, "little") + bytes(payload)
    return head + frame_checksum(head)


def encode_device_frame(payload: bytes) -> bytes:
    """Build a DEVICE frame (what the transmitter sends back)."""
    total = len(payload) + DEVICE_HEADER_SIZE + CHECKSUM_SIZE
    _check_size(total)
    head = bytes([DEVICE_MARKER]) + total.to_bytes(2, "little") + bytes(payload)
    return head + frame_checksum(head)


def _split_and_verify(header: bytes, body: bytes) -> bytes:
    payload = body[:-CHECKSUM_SIZE]
    received = body[-CHECKSUM_SIZE:]
    expected = frame_checksum(header + payload)
    if received != expected:
        raise ChecksumMismatch(
            f"Checksum mismatch: got {received.hex()}, expected {expected.hex()}"
        )
    return payload


def decode_device_frame(read_exact: ReadExact) -> bytes:
    """
    Read and validate one DEVICE frame.

    Args:
        read_exact: Callable returning exactly n bytes (or raising)

    Returns:
        Frame payload without marker, size or checksum

    Raises:
        BadMarker: First byte is not 0x55
        FrameLengthError: Size field smaller than an empty frame
        ChecksumMismatch: Trailer does not match header + payload
    """
    header = read_exact(DEVICE_HEADER_SIZE)
    if header[0] != DEVICE_MARKER:
        raise BadMarker(f"Invalid response marker 0x{header[0]:02X} (expected 0x55)")

    size = int.from_bytes(header[1:3], "little")
    if size < DEVICE_HEADER_SIZE + CHECKSUM_SIZE:
        raise FrameLengthError(f"Device frame size {size} is too small")

    body = read_exact(size - DEVICE_HEADER_SIZE)
    return _split_and_verify(header, body)


def decode_host_frame(read_exact: ReadExact) -> bytes:
    """Read and validate one HOST frame (device side of the link)."""
    header = read_exact(HOST_HEADER_SIZE)
    size = int.from_bytes(header, "little")
    if size < HOST_HEADER_SIZE + CHECKSUM_SIZE:
        raise FrameLengthError(f"Host frame size {size} is too small")

    body = read_exact(size - HOST_HEADER_SIZE)
    return _split_and_verify(header, body)


def encode_frame(kind: FrameKind, payload: bytes) -> bytes:
    if kind is FrameKind.HOST:
        return encode_host_frame(payload)
    return encode_device_frame(payload)


def decode_frame(kind: FrameKind, read_exact: ReadExact) -> bytes:
    if kind is FrameKind.HOST:
        return decode_host_frame(read_exact)
    return decode_device_frame(read_exact)


class FrameCodec:
    """
    Frame codec used by a protocol session.

    Host frames go out, device frames come in. With ``trace`` enabled every
    frame is logged split into header, payload and checksum.
    """

    def __init__(self, trace: bool = False):
        self.trace = trace

    def encode(self, payload: bytes) -> bytes:
        frame = encode_host_frame(payload)
        if self.trace:
            logger.debug(
                "Write %s %s %s",
                frame[:2].hex(" "),
                frame[2:-2].hex(" "),
                frame[-2:].hex(" "),
            )
        return frame

    def decode(self, read_exact: ReadExact) -> bytes:
        payload = decode_device_frame(read_exact)
        if self.trace:
            logger.debug("Read %s", payload.hex(" "))
        return payload
