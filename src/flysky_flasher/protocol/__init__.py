"""Bootloader protocol layer - framing, serial transport and commands."""

from .frame_codec import (
    FrameCodec,
    FrameKind,
    frame_checksum,
    encode_host_frame,
    encode_device_frame,
    decode_host_frame,
    decode_device_frame,
    encode_frame,
    decode_frame,
    DEVICE_MARKER,
)
from .transport import (
    Transport,
    SerialTransport,
    list_serial_ports,
    BAUD_RATE,
    READ_TIMEOUT,
)
from .session import (
    ProtocolSession,
    CMD_PING,
    CMD_RESTART,
    CMD_REQUEST_WRITE,
    CMD_WRITE_CHUNK,
    CHUNK_SIZE,
)

__all__ = [
    # Framing
    "FrameCodec",
    "FrameKind",
    "frame_checksum",
    "encode_host_frame",
    "encode_device_frame",
    "decode_host_frame",
    "decode_device_frame",
    "encode_frame",
    "decode_frame",
    "DEVICE_MARKER",
    # Transport
    "Transport",
    "SerialTransport",
    "list_serial_ports",
    "BAUD_RATE",
    "READ_TIMEOUT",
    # Commands
    "ProtocolSession",
    "CMD_PING",
    "CMD_RESTART",
    "CMD_REQUEST_WRITE",
    "CMD_WRITE_CHUNK",
    "CHUNK_SIZE",
]
