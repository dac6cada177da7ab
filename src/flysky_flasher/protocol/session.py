"""
FlySky bootloader command session.

Command vocabulary (first payload byte):

    0xC0  ping           -> response payload starts with 0xC0
    0xC1  restart        -> no response, the transmitter reboots
    0xC2  request write  -> 14-byte acknowledgement echoing the address
    0xC3  write chunk    -> 5-byte confirmation starting with 0xC3

Every call is a single exchange: one HOST frame written, at most one
DEVICE frame read. Nothing here retries; that is the uploader's job.
"""

import logging
from typing import Optional

from flysky_flasher.errors import UnexpectedResponse
from flysky_flasher.protocol.frame_codec import FrameCodec
from flysky_flasher.protocol.transport import Transport

logger = logging.getLogger(__name__)

CMD_PING = 0xC0
CMD_RESTART = 0xC1
CMD_REQUEST_WRITE = 0xC2
CMD_WRITE_CHUNK = 0xC3

CHUNK_SIZE = 256

REQUEST_WRITE_TEMPLATE = bytes(
    [0xC2, 0x00, 0x00, 0x00, 0x09, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
)
REQUEST_WRITE_ACK_TEMPLATE = bytes(
    [0xC2, 0x80, 0x00, 0x00, 0x00, 0x09, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
)
WRITE_CHUNK_HEADER_TEMPLATE = bytes([0xC3, 0x00, 0x00, 0x00, 0x00, 0x00, 0x01])
WRITE_CHUNK_CONFIRM_SIZE = 5
RESTART_PAYLOAD = bytes([CMD_RESTART, 0x00])


def _check_address(address: int) -> None:
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Address 0x{address:X} does not fit in 16 bits")


def _patch_address(template: bytes, position: int, address: int) -> bytes:
    out = bytearray(template)
    out[position:position + 2] = address.to_bytes(2, "little")
    return bytes(out)


def build_request_write(address: int) -> bytes:
    """Request-write payload with the address at bytes 1-2."""
    _check_address(address)
    return _patch_address(REQUEST_WRITE_TEMPLATE, 1, address)


def build_request_write_ack(address: int) -> bytes:
    """Acknowledgement the transmitter sends for build_request_write(address)."""
    _check_address(address)
    return _patch_address(REQUEST_WRITE_ACK_TEMPLATE, 2, address)


def build_write_chunk(address: int, data: bytes) -> bytes:
    """Write-chunk payload: 7-byte header followed by 256 data bytes."""
    _check_address(address)
    if len(data) != CHUNK_SIZE:
        raise ValueError(f"Chunk must be {CHUNK_SIZE} bytes, got {len(data)}")
    return _patch_address(WRITE_CHUNK_HEADER_TEMPLATE, 1, address) + bytes(data)


class ProtocolSession:
    """
    Request/response exchanges with the bootloader.

    The session owns the transport for its lifetime; opening and closing the
    port is left to whoever created the transport.
    """

    def __init__(self, transport: Transport, codec: Optional[FrameCodec] = None):
        self.transport = transport
        self.codec = codec or FrameCodec()

    def _send(self, payload: bytes) -> None:
        self.transport.write_exact(self.codec.encode(payload))

    def _receive(self) -> bytes:
        return self.codec.decode(self.transport.read_exact)

    def _exchange(self, payload: bytes) -> bytes:
        self._send(payload)
        return self._receive()

    def drain(self) -> int:
        """Discard pending input on the underlying transport."""
        return self.transport.drain()

    def ping(self) -> bytes:
        """
        Check that the bootloader is listening.

        Returns:
            Response payload (first byte 0xC0)

        Raises:
            UnexpectedResponse: If the answer does not start with 0xC0
        """
        answer = self._exchange(bytes([CMD_PING]))
        if not answer or answer[0] != CMD_PING:
            raise UnexpectedResponse(
                f"Unexpected answer to ping: {answer.hex() or 'empty'}",
                expected=bytes([CMD_PING]),
                received=answer,
            )
        logger.debug(f"Ping answered: {answer.hex()}")
        return answer

    def request_write(self, address: int) -> None:
        """
        Ask permission to write the 1024-byte block at ``address``.

        Raises:
            UnexpectedResponse: If the acknowledgement differs in any byte
        """
        expected = build_request_write_ack(address)
        answer = self._exchange(build_request_write(address))
        if answer != expected:
            raise UnexpectedResponse(
                f"Unexpected response to write request at 0x{address:04X}: "
                f"{answer.hex()} (expected {expected.hex()})",
                expected=expected,
                received=answer,
            )

    def write_chunk(self, address: int, data: bytes) -> None:
        """
        Write 256 bytes at ``address``.

        Only the confirmation's opcode and length are checked; the transmitter's
        confirmation bytes after the opcode are not known to echo the address.

        Raises:
            UnexpectedResponse: If the confirmation is malformed
        """
        answer = self._exchange(build_write_chunk(address, data))
        if len(answer) != WRITE_CHUNK_CONFIRM_SIZE or answer[0] != CMD_WRITE_CHUNK:
            raise UnexpectedResponse(
                f"Unexpected write confirmation at 0x{address:04X}: {answer.hex() or 'empty'}",
                expected=bytes([CMD_WRITE_CHUNK]),
                received=answer,
            )

    def restart(self) -> None:
        """Tell the transmitter to reboot. No answer is read."""
        self._send(RESTART_PAYLOAD)
        logger.debug("Restart command sent")
