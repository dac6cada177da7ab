"""Shared fixtures: an in-memory FlySky bootloader behind the Transport interface."""

import io
from typing import Dict, List, Optional, Tuple

import pytest

from flysky_flasher.errors import TransportTimeout
from flysky_flasher.protocol.frame_codec import decode_host_frame, encode_device_frame
from flysky_flasher.protocol.session import (
    CMD_PING,
    CMD_REQUEST_WRITE,
    CMD_RESTART,
    CMD_WRITE_CHUNK,
    build_request_write_ack,
)
from flysky_flasher.protocol.transport import Transport


def byte_reader(data: bytes):
    """read_exact-style callable over a fixed byte string."""
    stream = io.BytesIO(data)

    def read_exact(n: int) -> bytes:
        out = stream.read(n)
        if len(out) < n:
            raise TransportTimeout(f"Read timeout: got {len(out)}/{n} bytes")
        return out

    return read_exact


class SimulatedDevice(Transport):
    """
    Bootloader simulator.

    Decodes every host frame written to it, records the command and queues
    the device frame a real transmitter would answer with. Faults can be
    scheduled per (opcode, address):

        silent  - no answer at all (host read times out)
        nack    - valid frame with the wrong payload
        corrupt - frame with a broken checksum followed by junk bytes
    """

    def __init__(self, ping_response: bytes = b"\xC0\x80") -> None:
        self.ping_response = ping_response
        self.outgoing = bytearray()
        self.writes: List[bytes] = []
        self.commands: List[Tuple[int, Optional[int]]] = []
        self.flash: Dict[int, bytes] = {}
        self.faults: Dict[Tuple[int, Optional[int]], List[str]] = {}
        self.drain_calls = 0
        self.restarted = False
        self.opened = False
        self.closed = False

    # Transport interface

    def write_exact(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        payload = decode_host_frame(byte_reader(data))
        self._handle(payload)

    def read_exact(self, length: int, timeout: Optional[float] = None) -> bytes:
        if len(self.outgoing) < length:
            got = len(self.outgoing)
            self.outgoing.clear()
            raise TransportTimeout(f"Read timeout: got {got}/{length} bytes")
        out = bytes(self.outgoing[:length])
        del self.outgoing[:length]
        return out

    def drain(self) -> int:
        self.drain_calls += 1
        drained = len(self.outgoing)
        self.outgoing.clear()
        return drained

    def __enter__(self) -> "SimulatedDevice":
        self.opened = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.closed = True

    # Test helpers

    def fail(self, opcode: int, address: Optional[int] = None, times: int = 1, mode: str = "silent") -> None:
        self.faults.setdefault((opcode, address), []).extend([mode] * times)

    def addresses(self, opcode: int) -> List[Optional[int]]:
        return [address for op, address in self.commands if op == opcode]

    def image(self, base_address: int, size: int) -> bytes:
        out = bytearray()
        for address in sorted(self.flash):
            assert address == base_address + len(out), "gap or overlap in flashed chunks"
            out.extend(self.flash[address])
        return bytes(out[:size])

    # Device behaviour

    def _reply(self, payload: bytes) -> None:
        self.outgoing.extend(encode_device_frame(payload))

    def _fault(self, key: Tuple[int, Optional[int]], good_reply: bytes) -> bool:
        pending = self.faults.get(key)
        if not pending:
            return False
        mode = pending.pop(0)
        if mode == "nack":
            self._reply(bytes([good_reply[0] ^ 0x01]) + good_reply[1:])
        elif mode == "corrupt":
            frame = bytearray(encode_device_frame(good_reply))
            frame[-1] ^= 0xFF
            self.outgoing.extend(frame + b"\xDE\xAD\xBE\xEF")
        return True

    def _handle(self, payload: bytes) -> None:
        opcode = payload[0]
        address = int.from_bytes(payload[1:3], "little") if opcode in (CMD_REQUEST_WRITE, CMD_WRITE_CHUNK) else None
        self.commands.append((opcode, address))

        if opcode == CMD_PING:
            if not self._fault((opcode, None), self.ping_response):
                self._reply(self.ping_response)
        elif opcode == CMD_REQUEST_WRITE:
            ack = build_request_write_ack(address)
            if not self._fault((opcode, address), ack):
                self._reply(ack)
        elif opcode == CMD_WRITE_CHUNK:
            confirm = bytes([CMD_WRITE_CHUNK, 0x00, 0x00, 0x00, 0x00])
            if not self._fault((opcode, address), confirm):
                self.flash[address] = payload[7:]
                self._reply(confirm)
        elif opcode == CMD_RESTART:
            self.restarted = True


@pytest.fixture
def device() -> SimulatedDevice:
    return SimulatedDevice()


@pytest.fixture
def reader():
    return byte_reader
