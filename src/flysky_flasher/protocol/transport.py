"""
FlySky Serial Transport Layer

Handles low-level serial communication with the transmitter bootloader.

This module provides:
- The byte-level Transport interface used by the protocol session
- Serial port initialization and configuration (115200 8N1, no flow control)
- Exact-length reads and writes with timeout handling
- Input draining to resynchronize after a failed exchange
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

try:
    import serial
    import serial.tools.list_ports
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from flysky_flasher.errors import ShortWrite, TransportError, TransportTimeout

logger = logging.getLogger(__name__)

BAUD_RATE = 115200
READ_TIMEOUT = 1.0
DRAIN_READ_SIZE = 1024


class Transport(ABC):
    """
    Byte-level duplex channel to the transmitter.

    Implementations never retry: a short write or a silent read is reported
    to the caller, who decides what to do.
    """

    @abstractmethod
    def write_exact(self, data: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def read_exact(self, length: int, timeout: Optional[float] = None) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def drain(self) -> int:
        raise NotImplementedError


class SerialTransport(Transport):
    """
    Serial transport for the FlySky bootloader.

    Example:
        with SerialTransport(port="/dev/ttyUSB0") as transport:
            transport.write_exact(frame)
            head = transport.read_exact(3)
    """

    def __init__(
        self,
        port: str,
        baudrate: int = BAUD_RATE,
        timeout: float = READ_TIMEOUT,
        trace: bool = False,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 115200)
            timeout: Per-read timeout in seconds (default 1.0)
            trace: Log every raw write and read as hex
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.trace = trace
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity="N",
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
                rtscts=False,
                dsrdtr=False,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)"
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    def write_exact(self, data: bytes) -> None:
        """
        Send all bytes to the transmitter.

        Raises:
            ShortWrite: If the port accepted fewer bytes
            TransportError: If the write fails
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")

        if written != len(data):
            raise ShortWrite(f"Incomplete write: sent {written}/{len(data)} bytes")
        if self.trace:
            logger.debug(f">>> {data.hex().upper()}")

    def read_exact(self, length: int, timeout: Optional[float] = None) -> bytes:
        """
        Receive exactly ``length`` bytes.

        Partial reads are accumulated; the call fails only when a read
        returns nothing within the timeout.

        Args:
            length: Number of bytes to receive
            timeout: Optional per-read timeout override (seconds)

        Raises:
            TransportTimeout: If the device goes silent before ``length`` bytes
            TransportError: If the read fails
        """
        ser = self._require_open()
        if length <= 0:
            return b""

        old_timeout = None
        out = bytearray()
        try:
            if timeout is not None:
                old_timeout = ser.timeout
                ser.timeout = timeout

            while len(out) < length:
                chunk = ser.read(length - len(out))
                if not chunk:
                    raise TransportTimeout(
                        f"Read timeout: got {len(out)}/{length} bytes"
                    )
                out.extend(chunk)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        finally:
            if old_timeout is not None:
                ser.timeout = old_timeout

        if self.trace:
            logger.debug(f"<<< {out.hex().upper()}")
        return bytes(out)

    def drain(self) -> int:
        """
        Discard everything already waiting in the receive buffer.

        Uses a zero timeout so the call returns as soon as the buffer is empty.

        Returns:
            Number of bytes discarded
        """
        ser = self._require_open()
        old_timeout = ser.timeout
        drained = 0
        try:
            ser.timeout = 0
            while True:
                junk = ser.read(DRAIN_READ_SIZE)
                if not junk:
                    break
                drained += len(junk)
        except serial.SerialException as e:
            raise TransportError(f"Drain error: {e}")
        finally:
            ser.timeout = old_timeout

        if drained:
            logger.debug(f"Drained {drained} bytes of junk from buffer")
        return drained


def list_serial_ports() -> List["serial.tools.list_ports_common.ListPortInfo"]:
    """Return the serial ports currently visible to the OS, sorted by device."""
    return sorted(serial.tools.list_ports.comports(), key=lambda p: p.device)
