"""
Exception hierarchy for FlySky Flasher.

FlasherError (base)
├── TransportError       - serial link failures
│   ├── TransportTimeout - no bytes arrived within the read timeout
│   └── ShortWrite       - the port accepted fewer bytes than requested
├── ProtocolError        - corrupted or out-of-sync exchange
│   ├── BadMarker        - device frame does not start with 0x55
│   ├── ChecksumMismatch - frame trailer disagrees with its contents
│   ├── FrameLengthError - size field too small to hold a frame
│   └── UnexpectedResponse - well-formed frame with the wrong contents
├── UploadError          - upload aborted
│   └── RetryExhausted   - a block kept failing past the retry bound
└── FirmwareFileError    - firmware file rejected by the loader
"""

from typing import Optional


class FlasherError(Exception):
    """Base exception for all FlySky Flasher errors."""
    pass


class TransportError(FlasherError):
    """Base exception for transport layer errors"""
    pass


class TransportTimeout(TransportError):
    """Device did not send anything within the read timeout"""
    pass


class ShortWrite(TransportError):
    """Serial port accepted only part of a write"""
    pass


class ProtocolError(FlasherError):
    """Base exception for framing and command/response errors"""
    pass


class BadMarker(ProtocolError):
    """Device frame did not start with the 0x55 marker"""
    pass


class ChecksumMismatch(ProtocolError):
    """Frame checksum did not match the received bytes"""
    pass


class FrameLengthError(ProtocolError):
    """Frame length field cannot describe a valid frame"""
    pass


class UnexpectedResponse(ProtocolError):
    """
    Device answered with a valid frame carrying the wrong payload.

    Attributes:
        expected: Payload (or prefix) the host was waiting for, if known
        received: Payload actually received
    """

    def __init__(
        self,
        message: str,
        expected: Optional[bytes] = None,
        received: Optional[bytes] = None,
    ):
        self.expected = expected
        self.received = received
        super().__init__(message)


class UploadError(FlasherError):
    """Base exception for upload-level failures"""
    pass


class RetryExhausted(UploadError):
    """
    A block failed on every allowed attempt.

    Attributes:
        address: Flash address of the block that kept failing
        attempts: Number of attempts made (initial try plus retries)
    """

    def __init__(self, address: int, attempts: int, last_error: Optional[BaseException] = None):
        self.address = address
        self.attempts = attempts
        self.last_error = last_error
        message = f"Block at 0x{address:04X} failed after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class FirmwareFileError(FlasherError):
    """Firmware file is missing, unreadable or has an unexpected size"""
    pass
