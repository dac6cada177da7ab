"""
FlySky Flasher - firmware updater for FlySky radio transmitters

Frames, checksums and uploads firmware images to the transmitter
bootloader over a serial link.
"""

__version__ = "0.1.0"

from flysky_flasher.protocol import SerialTransport, ProtocolSession
from flysky_flasher.uploader import FirmwareUploader
from flysky_flasher.firmware import FirmwareImage, load_firmware_file

__all__ = [
    "SerialTransport",
    "ProtocolSession",
    "FirmwareUploader",
    "FirmwareImage",
    "load_firmware_file",
    "__version__",
]
