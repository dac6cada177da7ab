"""
Firmware image loading for FlySky transmitters.

Vendor update files come in two shapes:
- bare application images (0x9000..0xE7FF bytes), flashed at 0x1800
- full flash dumps that additionally carry the 0x1800-byte bootloader
  region in front; the loader strips it

The firmware name and build date are 16-byte ASCII fields at fixed offsets,
shifted by 0x1800 in files that still include the bootloader region.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from flysky_flasher.errors import FirmwareFileError

logger = logging.getLogger(__name__)

FLASH_BASE_ADDRESS = 0x1800
HEADER_SIZE = 0x1800
MIN_FIRMWARE_SIZE = 0x9000
MAX_FIRMWARE_SIZE = 0xE7FF
NAME_OFFSET = 0xD6AD
DATE_OFFSET = 0xD6C0
FIELD_SIZE = 16
# Smallest file that still holds both display fields; shorter files are not listed.
MIN_CANDIDATE_SIZE = 0xE700


@dataclass(frozen=True)
class FirmwareImage:
    """Validated application image ready to be flashed."""

    data: bytes
    base_address: int = FLASH_BASE_ADDRESS
    name: str = ""
    build_date: str = ""
    source: Optional[str] = None
    header_stripped: bool = False

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    @property
    def label(self) -> str:
        text = f"{self.name} {self.build_date}".strip()
        return text or (Path(self.source).name if self.source else "firmware")


@dataclass(frozen=True)
class FirmwareCandidate:
    """A firmware file found on disk, with its display fields."""

    path: Path
    size: int
    name: str
    build_date: str


def _read_field(raw: bytes, offset: int) -> str:
    field = raw[offset:offset + FIELD_SIZE]
    if len(field) < FIELD_SIZE:
        return ""
    return field.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip()


def read_display_fields(raw: bytes) -> tuple:
    """
    Return (name, build_date) from a raw update file.

    Both offsets move by HEADER_SIZE when the file carries the bootloader
    region. Fields outside the file come back empty.
    """
    shift = HEADER_SIZE if len(raw) > MAX_FIRMWARE_SIZE else 0
    return _read_field(raw, NAME_OFFSET + shift), _read_field(raw, DATE_OFFSET + shift)


def load_firmware_bytes(raw: bytes, source: Optional[str] = None) -> FirmwareImage:
    """
    Turn a raw update file into a FirmwareImage.

    Args:
        raw: File contents
        source: Where the bytes came from (for messages)

    Returns:
        FirmwareImage with the bootloader header removed

    Raises:
        FirmwareFileError: If the stripped image size is out of range
    """
    header_stripped = len(raw) > MAX_FIRMWARE_SIZE
    data = raw[HEADER_SIZE:] if header_stripped else raw

    logger.debug(
        "File size %d bytes, data size %d bytes (header %s)",
        len(raw),
        len(data),
        "stripped" if header_stripped else "absent",
    )

    if not MIN_FIRMWARE_SIZE <= len(data) <= MAX_FIRMWARE_SIZE:
        raise FirmwareFileError(
            f"Unexpected firmware size: {len(data)} bytes "
            f"(expected 0x{MIN_FIRMWARE_SIZE:X}..0x{MAX_FIRMWARE_SIZE:X})"
        )

    name, build_date = read_display_fields(raw)
    return FirmwareImage(
        data=bytes(data),
        base_address=FLASH_BASE_ADDRESS,
        name=name,
        build_date=build_date,
        source=source,
        header_stripped=header_stripped,
    )


def load_firmware_file(path: str | Path) -> FirmwareImage:
    """Read and validate a firmware file from disk."""
    p = Path(path)
    try:
        raw = p.read_bytes()
    except OSError as exc:
        raise FirmwareFileError(f"Cannot read firmware file {p}: {exc}") from exc
    return load_firmware_bytes(raw, source=str(p))


def discover_firmware(directory: str | Path = ".") -> List[FirmwareCandidate]:
    """
    List *.bin files in ``directory`` that look like update files.

    Files too short to carry the name/date fields are skipped.
    """
    root = Path(directory)
    candidates: List[FirmwareCandidate] = []
    for path in sorted(root.glob("*.bin")):
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            continue
        if len(raw) < MIN_CANDIDATE_SIZE:
            logger.debug("Skipping %s: only %d bytes", path, len(raw))
            continue
        name, build_date = read_display_fields(raw)
        candidates.append(
            FirmwareCandidate(path=path, size=len(raw), name=name, build_date=build_date)
        )
    return candidates
