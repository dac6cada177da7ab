"""
Chunked firmware upload.

The image is written in 1024-byte blocks. Each block needs its own write
permission (request_write) and is then sent as four 256-byte chunks
(write_chunk). If anything in a block fails, the receive buffer is drained
and the whole block starts over from the write request, up to
DEFAULT_MAX_RETRIES times. After that the upload is aborted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from flysky_flasher.errors import ProtocolError, RetryExhausted, TransportError
from flysky_flasher.firmware import FirmwareImage
from flysky_flasher.protocol.session import CHUNK_SIZE, ProtocolSession

logger = logging.getLogger(__name__)

BLOCK_SIZE = 1024
DEFAULT_MAX_RETRIES = 3
PAD_BYTE = 0xFF

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class Chunk:
    """Image slice sent by one write_chunk call."""

    offset: int
    length: int


@dataclass(frozen=True)
class Block:
    """Image slice covered by one write permission."""

    offset: int
    chunks: Tuple[Chunk, ...]


@dataclass
class UploadState:
    """Progress of a running upload. ``offset`` and ``bytes_done`` only move forward."""

    offset: int = 0
    retries: int = 0
    bytes_done: int = 0


def plan_blocks(
    size: int,
    block_size: int = BLOCK_SIZE,
    chunk_size: int = CHUNK_SIZE,
) -> List[Block]:
    """
    Partition ``size`` image bytes into blocks of chunks.

    Chunks starting past the end of the image are left out, so the plan
    covers [0, size) exactly once. The last chunk may be short.
    """
    if size < 0:
        raise ValueError("size must be >= 0")
    if block_size % chunk_size:
        raise ValueError("block_size must be a multiple of chunk_size")

    blocks: List[Block] = []
    for block_offset in range(0, size, block_size):
        chunks = tuple(
            Chunk(offset=offset, length=min(chunk_size, size - offset))
            for offset in range(block_offset, min(block_offset + block_size, size), chunk_size)
        )
        blocks.append(Block(offset=block_offset, chunks=chunks))
    return blocks


def chunk_bytes(data: bytes, chunk: Chunk, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Slice a chunk out of the image, right-padded with 0xFF to chunk_size."""
    piece = data[chunk.offset:chunk.offset + chunk.length]
    if len(piece) < chunk_size:
        piece = piece + bytes([PAD_BYTE]) * (chunk_size - len(piece))
    return piece


class FirmwareUploader:
    """
    Drives a ProtocolSession through a complete image upload.

    Example:
        uploader = FirmwareUploader(session, progress_cb=on_progress)
        uploader.upload(image)
        session.restart()
    """

    def __init__(
        self,
        session: ProtocolSession,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.session = session
        self.max_retries = max_retries
        self.progress_cb = progress_cb
        self.state: Optional[UploadState] = None

    def upload(self, image: FirmwareImage) -> int:
        """
        Write the whole image.

        Returns:
            Number of image bytes transferred

        Raises:
            RetryExhausted: If a block failed max_retries + 1 times in a row
        """
        total = image.size
        blocks = plan_blocks(total)
        self.state = UploadState()
        logger.info(
            f"Uploading {total} bytes at 0x{image.base_address:04X} in {len(blocks)} blocks"
        )

        try:
            for block in blocks:
                self.state.offset = block.offset
                self.state.retries = 0
                self._write_block(image, block, total)
        finally:
            done = self.state.bytes_done
            self.state = None

        logger.info(f"Upload completed: {done} bytes")
        return done

    def _write_block(self, image: FirmwareImage, block: Block, total: int) -> None:
        address = image.base_address + block.offset
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 2):
            try:
                self.session.request_write(address)
                for chunk in block.chunks:
                    self.session.write_chunk(
                        image.base_address + chunk.offset,
                        chunk_bytes(image.data, chunk),
                    )
                    self._report(chunk.offset + chunk.length, total)
                return
            except (TransportError, ProtocolError) as exc:
                last_exc = exc
                if attempt > self.max_retries:
                    break
                self.state.retries = attempt
                logger.warning(
                    f"Retry {attempt}/{self.max_retries} for block at 0x{address:04X}: {exc}"
                )
                self.session.drain()

        raise RetryExhausted(address, attempt, last_exc) from last_exc

    def _report(self, bytes_done: int, total: int) -> None:
        # Chunks replayed after a block retry were already counted
        if bytes_done <= self.state.bytes_done:
            return
        self.state.bytes_done = bytes_done
        if self.progress_cb:
            self.progress_cb(bytes_done, total)
