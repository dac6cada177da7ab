"""
Core workflow actions for FlySky Flasher.

Each action is one single-shot run: open the port, talk to the bootloader,
release the port. Failures come back as an OperationResult rather than an
exception so the CLI can decide whether to try again.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from flysky_flasher.errors import FlasherError
from flysky_flasher.firmware import FirmwareImage
from flysky_flasher.protocol.frame_codec import FrameCodec
from flysky_flasher.protocol.session import ProtocolSession
from flysky_flasher.protocol.transport import BAUD_RATE, READ_TIMEOUT, SerialTransport, Transport
from flysky_flasher.uploader import DEFAULT_MAX_RETRIES, FirmwareUploader, plan_blocks

from .results import OperationResult

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "flysky_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def run_flash(
    transport: Transport,
    image: FirmwareImage,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    restart: bool = True,
    trace: bool = False,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> OperationResult:
    """
    Ping, upload and restart over an already open transport.

    Args:
        transport: Open transport to the transmitter
        image: Validated firmware image
        max_retries: Retries allowed per 1024-byte block
        restart: Send the restart command after a successful upload
        trace: Log every frame
        progress_cb: Optional progress callback(bytes_written, total)

    Returns:
        OperationResult; on failure ``errors`` holds the reason and no
        further bytes were written after it occurred
    """
    with _capture_logs() as logs:
        result = OperationResult(ok=False, operation="flash_firmware", firmware=image.label)
        result.hashes["sha256"] = image.sha256
        result.metadata["base_address"] = f"0x{image.base_address:04X}"
        result.metadata["image_size"] = image.size
        result.logs = logs

        session = ProtocolSession(transport, FrameCodec(trace=trace))
        try:
            answer = session.ping()
            result.metadata["ping_response"] = answer.hex()
            logger.info("Bootloader answered ping")

            uploader = FirmwareUploader(session, max_retries=max_retries, progress_cb=progress_cb)
            result.bytes_len = uploader.upload(image)

            if restart:
                session.restart()
                logger.info("Restart command sent")
            else:
                result.add_warning("Restart skipped - power-cycle the transmitter manually")

            result.ok = True
        except FlasherError as e:
            logger.error(f"Flash failed: {e}")
            result.add_error(str(e))

        return result


def flash_firmware(
    port: str,
    image: FirmwareImage,
    *,
    baudrate: int = BAUD_RATE,
    timeout: float = READ_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    restart: bool = True,
    trace: bool = False,
    dry_run: bool = False,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> OperationResult:
    """
    Flash ``image`` through the serial port ``port``.

    The port is opened for the duration of the call and closed on every
    exit path. With ``dry_run`` the upload is only planned.
    """
    if dry_run:
        blocks = plan_blocks(image.size)
        result = OperationResult.success(
            operation="flash_firmware",
            port=port,
            firmware=image.label,
            bytes_len=image.size,
        )
        result.hashes["sha256"] = image.sha256
        result.metadata["simulated"] = True
        result.metadata["blocks"] = len(blocks)
        result.metadata["chunks"] = sum(len(block.chunks) for block in blocks)
        result.metadata["base_address"] = f"0x{image.base_address:04X}"
        result.add_warning("Dry run - nothing was written")
        return result

    try:
        with SerialTransport(port, baudrate=baudrate, timeout=timeout, trace=trace) as transport:
            result = run_flash(
                transport,
                image,
                max_retries=max_retries,
                restart=restart,
                trace=trace,
                progress_cb=progress_cb,
            )
    except FlasherError as e:
        logger.error(f"Flash failed: {e}")
        return OperationResult.failure(
            operation="flash_firmware",
            error=str(e),
            port=port,
            firmware=image.label,
        )

    result.port = port
    return result


def ping_device(
    port: str,
    *,
    baudrate: int = BAUD_RATE,
    timeout: float = READ_TIMEOUT,
    trace: bool = False,
) -> OperationResult:
    """Open ``port``, send one ping and report the answer."""
    with _capture_logs() as logs:
        try:
            with SerialTransport(port, baudrate=baudrate, timeout=timeout, trace=trace) as transport:
                session = ProtocolSession(transport, FrameCodec(trace=trace))
                answer = session.ping()
        except FlasherError as e:
            logger.error(f"Ping failed: {e}")
            result = OperationResult.failure(operation="ping", error=str(e), port=port)
            result.logs = logs
            return result

        result = OperationResult.success(operation="ping", port=port)
        result.metadata["ping_response"] = answer.hex()
        result.logs = logs
        return result
