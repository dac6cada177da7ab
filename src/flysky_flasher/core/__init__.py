"""
Core module for FlySky Flasher.

Single-shot workflows (actions.py) and the result objects they
return (results.py). The CLI calls into this module rather than
driving the protocol layer itself.
"""

from .results import OperationResult
from .actions import (
    run_flash,
    flash_firmware,
    ping_device,
)

__all__ = [
    "OperationResult",
    "run_flash",
    "flash_firmware",
    "ping_device",
]
