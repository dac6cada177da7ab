"""Tests for the typer command-line interface."""

from types import SimpleNamespace

import pytest
import typer
from typer.testing import CliRunner

from flysky_flasher import cli
from flysky_flasher.core.results import OperationResult
from flysky_flasher.firmware import HEADER_SIZE, MIN_CANDIDATE_SIZE, NAME_OFFSET

runner = CliRunner()


class _Calls(list):
    """Recorded calls plus a queue of results to hand back."""

    def __init__(self):
        super().__init__()
        self.script = []


def _write_firmware(path, size=0xE000, name=b"FS-i6"):
    raw = bytearray(size)
    raw[NAME_OFFSET:NAME_OFFSET + 16] = name.ljust(16, b"\x00")
    path.write_bytes(bytes(raw))
    return path


@pytest.fixture
def fw_file(tmp_path):
    return _write_firmware(tmp_path / "fs-i6.bin")


@pytest.fixture
def calls(monkeypatch):
    """Record core flash calls and answer with scripted results."""
    recorded = _Calls()
    scripted = recorded.script

    def fake_flash(port, image, **kwargs):
        recorded.append(SimpleNamespace(port=port, image=image, **kwargs))
        if kwargs.get("progress_cb"):
            kwargs["progress_cb"](image.size, image.size)
        if scripted:
            return scripted.pop(0)
        return OperationResult.success("flash_firmware", port=port, bytes_len=image.size)

    monkeypatch.setattr(cli, "core_flash_firmware", fake_flash)
    return recorded


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert "flysky-flasher" in result.output


def test_inspect_valid_file(fw_file):
    result = runner.invoke(cli.app, ["inspect", str(fw_file)])
    assert result.exit_code == 0
    assert "FS-i6" in result.output
    assert "Firmware looks valid" in result.output


def test_inspect_full_dump_reports_stripped_header(tmp_path):
    path = tmp_path / "dump.bin"
    path.write_bytes(bytes(HEADER_SIZE + 0xE000))
    result = runner.invoke(cli.app, ["inspect", str(path)])
    assert result.exit_code == 0
    assert "stripped" in result.output


def test_inspect_rejects_bad_size(tmp_path):
    path = tmp_path / "tiny.bin"
    path.write_bytes(b"\x00" * 100)
    result = runner.invoke(cli.app, ["inspect", str(path)])
    assert result.exit_code == 1
    assert "Unexpected firmware size" in result.output


def test_firmware_listing(tmp_path):
    _write_firmware(tmp_path / "one.bin", size=0xE7FF, name=b"Alpha")
    _write_firmware(tmp_path / "two.bin", size=0xE7FF, name=b"Beta")
    result = runner.invoke(cli.app, ["firmware", str(tmp_path)])
    assert result.exit_code == 0
    assert "one.bin" in result.output
    assert "Beta" in result.output


def test_firmware_listing_empty(tmp_path):
    result = runner.invoke(cli.app, ["firmware", str(tmp_path)])
    assert result.exit_code == 0
    assert "No firmware found" in result.output


def test_flash_dry_run_needs_no_confirmation(fw_file):
    result = runner.invoke(
        cli.app, ["flash", "--port", "/dev/ttyUSB0", "--firmware", str(fw_file), "--dry-run"]
    )
    assert result.exit_code == 0, result.output
    assert "Dry run complete: 56 blocks planned" in result.output


def test_flash_passes_options_through(fw_file, calls):
    result = runner.invoke(
        cli.app,
        [
            "--verbose",
            "flash",
            "-p", "COM3",
            "-f", str(fw_file),
            "--retries", "5",
            "--no-restart",
            "--yes",
        ],
    )
    assert result.exit_code == 0, result.output
    assert len(calls) == 1
    call = calls[0]
    assert call.port == "COM3"
    assert call.max_retries == 5
    assert call.restart is False
    assert call.trace is True
    assert call.dry_run is False
    assert "Upload completed" in result.output


def test_flash_declined_confirmation(fw_file, calls):
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "-f", str(fw_file)], input="n\n")
    assert result.exit_code == 0
    assert calls == []
    assert "cancelled" in result.output


def test_flash_attempts_retry_whole_upload(fw_file, calls):
    calls.script.append(OperationResult.failure("flash_firmware", "Block at 0x1C00 failed"))
    result = runner.invoke(
        cli.app, ["flash", "-p", "COM3", "-f", str(fw_file), "--attempts", "2", "-y"]
    )
    assert result.exit_code == 0, result.output
    assert len(calls) == 2
    assert "Attempt 2/2" in result.output


def test_flash_gives_up_after_attempts(fw_file, calls):
    calls.script.extend(
        OperationResult.failure("flash_firmware", "Block at 0x1C00 failed") for _ in range(2)
    )
    result = runner.invoke(
        cli.app, ["flash", "-p", "COM3", "-f", str(fw_file), "--attempts", "2", "-y"]
    )
    assert result.exit_code == 1
    assert len(calls) == 2


def test_flash_picks_single_firmware_from_directory(tmp_path, calls):
    _write_firmware(tmp_path / "only.bin", size=MIN_CANDIDATE_SIZE)
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "--dir", str(tmp_path), "-y"])
    assert result.exit_code == 0, result.output
    assert calls[0].image.source.endswith("only.bin")


def test_flash_ignores_short_files_in_directory(tmp_path, calls):
    # Loadable on its own, but too short to be listed
    _write_firmware(tmp_path / "short.bin", size=MIN_CANDIDATE_SIZE - 1)
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "--dir", str(tmp_path), "-y"])
    assert result.exit_code == 1
    assert "No firmware found" in result.output
    assert calls == []


def test_flash_explicit_short_file_is_accepted(tmp_path, calls):
    path = _write_firmware(tmp_path / "short.bin", size=MIN_CANDIDATE_SIZE - 1)
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "-f", str(path), "-y"])
    assert result.exit_code == 0, result.output
    assert calls[0].image.size == MIN_CANDIDATE_SIZE - 1


def test_flash_without_firmware_fails(tmp_path, calls):
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "--dir", str(tmp_path), "-y"])
    assert result.exit_code == 1
    assert "No firmware found" in result.output
    assert calls == []


def _port(device, description="USB Serial"):
    return SimpleNamespace(device=device, name=device, description=description)


def test_choose_port_explicit_wins(monkeypatch):
    monkeypatch.setattr(cli, "list_serial_ports", lambda: pytest.fail("should not scan"))
    assert cli.choose_port("COM7") == "COM7"


def test_choose_port_single_detected(monkeypatch):
    monkeypatch.setattr(cli, "list_serial_ports", lambda: [_port("/dev/ttyUSB0")])
    assert cli.choose_port(None) == "/dev/ttyUSB0"


def test_choose_port_prompts_when_several(monkeypatch):
    monkeypatch.setattr(
        cli, "list_serial_ports", lambda: [_port("/dev/ttyS0"), _port("/dev/ttyUSB0")]
    )
    monkeypatch.setattr(cli.typer, "prompt", lambda *args, **kwargs: 1)
    assert cli.choose_port(None) == "/dev/ttyUSB0"


def test_choose_port_none_found(monkeypatch):
    monkeypatch.setattr(cli, "list_serial_ports", lambda: [])
    with pytest.raises(typer.Exit):
        cli.choose_port(None)


def test_ports_command(monkeypatch):
    monkeypatch.setattr(cli, "list_serial_ports", lambda: [_port("/dev/ttyUSB0", "CP2102")])
    result = runner.invoke(cli.app, ["ports"])
    assert result.exit_code == 0
    assert "/dev/ttyUSB0" in result.output


def test_verbose_failed_attempt_prints_summary(fw_file, calls):
    calls.script.append(
        OperationResult.failure("flash_firmware", "Block at 0x1C00 failed", port="COM3")
    )
    result = runner.invoke(cli.app, ["--verbose", "flash", "-p", "COM3", "-f", str(fw_file), "-y"])
    assert result.exit_code == 1
    assert "[FAILED] flash_firmware" in result.output
    assert "Port: COM3" in result.output


def test_quiet_failed_attempt_has_no_summary(fw_file, calls):
    calls.script.append(OperationResult.failure("flash_firmware", "Block at 0x1C00 failed"))
    result = runner.invoke(cli.app, ["flash", "-p", "COM3", "-f", str(fw_file), "-y"])
    assert result.exit_code == 1
    assert "[FAILED]" not in result.output
