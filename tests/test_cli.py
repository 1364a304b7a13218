"""Tests for the command-line interface."""

from pathlib import Path

from typer.testing import CliRunner

from peptide_ledger.cli.main import app

runner = CliRunner()


def _config(tmp_path: Path) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "ledger:\n"
        "  timezone: UTC\n"
        "storage:\n"
        f"  data_dir: {tmp_path / 'data'}\n"
        "  retry_wait_seconds: 0\n"
        "logging:\n"
        "  level: WARNING\n"
        "  console: false\n",
        encoding="utf-8",
    )
    return str(config_file)


def test_log_and_remaining(tmp_path: Path) -> None:
    """Test registering a peptide, logging a dose and reading the count."""
    config = _config(tmp_path)

    result = runner.invoke(
        app,
        [
            "register",
            "BPC-157",
            "--typical-dose",
            "300",
            "--num-vials",
            "2",
            "--peptide-id",
            "bpc",
            "--config-path",
            config,
        ],
    )
    if result.exit_code != 0:
        raise AssertionError(f"register failed: {result.output}")

    result = runner.invoke(app, ["add-vial", "bpc", "--units", "3", "--config-path", config])
    if result.exit_code != 0:
        raise AssertionError(f"add-vial failed: {result.output}")

    result = runner.invoke(app, ["log", "bpc", "300", "--config-path", config])
    if result.exit_code != 0:
        raise AssertionError(f"log failed: {result.output}")

    result = runner.invoke(app, ["remaining", "bpc", "--config-path", config])
    if result.exit_code != 0 or "2 doses left (low stock)" not in result.output:
        raise AssertionError(f"Unexpected remaining output: {result.output}")


def test_errors_exit_with_code_one(tmp_path: Path) -> None:
    """Test that ledger errors are reported with a non-zero exit code."""
    config = _config(tmp_path)

    result = runner.invoke(app, ["log", "missing", "300", "--config-path", config])

    if result.exit_code != 1:
        raise AssertionError(f"Expected exit code 1, got {result.exit_code}")


def test_show_prints_draw_volume(tmp_path: Path) -> None:
    """Test that vials with reconstitution data show the syringe draw."""
    config = _config(tmp_path)

    runner.invoke(
        app,
        [
            "register",
            "BPC-157",
            "--typical-dose",
            "250",
            "--peptide-id",
            "bpc",
            "--config-path",
            config,
        ],
    )
    result = runner.invoke(
        app,
        [
            "add-vial",
            "bpc",
            "--total-mcg",
            "5000",
            "--bac-water-ml",
            "2",
            "--no-from-stock",
            "--config-path",
            config,
        ],
    )
    if result.exit_code != 0 or "with 20 doses" not in result.output:
        raise AssertionError(f"add-vial failed: {result.output}")

    result = runner.invoke(app, ["show", "bpc", "--config-path", config])

    if result.exit_code != 0 or "draw 10 units per dose" not in result.output:
        raise AssertionError(f"Expected the draw volume, got {result.output}")


def test_log_rejects_nan_amount(tmp_path: Path) -> None:
    """Test that a NaN dose is reported as an error."""
    config = _config(tmp_path)

    runner.invoke(
        app,
        [
            "register",
            "BPC-157",
            "--typical-dose",
            "300",
            "--peptide-id",
            "bpc",
            "--config-path",
            config,
        ],
    )
    runner.invoke(app, ["add-vial", "bpc", "--units", "3", "--config-path", config])

    result = runner.invoke(app, ["log", "bpc", "nan", "--config-path", config])

    if result.exit_code != 1:
        raise AssertionError(f"Expected exit code 1, got {result.exit_code}: {result.output}")
