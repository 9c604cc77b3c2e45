"""Tests for CLI commands - run, check-config."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from sftprelay.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Create a drop-folder root with one existing folder."""
    data = tmp_path / "data"
    (data / "incoming").mkdir(parents=True)
    return data


def write_config(tmp_path: Path, root: Path, **overrides) -> Path:
    """Write a config file and return its path."""
    document = {
        "sftp": {
            "host": "sftp.example.com",
            "username": "relay",
            "password": "secret",
        },
        "monitor": {
            "root": str(root),
            "folders": {"incoming": "remote/dropzone", "missing": "remote/other"},
        },
    }
    document.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(document))
    return path


class TestCheckConfigCommand:
    """Tests for 'sftprelay check-config' command."""

    def test_lists_mappings(self, runner: CliRunner, tmp_path: Path, root: Path) -> None:
        """Should show the server and which folders exist."""
        config = write_config(tmp_path, root)

        result = runner.invoke(cli, ["check-config", "--config", str(config)])

        assert result.exit_code == 0
        assert "relay@sftp.example.com:22 (password)" in result.output
        assert "✓" in result.output and "remote/dropzone" in result.output
        assert "✗" in result.output and "missing" in result.output
        assert "1 of 2 folders can be watched." in result.output

    def test_flags_invalid_mapping(self, runner: CliRunner, tmp_path: Path, root: Path) -> None:
        """Blank mappings are reported but do not fail the check."""
        config = write_config(
            tmp_path,
            root,
            monitor={"root": str(root), "folders": {"incoming": "out", "blank": ""}},
        )

        result = runner.invoke(cli, ["check-config", "-c", str(config)])

        assert result.exit_code == 0
        assert "invalid mapping" in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        """A missing config file exits with an error."""
        result = runner.invoke(cli, ["check-config", "-c", str(tmp_path / "nope.json")])

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_config(self, runner: CliRunner, tmp_path: Path, root: Path) -> None:
        """Validation errors are printed."""
        config = write_config(tmp_path, root, sftp={"host": "", "username": "relay"})

        result = runner.invoke(cli, ["check-config", "-c", str(config)])

        assert result.exit_code == 1
        assert "SFTP host is required" in result.output

    def test_default_location(
        self, runner: CliRunner, tmp_path: Path, root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Without --config the file is read from SFTPRELAY_HOME."""
        write_config(tmp_path, root)
        monkeypatch.setenv("SFTPRELAY_HOME", str(tmp_path))

        result = runner.invoke(cli, ["check-config"])

        assert result.exit_code == 0
        assert "sftp.example.com" in result.output


class TestRunCommand:
    """Tests for 'sftprelay run' command."""

    @pytest.fixture
    def patched(self):
        """Patch the relay components and the shutdown token."""
        with patch("sftprelay.cli.runner.setup_logging"), patch(
            "sftprelay.cli.runner.signal"
        ), patch("sftprelay.cli.runner.TransportSessionManager") as transport_cls, patch(
            "sftprelay.cli.runner.DispatchPipeline"
        ) as pipeline_cls, patch(
            "sftprelay.cli.runner.CancellationToken"
        ) as token_cls:
            pipeline = MagicMock()
            pipeline.stats.dispatched = 3
            pipeline.stats.failed = 1
            pipeline.stats.dropped = 0
            pipeline_cls.from_config.return_value = pipeline
            # Shut down on the first wait
            token_cls.return_value.wait.return_value = True
            yield {
                "transport": transport_cls.return_value,
                "pipeline": pipeline,
                "token": token_cls.return_value,
            }

    def test_run_wires_and_stops(
        self, runner: CliRunner, tmp_path: Path, root: Path, patched: dict
    ) -> None:
        """Should start the pipeline, relay through the transport, then clean up."""
        patched["pipeline"].start.return_value = [root / "incoming"]
        config = write_config(tmp_path, root)

        result = runner.invoke(cli, ["run", "-c", str(config)])

        assert result.exit_code == 0, result.output
        pipeline = patched["pipeline"]
        pipeline.set_on_file_ready.assert_called_once_with(patched["transport"].upload)
        pipeline.start.assert_called_once()
        pipeline.stop.assert_called_once()
        patched["transport"].close.assert_called_once()
        patched["token"].cancel.assert_called()
        assert "Relaying 1 folders to sftp.example.com" in result.output
        assert "Stopped: 3 uploaded, 1 failed, 0 dropped" in result.output

    def test_run_keyboard_interrupt(
        self, runner: CliRunner, tmp_path: Path, root: Path, patched: dict
    ) -> None:
        """Ctrl+C stops cleanly."""
        patched["pipeline"].start.return_value = [root / "incoming"]
        patched["token"].wait.side_effect = KeyboardInterrupt
        config = write_config(tmp_path, root)

        result = runner.invoke(cli, ["run", "-c", str(config)])

        assert result.exit_code == 0, result.output
        assert "Stopping..." in result.output
        patched["pipeline"].stop.assert_called_once()
        patched["transport"].close.assert_called_once()

    def test_run_nothing_to_watch(
        self, runner: CliRunner, tmp_path: Path, root: Path, patched: dict
    ) -> None:
        """Exits with an error if no folder can be watched."""
        patched["pipeline"].start.return_value = []
        config = write_config(tmp_path, root)

        result = runner.invoke(cli, ["run", "-c", str(config)])

        assert result.exit_code == 1
        assert "none of the configured folders can be watched" in result.output
        patched["transport"].close.assert_called_once()

    def test_run_invalid_config(self, runner: CliRunner, tmp_path: Path, patched: dict) -> None:
        """Configuration errors stop before anything starts."""
        config = tmp_path / "config.json"
        config.write_text("{not json")

        result = runner.invoke(cli, ["run", "-c", str(config)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output
        patched["pipeline"].start.assert_not_called()
