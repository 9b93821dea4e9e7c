"""Tests for shared.py: PipelineConfig, RunContext, and utilities."""

import json
import subprocess
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import make_config

from voice_notes.errors import ConfigError, DeadlineExceeded
from voice_notes.shared import (
    PipelineConfig,
    RunContext,
    _save_json,
    check_dependencies,
    run_command,
    tprint,
)


# ---------------------------------------------------------------------------
# tprint
# ---------------------------------------------------------------------------

class TestTprint:
    def test_adds_timestamp(self, capsys):
        tprint("hello")
        out = capsys.readouterr().out
        assert out.startswith("[")
        assert out.rstrip().endswith("hello")

    def test_progress_lines_unstamped(self, capsys):
        tprint("50%", end="\r")
        assert capsys.readouterr().out == "50%\r"


# ---------------------------------------------------------------------------
# PipelineConfig
# ---------------------------------------------------------------------------

class TestPipelineConfig:
    def test_defaults(self, tmp_path):
        config = PipelineConfig(audio_path=tmp_path / "a.mp3", output_dir=tmp_path)
        assert config.chunk_size_mb == 24
        assert config.summary_density == 2750
        assert config.scan_window == 100
        assert config.api_max_retries == 3

    @pytest.mark.parametrize("size", [1, 25, 0])
    def test_chunk_size_out_of_bounds(self, tmp_path, size):
        with pytest.raises(ConfigError, match="between 2 and 24"):
            make_config(tmp_path, chunk_size_mb=size)

    @pytest.mark.parametrize("size", [2, 24])
    def test_chunk_size_bounds_inclusive(self, tmp_path, size):
        assert make_config(tmp_path, chunk_size_mb=size).chunk_size_mb == size

    def test_unknown_verbosity(self, tmp_path):
        with pytest.raises(ConfigError, match="verbosity"):
            make_config(tmp_path, summary_verbosity="Extreme")

    def test_unknown_summary_option(self, tmp_path):
        with pytest.raises(ConfigError, match="Jokes"):
            make_config(tmp_path, summary_options=["Summary", "Jokes"])

    def test_density_must_be_positive(self, tmp_path):
        with pytest.raises(ConfigError):
            make_config(tmp_path, summary_density=0)


# ---------------------------------------------------------------------------
# RunContext
# ---------------------------------------------------------------------------

class TestRunContext:
    def test_create_makes_work_dir(self, tmp_path):
        ctx = RunContext.create(make_config(tmp_path))
        try:
            assert ctx.work_dir.is_dir()
            assert ctx.chunk_dir.parent == ctx.work_dir
            assert ctx.converted_path.parent == ctx.work_dir
            assert ctx.source_path == tmp_path / "audio.mp3"
        finally:
            ctx.cleanup()

    def test_no_timeout_never_expires(self, tmp_path):
        ctx = RunContext.create(make_config(tmp_path))
        try:
            assert ctx.deadline is None
            assert ctx.remaining() is None
            ctx.check_deadline("anything")
        finally:
            ctx.cleanup()

    def test_deadline_in_past_raises(self, tmp_path):
        ctx = RunContext(config=make_config(tmp_path), source_path=tmp_path / "a.mp3",
                         work_dir=tmp_path / "work", deadline=time.monotonic() - 1)
        with pytest.raises(DeadlineExceeded, match="during summarization"):
            ctx.check_deadline("summarization")

    def test_deadline_margin_applies(self, tmp_path):
        # Two seconds left is inside the three-second safety margin
        ctx = RunContext(config=make_config(tmp_path), source_path=tmp_path / "a.mp3",
                         work_dir=tmp_path / "work", deadline=time.monotonic() + 2)
        with pytest.raises(DeadlineExceeded):
            ctx.check_deadline()

    def test_deadline_far_away_ok(self, tmp_path):
        ctx = RunContext(config=make_config(tmp_path), source_path=tmp_path / "a.mp3",
                         work_dir=tmp_path / "work", deadline=time.monotonic() + 600)
        ctx.check_deadline()
        assert ctx.remaining() > 500

    def test_cleanup_removes_work_dir(self, tmp_path):
        ctx = RunContext.create(make_config(tmp_path))
        ctx.chunk_dir.mkdir()
        (ctx.chunk_dir / "chunk-000.mp3").write_bytes(b"x")
        ctx.cleanup()
        assert not ctx.work_dir.exists()

    def test_cleanup_is_idempotent(self, tmp_path):
        ctx = RunContext.create(make_config(tmp_path))
        ctx.cleanup()
        ctx.cleanup()
        assert not ctx.work_dir.exists()


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------

class TestRunCommand:
    @patch("voice_notes.shared.subprocess.run")
    def test_success_returns_completed_process(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["echo", "hi"], returncode=0, stdout="hi\n", stderr=""
        )
        result = run_command(["echo", "hi"], "echo test")
        assert result.stdout == "hi\n"
        mock_run.assert_called_once_with(
            ["echo", "hi"], capture_output=True, text=True, check=True, timeout=None
        )

    @patch("voice_notes.shared.subprocess.run")
    def test_timeout_forwarded(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["ffmpeg"], returncode=0, stdout="", stderr=""
        )
        run_command(["ffmpeg"], "ffmpeg", timeout=12.5)
        assert mock_run.call_args.kwargs["timeout"] == 12.5

    @patch("voice_notes.shared.subprocess.run")
    def test_verbose_prints_command(self, mock_run, capsys):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["ls"], returncode=0, stdout="", stderr=""
        )
        run_command(["ls", "-la"], "listing", verbose=True)
        assert "ls -la" in capsys.readouterr().out

    @patch("voice_notes.shared.subprocess.run")
    def test_failure_prints_stderr_and_reraises(self, mock_run, capsys):
        mock_run.side_effect = subprocess.CalledProcessError(
            returncode=1, cmd=["bad"], stderr="something broke"
        )
        with pytest.raises(subprocess.CalledProcessError):
            run_command(["bad"], "bad command")
        out = capsys.readouterr().out
        assert "Error: bad command" in out
        assert "something broke" in out


# ---------------------------------------------------------------------------
# check_dependencies
# ---------------------------------------------------------------------------

class TestCheckDependencies:
    @patch("voice_notes.shared.shutil.which", return_value="/usr/bin/tool")
    def test_cli_tools_found(self, mock_which):
        deps = check_dependencies()
        assert deps["ffmpeg"] is True
        assert deps["ffprobe"] is True

    @patch("voice_notes.shared.shutil.which", return_value=None)
    def test_cli_tools_missing(self, mock_which):
        deps = check_dependencies()
        assert deps["ffmpeg"] is False
        assert deps["ffprobe"] is False

    def test_whisper_missing(self):
        with patch.dict("sys.modules", {"whisper": None}):
            assert check_dependencies()["whisper"] is False


# ---------------------------------------------------------------------------
# _save_json
# ---------------------------------------------------------------------------

class TestSaveJson:
    def test_writes_nested_structure(self, tmp_path):
        path = tmp_path / "out.json"
        _save_json(path, {"outer": {"inner": [1, 2, 3]}})
        assert json.loads(path.read_text())["outer"]["inner"] == [1, 2, 3]

    def test_keeps_unicode(self, tmp_path):
        path = tmp_path / "out.json"
        _save_json(path, {"title": "Café"})
        assert "Café" in path.read_text()
