"""Unit tests for external tool base classes.

Covers ExternalTool lifecycle (check_available, get_executable, run,
run_or_raise), dependency injection via set_executable_resolver, path
checks and the tool error types. All tests mock subprocess so that no
external tool is required on the host system.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import ClassVar
from unittest.mock import MagicMock, patch

import pytest

from stepalign.core.exceptions import StepalignError
from stepalign.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
    ToolTimeoutError,
    check_path,
)


class _MockTool(ExternalTool):
    """Minimal concrete subclass of ExternalTool for testing."""

    TOOL_NAME: ClassVar[str] = "mocktool"
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = ("mocktool-alt",)
    INSTALL_HINT: ClassVar[str] = "conda install mocktool"

    def build_command(self, **kwargs: object) -> list[str]:
        cmd = [str(self.get_executable()), "run"]
        if "extra" in kwargs:
            cmd.append(str(kwargs["extra"]))
        return cmd


@pytest.fixture(autouse=True)
def _reset_resolver():
    """Ensure lookups are fresh before and after each test."""
    ExternalTool.reset_executable_resolver()
    yield
    ExternalTool.reset_executable_resolver()


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.stdout = stdout
    proc.stderr = stderr
    return proc


class TestErrors:
    def test_not_found_includes_hint(self):
        err = ToolNotFoundError("raxmlHPC", "conda install raxml")
        assert "raxmlHPC" in str(err)
        assert "conda install raxml" in err.suggestion
        assert isinstance(err, StepalignError)

    def test_execution_error_truncates_stderr(self):
        err = ToolExecutionError("tool", ["tool", "-x"], 2, "e" * 1000)
        assert "exit code 2" in str(err)
        assert "[truncated]" in str(err)
        assert err.return_code == 2

    def test_timeout_error(self):
        err = ToolTimeoutError("tool", 30, ["tool"])
        assert "30 seconds" in str(err)


class TestCheckPath:
    def test_resolves(self, tmp_path: Path):
        assert check_path(tmp_path / "x").is_absolute()

    def test_null_byte(self):
        with pytest.raises(StepalignError, match="null byte"):
            check_path(Path("/tmp/a\x00b"))

    def test_unusual_characters_warning(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        with caplog.at_level("WARNING"):
            check_path(tmp_path / "with space")
        assert "unusual characters" in caplog.text.lower()


class TestExecutableLookup:
    """Tests for resolver injection and caching."""

    def test_uses_injected_resolver(self):
        ExternalTool.set_executable_resolver(lambda name: f"/opt/bin/{name}")
        assert _MockTool.get_executable() == Path("/opt/bin/mocktool")
        assert _MockTool.check_available()

    def test_falls_back_to_alias(self):
        ExternalTool.set_executable_resolver(
            lambda name: "/opt/bin/mocktool-alt" if name == "mocktool-alt" else None
        )
        assert _MockTool.get_executable() == Path("/opt/bin/mocktool-alt")

    def test_not_found(self):
        ExternalTool.set_executable_resolver(lambda name: None)
        assert not _MockTool.check_available()
        with pytest.raises(ToolNotFoundError, match="mocktool"):
            _MockTool.get_executable()

    def test_result_is_cached(self):
        calls: list[str] = []

        def resolver(name: str) -> str:
            calls.append(name)
            return f"/bin/{name}"

        ExternalTool.set_executable_resolver(resolver)
        _MockTool.get_executable()
        _MockTool.get_executable()
        assert calls == ["mocktool"]


class TestRun:
    """Tests for run() and run_or_raise()."""

    @pytest.fixture(autouse=True)
    def _fake_tool(self):
        ExternalTool.set_executable_resolver(lambda name: f"/bin/{name}")

    def test_build_arguments_reach_process(self):
        with patch("stepalign.external.base.subprocess.run", return_value=_completed(0)) as run:
            result = _MockTool().run(extra="x", timeout=5)
        assert run.call_count == 1
        assert run.call_args.args[0] == ["/bin/mocktool", "run", "x"]
        assert run.call_args.kwargs["timeout"] == 5
        assert result.command == ("/bin/mocktool", "run", "x")

    def test_successful_run(self):
        with patch("stepalign.external.base.subprocess.run", return_value=_completed(0, "ok")) as run:
            result = _MockTool().run_or_raise()
        assert result.stdout == "ok"
        assert result.command_string == "/bin/mocktool run"
        assert run.call_args.kwargs["capture_output"] is True

    def test_failure_raises(self):
        with patch("stepalign.external.base.subprocess.run", return_value=_completed(1, "", "bad input")):
            with pytest.raises(ToolExecutionError, match="bad input"):
                _MockTool().run_or_raise()

    def test_failure_reports_stdout_when_stderr_empty(self):
        with patch("stepalign.external.base.subprocess.run", return_value=_completed(1, "ERROR: tree", "")):
            with pytest.raises(ToolExecutionError, match="ERROR: tree"):
                _MockTool().run_or_raise()

    def test_run_does_not_raise_on_failure(self):
        with patch("stepalign.external.base.subprocess.run", return_value=_completed(3)):
            result = _MockTool().run()
        assert not result.success
        assert result.return_code == 3

    def test_timeout(self):
        with patch(
            "stepalign.external.base.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="mocktool", timeout=5),
        ):
            with pytest.raises(ToolTimeoutError):
                _MockTool().run(timeout=5)

    def test_executable_vanishes(self):
        with patch("stepalign.external.base.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(ToolNotFoundError):
                _MockTool().run()


class TestToolResult:
    def test_properties(self):
        result = ToolResult(
            command=("a", "b"), return_code=0, stdout="", stderr="", elapsed_seconds=0.1
        )
        assert result.success
        assert result.command_string == "a b"
