"""
Base classes for wrapping external command-line tools.

The insertion engine shells out for marginal ancestral state
reconstruction. Wrappers share executable lookup (with an injectable
resolver for tests), timeouts and uniform error types.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from stepalign.core.exceptions import StepalignError

logger = logging.getLogger(__name__)

# Characters that phylogenetics tools reliably accept in file paths
_SAFE_PATH_PATTERN = re.compile(r"^[\w\-./]+$")


def _truncate(text: str, limit: int, marker: str = "...") -> str:
    return text if len(text) <= limit else text[:limit] + marker


class ToolNotFoundError(StepalignError):
    """Raised when a required external tool is not installed or not in PATH."""

    def __init__(self, tool_name: str, install_hint: str = ""):
        suggestion = f"Install {tool_name} and ensure it is in your PATH."
        if install_hint:
            suggestion = f"{suggestion}\n\nInstallation:\n  {install_hint}"

        super().__init__(
            message=f"Required tool '{tool_name}' not found in PATH",
            suggestion=suggestion,
        )
        self.tool_name = tool_name


class ToolExecutionError(StepalignError):
    """Raised when an external tool returns a non-zero exit code."""

    def __init__(
        self,
        tool_name: str,
        command: list[str],
        return_code: int,
        stderr: str,
    ):
        super().__init__(
            message=(
                f"{tool_name} failed with exit code {return_code}\n\n"
                f"Command: {_truncate(' '.join(command), 200)}\n\n"
                f"Error output:\n{_truncate(stderr.strip(), 500, chr(10) + '...[truncated]')}"
            ),
            suggestion=(
                "Check that the tree and alignment files in the work directory "
                "are valid. Run with --verbose for detailed output."
            ),
        )
        self.tool_name = tool_name
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class ToolTimeoutError(StepalignError):
    """Raised when an external tool exceeds the configured timeout."""

    def __init__(self, tool_name: str, timeout_seconds: float, command: list[str]):
        super().__init__(
            message=(
                f"{tool_name} timed out after {timeout_seconds:.0f} seconds\n\n"
                f"Command: {_truncate(' '.join(command), 200)}"
            ),
            suggestion="Increase raxml.timeout in the configuration or remove the limit.",
        )
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds
        self.command = command


def check_path(path: Path) -> Path:
    """Resolve a path handed to an external tool and warn on odd characters."""
    if "\x00" in str(path):
        raise StepalignError(f"Path contains a null byte: {path!r}")
    path = path.resolve()
    if not _SAFE_PATH_PATTERN.match(str(path)):
        logger.warning("Path contains unusual characters (may cause issues): %s", path)
    return path


@dataclass(frozen=True)
class ToolResult:
    """Result from running an external tool.

    Attributes:
        command: The command that was executed.
        return_code: Exit code from the process.
        stdout: Standard output from the process.
        stderr: Standard error from the process.
        elapsed_seconds: Wall-clock time for execution.
    """

    command: tuple[str, ...]
    return_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @property
    def command_string(self) -> str:
        return " ".join(self.command)


class ExternalTool(ABC):
    """Abstract base class for wrapping external command-line tools.

    Subclasses define TOOL_NAME and build_command(); TOOL_ALIASES lists
    alternative executable names and INSTALL_HINT is shown when none of
    them can be found.

    Tests replace executable lookup with set_executable_resolver() so no
    real tool is required.
    """

    TOOL_NAME: ClassVar[str]
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = ()
    INSTALL_HINT: ClassVar[str] = ""

    _executable_cache: ClassVar[dict[str, Path | None]] = {}
    _executable_resolver: ClassVar[Callable[[str], str | None]] = staticmethod(shutil.which)

    @classmethod
    def check_available(cls) -> bool:
        try:
            cls.get_executable()
            return True
        except ToolNotFoundError:
            return False

    @classmethod
    def get_executable(cls) -> Path:
        """Locate the executable under TOOL_NAME or one of its aliases.

        Raises:
            ToolNotFoundError: If no candidate name resolves.
        """
        if cls.TOOL_NAME in cls._executable_cache:
            cached = cls._executable_cache[cls.TOOL_NAME]
            if cached is not None:
                return cached
            raise ToolNotFoundError(cls.TOOL_NAME, cls.INSTALL_HINT)

        for name in (cls.TOOL_NAME, *cls.TOOL_ALIASES):
            exe_path = cls._executable_resolver(name)
            if exe_path:
                path = Path(exe_path)
                cls._executable_cache[cls.TOOL_NAME] = path
                logger.debug("Resolved %s to %s", cls.TOOL_NAME, path)
                return path

        cls._executable_cache[cls.TOOL_NAME] = None
        raise ToolNotFoundError(cls.TOOL_NAME, cls.INSTALL_HINT)

    @classmethod
    def clear_cache(cls) -> None:
        cls._executable_cache.clear()

    @classmethod
    def set_executable_resolver(cls, resolver: Callable[[str], str | None]) -> None:
        """Replace executable lookup, e.g. with a fake for tests.

        Example:
            >>> ExternalTool.set_executable_resolver(lambda name: f"/usr/bin/{name}")
            >>> ...
            >>> ExternalTool.reset_executable_resolver()
        """
        ExternalTool._executable_resolver = staticmethod(resolver)
        cls.clear_cache()

    @classmethod
    def reset_executable_resolver(cls) -> None:
        ExternalTool._executable_resolver = staticmethod(shutil.which)
        cls.clear_cache()

    @abstractmethod
    def build_command(self, **kwargs: object) -> list[str]:
        """Build the command-line arguments, executable first."""
        ...

    def run(
        self,
        *,
        timeout: float | None = None,
        **kwargs: object,
    ) -> ToolResult:
        """Execute the tool.

        Args:
            timeout: Maximum execution time in seconds (None for no limit).
            **kwargs: Arguments passed to build_command().

        Raises:
            ToolNotFoundError: If the tool is not installed.
            ToolTimeoutError: If execution exceeds the timeout.
        """
        command = self.build_command(**kwargs)

        logger.debug("Running: %s", " ".join(command))
        start_time = time.perf_counter()
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ToolTimeoutError(self.TOOL_NAME, timeout or 0, command) from e
        except FileNotFoundError as e:
            raise ToolNotFoundError(self.TOOL_NAME, self.INSTALL_HINT) from e

        return ToolResult(
            command=tuple(command),
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            elapsed_seconds=time.perf_counter() - start_time,
        )

    def run_or_raise(
        self,
        *,
        timeout: float | None = None,
        **kwargs: object,
    ) -> ToolResult:
        """Same as run() but raises ToolExecutionError on a non-zero exit."""
        result = self.run(timeout=timeout, **kwargs)

        if not result.success:
            # Some tools report errors on stdout only
            raise ToolExecutionError(
                self.TOOL_NAME,
                list(result.command),
                result.return_code,
                result.stderr or result.stdout,
            )

        logger.info("%s finished in %.1fs", self.TOOL_NAME, result.elapsed_seconds)
        return result
