"""Asynchronous execution of external commands."""

import asyncio
import logging
import shutil
from dataclasses import dataclass

from ..runs.errors import TransportFailure

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

# Known stderr fragments and the message shown in their place.
FAILURE_PATTERNS = [
    ("not logged into", "Not logged into GitHub CLI. Run 'gh auth login' first."),
    ("not a git repository", "Not in a git repository with GitHub remote."),
    ("HTTP 404", "Repository not found or no access to GitHub Actions."),
    ("rate limit", "GitHub API rate limit exceeded. Try again later."),
]


def classify_failure(exit_code: int, stderr: str) -> str:
    """Turn the stderr of a failed command into a readable message."""
    lowered = stderr.lower()
    for fragment, message in FAILURE_PATTERNS:
        if fragment.lower() in lowered:
            return message
    if not stderr.strip():
        return f"Command failed with exit code {exit_code}"
    return stderr.strip()


@dataclass
class ProcessResult:
    """Outcome of one external command."""
    exit_code: int
    stdout: bytes
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ProcessRunner:
    """Runs external commands without blocking the event loop.

    One runner is meant to serve a single aggregation request: the
    executable lookup is cached per instance, so a missing tool is
    reported once with a clear message instead of once per fetch.
    """

    def __init__(self, timeout: float | None = 60.0):
        self.timeout = timeout
        self._available: dict[str, bool] = {}

    def ensure_available(self, command: str) -> str | None:
        """Return an error message if *command* cannot be found."""
        if command not in self._available:
            self._available[command] = shutil.which(command) is not None
        if self._available[command]:
            return None
        if command == "gh":
            return "GitHub CLI (gh) is not installed or not in PATH"
        return f"{command} is not installed or not in PATH"

    async def run(self, command: str, args: list[str]) -> ProcessResult:
        """Run *command* with *args* and capture its output."""
        missing = self.ensure_available(command)
        if missing:
            return ProcessResult(exit_code=1, stdout=b"", stderr=missing)

        logger.debug("Running %s %s", command, " ".join(args))

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ProcessResult(
                exit_code=1,
                stdout=b"",
                stderr=f"Failed to spawn process: {command} ({e})",
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            return ProcessResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=b"",
                stderr=f"Command timed out after {self.timeout:g}s",
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        stderr_text = stderr.decode("utf-8", errors="replace")
        exit_code = proc.returncode if proc.returncode is not None else 1
        if exit_code != 0:
            stderr_text = classify_failure(exit_code, stderr_text)

        return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr_text)

    async def run_checked(self, command: str, args: list[str]) -> str:
        """Run a command and return its stdout, raising TransportFailure on error."""
        result = await self.run(command, args)
        if not result.success:
            raise TransportFailure(result.stderr, exit_code=result.exit_code)
        return result.stdout.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
