"""Running the external storage tools."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence


class CommandError(Exception):
    """An external command could not be started or exited unsuccessfully."""

    def __init__(self, argv: Sequence[str], returncode: int | None, output: str = "") -> None:
        self.argv = tuple(argv)
        self.returncode = returncode
        self.output = output
        command = " ".join(self.argv)
        if returncode is None:
            message = f"{command}: could not be started: {output}"
        else:
            message = f"{command}: exit status {returncode}"
            if output:
                message += f": {output}"
        super().__init__(message)


class CommandExecutor:
    """Runs commands and turns failures into CommandError."""

    @staticmethod
    def _run(argv: list[str], stderr: int) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=stderr,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc

    def execute(self, command: str, *args: str) -> None:
        """Run a command, discarding its output."""
        argv = [command, *args]
        result = self._run(argv, subprocess.STDOUT)
        if result.returncode != 0:
            raise CommandError(argv, result.returncode, (result.stdout or "").strip())

    def execute_with_output(self, command: str, *args: str) -> str:
        """Run a command and return its standard output, trimmed.

        On failure the error carries the standard output followed by the
        standard error, so callers can inspect what the tool reported.
        """
        argv = [command, *args]
        result = self._run(argv, subprocess.PIPE)
        stdout = (result.stdout or "").strip()
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise CommandError(argv, result.returncode, f"{stdout}. {stderr}".strip())
        return stdout

    def execute_with_combined_output(self, command: str, *args: str) -> str:
        """Run a command and return standard output and error together, trimmed."""
        argv = [command, *args]
        result = self._run(argv, subprocess.STDOUT)
        output = (result.stdout or "").strip()
        if result.returncode != 0:
            raise CommandError(argv, result.returncode, output)
        return output

    def execute_resident(self, timeout: float, command: str, *args: str) -> subprocess.Popen:
        """Start a long-running binary.

        If it exits unsuccessfully within ``timeout`` seconds, CommandError is
        raised; otherwise the process handle is returned, possibly still running.
        """
        argv = [command, *args]
        try:
            process = subprocess.Popen(
                argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return process
        if returncode != 0:
            raise CommandError(argv, returncode)
        return process