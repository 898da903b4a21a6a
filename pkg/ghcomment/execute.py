"""Run the wrapped command, streaming its output while capturing it."""

from __future__ import annotations

import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import IO, Sequence

# Shell conventions for "command not found" and "not executable".
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


@dataclass(frozen=True)
class ExecResult:
    cmd: str
    exit_code: int
    stdout: str
    stderr: str
    combined_output: str
    start_error: str | None = None


class Executor:
    """Runs a command, tee-ing stdout/stderr to the given streams."""

    def __init__(self, stdout: IO[str] | None = None, stderr: IO[str] | None = None, cwd: str | None = None) -> None:
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr
        self._cwd = cwd

    def run(self, cmd: str, args: Sequence[str] = (), stdin: IO[str] | None = None) -> ExecResult:
        """Run `cmd args...` and return its captured result.

        A command that cannot be started is reported as exit code 127 (or
        126 when not executable) with the OS error as stderr.
        """
        try:
            proc = subprocess.Popen(
                [cmd, *args],
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                cwd=self._cwd,
            )
        except OSError as exc:
            message = f"{cmd}: {exc.strerror or exc}\n"
            self._stderr.write(message)
            code = EXIT_NOT_EXECUTABLE if isinstance(exc, PermissionError) else EXIT_NOT_FOUND
            return ExecResult(
                cmd=cmd,
                exit_code=code,
                stdout="",
                stderr=message,
                combined_output=message,
                start_error=str(exc),
            )

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        combined: list[str] = []
        lock = threading.Lock()

        def pump(pipe: IO[str], sink: IO[str], parts: list[str]) -> None:
            for line in iter(pipe.readline, ""):
                with lock:
                    sink.write(line)
                    sink.flush()
                    parts.append(line)
                    combined.append(line)
            pipe.close()

        threads = [
            threading.Thread(target=pump, args=(proc.stdout, self._stdout, stdout_parts), daemon=True),
            threading.Thread(target=pump, args=(proc.stderr, self._stderr, stderr_parts), daemon=True),
        ]
        for t in threads:
            t.start()
        exit_code = proc.wait()
        for t in threads:
            t.join()
        if exit_code < 0:
            # Killed by a signal: report it the way shells do.
            exit_code = 128 - exit_code

        return ExecResult(
            cmd=cmd,
            exit_code=exit_code,
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            combined_output="".join(combined),
        )
