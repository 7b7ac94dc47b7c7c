"""Running external commands while streaming and capturing their output."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from typing import IO, Any

_log = logging.getLogger(__name__)


class CommandFailed(subprocess.CalledProcessError):
    """Raised when a command exits with a non-zero status.

    ``output`` holds what was captured before the command finished.
    """

    def __str__(self) -> str:
        if self.returncode is not None and self.returncode < 0:
            return f"Command '{self.cmd}' died with signal {-self.returncode}"
        return f"Command '{self.cmd}' exited with status {self.returncode}"


class OutputLineTooLong(ValueError):
    """Raised when a line of output exceeds the command's maximum line size."""


@dataclass
class Command:
    """A command to run, with its arguments, directory and extra environment."""

    command: str
    args: list[str] = field(default_factory=list)
    working_dir: str | os.PathLike[str] | None = None
    env: dict[str, str] = field(default_factory=dict)
    output_max_line_size: int = 0
    logger: Any = None
    non_interactive: bool = False
    sensitive_args: bool = False

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def _environment(command: Command) -> dict[str, str]:
    env = dict(os.environ)
    env.update(command.env)
    return env


def _pump(
    stream: IO[bytes],
    sink: list[str],
    lock: threading.Lock,
    logger: Any,
    max_line_size: int,
    errors: list[Exception],
) -> None:
    with stream:
        for raw in iter(stream.readline, b""):
            if errors:
                # scanning stopped on an earlier error; drain so the child can finish
                continue
            line = raw[:-1] if raw.endswith(b"\n") else raw
            if line.endswith(b"\r"):
                line = line[:-1]
            if max_line_size > 0 and len(line) > max_line_size:
                errors.append(
                    OutputLineTooLong(f"output line of {len(line)} bytes exceeds limit of {max_line_size}")
                )
                continue
            text = line.decode("utf-8", errors="replace")
            logger.info("%s", text)
            with lock:
                sink.append(text)


def _run_and_store(command: Command, stdout_sink: list[str], stderr_sink: list[str]) -> None:
    logger = command.logger if command.logger is not None else _log
    process = subprocess.Popen(
        command.argv,
        cwd=command.working_dir,
        env=_environment(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    lock = threading.Lock()
    stdout_errors: list[Exception] = []
    stderr_errors: list[Exception] = []
    readers = [
        threading.Thread(
            target=_pump,
            args=(process.stdout, stdout_sink, lock, logger, command.output_max_line_size, stdout_errors),
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(process.stderr, stderr_sink, lock, logger, command.output_max_line_size, stderr_errors),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()
    for reader in readers:
        reader.join()
    returncode = process.wait()

    if stdout_errors:
        raise stdout_errors[0]
    if stderr_errors:
        raise stderr_errors[0]
    if returncode != 0:
        raise CommandFailed(returncode, command.argv)


def run_command(command: Command) -> None:
    """Run a command, logging its output line by line.

    Raises CommandFailed on a non-zero exit status.
    """
    run_command_and_get_output(command)


def run_command_and_get_output(command: Command) -> str:
    """Run a command and return its stdout and stderr lines joined by newlines."""
    lines: list[str] = []
    try:
        _run_and_store(command, lines, lines)
    except CommandFailed as err:
        err.output = "\n".join(lines)
        raise
    return "\n".join(lines)


def run_command_and_get_stdout(command: Command) -> str:
    """Run a command and return only its stdout lines joined by newlines."""
    stdout: list[str] = []
    stderr: list[str] = []
    try:
        _run_and_store(command, stdout, stderr)
    except CommandFailed as err:
        err.output = "\n".join(stdout)
        err.stderr = "\n".join(stderr)
        raise
    return "\n".join(stdout)


def get_exit_code_for_run_command_error(err: BaseException) -> int:
    """Return the exit status carried by a command error, or 0 for other errors.

    A command killed by a signal reports -1.
    """
    if isinstance(err, subprocess.CalledProcessError):
        if err.returncode is None or err.returncode < 0:
            return -1
        return err.returncode
    return 0