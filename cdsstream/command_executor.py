"""Runs whitelisted shell commands with a timeout and bounded output."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

_SHELL = "/bin/sh"
_CHUNK = 4096
_SPECIAL_CHARS = frozenset("'\"\\$`!*?[](){}|&;<>\n\r\t")
_DEFAULT_PATTERNS = (
    r"^echo\s+.*",
    r"^ls\s+-[la]*\s+.*",
    r"^cat\s+/proc/.*",
)


class CommandNotAllowedError(PermissionError):
    """Raised when a command is neither registered nor matches an allowed pattern."""


@dataclass
class CommandConfig:
    """How a command is run."""

    timeout: float = 30.0
    working_directory: Optional[str] = None
    environment: dict[str, str] = field(default_factory=dict)
    max_output_size: int = 1024 * 1024
    capture_stderr: bool = True


@dataclass
class CommandResult:
    """Outcome of one command; ``execution_time`` is in seconds."""

    exit_code: int = 0
    output: str = ""
    error: str = ""
    execution_time: float = 0.0


def sanitize_argument(arg: str) -> str:
    """Escape shell metacharacters in ``arg`` with a backslash."""
    return "".join("\\" + c if c in _SPECIAL_CHARS else c for c in arg)


def _drain(fd: int, buffer: bytearray, limit: int) -> None:
    while True:
        try:
            chunk = os.read(fd, _CHUNK)
        except BlockingIOError:
            return
        if not chunk:
            return
        if len(buffer) + len(chunk) <= limit:
            buffer.extend(chunk)


class CommandExecutor:
    """Executes only registered commands or commands matching allowed patterns."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._allowed_commands: dict[str, str] = {}
        self._allowed_patterns: list[re.Pattern[str]] = [
            re.compile(p) for p in _DEFAULT_PATTERNS
        ]

    def register_allowed_command(self, name: str, command: str) -> None:
        """Make ``command`` runnable under ``name``."""
        with self._lock:
            self._allowed_commands[name] = command
        logger.debug("Registered command: %s -> %s", name, command)

    def register_allowed_pattern(self, pattern: str) -> None:
        """Allow any command that fully matches the regular expression ``pattern``."""
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid regex pattern: {pattern} - {exc}") from exc
        with self._lock:
            self._allowed_patterns.append(compiled)
        logger.debug("Registered pattern: %s", pattern)

    def is_command_allowed(self, command: str) -> bool:
        """Whether ``command`` is a registered command or matches a pattern."""
        if command in self._allowed_commands.values():
            return True
        return any(p.fullmatch(command) for p in self._allowed_patterns)

    def execute(
        self,
        command_name: str,
        args: Iterable[str] = (),
        config: Optional[CommandConfig] = None,
    ) -> CommandResult:
        """Run a command through the shell and collect its output.

        Raises CommandNotAllowedError if the command is not permitted.
        """
        config = config or CommandConfig()
        with self._lock:
            command = self._allowed_commands.get(command_name)
            if command is None:
                command = command_name
                if not self.is_command_allowed(command):
                    logger.warning("Command not allowed: %s", command)
                    raise CommandNotAllowedError(command)
            for arg in args:
                command += " " + sanitize_argument(arg)

            logger.info("Executing command: %s", command)
            return self._run(command, config)

    def execute_async(
        self,
        command_name: str,
        args: Iterable[str] = (),
        callback: Optional[Callable[[CommandResult], None]] = None,
        config: Optional[CommandConfig] = None,
    ) -> threading.Thread:
        """Run the command on a background thread; ``callback`` gets the result."""
        args = list(args)

        def runner() -> None:
            try:
                result = self.execute(command_name, args, config)
            except (CommandNotAllowedError, OSError) as exc:
                logger.error("Async command failed: %s", exc)
                return
            if callback is not None:
                callback(result)

        thread = threading.Thread(target=runner, daemon=True)
        thread.start()
        return thread

    @staticmethod
    def _run(command: str, config: CommandConfig) -> CommandResult:
        start = time.monotonic()
        env = {**os.environ, **config.environment}
        try:
            proc = subprocess.Popen(
                [_SHELL, "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if config.capture_stderr else subprocess.DEVNULL,
                cwd=config.working_directory,
                env=env,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError):
            if config.working_directory is None:
                raise
            return CommandResult(exit_code=127, execution_time=time.monotonic() - start)

        streams = [(proc.stdout, bytearray())]
        if proc.stderr is not None:
            streams.append((proc.stderr, bytearray()))
        for stream, _ in streams:
            os.set_blocking(stream.fileno(), False)

        limit = config.max_output_size
        deadline = start + config.timeout
        while True:
            code = proc.poll()
            if code is not None:
                exit_code = code
                break
            if time.monotonic() > deadline:
                logger.warning("Command timed out after %ss", config.timeout)
                proc.terminate()
                time.sleep(0.1)
                proc.kill()
                proc.wait()
                exit_code = -1
                break
            for stream, buffer in streams:
                _drain(stream.fileno(), buffer, limit)
            time.sleep(0.01)

        for stream, buffer in streams:
            _drain(stream.fileno(), buffer, limit)
            stream.close()

        result = CommandResult(
            exit_code=exit_code,
            output=streams[0][1].decode("utf-8", errors="replace"),
            error=streams[1][1].decode("utf-8", errors="replace") if len(streams) > 1 else "",
            execution_time=time.monotonic() - start,
        )
        logger.info(
            "Command completed: exit=%d, time=%.0fms, output_size=%d, error_size=%d",
            result.exit_code,
            result.execution_time * 1000,
            len(result.output),
            len(result.error),
        )
        return result