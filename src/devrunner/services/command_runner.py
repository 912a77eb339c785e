"""Subprocess execution service for devrunner."""

import shlex
import subprocess
from typing import Dict, List, Optional, Sequence, Union

from devrunner.errors import RunnerError

Command = Union[str, Sequence[str]]


def split_command(cmd: Command) -> List[str]:
    if isinstance(cmd, str):
        return shlex.split(cmd)
    return [str(part) for part in cmd]


class CommandRunner:
    """Runs and spawns external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: Command,
        check: bool = True,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        args = split_command(cmd)
        cmd_str = " ".join(args)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        try:
            result = self.subprocess.run(
                args,
                text=True,
                capture_output=True,
                timeout=effective_timeout,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError as exc:
            raise RunnerError(
                f"Required command not found: {args[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RunnerError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise RunnerError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode != 0 and check:
            message = f"Command failed ({result.returncode}): {cmd_str}"
            stderr = (result.stderr or "").strip()
            if stderr:
                message = f"{message}\n{stderr}"
            raise RunnerError(message)

        return result

    def spawn(
        self,
        cmd: Command,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        pass_fds: Sequence[int] = (),
    ) -> subprocess.Popen:
        """Starts a long-running process with piped stdout and stderr."""
        args = split_command(cmd)
        if not args:
            raise RunnerError("Cannot start an empty command.")

        self.logger.debug("Spawning: %s", " ".join(args))
        try:
            return self.subprocess.Popen(
                args,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=tuple(pass_fds),
            )
        except FileNotFoundError as exc:
            raise RunnerError(
                f"Required command not found: {args[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise RunnerError(f"Failed to start command: {' '.join(args)}. {exc}") from exc
