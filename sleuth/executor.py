"""Shell command execution with a per-session result cache."""

import logging
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from sleuth.deadline import Deadline

logger = logging.getLogger(__name__)

SHELL = "sh"


class ExecutionErrorKind(str, Enum):
    """Failure classes reported by the executer."""

    TIMEOUT = "timeout"
    EXECUTION_FAILURE = "execution_failure"


@dataclass(frozen=True)
class ExecutionError:
    kind: ExecutionErrorKind
    message: str
    returncode: int | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ExecutionResult:
    """Combined output of a command and the error, if it failed."""

    output: str
    error: ExecutionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CommandExecutor:
    """Runs commands through ``sh -c`` at most once per literal string.

    Results are cached by the exact command text. Only successful runs are
    cached, so a failed command can be retried verbatim later.
    """

    def __init__(self, shell: str = SHELL):
        self.shell = shell
        self._cache: dict[str, ExecutionResult] = {}
        self.execution_count = 0

    @property
    def executed_commands(self) -> Mapping[str, ExecutionResult]:
        return MappingProxyType(self._cache)

    def run(self, deadline: Deadline, command: str) -> ExecutionResult:
        """Run a command that has already been validated.

        Args:
            deadline: Bounds the subprocess; it is killed once the deadline passes
            command: Literal command line

        Returns:
            ExecutionResult with stdout and stderr combined and trimmed
        """
        cached = self._cache.get(command)
        if cached is not None:
            logger.debug(f"Cache hit for command: {command}")
            return cached

        result = self._execute(deadline, command)
        if result.ok:
            self._cache[command] = result
        return result

    def _execute(self, deadline: Deadline, command: str) -> ExecutionResult:
        if deadline.done():
            return self._timeout_result(deadline, "")

        self.execution_count += 1
        logger.debug(f"Executing command: {command}")
        try:
            completed = subprocess.run(
                [self.shell, "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=deadline.remaining(),
                text=True,
                errors="replace",
            )
        except subprocess.TimeoutExpired as e:
            output = e.output
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="replace")
            return self._timeout_result(deadline, output or "")
        except OSError as e:
            logger.debug(f"Command could not be started: {e}")
            return ExecutionResult(
                output="",
                error=ExecutionError(
                    ExecutionErrorKind.EXECUTION_FAILURE,
                    f"command execution failed: {e}",
                ),
            )

        output = (completed.stdout or "").strip()
        logger.debug(f"Command exited with status {completed.returncode}")
        if completed.returncode != 0:
            # killed by the deadline rather than failing on its own
            if deadline.done():
                return self._timeout_result(deadline, output)
            return ExecutionResult(
                output=output,
                error=ExecutionError(
                    ExecutionErrorKind.EXECUTION_FAILURE,
                    f"command execution failed: exit status {completed.returncode}",
                    returncode=completed.returncode,
                ),
            )
        return ExecutionResult(output=output)

    @staticmethod
    def _timeout_result(deadline: Deadline, output: str) -> ExecutionResult:
        if deadline.cancelled:
            error = ExecutionError(
                ExecutionErrorKind.EXECUTION_FAILURE,
                "command execution failed: session cancelled",
            )
        else:
            error = ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"command execution timed out: deadline of {deadline.timeout}s exceeded",
            )
        return ExecutionResult(output=output.strip(), error=error)
