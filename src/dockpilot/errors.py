"""Error taxonomy and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    ENGINE_UNREACHABLE = 5
    PARTIAL_FAILURE = 6
    VALIDATION_ERROR = 7


@dataclass
class DockPilotError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class ConnectivityError(DockPilotError):
    """The engine cannot be reached at all."""

    code: ExitCode = ExitCode.ENGINE_UNREACHABLE
    hint: str = "Is the Docker daemon running? Retry once it is up."


@dataclass
class OperationError(DockPilotError):
    """A single engine operation was rejected or failed."""


@dataclass
class PartialBatchError(DockPilotError):
    """Some, but not necessarily all, items of a batch failed."""

    code: ExitCode = ExitCode.PARTIAL_FAILURE
    report: Any = None


@dataclass
class ValidationError(DockPilotError, ValueError):
    """Local input was rejected before any engine call."""

    code: ExitCode = ExitCode.VALIDATION_ERROR


def user_facing_error(error: Exception) -> str:
    if isinstance(error, DockPilotError) and error.hint:
        return f"Error: {error.message}. Next step: {error.hint}"
    return f"Error: {error}."
