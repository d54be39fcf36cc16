"""Exceptions raised by the bastion lab tooling."""

from collections.abc import Sequence
from typing import Any


class LabError(Exception):
    """Base exception for bastion lab failures."""


class ConfigError(LabError):
    """Raised when stack configuration is missing or invalid."""

    def __init__(self, message: str, key: str | None = None) -> None:
        self.message = message
        self.key = key
        super().__init__(f"{key}: {message}" if key else message)


class PolicyViolationError(LabError):
    """Raised when the declared topology breaks one or more access policies."""

    def __init__(self, violations: Sequence[Any]) -> None:
        self.violations = list(violations)
        details = "; ".join(str(v) for v in self.violations)
        super().__init__(f"{len(self.violations)} policy violation(s): {details}")


class ToolNotFoundError(LabError):
    """Raised when a required CLI (gcloud, pulumi, ssh) is not on PATH."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"Required tool '{tool}' was not found on PATH")


class CommandFailedError(LabError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Command '{' '.join(self.args_list)}' failed: {detail}")
