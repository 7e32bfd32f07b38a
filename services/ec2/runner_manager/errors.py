from __future__ import annotations

from typing import Sequence


class EC2RunnerError(Exception):
    """Base exception for EC2 runner operations."""

    pass


class ConfigurationError(EC2RunnerError):
    """Raised when a required option is missing or invalid."""

    pass


class NotFoundError(EC2RunnerError):
    """Raised when no owned image matches a name pattern."""

    def __init__(self, name_pattern: str) -> None:
        super().__init__(f"No images owned by self match {name_pattern!r}")
        self.name_pattern = name_pattern


class ProviderError(EC2RunnerError):
    """Raised when an EC2 API call fails."""

    def __init__(
        self,
        operation: str,
        detail: str,
        code: str | None = None,
    ) -> None:
        message = f"{operation} failed: {detail}"
        if code:
            message = f"{operation} failed ({code}): {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail
        self.code = code


class LaunchError(ProviderError):
    """Raised when run-instances is rejected or fails."""

    def __init__(self, detail: str, code: str | None = None) -> None:
        super().__init__("RunInstances", detail, code)


class TerminationError(ProviderError):
    """Raised when terminate-instances is rejected."""

    def __init__(
        self, instance_ids: Sequence[str], detail: str, code: str | None = None
    ) -> None:
        super().__init__("TerminateInstances", detail, code)
        self.instance_ids = list(instance_ids)


class WaitTimeoutError(EC2RunnerError, TimeoutError):
    """Raised when a bounded wait runs out before the target state is reached."""

    def __init__(self, message: str, instance_ids: Sequence[str] = (), timeout_sec: float = 0) -> None:
        super().__init__(message)
        self.instance_ids = list(instance_ids)
        self.timeout_sec = timeout_sec


class GitHubAPIError(EC2RunnerError):
    """Raised when a GitHub REST call fails."""

    pass
