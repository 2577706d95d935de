"""Error taxonomy for adhar-cli.

Every failure raised by providers, pipelines and the bootstrap sequencer is an
AdharError subclass so callers can branch on the kind of failure:

- ConfigurationError: bad declarative input, never retried
- NotFoundError: a cluster/provider/resource does not exist (yet)
- TransientError: infrastructure call failed, may succeed on retry
- OperationTimeoutError: a bounded wait ran out of time
- CancellationError: the run was interrupted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Message fragments that mark an error as worth retrying
RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "network",
    "temporary",
    "rate limit",
    "throttl",
    "too many requests",
    "service unavailable",
    "internal server error",
    "bad gateway",
    "gateway timeout",
)


@dataclass(eq=False)
class AdharError(Exception):
    """Base error class for adhar errors."""

    message: str
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class ConfigurationError(AdharError):
    """Declarative configuration is missing or invalid."""

    message: str = "Invalid configuration"


@dataclass(eq=False)
class ValidationError(ConfigurationError):
    """A configuration value failed validation."""

    message: str = "Validation failed"
    field_name: str | None = None


@dataclass(eq=False)
class NotFoundError(AdharError):
    """A requested object does not exist."""

    message: str = "Not found"


@dataclass(eq=False)
class ClusterNotFoundError(NotFoundError):
    """Cluster id is unknown to a provider."""

    cluster_id: str = ""
    provider: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"cluster '{self.cluster_id}' not found in provider '{self.provider}'"


@dataclass(eq=False)
class ProviderNotFoundError(NotFoundError):
    """No constructor is registered under the provider name."""

    name: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"provider not found: {self.name}"


@dataclass(eq=False)
class NotSupportedError(AdharError):
    """Provider does not offer the requested capability."""

    provider: str = ""
    operation: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"{self.operation} is not supported by provider '{self.provider}'"


@dataclass(eq=False)
class StoreCorruptError(AdharError):
    """Persisted cluster store cannot be read or parsed."""

    path: str = ""
    reason: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"cluster store {self.path} is unreadable: {self.reason}"


@dataclass(eq=False)
class TransientError(AdharError):
    """Infrastructure call failed; may succeed when retried."""

    message: str = "Transient infrastructure error"
    retryable: bool = True


@dataclass(eq=False)
class CommandError(TransientError):
    """External CLI exited with a non-zero code."""

    command: list[str] = field(default_factory=list)
    returncode: int = 1
    stderr: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            detail = self.stderr.strip() or f"exit code {self.returncode}"
            self.message = f"{' '.join(self.command[:3])} failed: {detail}"
        self.retryable = is_retryable_message(self.stderr)


@dataclass(eq=False)
class ToolNotFoundError(TransientError):
    """External CLI binary is not installed."""

    tool: str = ""
    message: str = ""
    retryable: bool = False

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"{self.tool} not found. Is {self.tool} installed?"


@dataclass(eq=False)
class AuthenticationError(TransientError):
    """Provider rejected the configured credentials."""

    message: str = "Authentication failed"
    provider: str = ""
    retryable: bool = False


@dataclass(eq=False)
class NetworkError(TransientError):
    """Endpoint could not be reached."""

    message: str = "Network error"
    endpoint: str = ""


@dataclass(eq=False)
class QuotaExceededError(TransientError):
    """Provider quota does not allow the requested resources."""

    message: str = "Resource quota exceeded"
    resource: str = ""
    retryable: bool = False


@dataclass(eq=False)
class ResourceError(TransientError):
    """Creating, updating or deleting a provider resource failed."""

    operation: str = ""
    resource_type: str = ""
    resource_id: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"failed to {self.operation} {self.resource_type} '{self.resource_id}'"


@dataclass(eq=False)
class OperationTimeoutError(AdharError):
    """Bounded wait expired before the condition held."""

    operation: str = ""
    timeout_seconds: float = 0.0
    message: str = ""
    retryable: bool = True

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"timed out after {self.timeout_seconds:g}s waiting for {self.operation}"


@dataclass(eq=False)
class CancellationError(AdharError):
    """Run was cancelled before the operation completed."""

    reason: str = "interrupted"
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"operation cancelled ({self.reason})"


@dataclass(eq=False)
class PhaseError(AdharError):
    """Failure of a single pipeline phase, tagged with the phase name."""

    phase: str = ""
    index: int = -1
    cause: BaseException | None = None
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"{self.phase}: {self.cause}"
        if isinstance(self.cause, AdharError):
            self.retryable = self.cause.retryable


def is_retryable_message(text: str) -> bool:
    """Check an error message for transient failure markers."""
    lowered = text.lower()
    return any(pattern in lowered for pattern in RETRYABLE_PATTERNS)


def is_retryable(error: BaseException) -> bool:
    """Decide whether an error is worth retrying.

    Args:
        error: Exception raised by an infrastructure call

    Returns:
        True if the operation may succeed when repeated
    """
    if isinstance(error, (ConfigurationError, NotFoundError, CancellationError, NotSupportedError)):
        return False
    if isinstance(error, AdharError):
        return error.retryable
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return is_retryable_message(str(error))
