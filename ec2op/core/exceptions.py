"""Custom exception hierarchy for ec2op.

All ec2op-specific exceptions inherit from Ec2OpError, enabling
callers to catch every controller failure with a single except clause.
"""

from __future__ import annotations


class Ec2OpError(Exception):
    """Base exception for all ec2op errors."""


class NotFoundError(Ec2OpError):
    """Raised when a resource or a remote instance does not exist."""

    def __init__(self, what: str, ident: str) -> None:
        self.what = what
        self.ident = ident
        super().__init__(f"{what} {ident} not found")


class TransientProviderError(Ec2OpError):
    """Raised for retryable network or API failures."""

    def __init__(self, operation: str, reason: str, code: str = "") -> None:
        self.operation = operation
        self.reason = reason
        self.code = code
        super().__init__(f"{operation} failed: {reason}")


class ConfigurationError(Ec2OpError):
    """Raised for invalid configuration, credentials or region. Fatal."""


class TimeoutError(Ec2OpError):  # noqa: A001
    """Raised when a bounded wait exceeds its timeout."""


class ConflictError(Ec2OpError):
    """Raised when a write is based on a stale resource version."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Conflict writing {key}: based on version {expected}, stored is {actual}"
        )


class ProvisioningError(Ec2OpError):
    """Raised when an instance fails to reach the running state."""

    def __init__(self, instance_id: str, state: str) -> None:
        self.instance_id = instance_id
        self.state = state
        super().__init__(f"Instance {instance_id} entered {state} while launching")
