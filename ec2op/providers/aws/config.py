"""AWS provider configuration.

Immutable configuration dataclass for the EC2 provider client.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Example:
        >>> from ec2op.providers.aws import AWS
        >>> config = AWS(region="us-west-2", create_timeout=240)

    Args:
        region: Default region for resources that do not declare one.
        profile: Named credentials profile. If None, uses the default chain.
        create_timeout: Seconds to wait for a new instance to be running.
        terminate_timeout: Seconds to wait for an instance to be terminated.
        poll_interval: Seconds between state polls while waiting.
        request_attempts: Attempts for throttled API calls.
        retry_base_delay: Base delay in seconds for throttling backoff.
    """

    region: str = "us-east-1"
    profile: str | None = None
    create_timeout: float = 180.0
    terminate_timeout: float = 300.0
    poll_interval: float = 5.0
    request_attempts: int = 5
    retry_base_delay: float = 1.0
