"""Projection of provider records onto persisted status."""

from __future__ import annotations

from dataclasses import replace

from ec2op.api.model import UNKNOWN_STATE, InstanceStatus, RemoteInstanceRecord


def _text(value: str | None) -> str:
    match value:
        case str() if value:
            return value
        case _:
            return ""


def project(record: RemoteInstanceRecord) -> InstanceStatus:
    """Map a provider record to status fields. Absent values become ""."""
    return InstanceStatus(
        instance_id=record.instance_id,
        state=_text(record.state),
        public_ip=_text(record.public_ip),
        private_ip=_text(record.private_ip),
        public_dns=_text(record.public_dns),
        private_dns=_text(record.private_dns),
    )


def cleared() -> InstanceStatus:
    return InstanceStatus()


def mark_unknown(status: InstanceStatus) -> InstanceStatus:
    """Keep the instance id but flag the observed state as indeterminate."""
    return replace(status, state=UNKNOWN_STATE)
