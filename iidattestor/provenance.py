# FILE: iidattestor/provenance.py
from __future__ import annotations

"""
Cross-checks a verified IID against the EC2 control plane.

The document itself is only trusted to *name* an instance. What the instance
actually looks like comes from DescribeInstances, queried in the region the
document claims. The attach-time heuristic then compares the primary network
interface with the root EBS volume: on a genuinely launched instance both are
attached during boot, within seconds of each other. A large gap indicates a
document replayed against a different (older, restarted, or re-wired)
instance than the one it was issued for.
"""

import calendar
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from prometheus_client import Histogram

from .errors import (
    AttachTimeDisparity,
    AttestationError,
    ProviderQueryFailed,
    RootDeviceNotFound,
    UnexpectedTopology,
)
from .schemas import (
    BlockDeviceMapping,
    InstanceDescriptor,
    InstanceIdentityDocument,
    NetworkInterface,
)

logger = logging.getLogger("iidattestor.provenance")

# Fixed policy constant; not derived per instance and not configurable.
MAX_SECONDS_BETWEEN_DEVICE_ATTACHMENTS = 60

_DESCRIBE_LATENCY = Histogram(
    "iid_describe_latency_seconds",
    "Latency of EC2 DescribeInstances calls made during attestation",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    labelnames=("ok",),
)


# ---------------------------------------------------------------------------
# Describer interface and the EC2 implementation
# ---------------------------------------------------------------------------


class InstanceDescriber:
    """Narrow seam over the cloud provider's compute-description API."""

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescriptor:
        raise NotImplementedError


def _descriptor_from_ec2(instance: Mapping[str, Any]) -> InstanceDescriptor:
    ifaces = []
    for ni in instance.get("NetworkInterfaces") or []:
        att = ni.get("Attachment") or {}
        ifaces.append(
            NetworkInterface(
                device_index=att.get("DeviceIndex"),
                attach_time=att.get("AttachTime"),
            )
        )

    mappings = []
    for bdm in instance.get("BlockDeviceMappings") or []:
        ebs = bdm.get("Ebs") or {}
        mappings.append(
            BlockDeviceMapping(
                device_name=bdm.get("DeviceName") or "",
                volume_attach_time=ebs.get("AttachTime"),
            )
        )

    return InstanceDescriptor(
        network_interfaces=ifaces,
        block_device_mappings=mappings,
        root_device_name=instance.get("RootDeviceName") or "",
    )


class Ec2InstanceDescriber(InstanceDescriber):
    """
    DescribeInstances via boto3, one regional client per call.

    Retries are disabled: a failed query denies the attestation and the
    agent is expected to start over with a fresh document.
    """

    def __init__(
        self,
        *,
        session: Optional[boto3.session.Session] = None,
        connect_timeout_s: float = 5.0,
        read_timeout_s: float = 10.0,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._session = session
        self._boto_config = BotoConfig(
            connect_timeout=connect_timeout_s,
            read_timeout=read_timeout_s,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        self._client_factory = client_factory

    def _client(self, region: str) -> Any:
        if self._client_factory is not None:
            return self._client_factory(region)
        session = self._session or boto3.session.Session()
        return session.client("ec2", region_name=region, config=self._boto_config)

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescriptor:
        step = "querying AWS via describe-instances"
        try:
            resp: Dict[str, Any] = self._client(region).describe_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise ProviderQueryFailed(step, e) from e

        reservations = resp.get("Reservations") or []
        if not reservations or not (reservations[0].get("Instances") or []):
            raise ProviderQueryFailed(step, f"no instance {instance_id!r} in region {region!r}")
        return _descriptor_from_ec2(reservations[0]["Instances"][0])


# ---------------------------------------------------------------------------
# Attach-time heuristic
# ---------------------------------------------------------------------------


def _unix_seconds(ts: datetime) -> int:
    # Naive timestamps are treated as UTC; sub-second precision is dropped.
    return calendar.timegm(ts.utctimetuple())


def check_descriptor(descriptor: InstanceDescriptor) -> int:
    """
    Apply the topology, root-device and attach-time checks.

    Returns the attach-time disparity in whole seconds when all checks pass.
    """
    if not descriptor.network_interfaces:
        raise UnexpectedTopology(
            "verifying the EC2 instance's NetworkInterface[0].DeviceIndex is 0",
            "instance has no network interfaces",
        )

    iface0 = descriptor.network_interfaces[0]
    if iface0.device_index != 0:
        raise UnexpectedTopology(
            "verifying the EC2 instance's NetworkInterface[0].DeviceIndex is 0",
            f"DeviceIndex is {iface0.device_index}",
        )
    if iface0.attach_time is None:
        raise UnexpectedTopology(
            "verifying the EC2 instance's NetworkInterface[0].DeviceIndex is 0",
            "NetworkInterface[0] has no attach time",
        )

    root = None
    for bdm in descriptor.block_device_mappings:
        if bdm.device_name == descriptor.root_device_name:
            root = bdm
            break

    if root is None:
        raise RootDeviceNotFound(
            "locating the root device block mapping",
            f"could not locate a device mapping with name {descriptor.root_device_name!r}",
        )
    if root.volume_attach_time is None:
        raise RootDeviceNotFound(
            "locating the root device block mapping",
            f"device mapping {root.device_name!r} has no EBS attach time",
        )

    disparity = abs(_unix_seconds(iface0.attach_time) - _unix_seconds(root.volume_attach_time))
    if disparity > MAX_SECONDS_BETWEEN_DEVICE_ATTACHMENTS:
        raise AttachTimeDisparity(
            "checking the disparity device attach times",
            f"root BlockDeviceMapping and NetworkInterface[0] attach times differ by {disparity} seconds",
        )
    return disparity


class ProvenanceChecker:
    """Describe the claimed instance and run check_descriptor on it."""

    def __init__(self, describer: InstanceDescriber) -> None:
        self.describer = describer

    def check(self, doc: InstanceIdentityDocument) -> int:
        t0 = time.perf_counter()
        ok = False
        try:
            descriptor = self.describer.describe_instance(doc.region, doc.instance_id)
            ok = True
        except AttestationError:
            raise
        except Exception as e:
            raise ProviderQueryFailed("querying AWS via describe-instances", e) from e
        finally:
            _DESCRIBE_LATENCY.labels(ok=str(ok).lower()).observe(max(0.0, time.perf_counter() - t0))

        disparity = check_descriptor(descriptor)
        logger.debug(
            "provenance.ok",
            extra={"instance_id": doc.instance_id, "region": doc.region, "disparity_s": disparity},
        )
        return disparity


__all__ = [
    "MAX_SECONDS_BETWEEN_DEVICE_ATTACHMENTS",
    "InstanceDescriber",
    "Ec2InstanceDescriber",
    "check_descriptor",
    "ProvenanceChecker",
]
