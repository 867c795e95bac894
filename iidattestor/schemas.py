# FILE: iidattestor/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .errors import AttestationError, DenialKind


# =============================================================================
# Attestation payload (produced by the agent being attested)
# =============================================================================


class AttestedData(BaseModel):
    """
    Signed IID as sent by the agent.

    `document` is kept as the exact string the agent received from the
    instance metadata service; the signature covers those bytes, so it is
    never re-serialized.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    document: str = Field(..., min_length=1, description="Raw IID JSON text")
    signature: str = Field(..., min_length=1, description="Base64 PKCS#1 v1.5 signature")


class InstanceIdentityDocument(BaseModel):
    """
    The subset of the AWS instance identity document the attestor relies on.

    AWS documents carry many more keys (imageId, pendingTime, privateIp, ...);
    they are ignored here.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    account_id: str = Field(..., alias="accountId", min_length=1)
    instance_id: str = Field(..., alias="instanceId", min_length=1)
    region: str = Field(..., alias="region", min_length=1)


# =============================================================================
# Instance description (fetched from the EC2 control plane)
# =============================================================================


class NetworkInterface(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Either may be missing for a detached interface.
    device_index: Optional[int] = None
    attach_time: Optional[datetime] = None


class BlockDeviceMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_name: str
    # Instance-store and unattached mappings have no EBS attach time.
    volume_attach_time: Optional[datetime] = None


class InstanceDescriptor(BaseModel):
    """Ground truth about an instance, straight from DescribeInstances."""

    model_config = ConfigDict(frozen=True)

    network_interfaces: List[NetworkInterface] = Field(default_factory=list)
    block_device_mappings: List[BlockDeviceMapping] = Field(default_factory=list)
    root_device_name: str = ""


# =============================================================================
# Results
# =============================================================================


class Denial(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: DenialKind
    step: str
    detail: str = ""

    @classmethod
    def from_error(cls, err: AttestationError) -> "Denial":
        return cls(kind=err.kind, step=err.step, detail=err.detail)

    def message(self) -> str:
        return f"Attempted AWS IID attestation but an error occurred {self.step}: {self.detail}"


class AttestationResult(BaseModel):
    """
    Terminal output of one attestation attempt.

    Either valid with a SPIFFE ID, or denied with a reason. Never both.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    spiffe_id: Optional[str] = None
    denial: Optional[Denial] = None

    @model_validator(mode="after")
    def _all_or_nothing(self) -> "AttestationResult":
        if self.valid and (not self.spiffe_id or self.denial is not None):
            raise ValueError("valid result requires spiffe_id and no denial")
        if not self.valid and (self.spiffe_id is not None or self.denial is None):
            raise ValueError("denied result requires a denial and no spiffe_id")
        return self

    @computed_field  # type: ignore[misc]
    @property
    def identity(self) -> Optional[str]:
        """The attested identity, None when denied."""
        return self.spiffe_id

    @classmethod
    def accept(cls, spiffe_id: str) -> "AttestationResult":
        return cls(valid=True, spiffe_id=spiffe_id)

    @classmethod
    def deny(cls, err: AttestationError) -> "AttestationResult":
        return cls(valid=False, denial=Denial.from_error(err))


class PluginInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    version: str = ""


__all__ = [
    "AttestedData",
    "InstanceIdentityDocument",
    "NetworkInterface",
    "BlockDeviceMapping",
    "InstanceDescriptor",
    "Denial",
    "AttestationResult",
    "PluginInfo",
]
