# FILE: iidattestor/errors.py
from __future__ import annotations

from enum import Enum


class DenialKind(str, Enum):
    """
    Stable, low-cardinality identifiers for why an attestation was refused.

    Values are used as metric labels and in API responses, so they must not
    change once published.
    """

    MALFORMED_PAYLOAD = "malformed_payload"
    REPLAY_DETECTED = "replay_detected"
    SIGNATURE_INVALID = "signature_invalid"
    PROVIDER_QUERY_FAILED = "provider_query_failed"
    UNEXPECTED_TOPOLOGY = "unexpected_topology"
    ROOT_DEVICE_NOT_FOUND = "root_device_not_found"
    ATTACH_TIME_DISPARITY = "attach_time_disparity"
    UNSUPPORTED_KEY_TYPE = "unsupported_key_type"
    CONFIG_PARSE_FAILED = "config_parse_failed"
    NOT_CONFIGURED = "not_configured"


class AttestationError(Exception):
    """
    Base error for the attestor.

    Each subclass pins a DenialKind. `step` names the verification step that
    was being attempted and `detail` carries the underlying cause.
    """

    kind: DenialKind = DenialKind.MALFORMED_PAYLOAD

    def __init__(self, step: str, detail: object = "") -> None:
        self.step = step
        self.detail = str(detail)
        super().__init__(
            f"Attempted AWS IID attestation but an error occurred {step}: {self.detail}"
        )


class MalformedPayload(AttestationError):
    kind = DenialKind.MALFORMED_PAYLOAD


class ReplayDetected(AttestationError):
    kind = DenialKind.REPLAY_DETECTED


class SignatureInvalid(AttestationError):
    kind = DenialKind.SIGNATURE_INVALID


class ProviderQueryFailed(AttestationError):
    kind = DenialKind.PROVIDER_QUERY_FAILED


class UnexpectedTopology(AttestationError):
    kind = DenialKind.UNEXPECTED_TOPOLOGY


class RootDeviceNotFound(AttestationError):
    kind = DenialKind.ROOT_DEVICE_NOT_FOUND


class AttachTimeDisparity(AttestationError):
    kind = DenialKind.ATTACH_TIME_DISPARITY


class UnsupportedKeyType(AttestationError):
    kind = DenialKind.UNSUPPORTED_KEY_TYPE


class ConfigParseFailed(AttestationError):
    kind = DenialKind.CONFIG_PARSE_FAILED


class NotConfigured(AttestationError):
    kind = DenialKind.NOT_CONFIGURED


__all__ = [
    "DenialKind",
    "AttestationError",
    "MalformedPayload",
    "ReplayDetected",
    "SignatureInvalid",
    "ProviderQueryFailed",
    "UnexpectedTopology",
    "RootDeviceNotFound",
    "AttachTimeDisparity",
    "UnsupportedKeyType",
    "ConfigParseFailed",
    "NotConfigured",
]
