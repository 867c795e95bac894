# FILE: iidattestor/attestor.py
from __future__ import annotations

"""
Node attestor for AWS EC2 instance identity documents.

One attest() call walks a fixed sequence of steps:

    decode -> replay gate -> signature -> provenance -> identity

and stops at the first failure. Each step is attempted once; nothing is
retried. Steps raise AttestationError subclasses, and this module is the
single place that turns them into a denied AttestationResult, so callers
always receive an explicit result value.

Locking: the trust anchor store's mutex covers only the anchor read and the
RSA verification. The DescribeInstances round trip and identity derivation
run unlocked, so a slow EC2 call holds up neither configuration reloads nor
other attestations.
"""

import logging
import time
from enum import Enum
from typing import Optional, Union

from prometheus_client import Counter, Histogram

from .anchor import TrustAnchor, TrustAnchorStore
from .codec import decode_attested_data, decode_document
from .config import parse_plugin_config
from .errors import AttestationError, ReplayDetected
from .identity import PLUGIN_NAME, spiffe_id
from .logging import log_attestation, log_security_event
from .provenance import InstanceDescriber, ProvenanceChecker
from .schemas import AttestationResult, PluginInfo

logger = logging.getLogger("iidattestor.attestor")

_ATTEST_TOTAL = Counter(
    "iid_attest_total",
    "IID attestation attempts by outcome",
    labelnames=("outcome", "kind"),
)

_ATTEST_LATENCY = Histogram(
    "iid_attest_latency_seconds",
    "End-to-end latency of IID attestation attempts",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

_CONFIGURE_TOTAL = Counter(
    "iid_configure_total",
    "Attestor configuration attempts",
    labelnames=("ok",),
)


class AttestationStage(str, Enum):
    START = "start"
    DECODED = "decoded"
    REPLAY_CHECKED = "replay_checked"
    SIGNATURE_VERIFIED = "signature_verified"
    PROVENANCE_CHECKED = "provenance_checked"
    IDENTITY_DERIVED = "identity_derived"


class IIDAttestor:
    """
    Entry point used by the host harness.

    Construct once per process and share it across request threads. The
    trust anchor it holds is replaced wholesale by configure().
    """

    def __init__(
        self,
        describer: InstanceDescriber,
        *,
        store: Optional[TrustAnchorStore] = None,
        version: str = "0.1.0",
    ) -> None:
        self._store = store or TrustAnchorStore()
        self._provenance = ProvenanceChecker(describer)
        self._version = version

    @property
    def store(self) -> TrustAnchorStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def configure(
        self,
        trust_domain: str,
        certificate: Union[bytes, str, None] = None,
    ) -> TrustAnchor:
        """
        Install a new trust anchor.

        Raises ConfigParseFailed / UnsupportedKeyType on bad input, in which
        case the previous anchor stays in place.
        """
        try:
            anchor = self._store.configure(trust_domain, certificate)
        except AttestationError as e:
            _CONFIGURE_TOTAL.labels(ok="false").inc()
            log_security_event(
                logger,
                denial_kind=e.kind.value,
                step=e.step,
                detail=e.detail,
                message="configure.failed",
            )
            raise
        _CONFIGURE_TOTAL.labels(ok="true").inc()
        logger.info("configure.ok", extra={"trust_domain": anchor.trust_domain})
        return anchor

    def configure_from_payload(
        self,
        config_text: str,
        certificate: Union[bytes, str, None] = None,
    ) -> TrustAnchor:
        """Configure from the host's plugin-configuration block."""
        try:
            cfg = parse_plugin_config(config_text)
        except AttestationError as e:
            _CONFIGURE_TOTAL.labels(ok="false").inc()
            log_security_event(
                logger,
                denial_kind=e.kind.value,
                step=e.step,
                detail=e.detail,
                message="configure.failed",
            )
            raise
        return self.configure(cfg.trust_domain, certificate)

    def plugin_info(self) -> PluginInfo:
        return PluginInfo(
            name=PLUGIN_NAME,
            description="Attests AWS EC2 nodes using signed instance identity documents",
            version=self._version,
        )

    # ------------------------------------------------------------------ #
    # Attestation
    # ------------------------------------------------------------------ #

    def attest(self, payload: Union[bytes, str], attested_before: bool) -> AttestationResult:
        t0 = time.perf_counter()
        stage = AttestationStage.START
        doc = None
        try:
            attested = decode_attested_data(payload)
            doc = decode_document(attested.document)
            stage = AttestationStage.DECODED

            if attested_before:
                raise ReplayDetected("validating the IID", "the IID has been used and is no longer valid")
            stage = AttestationStage.REPLAY_CHECKED

            anchor = self._store.verify(attested.document, attested.signature)
            stage = AttestationStage.SIGNATURE_VERIFIED

            self._provenance.check(doc)
            stage = AttestationStage.PROVENANCE_CHECKED

            identity = spiffe_id(anchor.trust_domain, doc.account_id, doc.instance_id)
            stage = AttestationStage.IDENTITY_DERIVED
        except AttestationError as e:
            elapsed = max(0.0, time.perf_counter() - t0)
            _ATTEST_LATENCY.observe(elapsed)
            _ATTEST_TOTAL.labels(outcome="denied", kind=e.kind.value).inc()
            log_security_event(
                logger,
                denial_kind=e.kind.value,
                step=e.step,
                detail=f"{e.detail} (after stage {stage.value})",
                instance_id=doc.instance_id if doc is not None else None,
                region=doc.region if doc is not None else None,
            )
            return AttestationResult.deny(e)

        elapsed = max(0.0, time.perf_counter() - t0)
        _ATTEST_LATENCY.observe(elapsed)
        _ATTEST_TOTAL.labels(outcome="valid", kind="").inc()
        log_attestation(
            logger,
            valid=True,
            instance_id=doc.instance_id,
            account_id=doc.account_id,
            region=doc.region,
            spiffe_id=identity,
            latency_ms=elapsed * 1000.0,
        )
        return AttestationResult.accept(identity)


__all__ = ["AttestationStage", "IIDAttestor"]
