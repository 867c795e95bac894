from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from .crypto import load_trusted_root, verify_signature
from .errors import ConfigParseFailed, NotConfigured


@dataclass(frozen=True)
class TrustAnchor:
    """
    Verification key plus the trust domain identities are issued under.

    Instances are immutable; reconfiguration swaps the whole object so a
    reader can never see a key from one configuration and a trust domain
    from another.
    """

    public_key: rsa.RSAPublicKey = field(repr=False)
    trust_domain: str


class TrustAnchorStore:
    """
    Process-wide holder of the current TrustAnchor.

    One mutex serializes configuration against signature verification.
    Certificate parsing happens before the lock is taken, so a failed
    configuration never touches the current anchor.
    """

    def __init__(self, anchor: Optional[TrustAnchor] = None) -> None:
        self._lock = threading.Lock()
        self._anchor = anchor

    @property
    def configured(self) -> bool:
        with self._lock:
            return self._anchor is not None

    def snapshot(self) -> Optional[TrustAnchor]:
        with self._lock:
            return self._anchor

    def replace(self, anchor: TrustAnchor) -> None:
        with self._lock:
            self._anchor = anchor

    def configure(
        self,
        trust_domain: str,
        certificate: Union[bytes, str, None] = None,
    ) -> TrustAnchor:
        """
        Build a new anchor from a trust domain and a root certificate and
        install it. With no certificate the embedded AWS root is used.
        """
        domain = (trust_domain or "").strip()
        if not domain:
            raise ConfigParseFailed("decoding the attestor configuration", "trust_domain is required")
        if "/" in domain or "://" in domain:
            raise ConfigParseFailed(
                "decoding the attestor configuration",
                f"trust_domain must be a bare host name, got {domain!r}",
            )
        public_key = load_trusted_root(certificate)
        anchor = TrustAnchor(public_key=public_key, trust_domain=domain)
        self.replace(anchor)
        return anchor

    def verify(self, document: str, signature_b64: str) -> TrustAnchor:
        """
        Verify `signature_b64` over `document` against the current anchor.

        Returns the anchor the check was made against so later steps derive
        the identity from the same configuration that vouched for the
        signature.
        """
        with self._lock:
            anchor = self._anchor
            if anchor is None:
                raise NotConfigured("verifying the cryptographic signature", "attestor is not configured")
            verify_signature(document, signature_b64, anchor.public_key)
            return anchor


__all__ = ["TrustAnchor", "TrustAnchorStore"]
