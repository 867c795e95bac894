from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from .errors import ConfigParseFailed, SignatureInvalid, UnsupportedKeyType

# ---------------------------------------------------------------------------
# Embedded trust root
# ---------------------------------------------------------------------------

# AWS public-region certificate for verifying the PKCS#1 signature of the
# instance identity document (the `signature` metadata endpoint).
AWS_CA_CERT_PEM = b"""-----BEGIN CERTIFICATE-----
MIIDIjCCAougAwIBAgIJAKnL4UEDMN/FMA0GCSqGSIb3DQEBBQUAMGoxCzAJBgNV
BAYTAlVTMRMwEQYDVQQIEwpXYXNoaW5ndG9uMRAwDgYDVQQHEwdTZWF0dGxlMRgw
FgYDVQQKEw9BbWF6b24uY29tIEluYy4xGjAYBgNVBAMTEWVjMi5hbWF6b25hd3Mu
Y29tMB4XDTE0MDYwNTE0MjgwMloXDTI0MDYwNTE0MjgwMlowajELMAkGA1UEBhMC
VVMxEzARBgNVBAgTCldhc2hpbmd0b24xEDAOBgNVBAcTB1NlYXR0bGUxGDAWBgNV
BAoTD0FtYXpvbi5jb20gSW5jLjEaMBgGA1UEAxMRZWMyLmFtYXpvbmF3cy5jb20w
gZ8wDQYJKoZIhvcNAQEBBQADgY0AMIGJAoGBAIe9GN//SRK2knbjySG0ho3yqQM3
e2TDhWO8D2e8+XZqck754gFSo99AbT2RmXClambI7xsYHZFapbELC4H91ycihvrD
jbST1ZjkLQgga0NE1q43eS68ZeTDccScXQSNivSlzJZS8HJZjgqzBlXjZftjtdJL
XeE4hwvo0sD4f3j9AgMBAAGjgc8wgcwwHQYDVR0OBBYEFCXWzAgVyrbwnFncFFIs
77VBdlE4MIGcBgNVHSMEgZQwgZGAFCXWzAgVyrbwnFncFFIs77VBdlE4oW6kbDBq
MQswCQYDVQQGEwJVUzETMBEGA1UECBMKV2FzaGluZ3RvbjEQMA4GA1UEBxMHU2Vh
dHRsZTEYMBYGA1UEChMPQW1hem9uLmNvbSBJbmMuMRowGAYDVQQDExFlYzIuYW1h
em9uYXdzLmNvbYIJAKnL4UEDMN/FMAwGA1UdEwQFMAMBAf8wDQYJKoZIhvcNAQEF
BQADgYEAFYcz1OgEhQBXIwIdsgCOS8vEtiJYF+j9uO6jz7VOmJqO+pRlAbRlvY8T
C1haGgSI/A1uZUKs/Zfnph0oEI0/hu1IIJ/SKBDtN5lvmZ/IzbOPIJWirlsllQIQ
7zvWbGd9c9+Rm3p04oTvhup99la7kZqevJK0QRdD/6NpCKsqP/0=
-----END CERTIFICATE-----
"""


# ---------------------------------------------------------------------------
# Trust root loading
# ---------------------------------------------------------------------------


def load_certificate(data: Union[bytes, str]) -> x509.Certificate:
    """Parse a PEM or DER encoded X.509 certificate."""
    step = "reading the trusted root certificate"
    try:
        raw = data.encode("ascii") if isinstance(data, str) else bytes(data)
        if b"-----BEGIN" in raw:
            return x509.load_pem_x509_certificate(raw)
        return x509.load_der_x509_certificate(raw)
    except ValueError as e:
        raise ConfigParseFailed(step, e) from e


def rsa_public_key_from_certificate(cert: x509.Certificate) -> rsa.RSAPublicKey:
    pub = cert.public_key()
    if not isinstance(pub, rsa.RSAPublicKey):
        raise UnsupportedKeyType(
            "extracting the trusted root certificate's public key",
            f"expected an RSA key, got {type(pub).__name__}",
        )
    return pub


def load_trusted_root(data: Union[bytes, str, None] = None) -> rsa.RSAPublicKey:
    """
    Return the RSA verification key of a trusted root certificate.

    With no argument the embedded AWS certificate is used.
    """
    cert = load_certificate(AWS_CA_CERT_PEM if data is None else data)
    return rsa_public_key_from_certificate(cert)


# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------


def decode_signature(signature_b64: str) -> bytes:
    # The metadata service wraps the signature at 64 columns; only line
    # breaks are skipped, any other whitespace is invalid.
    compact = signature_b64.replace("\r", "").replace("\n", "")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SignatureInvalid("base64 decoding the IID signature", e) from e


def document_digest(document: str) -> bytes:
    return hashlib.sha256(document.encode("utf-8")).digest()


def verify_signature(document: str, signature_b64: str, public_key: rsa.RSAPublicKey) -> None:
    """
    Verify an RSA PKCS#1 v1.5 / SHA-256 signature over the raw IID bytes.

    Raises SignatureInvalid on a bad encoding or any mismatch; returns None
    on success.
    """
    sig = decode_signature(signature_b64)
    digest = document_digest(document)
    try:
        public_key.verify(sig, digest, padding.PKCS1v15(), Prehashed(hashes.SHA256()))
    except (InvalidSignature, ValueError) as e:
        raise SignatureInvalid(
            "verifying the cryptographic signature", "signature does not match document"
        ) from e


__all__ = [
    "AWS_CA_CERT_PEM",
    "load_certificate",
    "rsa_public_key_from_certificate",
    "load_trusted_root",
    "decode_signature",
    "document_digest",
    "verify_signature",
]
