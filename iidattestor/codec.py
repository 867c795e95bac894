# FILE: iidattestor/codec.py
from __future__ import annotations

"""
Decoding of the attestation payload and the embedded identity document.

Both steps are pure: they only parse. Nothing decoded here is trusted until
the signature over the raw `document` string has been verified.
"""

import json
from typing import Any, Union

from pydantic import ValidationError

from .errors import MalformedPayload
from .schemas import AttestedData, InstanceIdentityDocument

# Upper bound on the outer payload. Real IID payloads are ~1-2 KiB.
_MAX_PAYLOAD_BYTES = 64 * 1024


def _loads_object(raw: Union[bytes, str], *, step: str) -> Any:
    try:
        obj = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise MalformedPayload(step, e) from e
    if not isinstance(obj, dict):
        raise MalformedPayload(step, f"expected a JSON object, got {type(obj).__name__}")
    return obj


def decode_attested_data(payload: Union[bytes, str]) -> AttestedData:
    """
    Decode the opaque attestation payload into a document/signature pair.

    Raises MalformedPayload if the payload is not a JSON object with string
    `document` and `signature` fields.
    """
    step = "unmarshaling the attestation data"
    if isinstance(payload, str):
        try:
            payload = payload.encode("utf-8")
        except UnicodeEncodeError as e:
            raise MalformedPayload(step, e) from e
    if len(payload) > _MAX_PAYLOAD_BYTES:
        raise MalformedPayload(step, f"payload exceeds {_MAX_PAYLOAD_BYTES} bytes")

    obj = _loads_object(payload, step=step)
    try:
        return AttestedData.model_validate(obj, strict=True)
    except ValidationError as e:
        raise MalformedPayload(step, e.errors(include_url=False)) from e


def decode_document(document: str) -> InstanceIdentityDocument:
    """Parse the raw IID text into the claims the attestor uses."""
    step = "unmarshaling the IID"
    obj = _loads_object(document, step=step)
    try:
        return InstanceIdentityDocument.model_validate(obj, strict=True)
    except ValidationError as e:
        raise MalformedPayload(step, e.errors(include_url=False)) from e


def encode_attested_data(data: AttestedData) -> bytes:
    """Inverse of decode_attested_data, used by agents and test harnesses."""
    return json.dumps(
        {"document": data.document, "signature": data.signature},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


__all__ = [
    "decode_attested_data",
    "decode_document",
    "encode_attested_data",
]
