import json

import pytest

from iidattestor.codec import decode_attested_data, decode_document, encode_attested_data
from iidattestor.errors import DenialKind, MalformedPayload

from conftest import ACCOUNT_ID, INSTANCE_ID, REGION, make_document


def test_decode_attested_data_keeps_document_verbatim():
    document = make_document()
    payload = json.dumps({"document": document, "signature": "c2ln"}).encode()
    data = decode_attested_data(payload)
    assert data.document == document
    assert data.signature == "c2ln"


def test_decode_attested_data_accepts_str():
    data = decode_attested_data('{"document": "{}", "signature": "c2ln"}')
    assert data.document == "{}"


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[]",
        b'{"document": "x"}',
        b'{"signature": "x"}',
        b'{"document": 1, "signature": "x"}',
        b'{"document": "", "signature": "x"}',
    ],
)
def test_decode_attested_data_rejects_malformed(payload):
    with pytest.raises(MalformedPayload) as ei:
        decode_attested_data(payload)
    assert ei.value.kind is DenialKind.MALFORMED_PAYLOAD
    assert ei.value.step == "unmarshaling the attestation data"


def test_decode_attested_data_rejects_unencodable_str():
    with pytest.raises(MalformedPayload) as ei:
        decode_attested_data('{"document": "\ud800", "signature": "c2ln"}')
    assert ei.value.step == "unmarshaling the attestation data"


def test_decode_attested_data_rejects_oversized_payload():
    with pytest.raises(MalformedPayload):
        decode_attested_data(b" " * (64 * 1024 + 1))


def test_decode_document_extracts_claims_and_ignores_extra_keys():
    doc = decode_document(make_document())
    assert doc.account_id == ACCOUNT_ID
    assert doc.instance_id == INSTANCE_ID
    assert doc.region == REGION


@pytest.mark.parametrize(
    "document",
    [
        "{",
        '"a string"',
        '{"accountId": "1", "instanceId": "i-1"}',
        '{"accountId": 1, "instanceId": "i-1", "region": "us-east-1"}',
        '{"accountId": "", "instanceId": "i-1", "region": "us-east-1"}',
    ],
)
def test_decode_document_rejects_malformed(document):
    with pytest.raises(MalformedPayload) as ei:
        decode_document(document)
    assert ei.value.step == "unmarshaling the IID"


def test_encode_then_decode_preserves_document_bytes():
    document = make_document()
    data = decode_attested_data(json.dumps({"document": document, "signature": "c2ln"}))
    again = decode_attested_data(encode_attested_data(data))
    assert again.document.encode("utf-8") == document.encode("utf-8")
