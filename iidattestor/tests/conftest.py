# iidattestor/tests/conftest.py
import base64
import datetime as dt
import json
from typing import Dict, List, Optional, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import NameOID

from iidattestor.attestor import IIDAttestor
from iidattestor.provenance import InstanceDescriber
from iidattestor.schemas import BlockDeviceMapping, InstanceDescriptor, NetworkInterface

TRUST_DOMAIN = "example.org"
ACCOUNT_ID = "123456789012"
INSTANCE_ID = "i-0123456789abcdef0"
REGION = "us-west-2"
BOOT = dt.datetime(2024, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


def _self_signed(key, common_name: str) -> bytes:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = dt.datetime.now(dt.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(days=1))
        .not_valid_after(now + dt.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def root_cert_pem(rsa_key) -> bytes:
    return _self_signed(rsa_key, "ec2.test")


@pytest.fixture(scope="session")
def other_root_cert_pem(other_rsa_key) -> bytes:
    return _self_signed(other_rsa_key, "other.test")


@pytest.fixture(scope="session")
def ec_cert_pem() -> bytes:
    return _self_signed(ec.generate_private_key(ec.SECP256R1()), "ec.test")


def sign_document(key, document: str) -> str:
    sig = key.sign(document.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(sig).decode("ascii")


def make_document(
    account_id: str = ACCOUNT_ID,
    instance_id: str = INSTANCE_ID,
    region: str = REGION,
) -> str:
    # Pretty-printed with extra keys, the way the metadata service serves it.
    return json.dumps(
        {
            "accountId": account_id,
            "architecture": "x86_64",
            "availabilityZone": region + "a",
            "imageId": "ami-0abcdef1234567890",
            "instanceId": instance_id,
            "instanceType": "t3.micro",
            "pendingTime": "2024-03-01T12:00:00Z",
            "privateIp": "10.0.0.12",
            "region": region,
            "version": "2017-09-30",
        },
        indent=2,
    )


def make_payload(key, document: Optional[str] = None, signature: Optional[str] = None) -> bytes:
    document = document if document is not None else make_document()
    signature = signature if signature is not None else sign_document(key, document)
    return json.dumps({"document": document, "signature": signature}).encode("utf-8")


def make_descriptor(
    disparity_s: int = 3,
    *,
    device_indexes: Tuple[int, ...] = (0,),
    root_device_name: str = "/dev/xvda",
    mapping_names: Tuple[str, ...] = ("/dev/xvda",),
) -> InstanceDescriptor:
    ifaces = [
        NetworkInterface(device_index=idx, attach_time=BOOT + dt.timedelta(seconds=i * 90))
        for i, idx in enumerate(device_indexes)
    ]
    mappings = [
        BlockDeviceMapping(device_name=name, volume_attach_time=BOOT + dt.timedelta(seconds=disparity_s))
        for name in mapping_names
    ]
    return InstanceDescriptor(
        network_interfaces=ifaces,
        block_device_mappings=mappings,
        root_device_name=root_device_name,
    )


class FakeDescriber(InstanceDescriber):
    """Serves synthetic descriptors and records every query."""

    def __init__(self, descriptor: Optional[InstanceDescriptor] = None, error: Optional[Exception] = None):
        self.descriptor = descriptor if descriptor is not None else make_descriptor()
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescriptor:
        self.calls.append((region, instance_id))
        if self.error is not None:
            raise self.error
        return self.descriptor


@pytest.fixture()
def describer() -> FakeDescriber:
    return FakeDescriber()


@pytest.fixture()
def attestor(describer, root_cert_pem) -> IIDAttestor:
    a = IIDAttestor(describer)
    a.configure(TRUST_DOMAIN, root_cert_pem)
    return a


@pytest.fixture()
def payload(rsa_key) -> bytes:
    return make_payload(rsa_key)


@pytest.fixture()
def ec2_instance() -> Dict:
    """A DescribeInstances instance entry as boto3 returns it."""
    return {
        "InstanceId": INSTANCE_ID,
        "RootDeviceName": "/dev/xvda",
        "NetworkInterfaces": [
            {"Attachment": {"DeviceIndex": 0, "AttachTime": BOOT}},
        ],
        "BlockDeviceMappings": [
            {"DeviceName": "/dev/xvda", "Ebs": {"AttachTime": BOOT + dt.timedelta(seconds=2)}},
        ],
    }
