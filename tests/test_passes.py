from __future__ import annotations

import hashlib
import json
import zipfile
from datetime import datetime, timedelta
from io import BytesIO

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from invitide.errors import InvalidInput, MissingPassAsset, PassGenerationError
from invitide.passes import PassDetails, PassSigner, build_pass_json, generate_pass


def _self_signed(common_name: str):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime(2024, 1, 1)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=3650))
        .sign(key, hashes.SHA256())
    )
    return key, certificate


@pytest.fixture()
def signer(tmp_path):
    key, certificate = _self_signed("Pass Type ID: pass.test")
    _, wwdr = _self_signed("Test WWDR")
    cert_path = tmp_path / "pass.pem"
    key_path = tmp_path / "pass.key"
    wwdr_path = tmp_path / "wwdr.der"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    wwdr_path.write_bytes(wwdr.public_bytes(serialization.Encoding.DER))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(b"sesame"),
        )
    )
    return PassSigner(
        certificate_path=cert_path,
        key_path=key_path,
        wwdr_certificate_path=wwdr_path,
        key_passphrase="sesame",
    )


@pytest.fixture()
def assets_dir(tmp_path):
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "icon.png").write_bytes(b"icon-1x")
    (directory / "icon@2x.png").write_bytes(b"icon-2x")
    (directory / "logo.png").write_bytes(b"logo-1x")
    return directory


DETAILS = PassDetails(
    event_name="Launch Party", event_date="2030-05-01", event_location="HQ"
)


def test_pass_details_from_payload():
    details = PassDetails.from_payload(
        {"eventName": " Launch Party ", "eventDate": "2030-05-01", "eventLocation": "HQ"}
    )
    assert details == DETAILS


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"eventName": "Launch", "eventDate": "2030-05-01"},
        {"eventName": "", "eventDate": "2030-05-01", "eventLocation": "HQ"},
        {"eventName": "Launch", "eventDate": 20300501, "eventLocation": "HQ"},
    ],
)
def test_pass_details_requires_all_fields(payload):
    with pytest.raises(InvalidInput) as excinfo:
        PassDetails.from_payload(payload)
    assert excinfo.value.message == "Missing event data"


def test_build_pass_json_fields():
    pass_json = build_pass_json(DETAILS, serial_number="abc", barcode_message='{"user_id":"u1"}')

    assert pass_json["formatVersion"] == 1
    assert pass_json["serialNumber"] == "abc"
    ticket = pass_json["eventTicket"]
    assert ticket["headerFields"][0]["value"] == "Launch Party"
    assert ticket["secondaryFields"][0]["value"] == "2030-05-01"
    assert ticket["auxiliaryFields"][0]["value"] == "HQ"
    assert pass_json["barcodes"][0]["message"] == '{"user_id":"u1"}'
    assert "barcodes" not in build_pass_json(DETAILS, serial_number="abc")


def test_generate_pass_bundles_signed_manifest(signer, assets_dir):
    content = generate_pass(
        DETAILS, signer=signer, assets_dir=assets_dir, serial_number="serial-1"
    )

    archive = zipfile.ZipFile(BytesIO(content))
    names = set(archive.namelist())
    assert names == {
        "pass.json",
        "icon.png",
        "icon@2x.png",
        "logo.png",
        "manifest.json",
        "signature",
    }

    manifest = json.loads(archive.read("manifest.json"))
    assert set(manifest) == {"pass.json", "icon.png", "icon@2x.png", "logo.png"}
    for name, digest in manifest.items():
        assert hashlib.sha1(archive.read(name)).hexdigest() == digest

    pass_json = json.loads(archive.read("pass.json"))
    assert pass_json["serialNumber"] == "serial-1"

    certificates = pkcs7.load_der_pkcs7_certificates(archive.read("signature"))
    subjects = {
        cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        for cert in certificates
    }
    assert subjects == {"Pass Type ID: pass.test", "Test WWDR"}


def test_generate_pass_requires_icons(signer, assets_dir):
    (assets_dir / "icon@2x.png").unlink()
    with pytest.raises(MissingPassAsset) as excinfo:
        generate_pass(DETAILS, signer=signer, assets_dir=assets_dir)
    assert excinfo.value.message == "Missing required icon file: icon@2x.png"


def test_signing_failure_is_reported(signer, assets_dir, tmp_path):
    broken = PassSigner(
        certificate_path=signer.certificate_path,
        key_path=tmp_path / "missing.key",
        wwdr_certificate_path=signer.wwdr_certificate_path,
    )
    with pytest.raises(PassGenerationError) as excinfo:
        generate_pass(DETAILS, signer=broken, assets_dir=assets_dir)
    assert excinfo.value.message.startswith("Error generating pass:")
    assert excinfo.value.status_code == 500
