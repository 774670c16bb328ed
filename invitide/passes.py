"""Apple Wallet event passes (``.pkpass`` bundles).

A bundle is a zip holding ``pass.json``, the image assets, a
``manifest.json`` of SHA-1 digests, and a detached PKCS#7 ``signature`` over
the manifest made with the pass-type certificate.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
import zipfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Mapping

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from .config import settings
from .errors import InvalidInput, MissingPassAsset, PassGenerationError

logger = logging.getLogger("uvicorn.error")

PASS_CONTENT_TYPE = "application/vnd.apple.pkpass"
PASS_FILENAME = "event-pass.pkpass"
REQUIRED_ICONS = ("icon.png", "icon@2x.png")
OPTIONAL_IMAGES = ("logo.png", "logo@2x.png")


@dataclass(frozen=True)
class PassDetails:
    event_name: str
    event_date: str
    event_location: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "PassDetails":
        """Read ``eventName``/``eventDate``/``eventLocation``; all required."""
        payload = payload or {}
        values = [
            payload.get(key) for key in ("eventName", "eventDate", "eventLocation")
        ]
        if not all(isinstance(v, str) and v.strip() for v in values):
            raise InvalidInput("Missing event data")
        name, when, where = (v.strip() for v in values)
        return cls(event_name=name, event_date=when, event_location=where)


@dataclass(frozen=True)
class PassSigner:
    certificate_path: Path
    key_path: Path
    wwdr_certificate_path: Path
    key_passphrase: str = ""

    @classmethod
    def from_settings(cls) -> "PassSigner":
        return cls(
            certificate_path=Path(settings.pass_certificate_path),
            key_path=Path(settings.pass_key_path),
            wwdr_certificate_path=Path(settings.pass_wwdr_certificate_path),
            key_passphrase=settings.signer_key_passphrase,
        )

    def sign(self, manifest: bytes) -> bytes:
        try:
            certificate = _load_certificate(self.certificate_path)
            wwdr = _load_certificate(self.wwdr_certificate_path)
            key = serialization.load_pem_private_key(
                self.key_path.read_bytes(),
                password=self.key_passphrase.encode() if self.key_passphrase else None,
            )
            return (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(manifest)
                .add_signer(certificate, key, hashes.SHA256())
                .add_certificate(wwdr)
                .sign(
                    serialization.Encoding.DER,
                    [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary],
                )
            )
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Error signing pass manifest: %s", exc)
            raise PassGenerationError(f"Error generating pass: {exc}") from exc


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    if b"-----BEGIN" in data:
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def build_pass_json(
    details: PassDetails,
    *,
    serial_number: str,
    barcode_message: str | None = None,
) -> dict[str, Any]:
    pass_json: dict[str, Any] = {
        "formatVersion": 1,
        "passTypeIdentifier": settings.pass_type_identifier,
        "teamIdentifier": settings.pass_team_identifier,
        "organizationName": settings.pass_organization_name,
        "serialNumber": serial_number,
        "description": "Event Pass",
        "backgroundColor": "rgb(0, 0, 0)",
        "foregroundColor": "rgb(255, 255, 255)",
        "labelColor": "rgb(255, 255, 255)",
        "eventTicket": {
            "headerFields": [
                {"key": "eventName", "label": "Event", "value": details.event_name}
            ],
            "secondaryFields": [
                {"key": "eventDate", "label": "Date", "value": details.event_date}
            ],
            "auxiliaryFields": [
                {
                    "key": "eventLocation",
                    "label": "Location",
                    "value": details.event_location,
                }
            ],
        },
    }
    if barcode_message:
        pass_json["barcodes"] = [
            {
                "format": "PKBarcodeFormatQR",
                "message": barcode_message,
                "messageEncoding": "iso-8859-1",
            }
        ]
    return pass_json


def _collect_assets(assets_dir: Path) -> dict[str, bytes]:
    files: dict[str, bytes] = {}
    for name in REQUIRED_ICONS:
        path = assets_dir / name
        if not path.is_file():
            logger.error("Missing required icon file: %s", path)
            raise MissingPassAsset(f"Missing required icon file: {name}")
        files[name] = path.read_bytes()
    for name in OPTIONAL_IMAGES:
        path = assets_dir / name
        if path.is_file():
            files[name] = path.read_bytes()
    return files


def generate_pass(
    details: PassDetails,
    *,
    signer: PassSigner | None = None,
    assets_dir: Path | None = None,
    serial_number: str | None = None,
    barcode_message: str | None = None,
) -> bytes:
    """Return the signed ``.pkpass`` archive for ``details``."""
    files = _collect_assets(assets_dir or settings.pass_assets_dir)
    pass_json = build_pass_json(
        details,
        serial_number=serial_number or uuid.uuid4().hex,
        barcode_message=barcode_message,
    )
    files["pass.json"] = json.dumps(pass_json, indent=2).encode("utf-8")
    manifest = json.dumps(
        {name: hashlib.sha1(data).hexdigest() for name, data in sorted(files.items())},
        indent=2,
    ).encode("utf-8")
    signature = (signer or PassSigner.from_settings()).sign(manifest)

    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in sorted(files.items()):
            archive.writestr(name, data)
        archive.writestr("manifest.json", manifest)
        archive.writestr("signature", signature)
    logger.info("Generated pass %s for %s", pass_json["serialNumber"], details.event_name)
    return buf.getvalue()
