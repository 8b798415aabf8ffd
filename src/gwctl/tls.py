"""Self-signed TLS material for the reverse proxy container."""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dh, ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

CERT_NAME = "ghostwriter.crt"
KEY_NAME = "ghostwriter.key"
DHPARAM_NAME = "dhparam.pem"


class TLSGenerationError(RuntimeError):
    """Raised when TLS material cannot be generated or written."""


class MaterialStatus(str, Enum):
    """What happened to one piece of TLS material."""

    CREATED = "created"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class CertificatePackage:
    """Paths and outcomes for the certificate, key and DH parameters."""

    certificate: Path
    key: Path
    dhparam: Path
    certificate_status: MaterialStatus
    dhparam_status: MaterialStatus
    not_after: datetime | None = None


def _default_dh_generator(key_size: int) -> bytes:
    parameters = dh.generate_parameters(generator=2, key_size=key_size)
    return parameters.parameter_bytes(
        serialization.Encoding.PEM,
        serialization.ParameterFormat.PKCS3,
    )


def certificate_not_after(path: Path) -> datetime:
    """Return the expiry of the PEM certificate at *path*."""
    cert = x509.load_pem_x509_certificate(path.read_bytes())
    return cert.not_valid_after_utc


def _write_certificate(cert_path: Path, key_path: Path, validity_days: int) -> datetime:
    key = ec.generate_private_key(ec.SECP384R1())
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Ghostwriter"),
            x509.NameAttribute(NameOID.COMMON_NAME, "nginx"),
        ]
    )
    now = datetime.now(UTC)
    not_after = now + timedelta(days=validity_days)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(key, hashes.SHA384())
    )

    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(key_bytes)
    os.chmod(key_path, 0o600)
    return not_after


def generate_certificate_package(
    ssl_dir: Path,
    *,
    validity_days: int = 365,
    dh_key_size: int = 2048,
    dh_generator: Callable[[int], bytes] = _default_dh_generator,
) -> CertificatePackage:
    """Create the certificate, key and DH parameters under *ssl_dir*.

    Existing material is left untouched: the certificate/key pair is only
    generated when either file is missing, and ``dhparam.pem`` only when it
    does not exist yet.
    """
    cert_path = ssl_dir / CERT_NAME
    key_path = ssl_dir / KEY_NAME
    dhparam_path = ssl_dir / DHPARAM_NAME
    try:
        ssl_dir.mkdir(parents=True, exist_ok=True)

        if cert_path.exists() and key_path.exists():
            certificate_status = MaterialStatus.SKIPPED
            not_after: datetime | None = certificate_not_after(cert_path)
        else:
            not_after = _write_certificate(cert_path, key_path, validity_days)
            certificate_status = MaterialStatus.CREATED

        if dhparam_path.exists():
            dhparam_status = MaterialStatus.SKIPPED
        else:
            dhparam_path.write_bytes(dh_generator(dh_key_size))
            os.chmod(dhparam_path, 0o644)
            dhparam_status = MaterialStatus.CREATED
    except (OSError, ValueError) as exc:
        raise TLSGenerationError(f"Failed to prepare TLS material in {ssl_dir}: {exc}") from exc

    return CertificatePackage(
        certificate=cert_path,
        key=key_path,
        dhparam=dhparam_path,
        certificate_status=certificate_status,
        dhparam_status=dhparam_status,
        not_after=not_after,
    )


__all__ = [
    "CertificatePackage",
    "MaterialStatus",
    "TLSGenerationError",
    "certificate_not_after",
    "generate_certificate_package",
]
