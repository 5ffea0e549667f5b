"""
Shared test fixtures and helpers for the payreq-verifier test suite.

Builds a small PKI at test time with cryptography:

    Test Root CA (trusted, self-signed)
      └─ Test Intermediate CA (pathLen 0)
           ├─ merchant.example.com  (EC P-256 leaf)
           └─ rsa.merchant.example.com (RSA-2048 leaf)

All certificates are valid around NOW; tests pass NOW explicitly so the
suite does not depend on the wall clock.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from payreq_verifier.adapters.signature import sign_payment_request
from payreq_verifier.domain.models import PaymentDetails, PaymentOutput, PkiType, TrustStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)

P2PKH_SCRIPT = bytes.fromhex("76a914" + "11" * 20 + "88ac")


@dataclass(frozen=True)
class Issued:
    """A certificate together with its private key."""

    certificate: x509.Certificate
    key: ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.certificate.public_bytes(Encoding.PEM)


def _name(common_name: str | None) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, "payreq-verifier tests")]
    if common_name is not None:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def _key_usage(ca: bool, cert_sign: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=not ca,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=cert_sign,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def issue_certificate(
    common_name: str | None,
    *,
    issuer: Issued | None = None,
    key: ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey | None = None,
    ca: bool = False,
    path_length: int | None = None,
    cert_sign: bool | None = None,
    basic_constraints: bool = True,
    not_before: datetime = NOW - timedelta(days=30),
    not_after: datetime = NOW + timedelta(days=365),
    extensions: Iterable[tuple[x509.ExtensionType, bool]] = (),
) -> Issued:
    """
    Issue a certificate signed by `issuer`, or self-signed when issuer is None.

    `cert_sign` defaults to `ca`.
    """
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = _name(common_name)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.certificate.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(_key_usage(ca, ca if cert_sign is None else cert_sign), critical=True)
    )
    if basic_constraints:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=ca, path_length=path_length if ca else None),
            critical=True,
        )
    for extension, critical in extensions:
        builder = builder.add_extension(extension, critical=critical)
    signing_key = issuer.key if issuer else key
    return Issued(builder.sign(signing_key, hashes.SHA256()), key)


def sample_details(**overrides: object) -> PaymentDetails:
    """A typical single-output PaymentDetails."""
    values: dict[str, object] = {
        "outputs": (PaymentOutput(script=P2PKH_SCRIPT, amount=150_000),),
        "time": int(NOW.timestamp()),
        "memo": "Order #1234",
        "payment_url": "https://merchant.example.com/pay/1234",
    }
    values.update(overrides)
    return PaymentDetails(**values)  # type: ignore[arg-type]


def signed_request(
    signer: Issued,
    chain: Sequence[Issued] = (),
    details: PaymentDetails | None = None,
    pki_type: PkiType = PkiType.X509_SHA256,
) -> bytes:
    """Serialize a PaymentRequest signed by `signer`, bundling signer + `chain`."""
    return sign_payment_request(
        details or sample_details(),
        [signer.der, *(c.der for c in chain)],
        signer.key,
        pki_type,
    )


# ─────────────────────── Fixtures ───────────────────────


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo any structlog configuration a test (e.g. main()) installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")
def root_ca() -> Issued:
    return issue_certificate("Test Root CA", ca=True, not_before=NOW - timedelta(days=3650))


@pytest.fixture(scope="session")
def intermediate_ca(root_ca: Issued) -> Issued:
    return issue_certificate("Test Intermediate CA", issuer=root_ca, ca=True, path_length=0)


@pytest.fixture(scope="session")
def merchant(intermediate_ca: Issued) -> Issued:
    return issue_certificate("merchant.example.com", issuer=intermediate_ca)


@pytest.fixture(scope="session")
def rsa_merchant(intermediate_ca: Issued) -> Issued:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return issue_certificate("rsa.merchant.example.com", issuer=intermediate_ca, key=key)


@pytest.fixture(scope="session")
def trust_store(root_ca: Issued) -> TrustStore:
    return TrustStore([root_ca.certificate])
