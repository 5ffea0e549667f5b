"""
Certificate chain loader — pki_type + pki_data → CertificateChain.

Adapter layer — implements the ChainLoader port using:
  - protobuf codec: X509Certificates bundle decoding
  - asn1crypto: strict DER framing check for each certificate (trailing data rejected)
  - cryptography (PyCA): X.509 objects used by the later stages

Every certificate in the bundle must decode, be inside its validity window
and be absent from the distrust list. A single bad certificate rejects the
whole chain; nothing is silently skipped.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from asn1crypto import x509 as asn1_x509
from cryptography import x509

from payreq_verifier.adapters.protobuf_codec import decode_certificate_bundle
from payreq_verifier.domain.models import CertificateChain, DistrustList, PkiType
from payreq_verifier.railway.failure import Rejection
from payreq_verifier.railway.result import Result

log = structlog.get_logger()


def _describe(certificate: x509.Certificate) -> str:
    return certificate.subject.rfc4514_string() or f"serial {certificate.serial_number:#x}"


def resolve_pki_type(pki_type: str) -> Result[PkiType]:
    """Accept only the x509 signing schemes; "none" and unknown values are rejected."""
    scheme = PkiType.from_wire(pki_type)
    if scheme is None:
        return Result.failure(Rejection.UNTRUSTED_PKI_TYPE, f"Unknown pki_type {pki_type!r}")
    if not scheme.is_signed:
        return Result.failure(
            Rejection.UNTRUSTED_PKI_TYPE, "Payment request is unsigned (pki_type == none)"
        )
    return Result.success(scheme)


def _parse_der(der: bytes) -> x509.Certificate:
    # asn1crypto parses lazily; indexing forces the outer SEQUENCE to decode.
    asn1_x509.Certificate.load(der, strict=True)["tbs_certificate"]
    return x509.load_der_x509_certificate(der)


def _load_certificate(position: int, der: bytes) -> Result[x509.Certificate]:
    return Result.from_computation(
        lambda: _parse_der(der),
        Rejection.MALFORMED_CERTIFICATE_BUNDLE,
        f"Certificate #{position} is not a valid DER X.509 certificate",
    )


def _check_validity(position: int, certificate: x509.Certificate, now: datetime) -> Result[x509.Certificate]:
    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc
    if now < not_before or now > not_after:
        return Result.failure(
            Rejection.CERTIFICATE_EXPIRED,
            f"Certificate #{position} ({_describe(certificate)}) expired or not yet active: "
            f"valid {not_before.isoformat()} to {not_after.isoformat()}",
        )
    return Result.success(certificate)


def _check_distrust(
    position: int,
    certificate: x509.Certificate,
    distrust: DistrustList,
) -> Result[x509.Certificate]:
    if distrust.is_distrusted(certificate):
        return Result.failure(
            Rejection.CERTIFICATE_DISTRUSTED,
            f"Certificate #{position} ({_describe(certificate)}) is distrusted",
        )
    return Result.success(certificate)


def _load_certificates(
    ders: list[bytes],
    now: datetime,
    distrust: DistrustList,
) -> Result[list[x509.Certificate]]:
    certificates: list[x509.Certificate] = []
    for position, der in enumerate(ders):
        result = (
            _load_certificate(position, der)
            .flat_map(lambda cert: _check_validity(position, cert, now))
            .flat_map(lambda cert: _check_distrust(position, cert, distrust))
        )
        if result.is_failure():
            return Result.failure_from(result.error())
        certificates.append(result.value())
    return Result.success(certificates)


def _to_chain(scheme: PkiType, certificates: list[x509.Certificate]) -> Result[CertificateChain]:
    if not certificates:
        return Result.failure(Rejection.EMPTY_CHAIN, "Empty certificate chain")
    return Result.success(
        CertificateChain(pki_type=scheme, leaf=certificates[0], intermediates=tuple(certificates[1:]))
    )


def load_chain(
    pki_type: str,
    pki_data: bytes,
    now: datetime,
    distrust: DistrustList | None = None,
) -> Result[CertificateChain]:
    """
    Decode and pre-check the certificate bundle of a payment request.

    Order of checks: pki_type, bundle framing, then per certificate
    (leaf first): DER decoding, validity window at `now`, distrust list.
    """
    distrust = distrust or DistrustList()
    return resolve_pki_type(pki_type).flat_map(
        lambda scheme: Result.from_computation(
            lambda: decode_certificate_bundle(pki_data),
            Rejection.MALFORMED_CERTIFICATE_BUNDLE,
            "Error parsing pki_data",
        )
        .flat_map(lambda ders: _load_certificates(ders, now, distrust))
        .flat_map(lambda certificates: _to_chain(scheme, certificates))
        .peek(
            lambda chain: log.debug(
                "chain.loaded",
                pki_type=scheme.value,
                certificates=len(chain.certificates),
                leaf=_describe(chain.leaf),
            )
        )
    )


class X509ChainLoader:
    """Implements the ChainLoader port; holds the caller's distrust list."""

    def __init__(self, distrust: DistrustList | None = None) -> None:
        self._distrust = distrust or DistrustList()

    def load(self, pki_type: str, pki_data: bytes, now: datetime) -> Result[CertificateChain]:
        return load_chain(pki_type, pki_data, now, self._distrust)
