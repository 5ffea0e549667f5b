"""
Chain validator — X.509 path validation from the leaf to a trusted root.

Adapter layer — implements the ChainValidator port using:
  - cryptography (PyCA): issuer/signature linkage (verify_directly_issued_by),
    validity periods and extension parsing

Path building prefers trust anchors: at every step the issuer is looked up
in the TrustStore first and only then among the bundled intermediates (each
used at most once). Building stops at a trust anchor, or fails.

Checks on the built path (leaf → root):
  1. issuer name + signature for every link
  2. validity window of every certificate, anchors included
  3. every issuer is a CA (basicConstraints) allowed to sign certificates (keyUsage)
  4. pathLenConstraint of every issuer
  5. every critical extension is one this module processes

The one policy exception: a path that ends in a self-signed certificate the
trust store does not contain is accepted when `allow_self_signed_root` is set.
All other checks still apply to such a path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm

from payreq_verifier.domain.models import (
    CertificateChain,
    PathError,
    TrustStore,
    VerificationPolicy,
)
from payreq_verifier.railway.failure import Rejection
from payreq_verifier.railway.result import Result

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class CertificationPath:
    """A built path, leaf first. `anchored` is False for an untrusted self-signed terminus."""

    certificates: tuple[x509.Certificate, ...]
    anchored: bool

    @property
    def root(self) -> x509.Certificate:
        return self.certificates[-1]


def _subject(certificate: x509.Certificate) -> str:
    return certificate.subject.rfc4514_string()


def _reject(error: PathError, certificate: x509.Certificate) -> Result[CertificationPath]:
    return Result.failure(
        Rejection.CHAIN_VALIDATION_FAILED,
        f"{error.value}: {_subject(certificate)}",
        detail=error,
    )


def _is_issued_by(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        certificate.verify_directly_issued_by(issuer)
    except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError):
        return False
    return True


def _is_self_signed(certificate: x509.Certificate) -> bool:
    return certificate.subject == certificate.issuer and _is_issued_by(certificate, certificate)


# ─────────────────────── Path building ───────────────────────


def build_path(
    chain: CertificateChain,
    trust_store: TrustStore,
    max_depth: int,
) -> Result[CertificationPath]:
    """
    Link the leaf to a trust anchor through the bundled intermediates.

    `max_depth` bounds the number of certificates in the path, anchor included.
    """
    path = [chain.leaf]
    available = list(chain.intermediates)
    current = chain.leaf

    if trust_store.contains(current):
        return Result.success(CertificationPath(tuple(path), anchored=True))

    while True:
        trusted = trust_store.issuers_named(current.issuer)
        anchor = next((c for c in trusted if _is_issued_by(current, c)), None)
        if anchor is not None:
            if len(path) >= max_depth:
                return _reject(PathError.CHAIN_TOO_LONG, chain.leaf)
            path.append(anchor)
            return Result.success(CertificationPath(tuple(path), anchored=True))

        if current.subject == current.issuer:
            if _is_issued_by(current, current):
                return Result.success(CertificationPath(tuple(path), anchored=False))
            return _reject(PathError.CERT_SIGNATURE_FAILURE, current)

        if len(path) >= max_depth:
            return _reject(PathError.CHAIN_TOO_LONG, chain.leaf)

        named = [c for c in available if c.subject == current.issuer]
        issuer = next((c for c in named if _is_issued_by(current, c)), None)
        if issuer is None:
            if trusted or named:
                return _reject(PathError.CERT_SIGNATURE_FAILURE, current)
            return _reject(PathError.UNABLE_TO_GET_ISSUER, current)

        available.remove(issuer)
        path.append(issuer)
        current = issuer


# ─────────────────────── Path checks ───────────────────────


def _check_validity(path: CertificationPath, now: datetime) -> Result[CertificationPath]:
    for certificate in path.certificates:
        if now < certificate.not_valid_before_utc:
            return _reject(PathError.CERT_NOT_YET_VALID, certificate)
        if now > certificate.not_valid_after_utc:
            return _reject(PathError.CERT_HAS_EXPIRED, certificate)
    return Result.success(path)


def _extension[E: x509.ExtensionType](certificate: x509.Certificate, kind: type[E]) -> E | None:
    try:
        return certificate.extensions.get_extension_for_class(kind).value
    except x509.ExtensionNotFound:
        return None


def _check_issuers(path: CertificationPath) -> Result[CertificationPath]:
    """CA flag, keyCertSign and pathLenConstraint for every certificate above the leaf."""
    last = len(path.certificates) - 1
    for depth, issuer in enumerate(path.certificates[1:], start=1):
        constraints = _extension(issuer, x509.BasicConstraints)
        if constraints is None:
            # A root without basicConstraints is trusted by being the anchor.
            if depth != last:
                return _reject(PathError.INVALID_CA, issuer)
        else:
            if not constraints.ca:
                return _reject(PathError.INVALID_CA, issuer)
            if constraints.path_length is not None and depth - 1 > constraints.path_length:
                return _reject(PathError.PATH_LENGTH_EXCEEDED, issuer)

        usage = _extension(issuer, x509.KeyUsage)
        if usage is not None and not usage.key_cert_sign:
            return _reject(PathError.KEY_USAGE_NO_CERTSIGN, issuer)
    return Result.success(path)


# Critical extensions outside this set (name or policy constraints, among
# others) are not enforced here, so a path carrying one is rejected.
_PROCESSED_EXTENSIONS: tuple[type[x509.ExtensionType], ...] = (
    x509.BasicConstraints,
    x509.KeyUsage,
    x509.ExtendedKeyUsage,
    x509.SubjectAlternativeName,
    x509.SubjectKeyIdentifier,
    x509.AuthorityKeyIdentifier,
)


def _check_critical_extensions(path: CertificationPath) -> Result[CertificationPath]:
    for certificate in path.certificates:
        for extension in certificate.extensions:
            if extension.critical and not isinstance(extension.value, _PROCESSED_EXTENSIONS):
                return _reject(PathError.UNHANDLED_CRITICAL_EXTENSION, certificate)
    return Result.success(path)


def _check_anchoring(path: CertificationPath, policy: VerificationPolicy) -> Result[CertificationPath]:
    if path.anchored:
        return Result.success(path)
    if not policy.allow_self_signed_root:
        return _reject(PathError.SELF_SIGNED_ROOT_UNTRUSTED, path.root)
    log.info(
        "chain.self_signed_root_allowed",
        root=_subject(path.root),
        reason="allow_self_signed_root is set",
    )
    return Result.success(path)


def validate_chain(
    chain: CertificateChain,
    trust_store: TrustStore,
    policy: VerificationPolicy,
    now: datetime,
) -> Result[CertificateChain]:
    """
    Validate `chain` against `trust_store` at time `now`.

    Returns the chain unchanged on success. Failures are
    CHAIN_VALIDATION_FAILED with the PathError as `detail`, except malformed
    extensions discovered while checking, which carry the parse error.
    """
    return (
        Result.from_computation(
            lambda: (
                build_path(chain, trust_store, policy.max_chain_depth)
                .flat_map(lambda path: _check_anchoring(path, policy))
                .flat_map(lambda path: _check_validity(path, now))
                .flat_map(_check_issuers)
                .flat_map(_check_critical_extensions)
            ),
            Rejection.CHAIN_VALIDATION_FAILED,
            "Certificate path could not be validated",
        )
        .flat_map(lambda checked: checked)
        .peek(
            lambda path: log.debug(
                "chain.validated",
                depth=len(path.certificates),
                root=_subject(path.root),
                anchored=path.anchored,
            )
        )
        .map(lambda _: chain)
    )


class X509ChainValidator:
    """Implements the ChainValidator port with an explicit VerificationPolicy."""

    def __init__(self, policy: VerificationPolicy | None = None) -> None:
        self._policy = policy or VerificationPolicy()

    def validate(
        self,
        chain: CertificateChain,
        trust_store: TrustStore,
        now: datetime,
    ) -> Result[CertificateChain]:
        return validate_chain(chain, trust_store, self._policy, now)
