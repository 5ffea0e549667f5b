"""
Domain models — immutable values produced and consumed by the verification stages.

All models are frozen dataclasses. Certificate objects referenced here are
created by one verification call and never shared with another; the only
long-lived certificate holder is the caller-owned TrustStore.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique

from cryptography import x509
from cryptography.hazmat.primitives import hashes


@unique
class PkiType(Enum):
    """Signature schemes a PaymentRequest can declare in its pki_type field."""

    NONE = "none"
    X509_SHA256 = "x509+sha256"
    X509_SHA1 = "x509+sha1"

    @classmethod
    def from_wire(cls, value: str) -> PkiType | None:
        """Map the raw pki_type string to a member, or None if unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_signed(self) -> bool:
        return self is not PkiType.NONE

    def hash_algorithm(self) -> hashes.HashAlgorithm:
        match self:
            case PkiType.X509_SHA256:
                return hashes.SHA256()
            case PkiType.X509_SHA1:
                return hashes.SHA1()  # noqa: S303
        raise ValueError(f"pki_type {self.value!r} has no digest algorithm")


@unique
class PathError(Enum):
    """Why certificate path validation failed (detail of CHAIN_VALIDATION_FAILED)."""

    UNABLE_TO_GET_ISSUER = "unable to get issuer certificate"
    SELF_SIGNED_ROOT_UNTRUSTED = "self-signed root certificate is not trusted"
    CERT_SIGNATURE_FAILURE = "certificate signature failure"
    CERT_NOT_YET_VALID = "certificate is not yet valid"
    CERT_HAS_EXPIRED = "certificate has expired"
    INVALID_CA = "issuer is not a CA certificate"
    KEY_USAGE_NO_CERTSIGN = "issuer key usage does not include certificate signing"
    PATH_LENGTH_EXCEEDED = "path length constraint exceeded"
    UNHANDLED_CRITICAL_EXTENSION = "unhandled critical extension"
    CHAIN_TOO_LONG = "certificate chain too long"


# ─────────────────────── Wire values ───────────────────────


@dataclass(frozen=True, slots=True)
class PaymentOutput:
    """One (script, amount) pair a payment request asks to be paid to."""

    script: bytes
    amount: int = 0


@dataclass(frozen=True, slots=True)
class PaymentDetails:
    """
    Decoded serialized_payment_details.

    `time` and `expires` are Unix timestamps as sent by the merchant.
    """

    outputs: tuple[PaymentOutput, ...]
    time: int
    network: str = "main"
    expires: int | None = None
    memo: str | None = None
    payment_url: str | None = None
    merchant_data: bytes | None = field(default=None, repr=False)

    def has_expired(self, now: datetime | None = None) -> bool:
        """True when the merchant set an expiry time and it has passed."""
        if not self.expires:
            return False
        moment = now or datetime.now(UTC)
        return moment.timestamp() > self.expires


@dataclass(frozen=True, slots=True)
class SignedEnvelope:
    """The outer PaymentRequest message, as received."""

    pki_type: str
    pki_data: bytes = field(repr=False)
    serialized_details: bytes = field(repr=False)
    signature: bytes = field(repr=False)
    details_version: int = 1
    # Bytes the envelope was decoded from; empty for locally built envelopes.
    encoded: bytes = field(default=b"", repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class DecodedPaymentRequest:
    """Envelope and details that decoded successfully. Nothing here is trusted yet."""

    envelope: SignedEnvelope
    details: PaymentDetails


# ─────────────────────── Certificates ───────────────────────


@dataclass(frozen=True, slots=True)
class CertificateChain:
    """
    Certificates from pki_data, leaf first as received.

    `intermediates` keeps the received order; the validator decides which of
    them actually link the leaf to a trusted root.
    """

    pki_type: PkiType
    leaf: x509.Certificate
    intermediates: tuple[x509.Certificate, ...] = ()

    @property
    def certificates(self) -> tuple[x509.Certificate, ...]:
        return (self.leaf, *self.intermediates)


class TrustStore:
    """
    Read-only collection of trusted root certificates owned by the caller.

    Verification only ever reads from the store, so one instance can be
    shared by concurrent verifications as long as nobody rebuilds it meanwhile.
    """

    __slots__ = ("_anchors", "_by_subject")

    def __init__(self, anchors: Iterable[x509.Certificate]) -> None:
        self._anchors: tuple[x509.Certificate, ...] = tuple(anchors)
        by_subject: dict[bytes, list[x509.Certificate]] = {}
        for anchor in self._anchors:
            by_subject.setdefault(anchor.subject.public_bytes(), []).append(anchor)
        self._by_subject = {k: tuple(v) for k, v in by_subject.items()}

    @classmethod
    def from_pem(cls, data: bytes) -> TrustStore:
        """Build a store from a PEM bundle (one or more CERTIFICATE blocks)."""
        return cls(x509.load_pem_x509_certificates(data))

    @property
    def anchors(self) -> tuple[x509.Certificate, ...]:
        return self._anchors

    def contains(self, certificate: x509.Certificate) -> bool:
        """True if this exact certificate is a trust anchor."""
        return any(anchor == certificate for anchor in self.issuers_named(certificate.subject))

    def issuers_named(self, name: x509.Name) -> tuple[x509.Certificate, ...]:
        """Anchors whose subject equals `name` (candidate issuers)."""
        return self._by_subject.get(name.public_bytes(), ())

    def __len__(self) -> int:
        return len(self._anchors)

    def __repr__(self) -> str:
        return f"TrustStore(anchors={len(self._anchors)})"


def _normalize_hex(value: str) -> str:
    return value.replace(":", "").replace(" ", "").lower().removeprefix("0x")


@dataclass(frozen=True, slots=True)
class DistrustList:
    """
    Certificates the caller refuses to trust even if they chain to a root.

    Entries are hex strings: SHA-256 fingerprints of the DER certificate, or
    serial numbers. Colons, spaces and a 0x prefix are ignored.
    """

    fingerprints: frozenset[str] = frozenset()
    serial_numbers: frozenset[str] = frozenset()

    @classmethod
    def of(
        cls,
        fingerprints: Iterable[str] = (),
        serial_numbers: Iterable[str] = (),
    ) -> DistrustList:
        return cls(
            fingerprints=frozenset(_normalize_hex(f) for f in fingerprints),
            serial_numbers=frozenset(_normalize_hex(s).lstrip("0") or "0" for s in serial_numbers),
        )

    def is_distrusted(self, certificate: x509.Certificate) -> bool:
        if self.fingerprints and certificate.fingerprint(hashes.SHA256()).hex() in self.fingerprints:
            return True
        return f"{certificate.serial_number:x}" in self.serial_numbers

    def __len__(self) -> int:
        return len(self.fingerprints) + len(self.serial_numbers)


# ─────────────────────── Policy & outcome ───────────────────────


@dataclass(frozen=True, slots=True)
class VerificationPolicy:
    """
    Caller-supplied knobs for chain validation.

    `allow_self_signed_root` accepts a path ending in a self-signed
    certificate that is not in the trust store. Off by default.
    """

    allow_self_signed_root: bool = False
    max_chain_depth: int = 10
    distrust: DistrustList = field(default_factory=DistrustList)


@dataclass(frozen=True, slots=True)
class VerifiedPaymentRequest:
    """A payment request whose merchant identity and content have been verified."""

    merchant: str
    details: PaymentDetails
    pki_type: PkiType

    @property
    def outputs(self) -> tuple[PaymentOutput, ...]:
        return self.details.outputs
