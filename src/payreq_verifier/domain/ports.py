"""
Ports — Protocol-based interfaces for the verification stages.

The pipeline depends on these contracts only; the default implementations
live in payreq_verifier.adapters. Each port returns a Result so a stage
either hands a value to the next one or rejects the whole request.

  EnvelopeDecoder → ChainLoader → ChainValidator → SignatureVerifier → IdentityExtractor
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from cryptography import x509

from payreq_verifier.domain.models import (
    CertificateChain,
    DecodedPaymentRequest,
    SignedEnvelope,
    TrustStore,
)
from payreq_verifier.railway.result import Result


@runtime_checkable
class EnvelopeDecoder(Protocol):
    """Port: decode the serialized PaymentRequest and its PaymentDetails."""

    def decode(self, raw: bytes) -> Result[DecodedPaymentRequest]: ...


@runtime_checkable
class ChainLoader(Protocol):
    """
    Port: turn pki_type/pki_data into a CertificateChain.

    Rejects unsigned or unknown pki_type values, undecodable bundles,
    certificates outside their validity window at `now` and distrusted
    certificates.
    """

    def load(self, pki_type: str, pki_data: bytes, now: datetime) -> Result[CertificateChain]: ...


@runtime_checkable
class ChainValidator(Protocol):
    """Port: validate the chain's path up to an anchor in `trust_store`."""

    def validate(
        self,
        chain: CertificateChain,
        trust_store: TrustStore,
        now: datetime,
    ) -> Result[CertificateChain]: ...


@runtime_checkable
class SignatureVerifier(Protocol):
    """Port: verify the envelope signature with the leaf certificate's key."""

    def verify(self, envelope: SignedEnvelope, chain: CertificateChain) -> Result[CertificateChain]: ...


@runtime_checkable
class IdentityExtractor(Protocol):
    """Port: read the merchant name from the validated leaf certificate."""

    def extract(self, leaf: x509.Certificate) -> Result[str]: ...
