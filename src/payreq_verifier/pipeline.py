"""
Pipeline — the verification railway for one payment request.

Domain layer — the stages are injected via ports (Protocol interfaces);
this module only decides their order and what flows between them:

  decode(raw)
    → load(pki_type, pki_data, now)
      → validate(chain, trust_store, now)
        → verify(envelope, chain)
          → extract(leaf)
            → VerifiedPaymentRequest

Each stage returns Result[T]. The first Failure short-circuits the rest, so
no merchant name or outputs are ever produced for a rejected request.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from payreq_verifier.adapters.chain_loader import X509ChainLoader
from payreq_verifier.adapters.chain_validator import X509ChainValidator
from payreq_verifier.adapters.identity import SubjectCommonNameExtractor
from payreq_verifier.adapters.protobuf_codec import ProtobufEnvelopeDecoder
from payreq_verifier.adapters.signature import LeafKeySignatureVerifier
from payreq_verifier.domain.models import (
    CertificateChain,
    DecodedPaymentRequest,
    TrustStore,
    VerificationPolicy,
    VerifiedPaymentRequest,
)
from payreq_verifier.domain.ports import (
    ChainLoader,
    ChainValidator,
    EnvelopeDecoder,
    IdentityExtractor,
    SignatureVerifier,
)
from payreq_verifier.railway.failure import FailureDescription
from payreq_verifier.railway.result import Result

log = structlog.get_logger()


def _authenticate(
    request: DecodedPaymentRequest,
    trust_store: TrustStore,
    now: datetime,
    chain_loader: ChainLoader,
    chain_validator: ChainValidator,
    signature_verifier: SignatureVerifier,
    identity_extractor: IdentityExtractor,
) -> Result[VerifiedPaymentRequest]:
    """Chain stages 2-5 for an already decoded request."""
    envelope = request.envelope

    def _identify(chain: CertificateChain) -> Result[VerifiedPaymentRequest]:
        return identity_extractor.extract(chain.leaf).map(
            lambda merchant: VerifiedPaymentRequest(
                merchant=merchant,
                details=request.details,
                pki_type=chain.pki_type,
            )
        )

    return (
        chain_loader.load(envelope.pki_type, envelope.pki_data, now)
        .flat_map(lambda chain: chain_validator.validate(chain, trust_store, now))
        .flat_map(lambda chain: signature_verifier.verify(envelope, chain))
        .flat_map(_identify)
    )


def _as_utc(now: datetime) -> datetime:
    return now.replace(tzinfo=UTC) if now.tzinfo is None else now


def _log_rejection(error: FailureDescription) -> None:
    log.warning(
        "verify.rejected",
        stage=error.code.stage,
        reason=error.code.value,
        detail=getattr(error.detail, "name", error.detail),
        error=error.message,
    )


def run_verification(
    raw: bytes,
    trust_store: TrustStore,
    *,
    decoder: EnvelopeDecoder,
    chain_loader: ChainLoader,
    chain_validator: ChainValidator,
    signature_verifier: SignatureVerifier,
    identity_extractor: IdentityExtractor,
    now: datetime,
) -> Result[VerifiedPaymentRequest]:
    """
    Verify one serialized payment request.

    Returns Result[VerifiedPaymentRequest] on success, or the Failure of the
    first stage that rejected the request. A naive `now` is taken as UTC.
    """
    now = _as_utc(now)
    return (
        decoder.decode(raw)
        .flat_map(
            lambda request: _authenticate(
                request,
                trust_store,
                now,
                chain_loader,
                chain_validator,
                signature_verifier,
                identity_extractor,
            )
        )
        .peek(
            lambda verified: log.info(
                "verify.accepted",
                merchant=verified.merchant,
                pki_type=verified.pki_type.value,
                outputs=len(verified.outputs),
            )
        )
        .peek_failure(_log_rejection)
    )


class PaymentRequestVerifier:
    """
    Default wiring of the verification stages.

    Holds only read-only collaborators (trust store, policy), so one
    instance can serve concurrent verifications.

        verifier = PaymentRequestVerifier(TrustStore.from_pem(pem), VerificationPolicy())
        result = verifier.verify(raw)
        if result:
            print(result.value().merchant)
    """

    def __init__(self, trust_store: TrustStore, policy: VerificationPolicy | None = None) -> None:
        self._trust_store = trust_store
        self._policy = policy or VerificationPolicy()
        self._decoder = ProtobufEnvelopeDecoder()
        self._chain_loader = X509ChainLoader(self._policy.distrust)
        self._chain_validator = X509ChainValidator(self._policy)
        self._signature_verifier = LeafKeySignatureVerifier()
        self._identity_extractor = SubjectCommonNameExtractor()

    @property
    def policy(self) -> VerificationPolicy:
        return self._policy

    def verify(self, raw: bytes, now: datetime | None = None) -> Result[VerifiedPaymentRequest]:
        """Verify `raw` at `now` (default: the current time). Naive datetimes are taken as UTC."""
        return run_verification(
            raw,
            self._trust_store,
            decoder=self._decoder,
            chain_loader=self._chain_loader,
            chain_validator=self._chain_validator,
            signature_verifier=self._signature_verifier,
            identity_extractor=self._identity_extractor,
            now=now or datetime.now(UTC),
        )
