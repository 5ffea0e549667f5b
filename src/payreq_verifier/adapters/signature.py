"""
Payment request signatures — verification with the leaf key, and merchant-side signing.

Adapter layer — implements the SignatureVerifier port using:
  - cryptography (PyCA): RSA PKCS#1 v1.5 and ECDSA over the pki_type digest
  - protobuf codec: canonical bytes (the request with `signature` cleared)

Signer and verifier agree because both hash exactly the bytes returned by
canonical_signing_bytes(); the received signature bytes are never covered
by the signature itself.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from payreq_verifier.adapters.protobuf_codec import (
    canonical_signing_bytes,
    encode_certificate_bundle,
    encode_payment_details,
    encode_payment_request,
)
from payreq_verifier.domain.models import (
    CertificateChain,
    PaymentDetails,
    PkiType,
    SignedEnvelope,
)
from payreq_verifier.railway.failure import Rejection
from payreq_verifier.railway.result import Result

log = structlog.get_logger()

type SigningKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


def _verify(
    public_key: object,
    signature: bytes,
    data: bytes,
    algorithm: hashes.HashAlgorithm,
) -> bool:
    match public_key:
        case rsa.RSAPublicKey():
            public_key.verify(signature, data, padding.PKCS1v15(), algorithm)
        case ec.EllipticCurvePublicKey():
            public_key.verify(signature, data, ec.ECDSA(algorithm))
        case _:
            raise TypeError(f"Unsupported public key type: {type(public_key).__name__}")
    return True


def verify_signature(envelope: SignedEnvelope, chain: CertificateChain) -> Result[CertificateChain]:
    """
    Verify `envelope.signature` over the canonical request bytes with the
    leaf certificate's public key and the digest selected by pki_type.
    """
    if not envelope.signature:
        return Result.failure(Rejection.BAD_SIGNATURE, "Bad signature, payment request signature is empty")
    return (
        Result.from_computation(
            lambda: _verify(
                chain.leaf.public_key(),
                envelope.signature,
                canonical_signing_bytes(envelope),
                chain.pki_type.hash_algorithm(),
            ),
            Rejection.BAD_SIGNATURE,
            "Bad signature, invalid payment request",
        )
        .peek(lambda _: log.debug("signature.verified", pki_type=chain.pki_type.value))
        .map(lambda _: chain)
    )


class LeafKeySignatureVerifier:
    """Implements the SignatureVerifier port."""

    def verify(self, envelope: SignedEnvelope, chain: CertificateChain) -> Result[CertificateChain]:
        return verify_signature(envelope, chain)


# ─────────────────────── Merchant side ───────────────────────


def _sign(private_key: SigningKey, data: bytes, algorithm: hashes.HashAlgorithm) -> bytes:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), algorithm)
    return private_key.sign(data, ec.ECDSA(algorithm))


def sign_envelope(envelope: SignedEnvelope, private_key: SigningKey) -> SignedEnvelope:
    """Return a copy of `envelope` carrying a signature over its canonical bytes."""
    scheme = PkiType(envelope.pki_type)
    unsigned = replace(envelope, signature=b"", encoded=b"")
    signature = _sign(private_key, canonical_signing_bytes(unsigned), scheme.hash_algorithm())
    return replace(unsigned, signature=signature)


def sign_payment_request(
    details: PaymentDetails,
    certificates: Sequence[bytes],
    private_key: SigningKey,
    pki_type: PkiType = PkiType.X509_SHA256,
) -> bytes:
    """
    Build and sign a serialized PaymentRequest.

    `certificates` are DER blobs, the signing certificate first, followed by
    the intermediates a verifier needs to reach a root.
    """
    envelope = SignedEnvelope(
        pki_type=pki_type.value,
        pki_data=encode_certificate_bundle(certificates),
        serialized_details=encode_payment_details(details),
        signature=b"",
    )
    return encode_payment_request(sign_envelope(envelope, private_key))
