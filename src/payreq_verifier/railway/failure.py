"""
Failure description — structured rejection information for the failure track.

Every way a payment request can be rejected is a member of `Rejection`.
Members are grouped by the verification stage that produces them, so a
caller can tell a malformed message apart from an untrusted merchant
without string matching.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Optional


@unique
class Rejection(Enum):
    """
    Structured rejection reasons, one per distinct failure.

    The value is "<stage>.<reason>"; `stage` exposes the first half:
    - decode:    MALFORMED_ENVELOPE, UNSUPPORTED_VERSION, MALFORMED_DETAILS
    - chain:     UNTRUSTED_PKI_TYPE, MALFORMED_CERTIFICATE_BUNDLE, CERTIFICATE_EXPIRED,
                 CERTIFICATE_DISTRUSTED, EMPTY_CHAIN, CHAIN_VALIDATION_FAILED
    - signature: BAD_SIGNATURE
    - identity:  MISSING_COMMON_NAME
    """

    MALFORMED_ENVELOPE = "decode.malformed_envelope"
    """Outer PaymentRequest message could not be parsed."""

    UNSUPPORTED_VERSION = "decode.unsupported_version"
    """payment_details_version is newer than this verifier understands."""

    MALFORMED_DETAILS = "decode.malformed_details"
    """serialized_payment_details could not be parsed."""

    UNTRUSTED_PKI_TYPE = "chain.untrusted_pki_type"
    """pki_type is "none" or not a recognized x509 signing scheme."""

    MALFORMED_CERTIFICATE_BUNDLE = "chain.malformed_certificate_bundle"
    """pki_data or one of its certificates is not valid DER."""

    CERTIFICATE_EXPIRED = "chain.certificate_expired"
    """A bundled certificate is expired or not yet valid."""

    CERTIFICATE_DISTRUSTED = "chain.certificate_distrusted"
    """A bundled certificate is on the caller's distrust list."""

    EMPTY_CHAIN = "chain.empty"
    """pki_data holds no certificates."""

    CHAIN_VALIDATION_FAILED = "chain.validation_failed"
    """Path validation to a trusted root failed; detail carries the PathError."""

    BAD_SIGNATURE = "signature.bad_signature"
    """The request signature does not verify against the leaf public key."""

    MISSING_COMMON_NAME = "identity.missing_common_name"
    """The leaf certificate subject has no usable common name."""

    @property
    def stage(self) -> str:
        return self.value.split(".", 1)[0]


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying a rejection code, message,
    optional cause, optional structured detail and a timestamp.

    >>> desc = FailureDescription(Rejection.EMPTY_CHAIN, "no certificates in pki_data")
    >>> desc.code.stage
    'chain'
    """

    code: Rejection
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    detail: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted cause, if there is one."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__)
        )
        return f"{self.message}\n{tb}"
