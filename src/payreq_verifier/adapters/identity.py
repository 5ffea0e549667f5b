"""Merchant identity — the common name of the validated leaf certificate."""

from __future__ import annotations

from cryptography import x509
from cryptography.x509.oid import NameOID

from payreq_verifier.railway.failure import Rejection
from payreq_verifier.railway.result import Result


def extract_common_name(leaf: x509.Certificate) -> Result[str]:
    """First subject CN of `leaf`; absent or empty is MISSING_COMMON_NAME."""
    attributes = leaf.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    name = attributes[0].value if attributes else None
    if isinstance(name, bytes):
        name = name.decode("utf-8", errors="replace")
    if not name:
        return Result.failure(Rejection.MISSING_COMMON_NAME, "Bad certificate, missing common name")
    return Result.success(name)


class SubjectCommonNameExtractor:
    """Implements the IdentityExtractor port."""

    def extract(self, leaf: x509.Certificate) -> Result[str]:
        return extract_common_name(leaf)
