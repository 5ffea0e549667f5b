"""
Railway-oriented error handling for payment request verification.

    from payreq_verifier.railway import Rejection, Result

    def require_signature(envelope: SignedEnvelope) -> Result[SignedEnvelope]:
        if not envelope.signature:
            return Result.failure(Rejection.BAD_SIGNATURE, "signature is empty")
        return Result.success(envelope)
"""

from payreq_verifier.railway.assertions import ResultAssertions
from payreq_verifier.railway.failure import FailureDescription, Rejection
from payreq_verifier.railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "Rejection",
    "FailureDescription",
    "ResultAssertions",
]
