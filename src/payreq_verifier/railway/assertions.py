"""
Test assertions for Result values.

    def test_rejects_unsigned_request():
        result = verifier.verify(raw)
        ResultAssertions.assert_failure(result, Rejection.UNTRUSTED_PKI_TYPE)
"""

from __future__ import annotations

from typing import Any, TypeVar

from payreq_verifier.railway.failure import FailureDescription, Rejection
from payreq_verifier.railway.result import Result

T = TypeVar("T")


class ResultAssertions:
    """Expressive test assertions for Result values."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert the Result is a Success and return the value."""
        context = f" — {message}" if message else ""
        assert result.is_success(), (
            f"Expected Success but got Failure("
            f"{result.error().code.value}: {result.error().message!r}){context}"
        )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: Rejection | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert the Result is a Failure, optionally with a specific rejection code."""
        context = f" — {message}" if message else ""
        assert result.is_failure(), (
            f"Expected Failure but got Success({result.value()!r}){context}"
        )
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected rejection {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error

    @staticmethod
    def assert_failure_detail(result: Result[T], expected_detail: Any) -> None:
        """Assert the Failure carries the given structured detail."""
        error = ResultAssertions.assert_failure(result)
        assert error.detail == expected_detail, (
            f"Expected failure detail {expected_detail!r} but got {error.detail!r}: {error.message!r}"
        )

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        """Assert that the failure message contains the given substring (case-insensitive)."""
        error = ResultAssertions.assert_failure(result)
        assert substring.lower() in error.message.lower(), (
            f"Expected failure message to contain {substring!r} "
            f"but message was: {error.message!r}"
        )
