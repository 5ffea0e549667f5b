"""
Unit tests for the BIP70 protobuf codec.

Test categories:
  - Happy path: a merchant-built request decodes into envelope + details
  - Error path: malformed envelope, up-version details, malformed details
  - Canonical bytes: signature cleared, field presence and unknown fields kept
"""

from __future__ import annotations

from dataclasses import replace

from payreq_verifier.adapters.protobuf_codec import (
    PaymentRequestMessage,
    ProtobufEnvelopeDecoder,
    canonical_signing_bytes,
    decode_certificate_bundle,
    decode_payment_request,
    encode_certificate_bundle,
    encode_payment_details,
    encode_payment_request,
)
from payreq_verifier.domain.models import PaymentOutput, SignedEnvelope
from payreq_verifier.railway import Rejection, ResultAssertions
from tests.conftest import P2PKH_SCRIPT, sample_details


def _envelope(**overrides: object) -> SignedEnvelope:
    values: dict[str, object] = {
        "pki_type": "x509+sha256",
        "pki_data": encode_certificate_bundle([b"\x30\x00"]),
        "serialized_details": encode_payment_details(sample_details()),
        "signature": b"\x01\x02\x03",
        "details_version": 1,
    }
    values.update(overrides)
    return SignedEnvelope(**values)  # type: ignore[arg-type]


class TestDecodeHappyPath:
    def test_decodes_envelope_fields(self) -> None:
        """
        GIVEN a serialized request built from known fields
        WHEN decoded
        THEN every envelope field round-trips and `encoded` keeps the raw bytes.
        """
        raw = encode_payment_request(_envelope())

        request = ResultAssertions.assert_success(decode_payment_request(raw))

        assert request.envelope.pki_type == "x509+sha256"
        assert request.envelope.signature == b"\x01\x02\x03"
        assert request.envelope.details_version == 1
        assert request.envelope.encoded == raw

    def test_decodes_details(self) -> None:
        raw = encode_payment_request(_envelope())

        details = ResultAssertions.assert_success(decode_payment_request(raw)).details

        assert details.outputs == (PaymentOutput(script=P2PKH_SCRIPT, amount=150_000),)
        assert details.memo == "Order #1234"
        assert details.network == "main"
        assert details.expires is None
        assert details.merchant_data is None

    def test_keeps_output_order(self) -> None:
        outputs = tuple(PaymentOutput(script=bytes([0x51 + i]), amount=i) for i in range(5))
        raw = encode_payment_request(
            _envelope(serialized_details=encode_payment_details(sample_details(outputs=outputs)))
        )

        details = ResultAssertions.assert_success(decode_payment_request(raw)).details

        assert details.outputs == outputs

    def test_absent_fields_take_protocol_defaults(self) -> None:
        """
        GIVEN a request with only serialized_payment_details set
        WHEN decoded
        THEN pki_type defaults to "none" and the version to 1.
        """
        message = PaymentRequestMessage()
        message.serialized_payment_details = encode_payment_details(sample_details())

        request = ResultAssertions.assert_success(decode_payment_request(message.SerializeToString()))

        assert request.envelope.pki_type == "none"
        assert request.envelope.details_version == 1
        assert request.envelope.signature == b""

    def test_port_implementation_delegates(self) -> None:
        raw = encode_payment_request(_envelope())
        ResultAssertions.assert_success(ProtobufEnvelopeDecoder().decode(raw))


class TestDecodeErrors:
    def test_garbage_is_malformed_envelope(self) -> None:
        result = decode_payment_request(b"\x0a\xff\xff\xff")
        ResultAssertions.assert_failure(result, Rejection.MALFORMED_ENVELOPE)

    def test_missing_required_field_is_malformed_envelope(self) -> None:
        """serialized_payment_details is required."""
        result = decode_payment_request(b"")
        ResultAssertions.assert_failure(result, Rejection.MALFORMED_ENVELOPE)

    def test_up_version_rejected_before_details_are_parsed(self) -> None:
        """
        GIVEN payment_details_version = 2 and undecodable details
        WHEN decoded
        THEN the failure is UNSUPPORTED_VERSION, not MALFORMED_DETAILS.
        """
        raw = encode_payment_request(_envelope(details_version=2, serialized_details=b"\xff\xff"))

        result = decode_payment_request(raw)

        ResultAssertions.assert_failure(result, Rejection.UNSUPPORTED_VERSION)

    def test_version_zero_and_one_accepted(self) -> None:
        for version in (0, 1):
            raw = encode_payment_request(_envelope(details_version=version))
            ResultAssertions.assert_success(decode_payment_request(raw))

    def test_truncated_details_are_malformed(self) -> None:
        raw = encode_payment_request(_envelope(serialized_details=b"\x12\x05\x08"))
        ResultAssertions.assert_failure(decode_payment_request(raw), Rejection.MALFORMED_DETAILS)

    def test_details_missing_time_are_malformed(self) -> None:
        raw = encode_payment_request(_envelope(serialized_details=b""))
        ResultAssertions.assert_failure(decode_payment_request(raw), Rejection.MALFORMED_DETAILS)


class TestCertificateBundle:
    def test_round_trip_keeps_order(self) -> None:
        ders = [b"\x30\x01\x01", b"\x30\x01\x02", b"\x30\x01\x03"]
        assert decode_certificate_bundle(encode_certificate_bundle(ders)) == ders

    def test_empty_bundle(self) -> None:
        assert decode_certificate_bundle(b"") == []


class TestCanonicalSigningBytes:
    def test_signature_is_cleared(self) -> None:
        envelope = _envelope()
        unsigned = replace(envelope, signature=b"")

        assert canonical_signing_bytes(envelope) == encode_payment_request(unsigned)

    def test_received_envelope_uses_received_field_presence(self) -> None:
        """
        GIVEN a request that omits payment_details_version (default 1)
        WHEN canonical bytes are computed from the decoded envelope
        THEN the version is still absent, as it was when the merchant signed.
        """
        message = PaymentRequestMessage()
        message.pki_type = "x509+sha256"
        message.serialized_payment_details = encode_payment_details(sample_details())
        message.signature = b"sig"
        request = ResultAssertions.assert_success(decode_payment_request(message.SerializeToString()))

        canonical = canonical_signing_bytes(request.envelope)

        message.signature = b""
        assert canonical == message.SerializeToString()
        assert canonical != canonical_signing_bytes(replace(request.envelope, encoded=b""))

    def test_unknown_fields_are_kept(self) -> None:
        unknown_field = b"\xa2\x06\x03abc"  # field 100, length-delimited
        raw = encode_payment_request(_envelope()) + unknown_field
        request = ResultAssertions.assert_success(decode_payment_request(raw))

        assert unknown_field in canonical_signing_bytes(request.envelope)
