"""
BIP70 protobuf codec — PaymentRequest / PaymentDetails / X509Certificates.

Adapter layer — implements the EnvelopeDecoder port using:
  - protobuf: wire-format parsing and deterministic re-serialization

The message classes are built at import time from a FileDescriptorProto in a
private descriptor pool, so no protoc-generated module is needed and the
`payments` package never collides with another copy in the default pool.

Decoding pipeline:
  raw bytes
    → PaymentRequest.ParseFromString()         (MALFORMED_ENVELOPE)
    → payment_details_version <= 1             (UNSUPPORTED_VERSION)
    → PaymentDetails.ParseFromString()         (MALFORMED_DETAILS)
    → DecodedPaymentRequest (domain model)
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, Message

from payreq_verifier.domain.models import (
    DecodedPaymentRequest,
    PaymentDetails,
    PaymentOutput,
    SignedEnvelope,
)
from payreq_verifier.railway.failure import Rejection
from payreq_verifier.railway.result import Result

log = structlog.get_logger()

MAX_DETAILS_VERSION = 1

# ─────────────────────── Schema ───────────────────────

_Field = descriptor_pb2.FieldDescriptorProto


def _field(
    name: str,
    number: int,
    kind: int,
    label: int = _Field.LABEL_OPTIONAL,
    default: str | None = None,
    type_name: str | None = None,
) -> _Field:
    field = _Field(name=name, number=number, type=kind, label=label)  # type: ignore[arg-type]
    if default is not None:
        field.default_value = default
    if type_name is not None:
        field.type_name = type_name
    return field


def _schema() -> descriptor_pb2.FileDescriptorProto:
    """The BIP70 `payments` package (proto2) minus the Payment/PaymentACK messages."""
    output = descriptor_pb2.DescriptorProto(
        name="Output",
        field=[
            _field("amount", 1, _Field.TYPE_UINT64, default="0"),
            _field("script", 2, _Field.TYPE_BYTES, _Field.LABEL_REQUIRED),
        ],
    )
    details = descriptor_pb2.DescriptorProto(
        name="PaymentDetails",
        field=[
            _field("network", 1, _Field.TYPE_STRING, default="main"),
            _field("outputs", 2, _Field.TYPE_MESSAGE, _Field.LABEL_REPEATED, type_name=".payments.Output"),
            _field("time", 3, _Field.TYPE_UINT64, _Field.LABEL_REQUIRED),
            _field("expires", 4, _Field.TYPE_UINT64),
            _field("memo", 5, _Field.TYPE_STRING),
            _field("payment_url", 6, _Field.TYPE_STRING),
            _field("merchant_data", 7, _Field.TYPE_BYTES),
        ],
    )
    request = descriptor_pb2.DescriptorProto(
        name="PaymentRequest",
        field=[
            _field("payment_details_version", 1, _Field.TYPE_UINT32, default="1"),
            _field("pki_type", 2, _Field.TYPE_STRING, default="none"),
            _field("pki_data", 3, _Field.TYPE_BYTES),
            _field("serialized_payment_details", 4, _Field.TYPE_BYTES, _Field.LABEL_REQUIRED),
            _field("signature", 5, _Field.TYPE_BYTES),
        ],
    )
    certificates = descriptor_pb2.DescriptorProto(
        name="X509Certificates",
        field=[_field("certificate", 1, _Field.TYPE_BYTES, _Field.LABEL_REPEATED)],
    )
    return descriptor_pb2.FileDescriptorProto(
        name="payreq_verifier/paymentrequest.proto",
        package="payments",
        syntax="proto2",
        message_type=[output, details, request, certificates],
    )


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_schema().SerializeToString())


def _message_class(name: str) -> type[Message]:
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"payments.{name}"))


PaymentRequestMessage = _message_class("PaymentRequest")
PaymentDetailsMessage = _message_class("PaymentDetails")
OutputMessage = _message_class("Output")
X509CertificatesMessage = _message_class("X509Certificates")


def _parse(message_class: type[Message], data: bytes) -> Message:
    """Parse `data` strictly: wire errors and missing required fields both raise DecodeError."""
    message = message_class()
    message.ParseFromString(data)
    if not message.IsInitialized():
        missing = ", ".join(message.FindInitializationErrors())
        raise DecodeError(f"{message_class.DESCRIPTOR.name} is missing required fields: {missing}")
    return message


# ─────────────────────── Decoding ───────────────────────


def _envelope_from_message(message: Message, encoded: bytes) -> SignedEnvelope:
    return SignedEnvelope(
        pki_type=message.pki_type,
        pki_data=message.pki_data,
        serialized_details=message.serialized_payment_details,
        signature=message.signature,
        details_version=message.payment_details_version,
        encoded=encoded,
    )


def _details_from_message(message: Message) -> PaymentDetails:
    return PaymentDetails(
        outputs=tuple(PaymentOutput(script=o.script, amount=o.amount) for o in message.outputs),
        time=message.time,
        network=message.network,
        expires=message.expires if message.HasField("expires") else None,
        memo=message.memo if message.HasField("memo") else None,
        payment_url=message.payment_url if message.HasField("payment_url") else None,
        merchant_data=message.merchant_data if message.HasField("merchant_data") else None,
    )


def decode_envelope(raw: bytes) -> Result[SignedEnvelope]:
    """Decode the outer PaymentRequest message."""
    return Result.from_computation(
        lambda: _envelope_from_message(_parse(PaymentRequestMessage, raw), raw),
        Rejection.MALFORMED_ENVELOPE,
        "Error parsing payment request",
    )


def decode_details(serialized_details: bytes) -> Result[PaymentDetails]:
    """Decode the inner PaymentDetails message."""
    return Result.from_computation(
        lambda: _details_from_message(_parse(PaymentDetailsMessage, serialized_details)),
        Rejection.MALFORMED_DETAILS,
        "Error parsing payment details",
    )


def decode_payment_request(raw: bytes) -> Result[DecodedPaymentRequest]:
    """
    Decode a serialized PaymentRequest and the PaymentDetails it carries.

    Rejects up-version details before parsing them. If the details fail to
    parse, the already decoded envelope is dropped with the failure.
    """
    return (
        decode_envelope(raw)
        .ensure(
            lambda envelope: envelope.details_version <= MAX_DETAILS_VERSION,
            Rejection.UNSUPPORTED_VERSION,
            "Received up-version payment details",
        )
        .flat_map(
            lambda envelope: decode_details(envelope.serialized_details).map(
                lambda details: DecodedPaymentRequest(envelope=envelope, details=details)
            )
        )
        .peek(
            lambda request: log.debug(
                "decode.complete",
                pki_type=request.envelope.pki_type,
                details_version=request.envelope.details_version,
                outputs=len(request.details.outputs),
            )
        )
    )


def decode_certificate_bundle(pki_data: bytes) -> list[bytes]:
    """Decode X509Certificates into DER blobs, leaf first. Raises DecodeError."""
    return list(_parse(X509CertificatesMessage, pki_data).certificate)


# ─────────────────────── Encoding ───────────────────────


def _envelope_to_message(envelope: SignedEnvelope) -> Message:
    message = PaymentRequestMessage()
    message.payment_details_version = envelope.details_version
    message.pki_type = envelope.pki_type
    message.pki_data = envelope.pki_data
    message.serialized_payment_details = envelope.serialized_details
    message.signature = envelope.signature
    return message


def canonical_signing_bytes(envelope: SignedEnvelope) -> bytes:
    """
    The bytes a PaymentRequest signature covers: the message with `signature`
    set to the empty string.

    A received envelope is re-serialized from the bytes it was decoded from,
    so field presence and unknown fields match what the merchant signed.
    """
    if envelope.encoded:
        message = _parse(PaymentRequestMessage, envelope.encoded)
    else:
        message = _envelope_to_message(envelope)
    message.signature = b""
    return message.SerializeToString()


def encode_payment_request(envelope: SignedEnvelope) -> bytes:
    return _envelope_to_message(envelope).SerializeToString()


def encode_payment_details(details: PaymentDetails) -> bytes:
    message = PaymentDetailsMessage()
    if details.network != "main":
        message.network = details.network
    for output in details.outputs:
        entry = message.outputs.add()
        entry.amount = output.amount
        entry.script = output.script
    message.time = details.time
    if details.expires is not None:
        message.expires = details.expires
    if details.memo is not None:
        message.memo = details.memo
    if details.payment_url is not None:
        message.payment_url = details.payment_url
    if details.merchant_data is not None:
        message.merchant_data = details.merchant_data
    return message.SerializeToString()


def encode_certificate_bundle(certificates: Iterable[bytes]) -> bytes:
    message = X509CertificatesMessage()
    message.certificate.extend(certificates)
    return message.SerializeToString()


# ─────────────────────── Port implementation ───────────────────────


class ProtobufEnvelopeDecoder:
    """Implements the EnvelopeDecoder port with the BIP70 protobuf schema."""

    def decode(self, raw: bytes) -> Result[DecodedPaymentRequest]:
        return decode_payment_request(raw)
