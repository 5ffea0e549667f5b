"""
Application entry point — verify a payment request file from the command line.

Composition root: loads settings, configures logging, builds the trust store
and policy, and hands them to PaymentRequestVerifier.

    payreq-verify request.bip70 --trust-store roots.pem

Exit status: 0 verified, 1 rejected, 2 configuration or I/O error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import structlog
from pydantic import ValidationError

from payreq_verifier import __version__
from payreq_verifier.config import AppSettings
from payreq_verifier.domain.models import VerifiedPaymentRequest
from payreq_verifier.pipeline import PaymentRequestVerifier
from payreq_verifier.railway.failure import FailureDescription

EXIT_VERIFIED = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Log lines go to stderr so the verification report on stdout stays clean.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # main() may run more than once per process (tests); keep loggers re-resolvable.
        cache_logger_on_first_use=False,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payreq-verify",
        description="Verify the merchant signature and certificate chain of a BIP70 payment request.",
    )
    parser.add_argument("request", type=Path, help="serialized PaymentRequest file")
    parser.add_argument(
        "--trust-store",
        type=Path,
        default=None,
        help="PEM bundle of trusted roots (overrides TRUST_STORE_PATH)",
    )
    parser.add_argument(
        "--allow-self-signed-root",
        action="store_true",
        help="accept chains that end in an untrusted self-signed root",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _report_success(verified: VerifiedPaymentRequest) -> int:
    print(f"merchant: {verified.merchant}")  # noqa: T201
    print(f"network: {verified.details.network}")  # noqa: T201
    if verified.details.memo:
        print(f"memo: {verified.details.memo}")  # noqa: T201
    for output in verified.outputs:
        print(f"output: {output.amount} {output.script.hex()}")  # noqa: T201
    return EXIT_VERIFIED


def _report_failure(error: FailureDescription) -> int:
    print(f"rejected: {error.code.value}: {error.message}", file=sys.stderr)  # noqa: T201
    return EXIT_REJECTED


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, verify the request, print the outcome."""
    args = _build_parser().parse_args(argv)

    try:
        settings = AppSettings()
    except ValidationError as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        return EXIT_ERROR

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    policy = settings.to_policy()
    if args.allow_self_signed_root:
        policy = replace(policy, allow_self_signed_root=True)

    try:
        trust_store = settings.load_trust_store(args.trust_store)
        raw = args.request.read_bytes()
    except (OSError, ValueError) as e:
        log.error("app.input_error", error=str(e))
        return EXIT_ERROR

    log.info(
        "app.verifying",
        request=str(args.request),
        anchors=len(trust_store),
        allow_self_signed_root=policy.allow_self_signed_root,
        distrusted=len(policy.distrust),
    )

    result = PaymentRequestVerifier(trust_store, policy).verify(raw)
    return result.either(_report_success, _report_failure)


if __name__ == "__main__":
    sys.exit(main())
