"""
payreq_verifier — BIP70 payment request verification.

Decodes a signed PaymentRequest, validates its X.509 certificate chain
against a caller-supplied trust store, verifies the merchant's signature
and returns the verified merchant name together with the requested outputs.

Built on Railway-Oriented Programming: every stage returns a Result and the
first rejection short-circuits the rest.
"""

__version__ = "0.1.0"
