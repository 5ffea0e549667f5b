"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables
  - Fall back to a .env file
  - Validate types and constraints before any payment request is examined

Settings are read once by the entry point and handed to the core as plain
values (VerificationPolicy, DistrustList, TrustStore); nothing inside the
verification stages looks configuration up on its own.

env_nested_delimiter="__" maps POLICY__ALLOW_SELF_SIGNED_ROOT to
policy.allow_self_signed_root, and so on.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from payreq_verifier.domain.models import DistrustList, TrustStore, VerificationPolicy

# Resolve the .env file relative to the project root (two levels above this file).
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_HEX = re.compile(r"^[0-9a-f]+$")


def _clean_hex(value: str) -> str:
    return value.replace(":", "").replace(" ", "").lower().removeprefix("0x")


class PolicySettings(BaseModel):
    """
    Trust policy for certificate chains.

    allow_self_signed_root is meant for test networks and development
    merchants; it must stay off where real funds are at stake.
    """

    allow_self_signed_root: bool = Field(
        default=False,
        description="Accept chains ending in a self-signed root that is not in the trust store",
    )
    max_chain_depth: int = Field(
        default=10,
        ge=2,
        le=32,
        description="Maximum certificates in a validated path, trust anchor included",
    )
    distrusted_fingerprints: list[str] = Field(
        default_factory=list,
        description="SHA-256 fingerprints (hex) of certificates that are never trusted",
    )
    distrusted_serials: list[str] = Field(
        default_factory=list,
        description="Serial numbers (hex) of certificates that are never trusted",
    )

    @field_validator("distrusted_fingerprints")
    @classmethod
    def validate_fingerprints(cls, values: list[str]) -> list[str]:
        """Reject anything that is not a 32-byte hex digest."""
        cleaned = [_clean_hex(v) for v in values]
        for original, value in zip(values, cleaned, strict=True):
            if len(value) != 64 or not _HEX.match(value):
                raise ValueError(f"Not a SHA-256 fingerprint: {original!r}")
        return cleaned

    @field_validator("distrusted_serials")
    @classmethod
    def validate_serials(cls, values: list[str]) -> list[str]:
        cleaned = [_clean_hex(v) for v in values]
        for original, value in zip(values, cleaned, strict=True):
            if not value or not _HEX.match(value):
                raise ValueError(f"Not a hex serial number: {original!r}")
        return cleaned


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    policy: PolicySettings = Field(default_factory=lambda: PolicySettings())
    trust_store_path: Path | None = Field(
        default=None,
        description="PEM bundle of trusted root certificates",
    )
    log_level: str = Field(default="INFO")

    def to_distrust_list(self) -> DistrustList:
        return DistrustList.of(
            fingerprints=self.policy.distrusted_fingerprints,
            serial_numbers=self.policy.distrusted_serials,
        )

    def to_policy(self) -> VerificationPolicy:
        """The explicit policy value passed into the verifier."""
        return VerificationPolicy(
            allow_self_signed_root=self.policy.allow_self_signed_root,
            max_chain_depth=self.policy.max_chain_depth,
            distrust=self.to_distrust_list(),
        )

    def load_trust_store(self, path: Path | None = None) -> TrustStore:
        """
        Read the PEM trust bundle from `path` or `trust_store_path`.

        Raises ValueError when no path is configured, OSError when the file
        cannot be read.
        """
        source = path or self.trust_store_path
        if source is None:
            raise ValueError("No trust store configured (set TRUST_STORE_PATH or pass --trust-store)")
        return TrustStore.from_pem(source.read_bytes())
