"""
Unit tests for the main module — composition root and CLI.

main() verifies against the wall clock, so these tests issue their own
certificates valid around the current time instead of using the NOW-based
session PKI.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import structlog

from payreq_verifier.main import EXIT_ERROR, EXIT_REJECTED, EXIT_VERIFIED, configure_structlog, main
from tests.conftest import Issued, issue_certificate, sample_details, signed_request


@dataclass(frozen=True)
class LivePki:
    root: Issued
    intermediate: Issued
    merchant: Issued


@pytest.fixture(scope="module")
def live_pki() -> LivePki:
    now = datetime.now(UTC)
    window = {"not_before": now - timedelta(days=1), "not_after": now + timedelta(days=1)}
    root = issue_certificate("Live Root CA", ca=True, **window)
    intermediate = issue_certificate("Live Intermediate CA", issuer=root, ca=True, **window)
    merchant = issue_certificate("shop.example.org", issuer=intermediate, **window)
    return LivePki(root, intermediate, merchant)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TRUST_STORE_PATH", "LOG_LEVEL", "POLICY__ALLOW_SELF_SIGNED_ROOT", "POLICY__MAX_CHAIN_DEPTH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def roots_pem(tmp_path: Path, live_pki: LivePki) -> Path:
    path = tmp_path / "roots.pem"
    path.write_bytes(live_pki.root.pem)
    return path


def _write_request(tmp_path: Path, raw: bytes) -> Path:
    path = tmp_path / "request.bip70"
    path.write_bytes(raw)
    return path


class TestConfigureStructlog:
    """Verify structlog configuration function."""

    def test_configure_structlog_sets_log_level(self) -> None:
        """
        GIVEN log_level="WARNING"
        WHEN configure_structlog is called
        THEN info events are filtered and warnings pass.
        """
        configure_structlog("WARNING")
        logger = structlog.get_logger()
        assert not logger.is_enabled_for(20)
        assert logger.is_enabled_for(30)

    def test_configure_structlog_invalid_level_falls_back(self) -> None:
        """
        GIVEN an invalid log_level string
        WHEN configure_structlog is called
        THEN it falls back to INFO (no crash).
        """
        configure_structlog("NONEXISTENT")
        logger = structlog.get_logger()
        assert logger.is_enabled_for(20)
        assert not logger.is_enabled_for(10)


class TestMain:
    def test_verified_request(
        self, tmp_path: Path, roots_pem: Path, live_pki: LivePki, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """
        GIVEN a request signed by shop.example.org and a trust store holding its root
        WHEN payreq-verify runs
        THEN it prints the merchant and outputs and exits 0.
        """
        raw = signed_request(live_pki.merchant, [live_pki.intermediate], sample_details())
        request = _write_request(tmp_path, raw)

        code = main([str(request), "--trust-store", str(roots_pem)])

        out = capsys.readouterr().out
        assert code == EXIT_VERIFIED
        assert "merchant: shop.example.org" in out
        assert "network: main" in out
        assert "memo: Order #1234" in out
        assert "output: 150000 76a914" in out

    def test_rejected_request(
        self, tmp_path: Path, roots_pem: Path, live_pki: LivePki, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Missing intermediate: exit 1 and the rejection on stderr, nothing on stdout."""
        request = _write_request(tmp_path, signed_request(live_pki.merchant))

        code = main([str(request), "--trust-store", str(roots_pem)])

        captured = capsys.readouterr()
        assert code == EXIT_REJECTED
        assert "rejected: chain.validation_failed" in captured.err
        assert "merchant:" not in captured.out

    def test_allow_self_signed_root_flag(
        self, tmp_path: Path, roots_pem: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        now = datetime.now(UTC)
        self_signed = issue_certificate(
            "dev.example.org", not_before=now - timedelta(days=1), not_after=now + timedelta(days=1)
        )
        request = _write_request(tmp_path, signed_request(self_signed))

        assert main([str(request), "--trust-store", str(roots_pem)]) == EXIT_REJECTED
        assert main([str(request), "--trust-store", str(roots_pem), "--allow-self-signed-root"]) == EXIT_VERIFIED
        assert "merchant: dev.example.org" in capsys.readouterr().out

    def test_trust_store_from_environment(
        self,
        tmp_path: Path,
        roots_pem: Path,
        live_pki: LivePki,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("TRUST_STORE_PATH", str(roots_pem))
        raw = signed_request(live_pki.merchant, [live_pki.intermediate])
        assert main([str(_write_request(tmp_path, raw))]) == EXIT_VERIFIED

    def test_missing_trust_store_is_an_error(self, tmp_path: Path, live_pki: LivePki) -> None:
        request = _write_request(tmp_path, signed_request(live_pki.merchant))
        assert main([str(request)]) == EXIT_ERROR

    def test_unreadable_request_is_an_error(self, tmp_path: Path, roots_pem: Path) -> None:
        assert main([str(tmp_path / "absent.bip70"), "--trust-store", str(roots_pem)]) == EXIT_ERROR

    def test_invalid_configuration(
        self,
        tmp_path: Path,
        roots_pem: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setenv("POLICY__MAX_CHAIN_DEPTH", "0")

        code = main([str(tmp_path / "request.bip70"), "--trust-store", str(roots_pem)])

        assert code == EXIT_ERROR
        assert "FATAL: Configuration error" in capsys.readouterr().err
