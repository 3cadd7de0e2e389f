"""
Faults System (faults.py)

Tests Fault, FaultDomain, Severity and the session fault family.
"""

import pytest

from tessera.faults import (
    DOMAIN_DEFAULTS,
    Fault,
    FaultDomain,
    SessionConfigFault,
    SessionCookieFault,
    SessionNotFoundFault,
    SessionStoreCorruptedFault,
    SessionStoreUnavailableFault,
    Severity,
    fingerprint,
)


# ============================================================================
# Severity & FaultDomain
# ============================================================================

class TestSeverity:

    def test_values(self):
        assert Severity.INFO == "info"
        assert Severity.WARN == "warn"
        assert Severity.ERROR == "error"
        assert Severity.FATAL == "fatal"


class TestFaultDomain:

    def test_standard_domains(self):
        assert FaultDomain.CONFIG.name == "config"
        assert FaultDomain.IO.name == "io"
        assert FaultDomain.SESSION.name == "session"

    def test_domain_equality(self):
        assert FaultDomain("io") == FaultDomain.IO
        assert FaultDomain.IO == "io"
        assert FaultDomain.IO != FaultDomain.CONFIG

    def test_hashable(self):
        assert {FaultDomain("io"): 1}[FaultDomain.IO] == 1


# ============================================================================
# Fault base
# ============================================================================

class TestFault:

    def test_domain_defaults(self):
        for domain, defaults in DOMAIN_DEFAULTS.items():
            fault = Fault("CODE", "message", domain=domain)
            assert fault.severity == defaults["severity"]
            assert fault.retryable == defaults["retryable"]

    def test_unknown_domain_defaults(self):
        fault = Fault("CODE", "message", domain=FaultDomain("custom"))
        assert fault.severity == Severity.ERROR
        assert fault.retryable is False
        assert fault.public is False

    def test_explicit_overrides(self):
        fault = Fault(
            "CODE", "message",
            domain=FaultDomain.IO,
            severity=Severity.FATAL,
            retryable=False,
            public=True,
        )
        assert fault.severity == Severity.FATAL
        assert fault.retryable is False
        assert fault.public is True

    def test_missing_required_fields(self):
        with pytest.raises(TypeError, match="missing required"):
            Fault("CODE", "message")

    def test_str(self):
        assert str(Fault("CODE", "went wrong", domain=FaultDomain.IO)) == "[CODE] went wrong"

    def test_to_dict(self):
        fault = Fault("CODE", "went wrong", domain=FaultDomain.IO, metadata={"k": "v"})
        assert fault.to_dict() == {
            "code": "CODE",
            "message": "went wrong",
            "domain": "io",
            "severity": "warn",
            "retryable": True,
            "public": False,
            "metadata": {"k": "v"},
        }


# ============================================================================
# Session faults
# ============================================================================

class TestSessionFaults:

    def test_config_fault(self):
        fault = SessionConfigFault("genid option must be a function", option="genid")
        assert fault.code == "SESSION_CONFIG_ERROR"
        assert fault.domain == FaultDomain.CONFIG
        assert fault.severity == Severity.FATAL
        assert fault.metadata == {"option": "genid"}

    def test_config_fault_default_message(self):
        assert SessionConfigFault().message == "Invalid session configuration"

    def test_not_found_fault(self):
        fault = SessionNotFoundFault("failed to load session", session_id="abc")
        assert fault.code == "ENOENT"
        assert fault.public is True
        assert fault.severity == Severity.WARN
        assert fault.session_id_hash == fingerprint("abc")

    def test_store_unavailable_fault(self):
        fault = SessionStoreUnavailableFault("redis", "timeout")
        assert fault.message == "Session store 'redis' unavailable: timeout"
        assert fault.args == (fault.message,)
        assert fault.retryable is True
        assert fault.to_dict()["domain"] == "io"

    def test_store_unavailable_fault_without_cause(self):
        assert SessionStoreUnavailableFault("memory").message == "Session store 'memory' unavailable"

    def test_store_corrupted_fault(self):
        fault = SessionStoreCorruptedFault(message="bad record")
        assert fault.code == "SESSION_STORE_CORRUPTED"
        assert fault.domain == FaultDomain.SESSION
        assert fault.public is False

    def test_cookie_fault(self):
        fault = SessionCookieFault("option sameSite is invalid: bogus")
        assert fault.code == "SESSION_COOKIE_INVALID"
        assert fault.retryable is False


class TestFingerprint:

    def test_stable_and_short(self):
        assert fingerprint("abc") == fingerprint("abc")
        assert fingerprint("abc").startswith("sha256:")
        assert len(fingerprint("abc")) == len("sha256:") + 16
        assert "abc" not in fingerprint("abc")
