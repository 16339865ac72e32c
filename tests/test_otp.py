"""Tests for OTP generation, verification and the send flow."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tenxai_chat.errors import OtpDeliveryError, ValidationError
from tenxai_chat.otp import (
    OTP_TTL,
    IdentifierKind,
    OtpSender,
    OtpService,
    UserDirectory,
    UserRecord,
    generate_otp,
    identifier_kind,
    verify_otp,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


class _RecordingSender(OtpSender):
    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self._result = result
        self._error = error

    def send(self, recipient: str, otp: str) -> bool:
        if self._error is not None:
            raise self._error
        self.sent.append((recipient, otp))
        return self._result


def _service(
    email: _RecordingSender | None = None, sms: _RecordingSender | None = None
) -> tuple[OtpService, UserDirectory]:
    users = UserDirectory()
    return OtpService(users, email or _RecordingSender(), sms or _RecordingSender()), users


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def test_generate_otp_is_six_digits():
    for _ in range(200):
        otp = generate_otp()
        assert len(otp) == 6
        assert 100000 <= int(otp) <= 999999


def test_identifier_kind():
    assert identifier_kind("a@b.com") == IdentifierKind.EMAIL
    assert identifier_kind("+15551234567") == IdentifierKind.PHONE


def test_otp_ttl_is_ten_minutes():
    assert OTP_TTL == timedelta(minutes=10)


# ---------------------------------------------------------------------------
# verify_otp
# ---------------------------------------------------------------------------


def test_verify_expired_otp_fails():
    user = UserRecord(otp="123456", otp_expiry=NOW - timedelta(seconds=1))
    assert verify_otp(user, "123456", now=NOW) is False


def test_verify_matching_otp_succeeds():
    user = UserRecord(otp="123456", otp_expiry=NOW + timedelta(seconds=60))
    assert verify_otp(user, "123456", now=NOW) is True


def test_verify_mismatch_fails():
    user = UserRecord(otp="123456", otp_expiry=NOW + timedelta(seconds=60))
    assert verify_otp(user, "654321", now=NOW) is False


def test_verify_non_ascii_code_is_rejected():
    user = UserRecord(otp="123456", otp_expiry=NOW + timedelta(seconds=60))
    assert verify_otp(user, "\u0661\u0662\u0663\u0664\u0665\u0666", now=NOW) is False
    assert verify_otp(user, "12345\u00e9", now=NOW) is False


def test_verify_fails_closed_without_otp_or_expiry():
    assert verify_otp(UserRecord(), "123456", now=NOW) is False
    assert verify_otp(UserRecord(otp="123456"), "123456", now=NOW) is False
    no_otp = UserRecord(otp_expiry=NOW + timedelta(minutes=5))
    assert verify_otp(no_otp, "", now=NOW) is False


# ---------------------------------------------------------------------------
# OtpService
# ---------------------------------------------------------------------------


def test_send_otp_creates_user_and_emails_code():
    email = _RecordingSender()
    service, users = _service(email=email)

    user = service.send_otp("ada@example.com", now=NOW)

    assert user.email == "ada@example.com"
    assert user.login_methods == [IdentifierKind.EMAIL]
    assert user.otp_expiry == NOW + OTP_TTL
    assert email.sent == [("ada@example.com", user.otp)]
    assert users.find(IdentifierKind.EMAIL, "ada@example.com") is user


def test_send_otp_to_phone_uses_sms():
    email, sms = _RecordingSender(), _RecordingSender()
    service, _ = _service(email=email, sms=sms)

    user = service.send_otp("+15551234567", now=NOW)

    assert user.phone_number == "+15551234567"
    assert email.sent == []
    assert len(sms.sent) == 1


def test_send_otp_reuses_existing_user():
    service, _ = _service()
    first = service.send_otp("ada@example.com", now=NOW)
    second = service.send_otp("ada@example.com", now=NOW)
    assert first.id == second.id


def test_send_otp_requires_identifier():
    service, _ = _service()
    with pytest.raises(ValidationError, match="required"):
        service.send_otp("")
    with pytest.raises(ValidationError):
        service.send_otp(None)


def test_send_otp_delivery_failure_raises():
    service, _ = _service(email=_RecordingSender(result=False))
    with pytest.raises(OtpDeliveryError):
        service.send_otp("ada@example.com")

    service, _ = _service(sms=_RecordingSender(error=ConnectionError("twilio down")))
    with pytest.raises(OtpDeliveryError, match="twilio down"):
        service.send_otp("+15551234567")


def test_verify_flow_consumes_the_code():
    email = _RecordingSender()
    service, _ = _service(email=email)
    service.send_otp("ada@example.com", now=NOW)
    code = email.sent[0][1]

    assert service.verify("ada@example.com", "000000", now=NOW) is None
    user = service.verify("ada@example.com", code, now=NOW + timedelta(minutes=1))
    assert user is not None
    assert user.otp is None
    assert service.verify("ada@example.com", code, now=NOW) is None


def test_verify_after_expiry_fails():
    email = _RecordingSender()
    service, _ = _service(email=email)
    service.send_otp("ada@example.com", now=NOW)
    code = email.sent[0][1]
    assert service.verify("ada@example.com", code, now=NOW + timedelta(minutes=11)) is None


def test_verify_unknown_identifier():
    service, _ = _service()
    assert service.verify("nobody@example.com", "123456") is None
