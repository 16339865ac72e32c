"""One-time-password login — code generation, verification and the send flow.

Delivery channels and user persistence are pluggable; :class:`UserDirectory`
is the in-memory default.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field

from .errors import OtpDeliveryError, ValidationError
from .models import new_id

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=10)


class IdentifierKind(StrEnum):
    EMAIL = "email"
    PHONE = "phone"


def generate_otp() -> str:
    """A six-digit code in 100000..999999 from a cryptographic source."""
    return str(100000 + secrets.randbelow(900000))


def identifier_kind(identifier: str) -> IdentifierKind:
    return IdentifierKind.EMAIL if "@" in identifier else IdentifierKind.PHONE


def _mask(identifier: str) -> str:
    return identifier[:3] + "***"


class UserRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    email: str | None = None
    phone_number: str | None = None
    otp: str | None = None
    otp_expiry: datetime | None = None
    login_methods: list[IdentifierKind] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def verify_otp(user: UserRecord, otp: str, now: datetime | None = None) -> bool:
    """True only if *user* holds an unexpired OTP equal to *otp*.

    A missing OTP or expiry fails closed.
    """
    if not user.otp or user.otp_expiry is None:
        return False
    now = now or datetime.now(UTC)
    if now > user.otp_expiry:
        return False
    return hmac.compare_digest(user.otp.encode(), (otp or "").encode())


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class OtpSender(ABC):
    """Delivers a code to an email address or phone number."""

    @abstractmethod
    def send(self, recipient: str, otp: str) -> bool:
        """Deliver *otp*; return False (or raise) when delivery failed."""


class UserDirectory:
    """In-memory user store keyed by email or phone number."""

    def __init__(self) -> None:
        self._users: dict[str, UserRecord] = {}

    def find(self, kind: IdentifierKind, identifier: str) -> UserRecord | None:
        for user in self._users.values():
            value = user.email if kind == IdentifierKind.EMAIL else user.phone_number
            if value == identifier:
                return user
        return None

    def create(self, kind: IdentifierKind, identifier: str) -> UserRecord:
        if kind == IdentifierKind.EMAIL:
            user = UserRecord(email=identifier, login_methods=[kind])
        else:
            user = UserRecord(phone_number=identifier, login_methods=[kind])
        self._users[user.id] = user
        return user

    def save(self, user: UserRecord) -> None:
        self._users[user.id] = user


class OtpService:
    """Find-or-create the user, store a fresh OTP and deliver it."""

    def __init__(
        self,
        users: UserDirectory,
        email_sender: OtpSender,
        sms_sender: OtpSender,
        ttl: timedelta = OTP_TTL,
    ) -> None:
        self._users = users
        self._senders = {IdentifierKind.EMAIL: email_sender, IdentifierKind.PHONE: sms_sender}
        self._ttl = ttl

    def send_otp(self, identifier: str | None, now: datetime | None = None) -> UserRecord:
        if not identifier:
            msg = "Email or phone number is required"
            raise ValidationError(msg)

        kind = identifier_kind(identifier)
        logger.info("OTP requested for %s (%s)", _mask(identifier), kind)

        user = self._users.find(kind, identifier)
        if user is None:
            user = self._users.create(kind, identifier)
            logger.info("Created user %s", user.id)

        otp = generate_otp()
        user.otp = otp
        user.otp_expiry = (now or datetime.now(UTC)) + self._ttl
        self._users.save(user)

        try:
            sent = self._senders[kind].send(identifier, otp)
        except Exception as exc:
            msg = f"Failed to send OTP via {kind}: {exc}"
            raise OtpDeliveryError(msg) from exc
        if not sent:
            msg = f"Failed to send OTP via {kind}"
            raise OtpDeliveryError(msg)

        logger.info("OTP sent via %s to %s", kind, _mask(identifier))
        return user

    def verify(self, identifier: str, otp: str, now: datetime | None = None) -> UserRecord | None:
        """Return the user when *otp* is valid for *identifier*, else ``None``."""
        user = self._users.find(identifier_kind(identifier), identifier)
        if user is None or not verify_otp(user, otp, now):
            logger.info("OTP verification failed for %s", _mask(identifier))
            return None
        user.otp = None
        user.otp_expiry = None
        self._users.save(user)
        return user
