from __future__ import annotations

from enum import Enum


class RiskEngineError(Exception):
    """Base class for errors raised by the session risk engine."""


class LookupUnavailable(RiskEngineError):
    """A geolocation or VPN lookup failed or timed out."""


class MalformedFingerprint(RiskEngineError):
    """A fingerprint field (usually a version string) could not be parsed."""


class ConfirmationFailure(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    INVALIDATED = "invalidated"
    EXPIRED = "expired"


_CONFIRMATION_MESSAGES = {
    ConfirmationFailure.NOT_FOUND: "Invalid confirmation token",
    ConfirmationFailure.ALREADY_USED: "This confirmation link has already been used",
    ConfirmationFailure.INVALIDATED: "This confirmation link was replaced by a newer one",
    ConfirmationFailure.EXPIRED: "This confirmation link has expired",
}


class InvalidConfirmationToken(RiskEngineError):
    def __init__(self, reason: ConfirmationFailure):
        self.reason = reason
        super().__init__(_CONFIRMATION_MESSAGES[reason])

    @property
    def message(self) -> str:
        return str(self)


class AccessDenied(RiskEngineError):
    """Renewal refused. The message is generic so callers can surface it as-is."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__("access denied")


class UnknownPrincipal(AccessDenied):
    pass


class CredentialRejected(AccessDenied):
    pass
