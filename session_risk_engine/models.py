from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskLevel(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


class DeviceChangeKind(str, Enum):
    NONE = "NONE"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    SUSPICIOUS = "SUSPICIOUS"


class ConfirmationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    INVALIDATED = "INVALIDATED"


@dataclass(slots=True, frozen=True)
class ClientFingerprint:
    browser_name: Optional[str] = None
    browser_version: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None

    def summary(self) -> str:
        browser = " ".join(filter(None, [self.browser_name or "Unknown Browser", self.browser_version]))
        os_part = " ".join(filter(None, [self.os_name or "Unknown OS", self.os_version]))
        return f"{browser} on {os_part}"


@dataclass(slots=True)
class CredentialRecord:
    token: str
    principal_id: str
    created_ip: Optional[str]
    fingerprint: Optional[ClientFingerprint]
    expires_at: datetime
    revoked: bool = False
    last_used_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(slots=True, frozen=True)
class Principal:
    principal_id: str
    email: str
    display_name: str = ""
    phone_number: Optional[str] = None


@dataclass(slots=True, frozen=True)
class SuspiciousAttempt:
    principal_id: str
    timestamp: datetime
    reason: str


@dataclass(slots=True, frozen=True)
class RiskSignal:
    name: str
    level: RiskLevel
    detail: str


@dataclass(slots=True, frozen=True)
class IpAssessment:
    risk_level: RiskLevel
    ip_changed: bool
    previous_country: Optional[str] = None
    current_country: Optional[str] = None
    vpn_detected: bool = False


@dataclass(slots=True, frozen=True)
class RequiredActions:
    email_alert: bool = False
    sms_alert: bool = False
    user_confirmation_required: bool = False
    admin_notification: bool = False
    should_block_request: bool = False
    revoke_credentials: bool = False


@dataclass(slots=True, frozen=True)
class RiskVerdict:
    principal_id: str
    risk_level: RiskLevel
    message: str
    actions: RequiredActions
    signals: Tuple[RiskSignal, ...] = ()
    ip_changed: bool = False
    previous_ip: Optional[str] = None
    current_ip: Optional[str] = None
    previous_country: Optional[str] = None
    current_country: Optional[str] = None
    vpn_detected: bool = False
    device_change: Optional[DeviceChangeKind] = None
    previous_device: Optional[str] = None
    current_device: Optional[str] = None
    current_user_agent: Optional[str] = None
    evaluated_at: datetime = field(default_factory=utcnow)

    @property
    def email_alert(self) -> bool:
        return self.actions.email_alert

    @property
    def sms_alert(self) -> bool:
        return self.actions.sms_alert

    @property
    def user_confirmation_required(self) -> bool:
        return self.actions.user_confirmation_required

    @property
    def admin_notification(self) -> bool:
        return self.actions.admin_notification

    @property
    def should_block_request(self) -> bool:
        return self.actions.should_block_request

    @property
    def revoke_credentials(self) -> bool:
        return self.actions.revoke_credentials

    @property
    def requires_dispatch(self) -> bool:
        actions = self.actions
        return actions.email_alert or actions.sms_alert or actions.admin_notification or self.risk_level >= RiskLevel.CRITICAL

    def changes_summary(self) -> str:
        changes = []
        if self.ip_changed:
            changes.append(f"IP changed ({self.previous_ip} -> {self.current_ip})")
        if self.previous_country and self.current_country and self.previous_country != self.current_country:
            changes.append(f"country changed ({self.previous_country} -> {self.current_country})")
        if self.device_change not in (None, DeviceChangeKind.NONE):
            changes.append(f"device changed ({self.previous_device} -> {self.current_device})")
        if self.vpn_detected:
            changes.append("VPN or proxy detected")
        return ", ".join(changes) if changes else "no change detected"

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["risk_level"] = self.risk_level.name
        payload["device_change"] = self.device_change.value if self.device_change else None
        payload["signals"] = [
            {"name": signal.name, "level": signal.level.name, "detail": signal.detail} for signal in self.signals
        ]
        payload["evaluated_at"] = self.evaluated_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RiskVerdict":
        data = dict(payload)
        device_change = data.get("device_change")
        evaluated_at = data.get("evaluated_at")
        return cls(
            **{
                **data,
                "risk_level": RiskLevel[data["risk_level"]],
                "actions": RequiredActions(**data["actions"]),
                "signals": tuple(
                    RiskSignal(name=s["name"], level=RiskLevel[s["level"]], detail=s["detail"])
                    for s in data.get("signals", [])
                ),
                "device_change": DeviceChangeKind(device_change) if device_change else None,
                "evaluated_at": datetime.fromisoformat(evaluated_at) if evaluated_at else utcnow(),
            }
        )


@dataclass(slots=True)
class ConfirmationToken:
    value: str
    principal_id: str
    reason: str
    issued_at: datetime
    expires_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    used: bool = False
    invalidated: bool = False
    confirmed_at: Optional[datetime] = None
    confirming_ip: Optional[str] = None
    confirming_user_agent: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def status(self, now: datetime) -> ConfirmationStatus:
        if self.invalidated:
            return ConfirmationStatus.INVALIDATED
        if self.used:
            return ConfirmationStatus.CONFIRMED
        if self.is_expired(now):
            return ConfirmationStatus.EXPIRED
        return ConfirmationStatus.PENDING

    def mark_confirmed(self, now: datetime, ip: Optional[str], user_agent: Optional[str]) -> None:
        self.used = True
        self.confirmed_at = now
        self.confirming_ip = ip
        self.confirming_user_agent = user_agent

    def copy(self) -> "ConfirmationToken":
        return replace(self)
