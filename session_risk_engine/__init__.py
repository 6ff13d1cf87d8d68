"""Session-security risk engine for credential renewal."""

from .alerts import AlertDispatcher
from .attack_tracker import AttackPatternTracker
from .config import EngineConfig
from .confirmation import ConfirmationWorkflow
from .device_change import DeviceChangeClassifier
from .errors import (
    AccessDenied,
    ConfirmationFailure,
    CredentialRejected,
    InvalidConfirmationToken,
    LookupUnavailable,
    MalformedFingerprint,
    UnknownPrincipal,
)
from .fingerprinting import parse_user_agent
from .ip_risk import IpRiskClassifier
from .models import (
    ClientFingerprint,
    ConfirmationToken,
    CredentialRecord,
    DeviceChangeKind,
    Principal,
    RiskLevel,
    RiskVerdict,
)
from .renewal import RenewalDecision, SessionRenewalService
from .risk_engine import RiskOrchestrator

__all__ = [
    "AccessDenied",
    "AlertDispatcher",
    "AttackPatternTracker",
    "ClientFingerprint",
    "ConfirmationFailure",
    "ConfirmationToken",
    "ConfirmationWorkflow",
    "CredentialRecord",
    "CredentialRejected",
    "DeviceChangeClassifier",
    "DeviceChangeKind",
    "EngineConfig",
    "InvalidConfirmationToken",
    "IpRiskClassifier",
    "LookupUnavailable",
    "MalformedFingerprint",
    "Principal",
    "RenewalDecision",
    "RiskLevel",
    "RiskOrchestrator",
    "RiskVerdict",
    "SessionRenewalService",
    "UnknownPrincipal",
    "parse_user_agent",
]
