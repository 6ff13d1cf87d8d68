from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, FrozenSet, Optional

from .models import DeviceChangeKind, RequiredActions, RiskLevel


DEFAULT_HIGH_RISK_COUNTRIES = frozenset({"KP", "IR", "SY", "CU", "SD", "SS"})

ACTIONS_BY_LEVEL: Dict[RiskLevel, RequiredActions] = {
    RiskLevel.LOW: RequiredActions(),
    RiskLevel.MEDIUM: RequiredActions(email_alert=True),
    RiskLevel.HIGH: RequiredActions(
        email_alert=True,
        sms_alert=True,
        user_confirmation_required=True,
        admin_notification=True,
        should_block_request=True,
    ),
    RiskLevel.CRITICAL: RequiredActions(
        email_alert=True,
        sms_alert=True,
        user_confirmation_required=True,
        admin_notification=True,
        should_block_request=True,
        revoke_credentials=True,
    ),
}

DEVICE_RISK: Dict[DeviceChangeKind, RiskLevel] = {
    DeviceChangeKind.NONE: RiskLevel.LOW,
    DeviceChangeKind.MINOR: RiskLevel.LOW,
    DeviceChangeKind.MAJOR: RiskLevel.MEDIUM,
    DeviceChangeKind.SUSPICIOUS: RiskLevel.HIGH,
}


@dataclass(slots=True)
class EngineConfig:
    """Thresholds and timeouts for the session risk engine."""

    attack_window: timedelta = timedelta(minutes=15)
    attack_threshold: int = 3
    attack_lock_stripes: int = 64
    max_version_gap: int = 5
    high_risk_countries: FrozenSet[str] = DEFAULT_HIGH_RISK_COUNTRIES
    lookup_timeout: float = 0.3
    ip_check_timeout: float = 0.75
    lookup_workers: int = 8
    geo_api_url: str = "https://ipapi.co/{ip}/json/"
    vpn_api_url: Optional[str] = None
    confirmation_ttl: timedelta = timedelta(minutes=30)
    confirmation_grace: timedelta = timedelta(days=7)
    confirmation_url: str = "http://localhost:3000/security/confirm?token={token}"
    dispatch_workers: int = 4
    actions: Dict[RiskLevel, RequiredActions] = field(default_factory=lambda: dict(ACTIONS_BY_LEVEL))

    def actions_for(self, level: RiskLevel) -> RequiredActions:
        return self.actions[level]

    def is_high_risk_country(self, country_code: Optional[str]) -> bool:
        if not country_code:
            return False
        return country_code.upper() in self.high_risk_countries

    @classmethod
    def from_env(cls) -> "EngineConfig":
        config = cls()
        config.attack_window = timedelta(minutes=int(os.getenv("RISK_ATTACK_WINDOW_MINUTES", "15")))
        config.attack_threshold = int(os.getenv("RISK_ATTACK_THRESHOLD", str(config.attack_threshold)))
        config.max_version_gap = int(os.getenv("RISK_MAX_VERSION_GAP", str(config.max_version_gap)))
        countries = os.getenv("RISK_HIGH_RISK_COUNTRIES")
        if countries:
            config.high_risk_countries = frozenset(c.strip().upper() for c in countries.split(",") if c.strip())
        config.lookup_timeout = float(os.getenv("RISK_LOOKUP_TIMEOUT", str(config.lookup_timeout)))
        config.ip_check_timeout = float(os.getenv("RISK_IP_CHECK_TIMEOUT", str(config.ip_check_timeout)))
        config.geo_api_url = os.getenv("RISK_GEO_API_URL", config.geo_api_url)
        config.vpn_api_url = os.getenv("RISK_VPN_API_URL", config.vpn_api_url)
        config.confirmation_ttl = timedelta(minutes=int(os.getenv("RISK_CONFIRMATION_TTL_MINUTES", "30")))
        config.confirmation_grace = timedelta(days=int(os.getenv("RISK_CONFIRMATION_GRACE_DAYS", "7")))
        config.confirmation_url = os.getenv("RISK_CONFIRMATION_URL", config.confirmation_url)
        return config
