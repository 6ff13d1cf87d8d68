from __future__ import annotations

import logging
from typing import Optional

from .collaborators import GeoLookup
from .config import EngineConfig
from .geolocation import UNKNOWN_COUNTRY, UNRESOLVED_COUNTRIES
from .models import IpAssessment, RiskLevel


logger = logging.getLogger(__name__)


class IpRiskClassifier:
    def __init__(self, geo: GeoLookup, config: EngineConfig | None = None):
        self.geo = geo
        self.config = config or EngineConfig()

    def classify(self, previous_ip: Optional[str], current_ip: Optional[str]) -> IpAssessment:
        if previous_ip is not None and previous_ip == current_ip:
            return IpAssessment(risk_level=RiskLevel.LOW, ip_changed=False)

        previous_country = self._country(previous_ip)
        current_country = self._country(current_ip)
        vpn = self._vpn(current_ip)

        if vpn:
            logger.warning("VPN or proxy detected for %s (%s)", current_ip, current_country)
            level = RiskLevel.HIGH
        elif self.config.is_high_risk_country(current_country):
            logger.warning("Connection from high-risk country %s (%s)", current_country, current_ip)
            level = RiskLevel.HIGH
        elif previous_country == current_country:
            level = RiskLevel.LOW
        elif previous_country in UNRESOLVED_COUNTRIES or current_country in UNRESOLVED_COUNTRIES:
            # an unresolved lookup never raises risk on its own
            level = RiskLevel.LOW
        else:
            logger.info("Country changed %s -> %s", previous_country, current_country)
            level = RiskLevel.MEDIUM

        return IpAssessment(
            risk_level=level,
            ip_changed=True,
            previous_country=previous_country,
            current_country=current_country,
            vpn_detected=vpn,
        )

    def _country(self, ip: Optional[str]) -> str:
        if not ip:
            return UNKNOWN_COUNTRY
        try:
            return self.geo.country_of(ip) or UNKNOWN_COUNTRY
        except Exception as exc:
            logger.warning("Country lookup raised for %s, treating as unknown: %s", ip, exc)
            return UNKNOWN_COUNTRY

    def _vpn(self, ip: Optional[str]) -> bool:
        if not ip:
            return False
        try:
            return bool(self.geo.is_vpn_or_proxy(ip))
        except Exception as exc:
            logger.warning("VPN lookup raised for %s, assuming no VPN: %s", ip, exc)
            return False
