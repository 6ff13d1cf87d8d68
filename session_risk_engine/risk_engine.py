from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import List, Optional

from .attack_tracker import AttackPatternTracker
from .collaborators import GeoLookup
from .config import EngineConfig
from .device_change import DeviceChangeClassifier
from .geolocation import UNKNOWN_COUNTRY
from .ip_risk import IpRiskClassifier
from .models import (
    ClientFingerprint,
    CredentialRecord,
    DeviceChangeKind,
    IpAssessment,
    RiskLevel,
    RiskSignal,
    RiskVerdict,
    utcnow,
)


logger = logging.getLogger(__name__)

REVOKED_REUSE_MESSAGE = "revoked credential reuse"
ATTACK_PATTERN_MESSAGE = "attack pattern detected: repeated high-risk attempts"

_LOG_LEVELS = {
    RiskLevel.LOW: logging.INFO,
    RiskLevel.MEDIUM: logging.WARNING,
    RiskLevel.HIGH: logging.ERROR,
    RiskLevel.CRITICAL: logging.CRITICAL,
}

_IP_MESSAGES = {
    RiskLevel.MEDIUM: "connection from a new country",
    RiskLevel.HIGH: "connection from a high-risk network",
}

_DEVICE_MESSAGES = {
    DeviceChangeKind.MAJOR: "new device detected",
    DeviceChangeKind.SUSPICIOUS: "suspicious device change",
}


def log_level_for(level: RiskLevel) -> int:
    return _LOG_LEVELS[level]


class RiskOrchestrator:
    """Combines the IP, device, replay and attack-pattern signals into one verdict."""

    def __init__(
        self,
        geo: GeoLookup,
        config: EngineConfig | None = None,
        tracker: AttackPatternTracker | None = None,
        ip_classifier: IpRiskClassifier | None = None,
        device_classifier: DeviceChangeClassifier | None = None,
    ):
        self.config = config or EngineConfig()
        self.tracker = tracker or AttackPatternTracker(self.config)
        self.ip_classifier = ip_classifier or IpRiskClassifier(geo, self.config)
        self.device_classifier = device_classifier or DeviceChangeClassifier(self.config)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.lookup_workers, thread_name_prefix="risk-lookup"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def evaluate(self, record: CredentialRecord, current: ClientFingerprint) -> RiskVerdict:
        principal_id = record.principal_id
        previous = record.fingerprint
        previous_device = previous.summary() if previous else None

        if record.revoked:
            self.tracker.record(principal_id, REVOKED_REUSE_MESSAGE)
            signal = RiskSignal("revoked_credential_reuse", RiskLevel.CRITICAL, REVOKED_REUSE_MESSAGE)
            verdict = RiskVerdict(
                principal_id=principal_id,
                risk_level=RiskLevel.CRITICAL,
                message=REVOKED_REUSE_MESSAGE,
                actions=self.config.actions_for(RiskLevel.CRITICAL),
                signals=(signal,),
                previous_ip=record.created_ip,
                current_ip=current.ip,
                previous_device=previous_device,
                current_device=current.summary(),
                current_user_agent=current.user_agent,
                evaluated_at=utcnow(),
            )
            self._log(verdict)
            return verdict

        ip_future = self._executor.submit(self.ip_classifier.classify, record.created_ip, current.ip)
        device_kind = self._classify_device(previous, current)
        ip_result = self._await_ip(ip_future, record.created_ip, current.ip)

        device_level = self.device_classifier.risk_level(device_kind)
        signals: List[RiskSignal] = [
            RiskSignal("ip_risk", ip_result.risk_level, self._ip_detail(ip_result, record.created_ip, current.ip)),
            RiskSignal("device_change", device_level, self._describe_device(previous, current)),
        ]
        level = max(ip_result.risk_level, device_level)
        message = self._message(ip_result, device_kind)

        if level >= RiskLevel.HIGH:
            reason = "; ".join(s.detail for s in signals if s.level >= RiskLevel.HIGH)
            self.tracker.record(principal_id, reason)
            if self.tracker.has_pattern(principal_id):
                signals.append(RiskSignal("attack_pattern", RiskLevel.CRITICAL, ATTACK_PATTERN_MESSAGE))
                level = RiskLevel.CRITICAL
                message = f"{ATTACK_PATTERN_MESSAGE} ({message})"

        verdict = RiskVerdict(
            principal_id=principal_id,
            risk_level=level,
            message=message,
            actions=self.config.actions_for(level),
            signals=tuple(signals),
            ip_changed=ip_result.ip_changed,
            previous_ip=record.created_ip,
            current_ip=current.ip,
            previous_country=ip_result.previous_country,
            current_country=ip_result.current_country,
            vpn_detected=ip_result.vpn_detected,
            device_change=device_kind,
            previous_device=previous_device,
            current_device=current.summary(),
            current_user_agent=current.user_agent,
            evaluated_at=utcnow(),
        )
        self._log(verdict)
        return verdict

    def _classify_device(
        self, previous: Optional[ClientFingerprint], current: ClientFingerprint
    ) -> DeviceChangeKind:
        try:
            return self.device_classifier.classify(previous, current)
        except Exception:
            logger.exception("Device classification failed; treating as a major change")
            return DeviceChangeKind.MAJOR

    def _describe_device(self, previous: Optional[ClientFingerprint], current: ClientFingerprint) -> str:
        try:
            return self.device_classifier.describe(previous, current)
        except Exception:
            return f"Unreadable device change: {previous.summary() if previous else None} -> {current.summary()}"

    def _await_ip(self, future, previous_ip: Optional[str], current_ip: Optional[str]) -> IpAssessment:
        neutral = IpAssessment(
            risk_level=RiskLevel.LOW,
            ip_changed=previous_ip != current_ip,
            previous_country=UNKNOWN_COUNTRY,
            current_country=UNKNOWN_COUNTRY,
        )
        try:
            return future.result(timeout=self.config.ip_check_timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("IP risk check timed out for %s; using neutral result", current_ip)
            return neutral
        except Exception:
            logger.exception("IP risk check failed for %s; using neutral result", current_ip)
            return neutral

    @staticmethod
    def _ip_detail(result: IpAssessment, previous_ip: Optional[str], current_ip: Optional[str]) -> str:
        if not result.ip_changed:
            return "same IP address"
        detail = f"{previous_ip} ({result.previous_country}) -> {current_ip} ({result.current_country})"
        if result.vpn_detected:
            detail += ", VPN or proxy"
        return detail

    @staticmethod
    def _message(ip_result: IpAssessment, device_kind: DeviceChangeKind) -> str:
        parts = []
        if ip_result.risk_level in _IP_MESSAGES:
            parts.append(_IP_MESSAGES[ip_result.risk_level])
        if device_kind in _DEVICE_MESSAGES:
            parts.append(_DEVICE_MESSAGES[device_kind])
        return " + ".join(parts) if parts else "no risk detected"

    @staticmethod
    def _log(verdict: RiskVerdict) -> None:
        logger.log(
            log_level_for(verdict.risk_level),
            "Risk verdict for %s: level=%s block=%s email=%s admin=%s message=%s",
            verdict.principal_id,
            verdict.risk_level.name,
            verdict.should_block_request,
            verdict.email_alert,
            verdict.admin_notification,
            verdict.message,
        )
