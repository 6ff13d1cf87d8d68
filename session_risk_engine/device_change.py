from __future__ import annotations

import logging
from typing import Optional

from .config import DEVICE_RISK, EngineConfig
from .errors import MalformedFingerprint
from .models import ClientFingerprint, DeviceChangeKind, RiskLevel


logger = logging.getLogger(__name__)


def _same(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return left is None and right is None
    return left.casefold() == right.casefold()


def parse_major_version(version: Optional[str]) -> int:
    if not version:
        raise MalformedFingerprint("missing version")
    head = version.strip().split(".")[0]
    try:
        return int(head)
    except ValueError as exc:
        raise MalformedFingerprint(f"unparsable version {version!r}") from exc


class DeviceChangeClassifier:
    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def classify(
        self, previous: Optional[ClientFingerprint], current: Optional[ClientFingerprint]
    ) -> DeviceChangeKind:
        if previous is None or current is None:
            return DeviceChangeKind.MAJOR

        same_browser = _same(previous.browser_name, current.browser_name)
        same_os = _same(previous.os_name, current.os_name)
        same_browser_version = _same(previous.browser_version, current.browser_version)
        same_os_version = _same(previous.os_version, current.os_version)

        if same_browser and same_os and same_browser_version and same_os_version:
            if not _same(previous.timezone, current.timezone):
                logger.info("Timezone changed %s -> %s", previous.timezone, current.timezone)
                return DeviceChangeKind.MINOR
            return DeviceChangeKind.NONE

        if same_browser and same_os:
            changed = []
            if not same_browser_version:
                changed.append((previous.browser_version, current.browser_version))
            if not same_os_version:
                changed.append((previous.os_version, current.os_version))
            if all(self.is_plausible_update(old, new) for old, new in changed):
                return DeviceChangeKind.MINOR
            return DeviceChangeKind.MAJOR

        if not same_browser and not same_os:
            logger.warning("Browser and OS both changed: %s -> %s", previous.summary(), current.summary())
            return DeviceChangeKind.SUSPICIOUS
        return DeviceChangeKind.MAJOR

    def is_plausible_update(self, previous_version: Optional[str], current_version: Optional[str]) -> bool:
        try:
            old = parse_major_version(previous_version)
            new = parse_major_version(current_version)
        except MalformedFingerprint as exc:
            logger.debug("Version comparison skipped: %s", exc)
            return False
        return old <= new and new - old <= self.config.max_version_gap

    def risk_level(self, kind: DeviceChangeKind) -> RiskLevel:
        return DEVICE_RISK[kind]

    def describe(self, previous: Optional[ClientFingerprint], current: Optional[ClientFingerprint]) -> str:
        if previous is None or current is None:
            return "New device detected"
        kind = self.classify(previous, current)
        if kind is DeviceChangeKind.NONE:
            return "No device change"
        if kind is DeviceChangeKind.MINOR:
            if previous.summary() == current.summary():
                return f"Timezone changed: {previous.timezone} -> {current.timezone}"
            return f"Update detected: {previous.summary()} -> {current.summary()}"
        if kind is DeviceChangeKind.MAJOR:
            return f"Device changed: {previous.summary()} -> {current.summary()}"
        return f"Suspicious device change: {previous.summary()} -> {current.summary()}"
