from datetime import datetime, timedelta, timezone

import pytest

from session_risk_engine import ClientFingerprint, CredentialRecord, EngineConfig, Principal
from session_risk_engine.collaborators import StaticGeoLookup


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_fingerprint(
    browser="Chrome",
    browser_version="120.0",
    os_name="Windows",
    os_version="10",
    tz="Europe/Paris",
    ip="82.64.1.10",
):
    return ClientFingerprint(
        browser_name=browser,
        browser_version=browser_version,
        os_name=os_name,
        os_version=os_version,
        timezone=tz,
        language="fr-FR",
        user_agent=f"{browser}/{browser_version} ({os_name} {os_version})",
        ip=ip,
    )


def make_record(principal_id="user-1", ip="82.64.1.10", fingerprint=None, revoked=False, token="refresh-1"):
    return CredentialRecord(
        token=token,
        principal_id=principal_id,
        created_ip=ip,
        fingerprint=fingerprint if fingerprint is not None else make_fingerprint(ip=ip),
        expires_at=datetime.now(timezone.utc) + timedelta(days=7),
        revoked=revoked,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return EngineConfig(ip_check_timeout=2.0)


@pytest.fixture
def geo():
    return StaticGeoLookup(
        countries={
            "82.64.1.10": "FR",
            "82.64.1.11": "FR",
            "8.8.8.8": "US",
            "5.160.0.1": "IR",
            "185.220.101.1": "DE",
        },
        vpn_ips={"185.220.101.1"},
    )


@pytest.fixture
def principal():
    return Principal(principal_id="user-1", email="alice@example.com", display_name="Alice", phone_number="+33600000000")
