"""Interfaces the engine consumes, with in-memory implementations.

The in-memory classes back the default application wiring and the tests.
Production deployments plug in their own credential store, account store
and notifier.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Protocol, Set, Tuple

from .models import CredentialRecord, Principal, utcnow


logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def load_by_token(self, value: str) -> Optional[CredentialRecord]: ...

    def mark_revoked(self, principal_id: str) -> None: ...

    def update_last_used(self, value: str) -> None: ...


class PrincipalDirectory(Protocol):
    def get(self, principal_id: str) -> Optional[Principal]: ...


class GeoLookup(Protocol):
    def country_of(self, ip: str) -> str: ...

    def is_vpn_or_proxy(self, ip: str) -> bool: ...


class Notifier(Protocol):
    def send_email(self, principal: Principal, subject: str, body: str) -> None: ...

    def send_sms(self, principal: Principal, body: str) -> None: ...

    def notify_admins(self, principal: Principal, summary: str) -> None: ...


class AccountStatus(Protocol):
    def set_under_surveillance(self, principal_id: str, flag: bool) -> None: ...

    def reactivate(self, principal_id: str) -> None: ...


class InMemoryCredentialStore:
    def __init__(self, records: Optional[List[CredentialRecord]] = None):
        self._lock = threading.Lock()
        self._records: Dict[str, CredentialRecord] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: CredentialRecord) -> None:
        with self._lock:
            self._records[record.token] = record

    def load_by_token(self, value: str) -> Optional[CredentialRecord]:
        return self._records.get(value)

    def mark_revoked(self, principal_id: str) -> None:
        with self._lock:
            for record in self._records.values():
                if record.principal_id == principal_id:
                    record.revoked = True

    def update_last_used(self, value: str) -> None:
        with self._lock:
            record = self._records.get(value)
            if record is not None:
                record.last_used_at = utcnow()


class InMemoryPrincipalDirectory:
    def __init__(self, principals: Optional[List[Principal]] = None):
        self._principals: Dict[str, Principal] = {p.principal_id: p for p in principals or []}

    def add(self, principal: Principal) -> None:
        self._principals[principal.principal_id] = principal

    def get(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)


class InMemoryAccountStatus:
    def __init__(self):
        self.under_surveillance: Set[str] = set()
        self.reactivated: List[str] = []

    def set_under_surveillance(self, principal_id: str, flag: bool) -> None:
        if flag:
            self.under_surveillance.add(principal_id)
        else:
            self.under_surveillance.discard(principal_id)

    def reactivate(self, principal_id: str) -> None:
        self.reactivated.append(principal_id)


class StaticGeoLookup:
    """Geo lookup backed by fixed tables; unknown addresses resolve to UNKNOWN."""

    def __init__(self, countries: Optional[Mapping[str, str]] = None, vpn_ips: Optional[Set[str]] = None):
        self.countries: Dict[str, str] = dict(countries or {})
        self.vpn_ips: Set[str] = set(vpn_ips or ())

    def country_of(self, ip: str) -> str:
        return self.countries.get(ip, "UNKNOWN")

    def is_vpn_or_proxy(self, ip: str) -> bool:
        return ip in self.vpn_ips


class RecordingNotifier:
    """Notifier that keeps every message; used for local runs and tests."""

    def __init__(self):
        self.emails: List[Tuple[str, str, str]] = []
        self.sms: List[Tuple[str, str]] = []
        self.admin: List[Tuple[str, str]] = []

    def send_email(self, principal: Principal, subject: str, body: str) -> None:
        logger.info("Email to %s: %s", principal.email, subject)
        self.emails.append((principal.principal_id, subject, body))

    def send_sms(self, principal: Principal, body: str) -> None:
        self.sms.append((principal.principal_id, body))

    def notify_admins(self, principal: Principal, summary: str) -> None:
        self.admin.append((principal.principal_id, summary))
