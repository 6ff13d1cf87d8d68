from __future__ import annotations

import ipaddress
import logging
from typing import Any, Dict, Optional

import httpx

from .config import EngineConfig
from .errors import LookupUnavailable


logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "UNKNOWN"
LOCAL_COUNTRY = "LOCAL"
UNRESOLVED_COUNTRIES = frozenset({UNKNOWN_COUNTRY, LOCAL_COUNTRY})


def is_private_address(ip: str) -> bool:
    if ip == "localhost":
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


class HttpGeoLookup:
    """Country and VPN lookups over HTTP with a short timeout.

    Neither method raises: failures are logged and resolve to ``UNKNOWN`` for
    the country and ``False`` for the VPN flag.
    """

    def __init__(self, config: EngineConfig | None = None, client: httpx.Client | None = None):
        self.config = config or EngineConfig()
        self._client = client or httpx.Client(timeout=self.config.lookup_timeout)

    def close(self) -> None:
        self._client.close()

    def country_of(self, ip: str) -> str:
        if not ip:
            return UNKNOWN_COUNTRY
        if is_private_address(ip):
            return LOCAL_COUNTRY
        try:
            payload = self._fetch(self.config.geo_api_url.format(ip=ip))
        except LookupUnavailable as exc:
            logger.warning("Country lookup failed for %s: %s", ip, exc)
            return UNKNOWN_COUNTRY
        country = payload.get("country_code") or payload.get("countryCode")
        return str(country).upper() if country else UNKNOWN_COUNTRY

    def is_vpn_or_proxy(self, ip: str) -> bool:
        if not ip or not self.config.vpn_api_url or is_private_address(ip):
            return False
        try:
            payload = self._fetch(self.config.vpn_api_url.format(ip=ip))
        except LookupUnavailable as exc:
            logger.warning("VPN lookup failed for %s: %s", ip, exc)
            return False
        return bool(payload.get("vpn") or payload.get("proxy"))

    def _fetch(self, url: str) -> Dict[str, Any]:
        try:
            response = self._client.get(url)
            response.raise_for_status()
            payload: Optional[Dict[str, Any]] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LookupUnavailable(str(exc)) from exc
        if not isinstance(payload, dict):
            raise LookupUnavailable(f"unexpected payload from {url}")
        return payload
