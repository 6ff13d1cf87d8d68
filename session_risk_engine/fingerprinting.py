from __future__ import annotations

import logging
from typing import Optional

from user_agents import parse as parse_ua

from .models import ClientFingerprint


logger = logging.getLogger(__name__)

# ua-parser reports families it cannot identify as "Other"
_UNIDENTIFIED = "Other"


def _family(family: Optional[str], fallback: str) -> str:
    if not family or family == _UNIDENTIFIED:
        return fallback
    return family


def parse_user_agent(
    user_agent: Optional[str],
    ip: Optional[str] = None,
    timezone: Optional[str] = None,
    language: Optional[str] = None,
) -> ClientFingerprint:
    if not user_agent or not user_agent.strip():
        logger.warning("Empty user agent from %s", ip)
        return ClientFingerprint(
            browser_name="Unknown",
            os_name="Unknown",
            timezone=timezone,
            language=language,
            user_agent=user_agent,
            ip=ip,
        )

    ua = parse_ua(user_agent)
    if ua.is_bot:
        logger.info("Bot user agent from %s: %s", ip, ua.browser.family)

    fingerprint = ClientFingerprint(
        browser_name=_family(ua.browser.family, "Unknown Browser"),
        browser_version=ua.browser.version_string or None,
        os_name=_family(ua.os.family, "Unknown OS"),
        os_version=ua.os.version_string or None,
        timezone=timezone,
        language=language,
        user_agent=user_agent,
        ip=ip,
    )
    logger.debug("Parsed user agent for %s: %s", ip, fingerprint.summary())
    return fingerprint
