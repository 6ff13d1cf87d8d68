from __future__ import annotations

import logging
import secrets
import threading
import zlib
from concurrent.futures import Executor
from datetime import datetime
from typing import Callable, Optional

from .attack_tracker import AttackPatternTracker
from .collaborators import AccountStatus, Notifier
from .config import EngineConfig
from .errors import ConfirmationFailure, InvalidConfirmationToken
from .models import ConfirmationStatus, ConfirmationToken, Principal, utcnow
from .persistence import ConfirmationTokenStore


logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Security confirmation required"


class ConfirmationWorkflow:
    """One-time unlock tokens for accounts blocked by a security verdict.

    At most one token per principal is live: issuing a new token invalidates
    the previous ones. Issuance for one principal is serialised through a
    fixed set of lock stripes.
    """

    def __init__(
        self,
        store: ConfirmationTokenStore,
        notifier: Notifier,
        account_status: AccountStatus,
        config: EngineConfig | None = None,
        tracker: AttackPatternTracker | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.account_status = account_status
        self.config = config or EngineConfig()
        self.tracker = tracker
        self.executor = executor
        self.clock = clock
        self._issue_stripes = [threading.Lock() for _ in range(max(1, self.config.attack_lock_stripes))]

    def issue(
        self, principal: Principal, reason: str, ip: Optional[str], user_agent: Optional[str]
    ) -> ConfirmationToken:
        with self._issue_lock(principal.principal_id):
            invalidated = self.store.invalidate_for_principal(principal.principal_id)
            if invalidated:
                logger.info("Invalidated %d confirmation token(s) for %s", invalidated, principal.principal_id)

            now = self.clock()
            token = ConfirmationToken(
                value=secrets.token_urlsafe(32),
                principal_id=principal.principal_id,
                reason=reason,
                issued_at=now,
                expires_at=now + self.config.confirmation_ttl,
                ip=ip or "unknown",
                user_agent=user_agent or "unknown",
            )
            self.store.save(token)
        logger.info("Confirmation token issued for %s, expires at %s", principal.principal_id, token.expires_at)

        if self.executor is not None:
            self.executor.submit(self._send, principal, token)
        else:
            self._send(principal, token)
        return token

    def confirm(
        self, token_value: str, confirming_ip: Optional[str], confirming_user_agent: Optional[str]
    ) -> ConfirmationToken:
        now = self.clock()
        self._check_usable(self.store.find_by_value(token_value), now)

        token = self.store.mark_confirmed_if_pending(token_value, now, confirming_ip, confirming_user_agent)
        if token is None:
            # lost a race with another confirm or a newer issue
            self._check_usable(self.store.find_by_value(token_value), now)
            raise InvalidConfirmationToken(ConfirmationFailure.ALREADY_USED)

        self.account_status.set_under_surveillance(token.principal_id, False)
        self.account_status.reactivate(token.principal_id)
        if self.tracker is not None:
            self.tracker.reset(token.principal_id)
        logger.info("Account %s unlocked from %s", token.principal_id, confirming_ip)
        return token

    def has_pending(self, principal_id: str) -> bool:
        return bool(self.store.find_pending(principal_id, self.clock()))

    def sweep(self) -> int:
        cutoff = self.clock() - self.config.confirmation_grace
        deleted = self.store.delete_expired_before(cutoff)
        logger.info("Swept %d expired confirmation token(s)", deleted)
        return deleted

    def _issue_lock(self, principal_id: str) -> threading.Lock:
        return self._issue_stripes[zlib.crc32(principal_id.encode()) % len(self._issue_stripes)]

    @staticmethod
    def _check_usable(token: Optional[ConfirmationToken], now: datetime) -> None:
        if token is None:
            raise InvalidConfirmationToken(ConfirmationFailure.NOT_FOUND)
        status = token.status(now)
        if status is ConfirmationStatus.INVALIDATED:
            raise InvalidConfirmationToken(ConfirmationFailure.INVALIDATED)
        if status is ConfirmationStatus.CONFIRMED:
            raise InvalidConfirmationToken(ConfirmationFailure.ALREADY_USED)
        if status is ConfirmationStatus.EXPIRED:
            raise InvalidConfirmationToken(ConfirmationFailure.EXPIRED)

    def _send(self, principal: Principal, token: ConfirmationToken) -> None:
        link = self.config.confirmation_url.format(token=token.value)
        minutes = int(self.config.confirmation_ttl.total_seconds() // 60)
        body = "\n".join(
            [
                f"Hello {principal.display_name or principal.email},",
                "",
                f"We blocked a sign-in to your account: {token.reason}.",
                f"Detected at {token.issued_at:%Y-%m-%d %H:%M} UTC from {token.ip} ({token.user_agent}).",
                "",
                f"If this was you, confirm your identity within {minutes} minutes:",
                link,
                "",
                "If this was not you, change your password immediately.",
            ]
        )
        try:
            self.notifier.send_email(principal, CONFIRMATION_SUBJECT, body)
        except Exception as exc:
            logger.error("Failed to send confirmation email to %s: %s", principal.principal_id, exc)
