from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from .collaborators import CredentialStore, PrincipalDirectory
from .errors import CredentialRejected, UnknownPrincipal
from .models import ClientFingerprint, Principal, RiskVerdict, utcnow
from .risk_engine import RiskOrchestrator
from .tasks import enqueue_dispatch


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RenewalDecision:
    allowed: bool
    verdict: RiskVerdict

    @property
    def confirmation_required(self) -> bool:
        return self.verdict.user_confirmation_required


class SessionRenewalService:
    """Applies a risk verdict to a credential-renewal request.

    Alerts go through ``dispatch``, which defaults to queueing the Celery
    ``dispatch_alerts`` task. In-process runs pass
    ``AlertDispatcher.dispatch_async`` instead.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        principals: PrincipalDirectory,
        orchestrator: RiskOrchestrator,
        dispatch: Optional[Callable[[Principal, RiskVerdict], Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.principals = principals
        self.orchestrator = orchestrator
        self.dispatch = dispatch or enqueue_dispatch
        self.clock = clock

    def renew(self, token_value: str, fingerprint: ClientFingerprint) -> RenewalDecision:
        record = self.credentials.load_by_token(token_value)
        if record is None:
            raise CredentialRejected("unknown credential")
        principal = self.principals.get(record.principal_id)
        if principal is None:
            logger.error("Credential references missing principal %s", record.principal_id)
            raise UnknownPrincipal(record.principal_id)
        if not record.revoked and record.is_expired(self.clock()):
            raise CredentialRejected("expired credential")

        verdict = self.orchestrator.evaluate(record, fingerprint)

        if verdict.revoke_credentials:
            self._revoke(record.principal_id)
        if not verdict.should_block_request:
            self.credentials.update_last_used(token_value)
        if verdict.requires_dispatch:
            self._dispatch(principal, verdict)

        return RenewalDecision(allowed=not verdict.should_block_request, verdict=verdict)

    def _dispatch(self, principal: Principal, verdict: RiskVerdict) -> None:
        try:
            self.dispatch(principal, verdict)
        except Exception:
            logger.exception("Failed to queue security alerts for %s", principal.principal_id)

    def _revoke(self, principal_id: str) -> None:
        try:
            self.credentials.mark_revoked(principal_id)
        except Exception:
            logger.exception("Failed to revoke credentials for %s", principal_id)
            return
        logger.critical("All credentials revoked for %s", principal_id)
