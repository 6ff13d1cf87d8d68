from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .alerts import AlertDispatcher
from .attack_tracker import AttackPatternTracker
from .collaborators import (
    CredentialStore,
    InMemoryAccountStatus,
    InMemoryCredentialStore,
    InMemoryPrincipalDirectory,
    PrincipalDirectory,
    RecordingNotifier,
)
from .config import EngineConfig
from .confirmation import ConfirmationWorkflow
from .errors import AccessDenied, InvalidConfirmationToken
from .fingerprinting import parse_user_agent
from .geolocation import HttpGeoLookup
from .persistence import InMemoryConfirmationTokenStore, MongoConfirmationTokenStore
from .renewal import SessionRenewalService
from .risk_engine import RiskOrchestrator
from .tasks import enqueue_dispatch
from .webhook import WebhookAccountStatus, WebhookNotifier, resolve_webhook_url


class RenewRequest(BaseModel):
    token: str
    timezone: Optional[str] = None
    language: Optional[str] = None


class RiskSignalResponse(BaseModel):
    name: str
    level: str
    detail: str


class RenewResponse(BaseModel):
    allowed: bool
    risk_level: str
    message: str
    signals: List[RiskSignalResponse]


class BlockedResponse(BaseModel):
    detail: str
    confirmation_required: bool


class ConfirmationFailureResponse(BaseModel):
    reason: str
    message: str


class ConfirmationIssuedResponse(BaseModel):
    principal_id: str
    expires_at: datetime


class AttemptSummaryResponse(BaseModel):
    principal_id: str
    recent_count: int
    has_pattern: bool


class IssueConfirmationRequest(BaseModel):
    reason: str = "administrator request"


@dataclass(slots=True)
class Components:
    renewal: SessionRenewalService
    confirmation: ConfirmationWorkflow
    tracker: AttackPatternTracker


def build_components(
    config: EngineConfig | None = None,
    mongodb_uri: str | None = None,
    credentials: CredentialStore | None = None,
    principals: PrincipalDirectory | None = None,
) -> Components:
    """Wire the engine with HTTP geolocation and the configured collaborators.

    - Confirmation tokens go to MongoDB when a URI is given or ``MONGODB_URI``
      is set; otherwise they are kept in memory.
    - Alerts and account-status changes go to the webhooks named by
      ``NOTIFICATION_WEBHOOK_URL`` and ``ACCOUNT_STATUS_WEBHOOK_URL``; without
      them they are only recorded in memory.
    - With ``CELERY_BROKER_URL`` set, alerts are queued on the
      ``dispatch_alerts`` task; otherwise a local thread pool sends them.

    ``credentials`` and ``principals`` default to empty in-memory stores, so an
    app built without them rejects every renewal with 401 until records are
    added.
    """
    config = config or EngineConfig.from_env()
    uri = mongodb_uri or os.getenv("MONGODB_URI")
    store = (
        MongoConfirmationTokenStore(uri=uri, database=os.getenv("MONGODB_DATABASE", "session_risk"))
        if uri
        else InMemoryConfirmationTokenStore()
    )
    notifier = WebhookNotifier() if resolve_webhook_url() else RecordingNotifier()
    account_status = (
        WebhookAccountStatus() if os.getenv("ACCOUNT_STATUS_WEBHOOK_URL") else InMemoryAccountStatus()
    )
    tracker = AttackPatternTracker(config)
    confirmation = ConfirmationWorkflow(store, notifier, account_status, config=config, tracker=tracker)
    orchestrator = RiskOrchestrator(HttpGeoLookup(config), config=config, tracker=tracker)
    if os.getenv("CELERY_BROKER_URL"):
        dispatch = enqueue_dispatch
    else:
        dispatch = AlertDispatcher(notifier, account_status, confirmation, config=config).dispatch_async
    renewal = SessionRenewalService(
        credentials if credentials is not None else InMemoryCredentialStore(),
        principals if principals is not None else InMemoryPrincipalDirectory(),
        orchestrator,
        dispatch,
    )
    return Components(renewal=renewal, confirmation=confirmation, tracker=tracker)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def create_app(components: Components | None = None) -> FastAPI:
    app = FastAPI(title="Session Risk Engine API", version="1.0.0")
    app.state.components = components or build_components()

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/sessions/renew", response_model=RenewResponse, responses={401: {}, 403: {"model": BlockedResponse}})
    def renew(payload: RenewRequest, request: Request):
        fingerprint = parse_user_agent(
            request.headers.get("user-agent"),
            ip=_client_ip(request),
            timezone=payload.timezone,
            language=payload.language,
        )
        try:
            decision = app.state.components.renewal.renew(payload.token, fingerprint)
        except AccessDenied as exc:
            return JSONResponse(status_code=401, content={"detail": str(exc)})

        verdict = decision.verdict
        if not decision.allowed:
            body = BlockedResponse(
                detail="please confirm your identity",
                confirmation_required=decision.confirmation_required,
            )
            return JSONResponse(status_code=403, content=body.model_dump())
        return RenewResponse(
            allowed=True,
            risk_level=verdict.risk_level.name,
            message=verdict.message,
            signals=[
                RiskSignalResponse(name=s.name, level=s.level.name, detail=s.detail) for s in verdict.signals
            ],
        )

    @app.post("/security/confirm", responses={400: {"model": ConfirmationFailureResponse}})
    def confirm(request: Request, token: str = Query(...)):
        try:
            app.state.components.confirmation.confirm(token, _client_ip(request), request.headers.get("user-agent"))
        except InvalidConfirmationToken as exc:
            body = ConfirmationFailureResponse(reason=exc.reason.value, message=exc.message)
            return JSONResponse(status_code=400, content=body.model_dump())
        return "CONFIRMED"

    @app.get("/security/pending/{principal_id}")
    def pending(principal_id: str) -> bool:
        return app.state.components.confirmation.has_pending(principal_id)

    @app.post(
        "/security/principals/{principal_id}/confirmation",
        response_model=ConfirmationIssuedResponse,
        status_code=201,
    )
    def issue_confirmation(
        principal_id: str, request: Request, payload: Optional[IssueConfirmationRequest] = None
    ):
        principal = app.state.components.renewal.principals.get(principal_id)
        if principal is None:
            return JSONResponse(status_code=404, content={"detail": "unknown principal"})
        token = app.state.components.confirmation.issue(
            principal,
            (payload or IssueConfirmationRequest()).reason,
            _client_ip(request),
            request.headers.get("user-agent"),
        )
        return ConfirmationIssuedResponse(principal_id=principal_id, expires_at=token.expires_at)

    @app.get("/security/principals/{principal_id}/attempts", response_model=AttemptSummaryResponse)
    def attempts(principal_id: str) -> AttemptSummaryResponse:
        tracker = app.state.components.tracker
        return AttemptSummaryResponse(
            principal_id=principal_id,
            recent_count=tracker.recent_count(principal_id),
            has_pattern=tracker.has_pattern(principal_id),
        )

    @app.delete("/security/principals/{principal_id}/attempts", response_model=AttemptSummaryResponse)
    def reset_attempts(principal_id: str) -> AttemptSummaryResponse:
        tracker = app.state.components.tracker
        tracker.reset(principal_id)
        return AttemptSummaryResponse(principal_id=principal_id, recent_count=0, has_pattern=False)

    return app


app = create_app()
