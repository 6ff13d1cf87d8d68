from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

from celery import Celery
from celery.schedules import crontab

from .alerts import AlertDispatcher
from .config import EngineConfig
from .confirmation import ConfirmationWorkflow
from .models import Principal, RiskVerdict
from .persistence import MongoConfirmationTokenStore
from .webhook import WebhookAccountStatus, WebhookNotifier


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")


def _result_backend() -> str:
    return os.getenv("CELERY_RESULT_BACKEND", _broker_url())


def _mongodb_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://mongo:27017/")


def _mongodb_database() -> str:
    return os.getenv("MONGODB_DATABASE", "session_risk")


celery_app = Celery("session_risk_engine", broker=_broker_url(), backend=_result_backend())
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "sweep-confirmation-tokens": {
            "task": "session_risk_engine.sweep_confirmation_tokens",
            "schedule": crontab(hour=2, minute=0),
        }
    },
)

_WORKFLOW: Optional[ConfirmationWorkflow] = None
_DISPATCHER: Optional[AlertDispatcher] = None


def configure(workflow: ConfirmationWorkflow | None = None, dispatcher: AlertDispatcher | None = None) -> None:
    """Install the components used by the tasks in this process."""
    global _WORKFLOW, _DISPATCHER
    _WORKFLOW = workflow
    _DISPATCHER = dispatcher


def _get_workflow() -> ConfirmationWorkflow:
    global _WORKFLOW
    if _WORKFLOW is None:
        _WORKFLOW = ConfirmationWorkflow(
            store=MongoConfirmationTokenStore(uri=_mongodb_uri(), database=_mongodb_database()),
            notifier=WebhookNotifier(),
            account_status=WebhookAccountStatus(),
            config=EngineConfig.from_env(),
        )
    return _WORKFLOW


def _get_dispatcher() -> AlertDispatcher:
    global _DISPATCHER
    if _DISPATCHER is None:
        workflow = _get_workflow()
        _DISPATCHER = AlertDispatcher(
            notifier=workflow.notifier,
            account_status=workflow.account_status,
            confirmation=workflow,
            config=workflow.config,
        )
    return _DISPATCHER


def _to_principal(payload: Mapping[str, Any]) -> Principal:
    return Principal(
        principal_id=str(payload.get("principal_id")),
        email=str(payload.get("email")),
        display_name=str(payload.get("display_name") or ""),
        phone_number=payload.get("phone_number"),
    )


def serialize_principal(principal: Principal) -> Dict[str, Any]:
    return {
        "principal_id": principal.principal_id,
        "email": principal.email,
        "display_name": principal.display_name,
        "phone_number": principal.phone_number,
    }


@celery_app.task(name="session_risk_engine.dispatch_alerts")
def dispatch_alerts(principal: Mapping[str, Any], verdict: Mapping[str, Any]) -> list:
    return _get_dispatcher().dispatch(_to_principal(principal), RiskVerdict.from_dict(verdict))


@celery_app.task(name="session_risk_engine.sweep_confirmation_tokens")
def sweep_confirmation_tokens() -> int:
    return _get_workflow().sweep()


def enqueue_dispatch(principal: Principal, verdict: RiskVerdict) -> str:
    result = dispatch_alerts.apply_async(args=[serialize_principal(principal), verdict.as_dict()])
    return result.id
