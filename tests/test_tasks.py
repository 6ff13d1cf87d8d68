import pytest

from session_risk_engine import AlertDispatcher, ConfirmationWorkflow, RiskLevel
from session_risk_engine import tasks
from session_risk_engine.collaborators import InMemoryAccountStatus, RecordingNotifier
from session_risk_engine.config import ACTIONS_BY_LEVEL
from session_risk_engine.models import RiskVerdict
from session_risk_engine.persistence import InMemoryConfirmationTokenStore


@pytest.fixture
def wired(clock):
    notifier = RecordingNotifier()
    account_status = InMemoryAccountStatus()
    store = InMemoryConfirmationTokenStore()
    workflow = ConfirmationWorkflow(store, notifier, account_status, clock=clock)
    dispatcher = AlertDispatcher(notifier, account_status, workflow)
    tasks.configure(workflow, dispatcher)
    yield workflow, store, notifier, account_status
    tasks.configure(None, None)
    dispatcher.close()


def test_beat_schedule_runs_sweep_daily():
    entry = tasks.celery_app.conf.beat_schedule["sweep-confirmation-tokens"]
    assert entry["task"] == tasks.sweep_confirmation_tokens.name
    assert entry["schedule"].hour == {2}
    assert entry["schedule"].minute == {0}


def test_sweep_task_uses_configured_workflow(wired, principal, clock):
    workflow, store, _, _ = wired
    workflow.issue(principal, "reason", "1.1.1.1", "ua")
    clock.advance(days=8)
    assert tasks.sweep_confirmation_tokens() == 1
    assert len(store) == 0


def test_dispatch_task_accepts_serialized_arguments(wired, principal):
    _, store, notifier, account_status = wired
    verdict = RiskVerdict(
        principal_id="user-1",
        risk_level=RiskLevel.CRITICAL,
        message="revoked credential reuse",
        actions=ACTIONS_BY_LEVEL[RiskLevel.CRITICAL],
        current_ip="5.160.0.1",
        current_device="Chrome 120.0 on Windows 10",
    )

    delivered = tasks.dispatch_alerts(tasks.serialize_principal(principal), verdict.as_dict())

    assert delivered == ["email", "sms", "admin", "surveillance", "confirmation"]
    assert "user-1" in account_status.under_surveillance
    assert len(store) == 1
    assert notifier.sms[0][0] == "user-1"


def test_principal_round_trip():
    payload = {"principal_id": "user-9", "email": "eve@example.com", "display_name": None, "phone_number": None}
    principal = tasks._to_principal(payload)
    assert principal.display_name == ""
    assert tasks.serialize_principal(principal) == {**payload, "display_name": ""}
