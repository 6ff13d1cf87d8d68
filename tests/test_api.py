import pytest
from fastapi.testclient import TestClient

from session_risk_engine import (
    AlertDispatcher,
    AttackPatternTracker,
    ConfirmationWorkflow,
    RiskOrchestrator,
    SessionRenewalService,
    parse_user_agent,
)
from session_risk_engine.api import Components, build_components, create_app
from session_risk_engine.collaborators import (
    InMemoryAccountStatus,
    InMemoryCredentialStore,
    InMemoryPrincipalDirectory,
    RecordingNotifier,
)
from session_risk_engine.persistence import InMemoryConfirmationTokenStore
from session_risk_engine.tasks import enqueue_dispatch
from session_risk_engine.webhook import WebhookAccountStatus, WebhookNotifier

from conftest import make_record


CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def components(geo, config, principal, notifier):
    tracker = AttackPatternTracker(config)
    account_status = InMemoryAccountStatus()
    confirmation = ConfirmationWorkflow(
        InMemoryConfirmationTokenStore(), notifier, account_status, config=config, tracker=tracker
    )
    orchestrator = RiskOrchestrator(geo, config=config, tracker=tracker)
    dispatcher = AlertDispatcher(notifier, account_status, confirmation, config=config)
    record = make_record(fingerprint=parse_user_agent(CHROME, ip="82.64.1.10"))
    renewal = SessionRenewalService(
        InMemoryCredentialStore([record]),
        InMemoryPrincipalDirectory([principal]),
        orchestrator,
        dispatcher.dispatch_async,
    )
    yield Components(renewal=renewal, confirmation=confirmation, tracker=tracker)
    dispatcher.close()
    orchestrator.close()


@pytest.fixture
def client(components):
    return TestClient(create_app(components))


def renew(client, user_agent=CHROME, ip="82.64.1.10", token="refresh-1"):
    return client.post(
        "/sessions/renew",
        json={"token": token, "timezone": "Europe/Paris"},
        headers={"User-Agent": user_agent, "X-Forwarded-For": f"{ip}, 10.0.0.1"},
    )


def issued_token(notifier):
    body = notifier.emails[-1][2]
    return body.split("token=")[1].splitlines()[0]


def test_healthcheck(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_renew_from_known_device(client):
    response = renew(client)
    assert response.status_code == 200
    body = response.json()
    assert body["allowed"] is True
    assert body["risk_level"] == "LOW"
    assert {signal["name"] for signal in body["signals"]} == {"ip_risk", "device_change"}


def test_renew_from_new_country_is_allowed_with_medium_risk(client):
    response = renew(client, ip="8.8.8.8")
    assert response.status_code == 200
    assert response.json()["risk_level"] == "MEDIUM"


def test_suspicious_renewal_is_blocked(client):
    response = renew(client, user_agent=FIREFOX_LINUX)
    assert response.status_code == 403
    assert response.json() == {"detail": "please confirm your identity", "confirmation_required": True}


def test_unknown_credential_is_generic_401(client):
    response = renew(client, token="forged")
    assert response.status_code == 401
    assert response.json() == {"detail": "access denied"}


def test_attempts_are_tracked_and_reset(client):
    for _ in range(2):
        renew(client, ip="185.220.101.1")
    summary = client.get("/security/principals/user-1/attempts").json()
    assert summary == {"principal_id": "user-1", "recent_count": 2, "has_pattern": False}

    reset = client.delete("/security/principals/user-1/attempts")
    assert reset.status_code == 200
    assert client.get("/security/principals/user-1/attempts").json()["recent_count"] == 0


def test_confirmation_round_trip(client, notifier):
    assert client.get("/security/pending/user-1").json() is False

    issued = client.post("/security/principals/user-1/confirmation", json={"reason": "support ticket"})
    assert issued.status_code == 201
    assert issued.json()["principal_id"] == "user-1"
    assert client.get("/security/pending/user-1").json() is True

    token = issued_token(notifier)
    confirmed = client.post("/security/confirm", params={"token": token})
    assert confirmed.status_code == 200
    assert confirmed.json() == "CONFIRMED"
    assert client.get("/security/pending/user-1").json() is False

    replay = client.post("/security/confirm", params={"token": token})
    assert replay.status_code == 400
    assert replay.json() == {
        "reason": "already_used",
        "message": "This confirmation link has already been used",
    }


def test_superseded_confirmation_link(client, notifier):
    client.post("/security/principals/user-1/confirmation")
    first = issued_token(notifier)
    client.post("/security/principals/user-1/confirmation")

    response = client.post("/security/confirm", params={"token": first})
    assert response.status_code == 400
    assert response.json()["reason"] == "invalidated"


def test_unknown_confirmation_token(client):
    response = client.post("/security/confirm", params={"token": "bogus"})
    assert response.status_code == 400
    assert response.json()["reason"] == "not_found"


def test_issue_confirmation_for_unknown_principal(client):
    response = client.post("/security/principals/nobody/confirmation")
    assert response.status_code == 404


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("MONGODB_URI", "CELERY_BROKER_URL", "NOTIFICATION_WEBHOOK_URL", "ACCOUNT_STATUS_WEBHOOK_URL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_build_components_uses_given_stores(clean_env, config, principal):
    record = make_record(fingerprint=parse_user_agent(CHROME, ip="82.64.1.10"))
    components = build_components(
        config,
        credentials=InMemoryCredentialStore([record]),
        principals=InMemoryPrincipalDirectory([principal]),
    )
    client = TestClient(create_app(components))
    response = client.post(
        "/sessions/renew",
        json={"token": "refresh-1"},
        headers={"User-Agent": CHROME, "X-Forwarded-For": "82.64.1.10"},
    )
    assert response.status_code == 200
    assert isinstance(components.confirmation.notifier, RecordingNotifier)


def test_build_components_routes_alerts_through_webhooks_and_celery(clean_env, config):
    clean_env.setenv("NOTIFICATION_WEBHOOK_URL", "http://gateway.test/notify")
    clean_env.setenv("ACCOUNT_STATUS_WEBHOOK_URL", "http://accounts.test/hook")
    clean_env.setenv("CELERY_BROKER_URL", "memory://")

    components = build_components(config)

    assert isinstance(components.confirmation.notifier, WebhookNotifier)
    assert isinstance(components.confirmation.account_status, WebhookAccountStatus)
    assert components.renewal.dispatch is enqueue_dispatch


def test_build_components_without_broker_dispatches_in_process(clean_env, config):
    components = build_components(config)
    assert components.renewal.dispatch.__self__.__class__ is AlertDispatcher
