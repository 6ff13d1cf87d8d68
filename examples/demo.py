from datetime import datetime, timedelta, timezone

from session_risk_engine import (
    AlertDispatcher,
    AttackPatternTracker,
    ConfirmationWorkflow,
    CredentialRecord,
    EngineConfig,
    Principal,
    RiskOrchestrator,
    SessionRenewalService,
    parse_user_agent,
)
from session_risk_engine.collaborators import (
    InMemoryAccountStatus,
    InMemoryCredentialStore,
    InMemoryPrincipalDirectory,
    RecordingNotifier,
    StaticGeoLookup,
)
from session_risk_engine.persistence import InMemoryConfirmationTokenStore


CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


def main() -> None:
    config = EngineConfig()
    geo = StaticGeoLookup(
        countries={"82.64.1.10": "FR", "8.8.8.8": "US", "185.220.101.1": "DE"},
        vpn_ips={"185.220.101.1"},
    )
    notifier = RecordingNotifier()
    account_status = InMemoryAccountStatus()
    tracker = AttackPatternTracker(config)
    confirmation = ConfirmationWorkflow(
        InMemoryConfirmationTokenStore(), notifier, account_status, config=config, tracker=tracker
    )
    orchestrator = RiskOrchestrator(geo, config=config, tracker=tracker)
    dispatcher = AlertDispatcher(notifier, account_status, confirmation, config=config)

    alice = Principal(principal_id="alice", email="alice@example.com", display_name="Alice")
    record = CredentialRecord(
        token="refresh-alice",
        principal_id="alice",
        created_ip="82.64.1.10",
        fingerprint=parse_user_agent(CHROME_WINDOWS, ip="82.64.1.10"),
        expires_at=datetime.now(timezone.utc) + timedelta(days=7),
    )
    service = SessionRenewalService(
        InMemoryCredentialStore([record]),
        InMemoryPrincipalDirectory([alice]),
        orchestrator,
        dispatcher.dispatch_async,
    )

    attempts = [
        ("same device, same network", CHROME_WINDOWS, "82.64.1.10"),
        ("travelling", CHROME_WINDOWS, "8.8.8.8"),
        ("new machine", FIREFOX_LINUX, "82.64.1.10"),
        ("vpn", CHROME_WINDOWS, "185.220.101.1"),
        ("vpn again", CHROME_WINDOWS, "185.220.101.1"),
        ("replay after lockdown", CHROME_WINDOWS, "82.64.1.10"),
    ]
    for label, user_agent, ip in attempts:
        decision = service.renew("refresh-alice", parse_user_agent(user_agent, ip=ip))
        verdict = decision.verdict
        print(f"{label}: {verdict.risk_level.name} allowed={decision.allowed} :: {verdict.message}")
        for signal in verdict.signals:
            print(f"  - {signal.name}: {signal.level.name} :: {signal.detail}")

    dispatcher.close()
    orchestrator.close()
    print("Emails sent:", [subject for _, subject, _ in notifier.emails])
    print("Under surveillance:", sorted(account_status.under_surveillance))


if __name__ == "__main__":
    main()
