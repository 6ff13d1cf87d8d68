from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List

from .collaborators import AccountStatus, Notifier
from .config import EngineConfig
from .confirmation import ConfirmationWorkflow
from .models import DeviceChangeKind, Principal, RiskLevel, RiskVerdict
from .risk_engine import log_level_for


logger = logging.getLogger(__name__)

_SUBJECTS = {
    RiskLevel.CRITICAL: "CRITICAL security alert - suspicious activity detected",
    RiskLevel.HIGH: "Security alert - unusual sign-in blocked",
    RiskLevel.MEDIUM: "Security notice - new sign-in",
    RiskLevel.LOW: "Security notice",
}

_OPENINGS = {
    RiskLevel.CRITICAL: (
        "Suspicious activity was detected on your account. As a precaution every session "
        "has been signed out and you must confirm your identity before signing in again."
    ),
    RiskLevel.HIGH: "An unusual sign-in to your account was blocked until you confirm your identity.",
    RiskLevel.MEDIUM: "A new sign-in to your account was detected.",
    RiskLevel.LOW: "A sign-in to your account was detected.",
}


def build_email_body(principal: Principal, verdict: RiskVerdict) -> str:
    lines = [f"Hello {principal.display_name or principal.email},", "", _OPENINGS[verdict.risk_level], ""]
    lines.append("Sign-in details:")
    if verdict.ip_changed:
        lines.append(f"- Previous IP: {verdict.previous_ip} ({verdict.previous_country or 'unknown'})")
        lines.append(f"- New IP: {verdict.current_ip} ({verdict.current_country or 'unknown'})")
    else:
        lines.append(f"- IP: {verdict.current_ip}")
    if verdict.device_change not in (None, DeviceChangeKind.NONE):
        lines.append(f"- Previous device: {verdict.previous_device or 'unknown'}")
        lines.append(f"- New device: {verdict.current_device}")
    else:
        lines.append(f"- Device: {verdict.current_device}")
    if verdict.vpn_detected:
        lines.append("- A VPN or proxy was detected")
    lines.append(f"- Time: {verdict.evaluated_at:%Y-%m-%d %H:%M} UTC")
    lines.extend(["", "If this was not you, secure your account immediately."])
    return "\n".join(lines)


def build_sms_body(verdict: RiskVerdict) -> str:
    if verdict.risk_level >= RiskLevel.CRITICAL:
        return "Suspicious activity detected. Your account has been secured; check your email to unlock it."
    return "New sign-in detected on your account. If this was not you, secure your account."


def build_admin_summary(principal: Principal, verdict: RiskVerdict) -> str:
    return (
        f"[{verdict.risk_level.name}] {principal.email} ({principal.principal_id}): {verdict.message}. "
        f"IP {verdict.current_ip} ({verdict.current_country or 'unknown'}), "
        f"device {verdict.current_device}. Changes: {verdict.changes_summary()}"
    )


class AlertDispatcher:
    """Turns a verdict into notifications and, for CRITICAL, account lockdown.

    Every channel is isolated: a failure is logged and the remaining channels
    still run. Nothing is raised to the caller.
    """

    def __init__(
        self,
        notifier: Notifier,
        account_status: AccountStatus,
        confirmation: ConfirmationWorkflow,
        config: EngineConfig | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.notifier = notifier
        self.account_status = account_status
        self.confirmation = confirmation
        self.config = config or EngineConfig()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.dispatch_workers, thread_name_prefix="risk-alerts"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def dispatch_async(self, principal: Principal, verdict: RiskVerdict) -> Future:
        return self._executor.submit(self.dispatch, principal, verdict)

    def dispatch(self, principal: Principal, verdict: RiskVerdict) -> List[str]:
        """Run every channel the verdict asks for and return the ones that succeeded."""
        logger.log(
            log_level_for(verdict.risk_level),
            "Security alert for %s: level=%s message=%s",
            principal.principal_id,
            verdict.risk_level.name,
            verdict.message,
        )
        delivered: List[str] = []
        principal_id = principal.principal_id

        def attempt(channel: str, func, *args) -> None:
            try:
                func(*args)
            except Exception as exc:
                logger.error("Alert channel %s failed for %s: %s", channel, principal_id, exc)
                return
            delivered.append(channel)

        if verdict.email_alert:
            attempt(
                "email",
                self.notifier.send_email,
                principal,
                _SUBJECTS[verdict.risk_level],
                build_email_body(principal, verdict),
            )

        if verdict.sms_alert:
            if principal.phone_number:
                attempt("sms", self.notifier.send_sms, principal, build_sms_body(verdict))
            else:
                logger.debug("No phone number on file for %s; SMS skipped", principal_id)

        if verdict.admin_notification:
            attempt("admin", self.notifier.notify_admins, principal, build_admin_summary(principal, verdict))

        if verdict.risk_level >= RiskLevel.CRITICAL:
            attempt("surveillance", self.account_status.set_under_surveillance, principal_id, True)
            attempt(
                "confirmation",
                self.confirmation.issue,
                principal,
                verdict.message,
                verdict.current_ip,
                verdict.current_user_agent,
            )
        return delivered
