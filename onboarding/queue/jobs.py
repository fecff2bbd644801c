import httpx

from onboarding.observability.logging import log
from onboarding.settings import settings


def deliver_notification_job(message: dict) -> bool:
    """
    Deliver one prepared notification through the email relay.
    Raises on failure so RQ's Retry policy takes over.
    """
    merchant_id = message.get("merchantId", "")
    if not settings.NOTIFICATION_URL:
        log(event="notification_skipped_no_url", merchantId=merchant_id,
            subject=message.get("subject", ""), email=message.get("to", ""))
        return False

    log(event="notification_send_attempt", merchantId=merchant_id, subject=message.get("subject", ""))
    with httpx.Client(timeout=settings.NOTIFICATION_TIMEOUT_SEC) as client:
        resp = client.post(settings.NOTIFICATION_URL, json=message)

    if not 200 <= resp.status_code < 300:
        log(event="notification_send_failed", level="warning", merchantId=merchant_id,
            statusCode=int(resp.status_code), responseText=(resp.text or "")[:300])
        raise RuntimeError(f"Notification relay failed: {resp.status_code}")

    log(event="notification_sent", merchantId=merchant_id, statusCode=int(resp.status_code))
    return True


def reconcile_pending_job() -> dict:
    """Periodic sweep for decisions whose webhook never arrived."""
    from onboarding.core.orchestrator import build_default_orchestrator

    log(event="reconcile_job_start")
    try:
        summary = build_default_orchestrator().reconcile_pending()
    except Exception as e:
        log(event="reconcile_job_exception", level="error", error=str(e)[:300])
        raise
    log(event="reconcile_job_done", **summary)
    return summary
