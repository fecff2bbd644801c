"""
Notification dispatch.

The orchestrator calls the dispatcher after every committed transition. From
its point of view this is fire-and-forget: building and enqueueing a message
must never raise into the request, so failures are logged here and stop here.
Actual delivery happens in an RQ worker (queue.jobs.deliver_notification_job).
"""
from abc import ABC, abstractmethod

from rq import Retry

from onboarding.notify.messages import build_admin_submission_message, build_status_change_message
from onboarding.observability.logging import log
from onboarding.settings import settings
from onboarding.store.models import MerchantApplication


class NotificationDispatcher(ABC):

    @abstractmethod
    def notify_status_change(self, merchant: MerchantApplication, old_status: str, new_status: str) -> None:
        ...

    @abstractmethod
    def notify_admin_new_submission(self, merchant: MerchantApplication) -> None:
        ...


class QueuedNotificationDispatcher(NotificationDispatcher):

    def _enqueue(self, message: dict, kind: str) -> None:
        if not settings.NOTIFICATIONS_ENABLED:
            return
        # Lazy imports: jobs -> orchestrator -> dispatcher
        from onboarding.queue.jobs import deliver_notification_job
        from onboarding.queue.rq_conn import get_queue

        try:
            q = get_queue()
            job = q.enqueue(
                deliver_notification_job,
                message,
                retry=Retry(
                    max=int(settings.NOTIFICATION_MAX_RETRIES),
                    interval=settings.notification_retry_intervals or 0,
                ),
            )
            log(
                event="notification_enqueued",
                kind=kind,
                merchantId=message.get("merchantId", ""),
                rq_job_id=getattr(job, "id", "") or "",
                toStatus=message.get("toStatus", ""),
            )
        except Exception as e:
            log(
                event="notification_enqueue_failed",
                level="error",
                kind=kind,
                merchantId=message.get("merchantId", ""),
                errorType=type(e).__name__,
                error=str(e)[:300],
            )

    def notify_status_change(self, merchant: MerchantApplication, old_status: str, new_status: str) -> None:
        try:
            message = build_status_change_message(merchant, old_status, new_status)
        except Exception as e:
            log(event="notification_build_failed", level="error", merchantId=merchant.id,
                fromStatus=old_status, toStatus=new_status, error=str(e)[:300])
            return
        self._enqueue(message, "status_change")

    def notify_admin_new_submission(self, merchant: MerchantApplication) -> None:
        try:
            message = build_admin_submission_message(merchant, settings.ADMIN_EMAIL)
        except Exception as e:
            log(event="notification_build_failed", level="error", merchantId=merchant.id, error=str(e)[:300])
            return
        self._enqueue(message, "admin_new_submission")
