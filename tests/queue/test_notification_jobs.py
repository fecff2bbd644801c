import httpx
import pytest
from unittest.mock import MagicMock, patch

from onboarding.queue.jobs import deliver_notification_job, reconcile_pending_job
from onboarding.settings import settings

MESSAGE = {"to": "owner@chaipoint.example", "subject": "Application submitted successfully",
           "body": "Hi", "merchantId": "m-1", "toStatus": "submitted"}


@patch("onboarding.queue.jobs.log")
def test_deliver_without_url_is_skipped(mock_log):
    with patch.object(settings, "NOTIFICATION_URL", ""):
        assert deliver_notification_job(MESSAGE) is False
    assert mock_log.call_args.kwargs["event"] == "notification_skipped_no_url"


@patch("httpx.Client.post")
def test_deliver_posts_message(mock_post):
    mock_post.return_value = httpx.Response(202, json={"queued": True})
    with patch.object(settings, "NOTIFICATION_URL", "https://mail.example/send"):
        assert deliver_notification_job(MESSAGE) is True
    assert mock_post.call_args.args[0] == "https://mail.example/send"
    assert mock_post.call_args.kwargs["json"] == MESSAGE


@patch("httpx.Client.post")
def test_deliver_failure_raises_for_rq_retry(mock_post):
    mock_post.return_value = httpx.Response(500, text="relay down")
    with patch.object(settings, "NOTIFICATION_URL", "https://mail.example/send"):
        with pytest.raises(RuntimeError):
            deliver_notification_job(MESSAGE)


@patch("onboarding.queue.jobs.log")
@patch("onboarding.core.orchestrator.build_default_orchestrator")
def test_reconcile_pending_job(mock_build, mock_log):
    orch = MagicMock()
    orch.reconcile_pending.return_value = {"checked": 3, "applied": 1, "stillPending": 2, "errors": 0}
    mock_build.return_value = orch

    summary = reconcile_pending_job()

    assert summary["applied"] == 1
    assert mock_log.call_args_list[0].kwargs["event"] == "reconcile_job_start"
    assert mock_log.call_args.kwargs["event"] == "reconcile_job_done"
