from unittest.mock import patch

from onboarding.settings import settings


def test_bank_callback_url_joins_base_and_path():
    with patch.object(settings, "API_BASE_URL", "https://onboarding.example/"), \
         patch.object(settings, "BANK_WEBHOOK_PATH", "/webhooks/bank"):
        assert settings.bank_callback_url == "https://onboarding.example/webhooks/bank"


def test_is_production():
    with patch.object(settings, "ENVIRONMENT", "production"):
        assert settings.is_production
    with patch.object(settings, "ENVIRONMENT", "development"):
        assert not settings.is_production


def test_lock_ttl_outlives_bank_timeout_by_default():
    assert settings.MERCHANT_LOCK_TTL_MS > settings.BANK_API_TIMEOUT_SEC * 1000


def test_notification_retry_intervals_parsed():
    with patch.object(settings, "NOTIFICATION_RETRY_INTERVALS", "10, 30,,60"):
        assert settings.notification_retry_intervals == [10, 30, 60]
    with patch.object(settings, "NOTIFICATION_RETRY_INTERVALS", ""):
        assert settings.notification_retry_intervals == []
