"""
Webhook authentication: HMAC-SHA256 over "{timestamp}.{raw body}" plus a
freshness window. Runs before anything parses the payload.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Callable, Optional, Union

from onboarding.errors import UnauthorizedError
from onboarding.observability.logging import log, signature_prefix
from onboarding.settings import settings
from onboarding.utils.time import now_ms, parse_timestamp_ms


def compute_signature(secret: str, timestamp: str, raw_body: Union[bytes, str]) -> str:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    message = str(timestamp).encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class WebhookAuthenticator:
    def __init__(self, secret: Optional[str] = None, tolerance_sec: Optional[int] = None,
                 clock: Callable[[], int] = now_ms):
        self.secret = settings.WEBHOOK_SECRET if secret is None else secret
        self.tolerance_ms = int(settings.WEBHOOK_TOLERANCE_SEC if tolerance_sec is None else tolerance_sec) * 1000
        self.clock = clock

    def _reject(self, code: str, message: str, **fields) -> UnauthorizedError:
        log(event="webhook_auth_rejected", level="warning", code=code, **fields)
        return UnauthorizedError(message, code=code)

    def authenticate(self, raw_body: Union[bytes, str], signature: Optional[str],
                     timestamp: Optional[str]) -> None:
        """Raises UnauthorizedError; returns None when the callback is genuine."""
        if not signature or not timestamp:
            raise self._reject(
                "MISSING_WEBHOOK_AUTH",
                "Webhook signature or timestamp missing",
                hasSignature=bool(signature),
                hasTimestamp=bool(timestamp),
            )

        if not self.secret:
            raise self._reject("WEBHOOK_SECRET_NOT_CONFIGURED", "Webhook verification is not configured")

        ts_ms = parse_timestamp_ms(timestamp)
        if ts_ms is None:
            raise self._reject("INVALID_WEBHOOK_TIMESTAMP", "Webhook timestamp is malformed",
                               signaturePrefix=signature_prefix(signature))

        now = self.clock()
        # The boundary itself is already outside the window
        if abs(now - ts_ms) >= self.tolerance_ms:
            raise self._reject("WEBHOOK_TIMESTAMP_EXPIRED", "Webhook timestamp expired",
                               timestamp=ts_ms, now=now, differenceMs=abs(now - ts_ms),
                               signaturePrefix=signature_prefix(signature))

        expected = compute_signature(self.secret, timestamp, raw_body)
        if not hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8")):
            raise self._reject("INVALID_WEBHOOK_SIGNATURE", "Invalid webhook signature",
                               signaturePrefix=signature_prefix(signature))
