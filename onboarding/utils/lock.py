from contextlib import contextmanager
import time
import uuid

from onboarding.errors import ConflictError
from onboarding.observability.logging import log
from onboarding.settings import settings
from onboarding.store.redis_conn import get_redis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

@contextmanager
def merchant_lock(merchant_id: str, ttl_ms: int = None):
    """
    Distributed lock to ensure a single writer per merchant record.
    Held across the whole read-validate-write sequence (including the bank call
    during admin validation), so the TTL must outlive the bank timeout.
    """
    r = get_redis()
    key = f"lock:merchant:{merchant_id}"
    token = uuid.uuid4().hex
    ttl_ms = int(ttl_ms or settings.MERCHANT_LOCK_TTL_MS)
    acquired = r.set(key, token, px=ttl_ms, nx=True)

    try:
        if not acquired:
            for _ in range(int(settings.LOCK_RETRY_ATTEMPTS)):
                time.sleep(settings.LOCK_RETRY_DELAY_MS / 1000.0)
                if r.set(key, token, px=ttl_ms, nx=True):
                    acquired = True
                    break

            if not acquired:
                log(event="merchant_lock_busy", level="warning", merchantId=merchant_id)
                raise ConflictError(
                    "Another operation is in progress for this merchant",
                    code="MERCHANT_LOCKED",
                )

        yield
    finally:
        if acquired:
            # Release only if we own it
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as e:
                # The TTL still frees the key
                log(event="merchant_lock_release_failed", level="warning",
                    merchantId=merchant_id, error=str(e)[:200])
