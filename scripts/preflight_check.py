#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid KeyErrors during config load if any
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import onboarding.main
    print("Import onboarding.main: OK")

    import onboarding.queue.jobs
    print("Import onboarding.queue.jobs: OK")

    from onboarding.settings import settings
    if not settings.WEBHOOK_SECRET:
        print("[WARN] WEBHOOK_SECRET is empty: every bank webhook will be rejected.")
    if settings.MERCHANT_LOCK_TTL_MS <= settings.BANK_API_TIMEOUT_SEC * 1000:
        print("[WARN] MERCHANT_LOCK_TTL_MS does not outlive BANK_API_TIMEOUT_SEC; "
              "the merchant lock can expire during a bank submission.")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
