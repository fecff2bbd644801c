#!/usr/bin/env python3
"""
Sign a bank decision webhook body for manual testing.

Usage:
    python scripts/sign_webhook.py payload.json            # prints headers
    python scripts/sign_webhook.py payload.json --post URL # signs and sends it

The body is signed exactly as stored in the file; do not reformat it after signing.
"""
import argparse
import sys

import httpx

from onboarding.bank.signature import compute_signature
from onboarding.settings import settings
from onboarding.utils.time import now_ms


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("payload", help="Path to the JSON body (use - for stdin)")
    parser.add_argument("--secret", default=None, help="Defaults to WEBHOOK_SECRET")
    parser.add_argument("--timestamp", default=None, help="Epoch milliseconds; defaults to now")
    parser.add_argument("--post", default=None, metavar="URL", help="Send the signed request to URL")
    args = parser.parse_args(argv)

    secret = args.secret if args.secret is not None else settings.WEBHOOK_SECRET
    if not secret:
        print("No secret: pass --secret or set WEBHOOK_SECRET", file=sys.stderr)
        return 2

    if args.payload == "-":
        body = sys.stdin.buffer.read()
    else:
        with open(args.payload, "rb") as f:
            body = f.read()

    timestamp = args.timestamp or str(now_ms())
    signature = compute_signature(secret, timestamp, body)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": signature,
        "X-Webhook-Timestamp": timestamp,
    }

    if not args.post:
        for k, v in headers.items():
            print(f"{k}: {v}")
        return 0

    resp = httpx.post(args.post, content=body, headers=headers, timeout=10)
    print(resp.status_code)
    print(resp.text)
    return 0 if 200 <= resp.status_code < 300 else 1


if __name__ == "__main__":
    sys.exit(main())
