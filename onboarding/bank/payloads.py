"""
Bank payload helpers
--------------------
Outbound: turn a MerchantApplication into the partner's application request.
Inbound: structural checks on decision webhooks and conversion into a
DecisionCallback. Signature verification (bank.signature) always runs
before the structural check.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

from onboarding.settings import settings
from onboarding.store.models import DecisionCallback, MerchantApplication, UpiIdentifiers

REQUIRED_WEBHOOK_FIELDS = ("applicationId", "merchantId", "status", "decision", "processedAt")

# Partner status values that carry a final decision
FINAL_BANK_STATUSES = ("approved", "rejected")


def _slug(value: str, max_len: int = 20) -> str:
    s = re.sub(r"[^a-z0-9]+", "", (value or "").lower())
    return (s or "merchant")[:max_len]


def generate_upi_identifiers(merchant: MerchantApplication, handle: Optional[str] = None) -> UpiIdentifiers:
    """
    Deterministic per merchant, so a retried submission sends the same identifiers.
    """
    handle = (handle or settings.UPI_PSP_HANDLE or "ybl").lstrip("@")
    short_id = re.sub(r"[^a-z0-9]", "", (merchant.id or "").lower())[:8]
    vpa = f"{_slug(merchant.businessName)}.{short_id}@{handle}"
    qr = (
        f"upi://pay?pa={vpa}"
        f"&pn={quote(merchant.businessName or '', safe='')}"
        f"&mc={quote(str((merchant.metadata or {}).get('mcc') or '0000'), safe='')}"
        f"&tr={merchant.id}"
        f"&cu=INR"
    )
    return UpiIdentifiers(vpa=vpa, qrString=qr)


def build_application_request(merchant: MerchantApplication, upi: UpiIdentifiers,
                               callback_url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "merchantId": merchant.id,
        "businessName": merchant.businessName,
        "businessType": merchant.businessType,
        "registrationNumber": merchant.registrationNumber,
        "taxId": merchant.taxId,
        "email": merchant.email,
        "phone": merchant.phone,
        "upiVpa": upi.vpa,
        "upiQrString": upi.qrString,
        "address": {
            "line1": merchant.addressLine1,
            "line2": merchant.addressLine2,
            "city": merchant.city,
            "state": merchant.state,
            "postalCode": merchant.postalCode,
            "country": merchant.country,
        },
        "documents": [
            {"type": d.get("type"), "url": d.get("url")}
            for d in (merchant.documents or [])
            if isinstance(d, dict)
        ],
        "callbackUrl": callback_url or settings.bank_callback_url,
    }


def check_webhook_structure(payload: Any) -> Tuple[bool, Dict[str, bool]]:
    """Returns (ok, presence map) for the required decision fields."""
    if not isinstance(payload, dict):
        return False, {k: False for k in REQUIRED_WEBHOOK_FIELDS}
    presence = {k: bool(payload.get(k)) for k in REQUIRED_WEBHOOK_FIELDS}
    decision = payload.get("decision")
    ok = all(presence.values()) and isinstance(decision, dict) and isinstance(decision.get("approved"), bool)
    return ok, presence


def to_decision_callback(payload: Dict[str, Any]) -> DecisionCallback:
    decision = payload.get("decision") or {}
    return DecisionCallback(
        applicationId=str(payload["applicationId"]),
        merchantId=str(payload["merchantId"]),
        approved=bool(decision["approved"]),
        reason=decision.get("reason"),
        accountNumber=decision.get("accountNumber"),
        merchantCode=decision.get("merchantCode"),
        processedAt=payload.get("processedAt"),
    )
