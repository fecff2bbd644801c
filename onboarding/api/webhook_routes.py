from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from onboarding.api.deps import get_orchestrator
from onboarding.api.schemas import ApiResponse, SimulatedDecisionRequest, envelope

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/bank", response_model=ApiResponse)
async def bank_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None, alias="x-webhook-signature"),
    x_webhook_timestamp: Optional[str] = Header(default=None, alias="x-webhook-timestamp"),
    orch=Depends(get_orchestrator),
):
    # Signature covers the exact bytes received, so read the raw body before any parsing
    raw_body = await request.body()
    outcome, record = await run_in_threadpool(
        orch.handle_webhook, raw_body, x_webhook_signature, x_webhook_timestamp
    )
    return envelope(
        {"merchantId": record.id, "status": record.status, "outcome": outcome},
        message="Webhook processed successfully",
    )


@router.post("/bank/test", response_model=ApiResponse)
async def bank_webhook_test(body: SimulatedDecisionRequest, orch=Depends(get_orchestrator)):
    """Development only: simulate a bank decision for a merchant's stored application."""
    outcome, record = await run_in_threadpool(orch.apply_test_decision, body.merchantId, body.approved)
    return envelope(
        {"merchantId": record.id, "status": record.status, "outcome": outcome},
        message="Test webhook processed",
    )
