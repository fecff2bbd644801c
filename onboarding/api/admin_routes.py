from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from starlette.concurrency import run_in_threadpool

from onboarding.api.deps import get_orchestrator
from onboarding.api.schemas import ApiResponse, RejectRequest, envelope
from onboarding.errors import ForbiddenError
import onboarding.observability.metrics as metrics
from onboarding.settings import settings

def require_admin(x_admin_key: str = Header(default="", alias="x-admin-key")):
    if not settings.ADMIN_RBAC_ENABLED:
        return
    # Secure default: if enabled but no key configured, reject all.
    if not settings.ADMIN_API_KEY:
        raise ForbiddenError("Admin access disabled (no key configured)", code="ADMIN_DISABLED")
    if x_admin_key != settings.ADMIN_API_KEY:
        raise ForbiddenError("Invalid admin key", code="INVALID_ADMIN_KEY")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def admin_user(x_admin_user: str = Header(default="", alias="x-admin-user")) -> Optional[str]:
    return x_admin_user or None


@router.get("/merchants", response_model=ApiResponse)
async def list_merchants(status: Optional[str] = Query(default=None), orch=Depends(get_orchestrator)):
    records = await run_in_threadpool(orch.list_merchants, status)
    return envelope([r.to_dict() for r in records])


@router.get("/merchants/{merchant_id}", response_model=ApiResponse)
async def get_merchant(merchant_id: str, orch=Depends(get_orchestrator)):
    record = await run_in_threadpool(orch.get_merchant, merchant_id)
    return envelope(record.to_dict())


@router.post("/merchants/{merchant_id}/validate", response_model=ApiResponse)
async def validate_merchant(merchant_id: str, admin_id=Depends(admin_user), orch=Depends(get_orchestrator)):
    """Validate the profile and submit to the bank (or retry a failed submission)."""
    record, result = await run_in_threadpool(orch.admin_validate, merchant_id, admin_id)
    return envelope(
        {"merchant": record.to_dict(), "bankSubmission": asdict(result)},
        message="Merchant validated and submitted to bank",
    )


@router.post("/merchants/{merchant_id}/approve", response_model=ApiResponse)
async def approve_merchant(merchant_id: str, admin_id=Depends(admin_user), orch=Depends(get_orchestrator)):
    record = await run_in_threadpool(orch.admin_approve, merchant_id, admin_id)
    return envelope(record.to_dict(), message="Merchant approved")


@router.post("/merchants/{merchant_id}/reject", response_model=ApiResponse)
async def reject_merchant(merchant_id: str, body: Optional[RejectRequest] = None,
                          admin_id=Depends(admin_user), orch=Depends(get_orchestrator)):
    reason = body.reason if body else None
    record = await run_in_threadpool(orch.admin_reject, merchant_id, reason, admin_id)
    return envelope(record.to_dict(), message="Merchant rejected")


@router.post("/merchants/{merchant_id}/reconcile", response_model=ApiResponse)
async def reconcile_merchant(merchant_id: str, orch=Depends(get_orchestrator)):
    result = await run_in_threadpool(orch.reconcile, merchant_id)
    return envelope(result)


@router.delete("/merchants/{merchant_id}", response_model=ApiResponse)
async def delete_merchant(merchant_id: str, force: bool = Query(default=False),
                          admin_id=Depends(admin_user), orch=Depends(get_orchestrator)):
    await run_in_threadpool(orch.delete_merchant, merchant_id, force, admin_id)
    return envelope({"merchantId": merchant_id}, message="Merchant deleted")


@router.get("/metrics")
def get_metrics():
    """Webhook and bank submission counters (counts, rates, latency p50/p95)."""
    return metrics.get_metrics_snapshot()
