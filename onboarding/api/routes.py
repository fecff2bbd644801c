from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from onboarding.api.auth import current_owner, require_api_key
from onboarding.api.deps import get_orchestrator
from onboarding.api.schemas import ApiResponse, MerchantSubmission, envelope

router = APIRouter(prefix="/merchants", tags=["merchants"], dependencies=[Depends(require_api_key)])


@router.get("/me", response_model=ApiResponse)
async def get_my_profile(owner_id: str = Depends(current_owner), orch=Depends(get_orchestrator)):
    record = await run_in_threadpool(orch.get_profile, owner_id)
    if record is None:
        return envelope(None, message="No merchant profile yet")
    return envelope(record.to_dict())


@router.put("/me", response_model=ApiResponse)
async def save_my_profile(body: MerchantSubmission, owner_id: str = Depends(current_owner),
                          orch=Depends(get_orchestrator)):
    record = await run_in_threadpool(orch.save_profile, owner_id, body.model_dump(exclude_none=True))
    return envelope(record.to_dict(), message="Merchant profile saved")


@router.post("/me/submit", response_model=ApiResponse)
async def submit_for_review(owner_id: str = Depends(current_owner), orch=Depends(get_orchestrator)):
    record = await run_in_threadpool(orch.submit_for_review, owner_id)
    return envelope(record.to_dict(), message="Application submitted for review")
