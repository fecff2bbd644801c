from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel

DocumentType = Literal["business_license", "tax_certificate", "id_proof", "bank_statement", "other"]

class MerchantDocument(BaseModel):
    type: DocumentType
    url: str
    filename: str
    uploadedAt: Optional[str] = None
    verified: Optional[bool] = None

class MerchantSubmission(BaseModel):
    # Everything optional: drafts are saved incrementally
    businessName: Optional[str] = None
    businessType: Optional[str] = None
    registrationNumber: Optional[str] = None
    taxId: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    addressLine1: Optional[str] = None
    addressLine2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
    documents: Optional[List[MerchantDocument]] = None
    metadata: Optional[Dict[str, Any]] = None

class RejectRequest(BaseModel):
    # Left optional so a missing reason surfaces as MISSING_REASON, not a schema error
    reason: Optional[str] = None

class SimulatedDecisionRequest(BaseModel):
    merchantId: str
    approved: bool

class ApiResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None


def envelope(data: Any = None, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message)
