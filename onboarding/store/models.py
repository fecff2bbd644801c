from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from onboarding.core import state_machine as sm

# Profile fields the owner may edit while the application is a draft (or rejected)
PROFILE_FIELDS = (
    "businessName",
    "businessType",
    "registrationNumber",
    "taxId",
    "email",
    "phone",
    "website",
    "addressLine1",
    "addressLine2",
    "city",
    "state",
    "postalCode",
    "country",
    "documents",
    "metadata",
)

@dataclass
class MerchantApplication:
    # Identity (immutable after creation)
    id: str = ""
    ownerId: str = ""

    status: str = sm.DRAFT

    # Business profile
    businessName: str = ""
    businessType: str = ""
    registrationNumber: str = ""
    taxId: str = ""
    email: str = ""
    phone: str = ""
    website: Optional[str] = None
    addressLine1: str = ""
    addressLine2: Optional[str] = None
    city: str = ""
    state: str = ""
    postalCode: str = ""
    country: str = ""
    # [{type, url, filename, uploadedAt?, verified?}]
    documents: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Bank linkage. bankApplicationId is the webhook join key; it is only ever cleared by
    # archiving it into previousBankApplicationIds when a rejected application is resubmitted.
    bankApplicationId: Optional[str] = None
    previousBankApplicationIds: List[str] = field(default_factory=list)
    bankResponse: Optional[Dict[str, Any]] = None
    # none / failed / unknown / accepted
    bankSubmissionState: str = "none"
    lastSubmissionError: Optional[Dict[str, Any]] = None
    upiVpa: Optional[str] = None
    upiQrString: Optional[str] = None
    # DecisionCallback.fingerprint of every decision applied to this record
    appliedDecisionKeys: List[str] = field(default_factory=list)

    rejectionReason: Optional[str] = None

    # Audit timestamps (ISO-8601 UTC)
    submittedAt: Optional[str] = None
    validatedAt: Optional[str] = None
    bankSubmittedAt: Optional[str] = None
    decisionAt: Optional[str] = None
    createdAt: str = ""
    updatedAt: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class DecisionCallback:
    """A bank decision, consumed once. Only its effect on the record is persisted."""
    applicationId: str
    merchantId: str
    approved: bool
    reason: Optional[str] = None
    accountNumber: Optional[str] = None
    merchantCode: Optional[str] = None
    processedAt: Optional[str] = None

    @property
    def target_status(self) -> str:
        return sm.APPROVED if self.approved else sm.REJECTED

    @property
    def fingerprint(self) -> str:
        return f"{self.applicationId}:{self.target_status}:{self.processedAt or ''}"


@dataclass
class UpiIdentifiers:
    vpa: str
    qrString: str


@dataclass
class BankSubmissionResult:
    applicationId: str
    estimatedProcessingTime: Optional[str] = None
    message: Optional[str] = None
    success: bool = True
