from typing import Dict

from onboarding.core import state_machine as sm
from onboarding.store.models import MerchantApplication

SUBJECTS = {
    sm.DRAFT: "Your application is saved",
    sm.SUBMITTED: "Application submitted successfully",
    sm.VALIDATING: "Application under review",
    sm.PENDING_BANK_APPROVAL: "Application sent to bank for approval",
    sm.APPROVED: "Congratulations! Your application is approved",
    sm.REJECTED: "Application update required",
}

BODIES = {
    sm.DRAFT: "Your merchant application has been saved as draft. You can continue editing and submit when ready.",
    sm.SUBMITTED: "Your merchant application has been submitted successfully. Our team will review it shortly.",
    sm.VALIDATING: "Your application is currently under review by our team. We'll notify you once the review is complete.",
    sm.PENDING_BANK_APPROVAL: "Your application has been submitted to the bank for final approval. This typically takes 2-3 business days.",
    sm.APPROVED: "Congratulations! Your merchant application has been approved. You can now start using our platform.\n\nWelcome aboard!",
    sm.REJECTED: "Your application requires some updates. Reason: {reason}\n\nYou can update your application and resubmit.",
}


def build_status_change_message(merchant: MerchantApplication, old_status: str, new_status: str) -> Dict[str, str]:
    body = BODIES[new_status].format(reason=merchant.rejectionReason or "Please review and resubmit.")
    return {
        "to": merchant.email,
        "type": "email",
        "subject": SUBJECTS[new_status],
        "body": f"Hi {merchant.businessName},\n\n{body}",
        "merchantId": merchant.id,
        "fromStatus": old_status,
        "toStatus": new_status,
    }


def build_admin_submission_message(merchant: MerchantApplication, admin_email: str) -> Dict[str, str]:
    return {
        "to": admin_email,
        "type": "email",
        "subject": f"New merchant application: {merchant.businessName}",
        "body": (
            f"A new merchant application was submitted.\n\n"
            f"Business: {merchant.businessName}\n"
            f"Type: {merchant.businessType}\n"
            f"Merchant ID: {merchant.id}\n"
            f"Submitted at: {merchant.submittedAt or ''}"
        ),
        "merchantId": merchant.id,
    }
