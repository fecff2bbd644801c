import re
from typing import Dict, List

from onboarding.errors import ValidationError
from onboarding.observability.logging import log
from onboarding.store.models import MerchantApplication

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")

DOCUMENT_TYPES = ("business_license", "tax_certificate", "id_proof", "bank_statement", "other")
REQUIRED_DOCUMENT_TYPES = ("business_license", "tax_certificate", "id_proof")


def _blank(v) -> bool:
    return not isinstance(v, str) or not v.strip()


def _err(errors: List[Dict[str, str]], field: str, message: str, code: str) -> None:
    errors.append({"field": field, "message": message, "code": code})


def _business_info(m: MerchantApplication, errors) -> None:
    if _blank(m.businessName) or len(m.businessName.strip()) < 2:
        _err(errors, "businessName", "Business name must be at least 2 characters", "INVALID_BUSINESS_NAME")
    if _blank(m.businessType):
        _err(errors, "businessType", "Business type is required", "MISSING_BUSINESS_TYPE")
    if _blank(m.registrationNumber):
        _err(errors, "registrationNumber", "Registration number is required", "MISSING_REGISTRATION_NUMBER")
    if _blank(m.taxId):
        _err(errors, "taxId", "Tax ID is required", "MISSING_TAX_ID")


def _contact_info(m: MerchantApplication, errors) -> None:
    if _blank(m.email) or not EMAIL_RE.match(m.email):
        _err(errors, "email", "Valid email address is required", "INVALID_EMAIL")
    if _blank(m.phone) or not PHONE_RE.match(m.phone):
        _err(errors, "phone", "Valid phone number is required", "INVALID_PHONE")


def _address(m: MerchantApplication, errors) -> None:
    for field, label, code in (
        ("addressLine1", "Address line 1", "MISSING_ADDRESS"),
        ("city", "City", "MISSING_CITY"),
        ("state", "State", "MISSING_STATE"),
        ("postalCode", "Postal code", "MISSING_POSTAL_CODE"),
        ("country", "Country", "MISSING_COUNTRY"),
    ):
        if _blank(getattr(m, field)):
            _err(errors, field, f"{label} is required", code)


def _documents(m: MerchantApplication, errors) -> None:
    docs = m.documents if isinstance(m.documents, list) else []
    if not docs:
        _err(errors, "documents", "At least one document is required", "MISSING_DOCUMENTS")
        return

    for i, doc in enumerate(docs):
        doc = doc if isinstance(doc, dict) else {}
        if _blank(doc.get("url")):
            _err(errors, f"documents[{i}].url", "Document URL is required", "MISSING_DOCUMENT_URL")
        if _blank(doc.get("filename")):
            _err(errors, f"documents[{i}].filename", "Document filename is required", "MISSING_DOCUMENT_FILENAME")
        if not doc.get("type"):
            _err(errors, f"documents[{i}].type", "Document type is required", "MISSING_DOCUMENT_TYPE")

    provided = {d.get("type") for d in docs if isinstance(d, dict)}
    for required in REQUIRED_DOCUMENT_TYPES:
        if required not in provided:
            _err(errors, "documents", f"{required} document is required", f"MISSING_{required.upper()}")


def validate_merchant_profile(merchant: MerchantApplication) -> None:
    """Raises ValidationError listing every problem found, not just the first."""
    errors: List[Dict[str, str]] = []
    _business_info(merchant, errors)
    _contact_info(merchant, errors)
    _address(merchant, errors)
    _documents(merchant, errors)

    if errors:
        log(event="merchant_validation_failed", level="warning", merchantId=merchant.id,
            errorCount=len(errors), fields=", ".join(e["field"] for e in errors))
        raise ValidationError("Merchant validation failed", items=errors)

    log(event="merchant_validation_passed", merchantId=merchant.id)
