import time
from typing import Any, Dict, Optional

import httpx

from onboarding.bank.payloads import build_application_request, check_webhook_structure
from onboarding.errors import BadGatewayError, ExternalApiError
from onboarding.observability.logging import log
import onboarding.observability.metrics as metrics
from onboarding.settings import settings
from onboarding.store.models import BankSubmissionResult, MerchantApplication, UpiIdentifiers


def _partner_error_body(resp) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except Exception:
        return None
    if isinstance(data, dict) and (data.get("code") or data.get("message")):
        return data
    return None


class BankGateway:
    """
    HTTP client for the bank partner's merchant-application API.

    Failure classification:
    - structured partner error body      -> ExternalApiError (not retryable)
    - timeout                            -> BadGatewayError BANK_API_TIMEOUT (retryable, outcome unknown)
    - connection refused / DNS failure   -> BadGatewayError BANK_API_UNAVAILABLE (retryable)
    - anything else                      -> BadGatewayError BANK_API_ERROR
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout_sec: Optional[float] = None, callback_url: Optional[str] = None):
        self.base_url = (base_url or settings.BANK_API_URL).rstrip("/")
        self.api_key = settings.BANK_API_KEY if api_key is None else api_key
        self.timeout_sec = float(timeout_sec or settings.BANK_API_TIMEOUT_SEC)
        self.callback_url = callback_url or settings.bank_callback_url

    def _headers(self, request_id: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["X-Request-ID"] = request_id
            # The partner dedupes retries of the same merchant's submission
            headers["Idempotency-Key"] = request_id
        return headers

    def submit(self, merchant: MerchantApplication, upi: UpiIdentifiers) -> BankSubmissionResult:
        request = build_application_request(merchant, upi, callback_url=self.callback_url)
        url = f"{self.base_url}/merchant-applications"
        start = time.time()

        log(event="bank_submit_attempt", merchantId=merchant.id, url=url,
            timeoutSec=self.timeout_sec, upiVpa=upi.vpa)
        metrics.increment_bank_submit_attempt()

        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                resp = client.post(url, json=request, headers=self._headers(merchant.id))
        except Exception as e:
            elapsed_ms = int((time.time() - start) * 1000)
            metrics.record_bank_submit_failure(elapsed_ms)
            raise self._classify_transport_error(e, "submit_merchant", merchant.id, elapsed_ms)

        elapsed_ms = int((time.time() - start) * 1000)
        if not 200 <= resp.status_code < 300:
            metrics.record_bank_submit_failure(elapsed_ms)
            raise self._classify_response_error(resp, "submit_merchant", merchant.id, elapsed_ms)

        try:
            data = resp.json()
        except Exception:
            data = None
        if not isinstance(data, dict):
            metrics.record_bank_submit_failure(elapsed_ms)
            log(event="bank_submit_bad_response", level="error", merchantId=merchant.id,
                statusCode=int(resp.status_code), responseText=(resp.text or "")[:500])
            raise ExternalApiError("Bank API returned an unreadable response",
                                   code="INVALID_BANK_RESPONSE", partner_status=resp.status_code)

        if data.get("success") is False:
            metrics.record_bank_submit_failure(elapsed_ms)
            log(event="bank_submit_declined", level="warning", merchantId=merchant.id,
                statusCode=int(resp.status_code), responseText=str(data.get("message") or "")[:500])
            raise ExternalApiError("Bank declined the application",
                                   code="BANK_APPLICATION_DECLINED", partner_status=resp.status_code)

        application_id = data.get("applicationId")
        if not application_id:
            metrics.record_bank_submit_failure(elapsed_ms)
            log(event="bank_submit_missing_application_id", level="error", merchantId=merchant.id,
                statusCode=int(resp.status_code))
            raise ExternalApiError("Bank response did not include an application id",
                                   code="INVALID_BANK_RESPONSE", partner_status=resp.status_code)

        metrics.record_bank_submit_success(elapsed_ms)
        log(event="bank_submit_success", merchantId=merchant.id, applicationId=application_id,
            statusCode=int(resp.status_code), elapsedMs=elapsed_ms)
        return BankSubmissionResult(
            applicationId=str(application_id),
            estimatedProcessingTime=data.get("estimatedProcessingTime"),
            message=data.get("message"),
            success=True,
        )

    def get_application_status(self, application_id: str) -> Dict[str, Any]:
        """Idempotent read used by reconciliation; no side effects on either side."""
        url = f"{self.base_url}/merchant-applications/{application_id}"
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                resp = client.get(url, headers=self._headers())
        except Exception as e:
            elapsed_ms = int((time.time() - start) * 1000)
            raise self._classify_transport_error(e, "get_application_status", application_id, elapsed_ms)

        elapsed_ms = int((time.time() - start) * 1000)
        if not 200 <= resp.status_code < 300:
            raise self._classify_response_error(resp, "get_application_status", application_id, elapsed_ms)

        try:
            data = resp.json()
        except Exception:
            data = None
        if not isinstance(data, dict):
            raise ExternalApiError("Bank API returned an unreadable response",
                                   code="INVALID_BANK_RESPONSE", partner_status=resp.status_code)
        log(event="bank_status_fetched", applicationId=application_id,
            bankStatus=str(data.get("status") or ""), elapsedMs=elapsed_ms)
        return data

    def verify_webhook(self, payload: Any) -> bool:
        """Structural check only; never a substitute for the signature check."""
        ok, presence = check_webhook_structure(payload)
        if not ok:
            log(event="webhook_payload_invalid", level="warning",
                **{f"has_{k}": v for k, v in presence.items()})
        return ok

    def _classify_transport_error(self, e: Exception, operation: str, ref: str, elapsed_ms: int) -> BadGatewayError:
        log(event="bank_api_transport_error", level="error", operation=operation, ref=ref,
            elapsedMs=elapsed_ms, errorType=type(e).__name__, error=str(e)[:300])
        if isinstance(e, httpx.ConnectTimeout):
            # Never connected, so nothing reached the partner
            return BadGatewayError("Bank API request timeout", code="BANK_API_TIMEOUT")
        if isinstance(e, httpx.TimeoutException):
            return BadGatewayError("Bank API request timeout", code="BANK_API_TIMEOUT", outcome_unknown=True)
        if isinstance(e, httpx.ConnectError):
            return BadGatewayError("Cannot connect to bank API", code="BANK_API_UNAVAILABLE")
        # Request may have been sent before the connection dropped
        return BadGatewayError("Failed to communicate with bank API", code="BANK_API_ERROR",
                               outcome_unknown=True)

    def _classify_response_error(self, resp, operation: str, ref: str, elapsed_ms: int):
        body = _partner_error_body(resp)
        log(event="bank_api_error_response", level="error", operation=operation, ref=ref,
            statusCode=int(resp.status_code), elapsedMs=elapsed_ms,
            responseText=(getattr(resp, "text", "") or "")[:500])
        if body is not None:
            return ExternalApiError(
                "Bank API request failed",
                code=str(body.get("code") or "BANK_API_ERROR"),
                partner_status=int(resp.status_code),
                partner_message=str(body.get("message") or "")[:500],
            )
        return BadGatewayError("Failed to communicate with bank API", code="BANK_API_ERROR")
