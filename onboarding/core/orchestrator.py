"""
Onboarding orchestrator
-----------------------
Drives the merchant status state machine. Every status change goes through
the same sequence, under a per-merchant lock:

    re-read record -> validate transition -> conditional write -> log -> notify

The conditional write (store.update_status with the status we validated
against) is the backstop if the lock ever expires mid-operation, so at most
one writer wins for a given (merchant, target status).

Notifications are sent after the lock is released and can never fail the
operation that produced them.
"""
from __future__ import annotations

import json
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from onboarding.bank.payloads import FINAL_BANK_STATUSES, generate_upi_identifiers, to_decision_callback
from onboarding.core import state_machine as sm
from onboarding.core.profile_validation import validate_merchant_profile
from onboarding.errors import (
    ApplicationIdMismatchError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    OnboardingError,
)
from onboarding.observability.logging import log
import onboarding.observability.metrics as metrics
from onboarding.settings import settings
from onboarding.store.models import PROFILE_FIELDS, BankSubmissionResult, DecisionCallback, MerchantApplication
from onboarding.utils.lock import merchant_lock
from onboarding.utils.time import later_iso, utc_now_iso

APPLIED = "applied"
DUPLICATE = "duplicate"
# Decision for an application id archived by a resubmission
STALE = "stale"

EDITABLE_STATUSES = (sm.DRAFT, sm.REJECTED)


class OnboardingOrchestrator:

    def __init__(self, store, gateway, notifier, authenticator=None,
                 lock: Callable = merchant_lock,
                 clock: Callable[[], str] = utc_now_iso,
                 id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.authenticator = authenticator
        self.lock = lock
        self.clock = clock
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _log_failure(self, e: OnboardingError, merchant_id: str, from_status: str, to_status: str, **extra) -> None:
        level = "error" if e.status_code >= 500 else "warning"
        log(event="merchant_transition_failed", level=level, merchantId=merchant_id,
            fromStatus=from_status, toStatus=to_status, code=e.code, kind=e.kind, error=e.message, **extra)

    def _commit(self, current: MerchantApplication, new_status: str,
                fields: Optional[Dict[str, Any]] = None, reason: Optional[str] = None) -> MerchantApplication:
        """Validate and persist one transition. Caller holds the merchant lock."""
        try:
            sm.validate_transition(current.status, new_status)
            now = self.clock()
            updates = dict(fields or {})
            ts_field = sm.TIMESTAMP_FIELDS.get(new_status)
            if ts_field:
                updates[ts_field] = later_iso(getattr(current, ts_field), now)
            updates["rejectionReason"] = reason if new_status == sm.REJECTED else None
            updates["updatedAt"] = now
            updated = self.store.update_status(current.id, current.status, new_status, updates)
        except OnboardingError as e:
            self._log_failure(e, current.id, current.status, new_status)
            raise

        log(event="merchant_status_changed", merchantId=current.id, ownerId=current.ownerId,
            fromStatus=current.status, toStatus=new_status)
        return updated

    def _notify(self, notices: List[Tuple[MerchantApplication, str, str]]) -> None:
        for record, old_status, new_status in notices:
            try:
                self.notifier.notify_status_change(record, old_status, new_status)
            except Exception as e:
                log(event="notification_dispatch_failed", level="error", merchantId=record.id,
                    fromStatus=old_status, toStatus=new_status, error=str(e)[:300])

    def _require_owner_record(self, owner_id: str) -> MerchantApplication:
        record = self.store.get_by_owner(owner_id)
        if record is None:
            raise NotFoundError("Merchant profile not found", code="MERCHANT_NOT_FOUND")
        return record

    # ------------------------------------------------------------------
    # Profile (draft editing)
    # ------------------------------------------------------------------
    def save_profile(self, owner_id: str, data: Dict[str, Any]) -> MerchantApplication:
        profile = {k: data[k] for k in PROFILE_FIELDS if k in data}
        existing = self.store.get_by_owner(owner_id)

        if existing is None:
            now = self.clock()
            record = MerchantApplication(
                id=self.id_factory(),
                ownerId=owner_id,
                status=sm.DRAFT,
                createdAt=now,
                updatedAt=now,
                **profile,
            )
            record = self.store.create(record)
            log(event="merchant_profile_created", merchantId=record.id, ownerId=owner_id)
            return record

        with self.lock(existing.id):
            current = self.store.get_by_id(existing.id)
            if current.status not in EDITABLE_STATUSES:
                raise BadRequestError("Cannot update merchant in current status",
                                      code="INVALID_STATUS_FOR_UPDATE")
            profile["updatedAt"] = self.clock()
            updated = self.store.update_fields(current.id, current.status, profile)

        log(event="merchant_profile_updated", merchantId=updated.id, ownerId=owner_id)
        return updated

    def get_profile(self, owner_id: str) -> Optional[MerchantApplication]:
        return self.store.get_by_owner(owner_id)

    def get_merchant(self, merchant_id: str) -> MerchantApplication:
        return self.store.get_by_id(merchant_id)

    def list_merchants(self, status: Optional[str] = None) -> List[MerchantApplication]:
        if status is not None and status not in sm.ALL_STATUSES:
            raise BadRequestError(f"Unknown status filter: {status}", code="INVALID_STATUS_FILTER")
        return self.store.list_by_status(status)

    def delete_merchant(self, merchant_id: str, force: bool = False, admin_id: Optional[str] = None) -> None:
        with self.lock(merchant_id):
            current = self.store.get_by_id(merchant_id)
            if current.status == sm.PENDING_BANK_APPROVAL and not force:
                raise ConflictError("Merchant has an outstanding bank application",
                                    code="OUTSTANDING_BANK_APPLICATION")
            self.store.delete(merchant_id)
        log(event="merchant_deleted", merchantId=merchant_id, status=current.status,
            adminUserId=admin_id or "", forced=bool(force))

    # ------------------------------------------------------------------
    # submit-for-review (owner)
    # ------------------------------------------------------------------
    def submit_for_review(self, owner_id: str) -> MerchantApplication:
        record = self._require_owner_record(owner_id)

        with self.lock(record.id):
            current = self.store.get_by_id(record.id)
            try:
                sm.validate_transition(current.status, sm.SUBMITTED)
                validate_merchant_profile(current)
            except OnboardingError as e:
                self._log_failure(e, current.id, current.status, sm.SUBMITTED)
                raise
            old_status = current.status
            fields: Dict[str, Any] = {}
            if old_status == sm.REJECTED and current.bankApplicationId:
                # The next bank submission is a new application; decisions for this one become stale
                fields = {
                    "bankApplicationId": None,
                    "previousBankApplicationIds": current.previousBankApplicationIds + [current.bankApplicationId],
                    "bankSubmissionState": "none",
                    "lastSubmissionError": None,
                }
            updated = self._commit(current, sm.SUBMITTED, fields)
            if fields:
                log(event="bank_application_id_archived", merchantId=updated.id,
                    bankApplicationId=current.bankApplicationId,
                    previousCount=len(updated.previousBankApplicationIds))

        self._notify([(updated, old_status, sm.SUBMITTED)])
        try:
            self.notifier.notify_admin_new_submission(updated)
        except Exception as e:
            log(event="notification_dispatch_failed", level="error", merchantId=updated.id, error=str(e)[:300])
        log(event="merchant_submitted", merchantId=updated.id, ownerId=owner_id,
            resubmission=old_status == sm.REJECTED)
        return updated

    # ------------------------------------------------------------------
    # admin-validate: submitted -> validating -> (bank) -> pending_bank_approval
    # ------------------------------------------------------------------
    def admin_validate(self, merchant_id: str, admin_id: Optional[str] = None
                       ) -> Tuple[MerchantApplication, BankSubmissionResult]:
        """
        From `submitted`, validates the profile and moves to `validating`; from
        `validating` (an earlier bank submission failed) it retries the bank call.
        The lock is held across the bank call so concurrent admin actions can't
        submit twice.
        """
        notices: List[Tuple[MerchantApplication, str, str]] = []
        try:
            with self.lock(merchant_id):
                current = self.store.get_by_id(merchant_id)

                if current.status == sm.SUBMITTED:
                    try:
                        validate_merchant_profile(current)
                    except OnboardingError as e:
                        self._log_failure(e, current.id, current.status, sm.VALIDATING)
                        raise
                    current = self._commit(current, sm.VALIDATING)
                    notices.append((current, sm.SUBMITTED, sm.VALIDATING))
                    log(event="merchant_validated", merchantId=merchant_id, adminUserId=admin_id or "")
                elif current.status == sm.VALIDATING:
                    log(event="bank_submission_retry", merchantId=merchant_id, adminUserId=admin_id or "",
                        previousState=current.bankSubmissionState)
                else:
                    try:
                        sm.validate_transition(current.status, sm.VALIDATING)
                    except OnboardingError as e:
                        self._log_failure(e, current.id, current.status, sm.VALIDATING)
                        raise

                result, updated = self._submit_to_bank(current, admin_id)
                notices.append((updated, sm.VALIDATING, sm.PENDING_BANK_APPROVAL))
                return updated, result
        finally:
            self._notify(notices)

    def _submit_to_bank(self, current: MerchantApplication, admin_id: Optional[str]
                        ) -> Tuple[BankSubmissionResult, MerchantApplication]:
        upi = generate_upi_identifiers(current)
        try:
            result = self.gateway.submit(current, upi)
        except OnboardingError as e:
            self._record_submission_failure(current, e)
            raise

        if current.bankApplicationId and result.applicationId != current.bankApplicationId:
            err = ConflictError("Bank returned a different application id for this merchant",
                                code="BANK_APPLICATION_ID_IMMUTABLE")
            log(event="bank_application_id_reassignment_refused", level="error", merchantId=current.id,
                storedApplicationId=current.bankApplicationId, receivedApplicationId=result.applicationId)
            self._record_submission_failure(current, err)
            raise err

        try:
            updated = self._commit(current, sm.PENDING_BANK_APPROVAL, {
                "bankApplicationId": result.applicationId,
                "bankResponse": {
                    "success": result.success,
                    "applicationId": result.applicationId,
                    "message": result.message,
                    "estimatedProcessingTime": result.estimatedProcessingTime,
                },
                "bankSubmissionState": "accepted",
                "lastSubmissionError": None,
                "upiVpa": upi.vpa,
                "upiQrString": upi.qrString,
            })
        except OnboardingError as e:
            # The bank holds an application we could not link; keep its id on the record
            log(event="bank_acceptance_not_committed", level="error", merchantId=current.id,
                bankApplicationId=result.applicationId, code=e.code, error=e.message)
            self._record_submission_failure(current, e, orphan_application_id=result.applicationId)
            raise
        log(event="merchant_submitted_to_bank", merchantId=current.id, adminUserId=admin_id or "",
            bankApplicationId=result.applicationId)
        return result, updated

    def _record_submission_failure(self, current: MerchantApplication, e: OnboardingError,
                                   orphan_application_id: Optional[str] = None) -> None:
        """
        The record stays at `validating` with the failure visible for retry.
        orphan_application_id is set when the bank accepted but our write failed;
        the outcome then counts as unknown.
        """
        outcome_unknown = bool(getattr(e, "outcome_unknown", False)) or bool(orphan_application_id)
        self._log_failure(e, current.id, current.status, sm.PENDING_BANK_APPROVAL,
                          retryable=e.retryable, outcomeUnknown=outcome_unknown,
                          partnerMessage=getattr(e, "partner_message", None) or "")
        now = self.clock()
        error = {
            "code": e.code,
            "message": e.message,
            "retryable": e.retryable,
            "outcomeUnknown": outcome_unknown,
            "at": now,
        }
        if orphan_application_id:
            error["orphanApplicationId"] = orphan_application_id
        try:
            self.store.update_fields(current.id, sm.VALIDATING, {
                "bankSubmissionState": "unknown" if outcome_unknown else "failed",
                "lastSubmissionError": error,
                "rejectionReason": f"Bank submission failed ({e.code})",
                "updatedAt": now,
            })
        except OnboardingError as store_err:
            # Caller re-raises the bank error regardless
            log(event="submission_failure_not_recorded", level="error", merchantId=current.id,
                code=store_err.code, error=store_err.message)

    # ------------------------------------------------------------------
    # decision-received (webhook / reconciliation / test)
    # ------------------------------------------------------------------
    def handle_webhook(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str]
                       ) -> Tuple[str, MerchantApplication]:
        metrics.increment_webhook_received()
        try:
            # Nothing reads the payload before this passes
            self.authenticator.authenticate(raw_body, signature, timestamp)
            try:
                payload = json.loads(raw_body)
            except (TypeError, ValueError):
                raise BadRequestError("Webhook body is not valid JSON", code="INVALID_WEBHOOK_PAYLOAD")
            if not self.gateway.verify_webhook(payload):
                raise BadRequestError("Invalid webhook payload", code="INVALID_WEBHOOK_PAYLOAD")
            callback = to_decision_callback(payload)
            log(event="bank_webhook_received", applicationId=callback.applicationId,
                merchantId=callback.merchantId, approved=callback.approved)
            outcome, record = self.apply_decision(callback)
        except OnboardingError:
            metrics.increment_webhook_rejected()
            raise

        if outcome in (DUPLICATE, STALE):
            metrics.increment_webhook_duplicate()
        else:
            metrics.increment_webhook_applied()
        return outcome, record

    def apply_decision(self, callback: DecisionCallback, source: str = "webhook"
                       ) -> Tuple[str, MerchantApplication]:
        target = callback.target_status
        record = self.store.get_by_bank_application_id(callback.applicationId)
        if record is None:
            log(event="decision_application_not_found", level="warning",
                applicationId=callback.applicationId, merchantId=callback.merchantId, source=source)
            raise NotFoundError("No merchant for this bank application", code="APPLICATION_NOT_FOUND")

        notices: List[Tuple[MerchantApplication, str, str]] = []
        try:
            with self.lock(record.id):
                current = self.store.get_by_id(record.id)
                if current.id == callback.merchantId and current.bankApplicationId != callback.applicationId \
                        and callback.applicationId in current.previousBankApplicationIds:
                    log(event="decision_stale_ignored", merchantId=current.id,
                        applicationId=callback.applicationId,
                        currentApplicationId=current.bankApplicationId or "", status=current.status, source=source)
                    return STALE, current
                if current.id != callback.merchantId or current.bankApplicationId != callback.applicationId:
                    log(event="decision_application_id_mismatch", level="warning", merchantId=current.id,
                        claimedMerchantId=callback.merchantId,
                        expectedApplicationId=current.bankApplicationId or "",
                        receivedApplicationId=callback.applicationId, source=source)
                    raise ApplicationIdMismatchError("Application ID mismatch")

                if callback.fingerprint in current.appliedDecisionKeys:
                    # Redelivery of a decision from an earlier cycle of the same application
                    log(event="decision_duplicate_ignored", merchantId=current.id,
                        applicationId=callback.applicationId, status=current.status, source=source,
                        processedAt=callback.processedAt or "")
                    return DUPLICATE, current

                if current.status != sm.PENDING_BANK_APPROVAL:
                    if current.status == target:
                        log(event="decision_duplicate_ignored", merchantId=current.id,
                            applicationId=callback.applicationId, status=current.status, source=source)
                        return DUPLICATE, current
                    err = ConflictError(
                        f"Decision {target} does not apply to merchant in status {current.status}",
                        code="DECISION_STATE_CONFLICT",
                    )
                    self._log_failure(err, current.id, current.status, target,
                                      applicationId=callback.applicationId, source=source)
                    raise err

                bank_response: Dict[str, Any] = {
                    "success": callback.approved,
                    "applicationId": callback.applicationId,
                    "message": "Approved by bank" if callback.approved else (callback.reason or "Rejected by bank"),
                    "processedAt": callback.processedAt,
                }
                if callback.approved:
                    bank_response["additionalData"] = {
                        "accountNumber": callback.accountNumber or "",
                        "merchantCode": callback.merchantCode or "",
                    }
                updated = self._commit(
                    current,
                    target,
                    {
                        "bankResponse": bank_response,
                        "appliedDecisionKeys": current.appliedDecisionKeys + [callback.fingerprint],
                    },
                    reason=None if callback.approved else (callback.reason or "Rejected by bank"),
                )
                notices.append((updated, sm.PENDING_BANK_APPROVAL, target))
        finally:
            self._notify(notices)

        log(event=f"merchant_{target}_by_bank", merchantId=updated.id, applicationId=callback.applicationId,
            source=source, accountNumber=callback.accountNumber or "", reason=callback.reason or "")
        return APPLIED, updated

    # ------------------------------------------------------------------
    # admin overrides
    # ------------------------------------------------------------------
    def admin_approve(self, merchant_id: str, admin_id: Optional[str] = None) -> MerchantApplication:
        """Manual approval; still bound by the transition table."""
        with self.lock(merchant_id):
            current = self.store.get_by_id(merchant_id)
            old_status = current.status
            if old_status == sm.PENDING_BANK_APPROVAL:
                # The partner application stays open; its eventual decision is handled as duplicate/conflict
                log(event="manual_override_while_bank_pending", level="warning", merchantId=merchant_id,
                    bankApplicationId=current.bankApplicationId or "", adminUserId=admin_id or "")
            updated = self._commit(current, sm.APPROVED)

        self._notify([(updated, old_status, sm.APPROVED)])
        log(event="merchant_approved", merchantId=merchant_id, adminUserId=admin_id or "", manualOverride=True)
        return updated

    def admin_reject(self, merchant_id: str, reason: str, admin_id: Optional[str] = None) -> MerchantApplication:
        if not isinstance(reason, str) or not reason.strip():
            raise BadRequestError("Rejection reason is required", code="MISSING_REASON")

        with self.lock(merchant_id):
            current = self.store.get_by_id(merchant_id)
            old_status = current.status
            updated = self._commit(current, sm.REJECTED, reason=reason.strip())

        self._notify([(updated, old_status, sm.REJECTED)])
        log(event="merchant_rejected", merchantId=merchant_id, adminUserId=admin_id or "", reason=reason.strip())
        return updated

    # ------------------------------------------------------------------
    # reconciliation (lost webhooks)
    # ------------------------------------------------------------------
    def reconcile(self, merchant_id: str) -> Dict[str, Any]:
        record = self.store.get_by_id(merchant_id)
        out = {"merchantId": merchant_id, "status": record.status}
        if record.status != sm.PENDING_BANK_APPROVAL or not record.bankApplicationId:
            out["action"] = "skipped"
            return out

        data = self.gateway.get_application_status(record.bankApplicationId)
        bank_status = str(data.get("status") or "").lower()
        out["bankStatus"] = bank_status
        if bank_status not in FINAL_BANK_STATUSES:
            out["action"] = "still_pending"
            return out

        decision = data.get("decision") if isinstance(data.get("decision"), dict) else {}
        payload = {
            "applicationId": record.bankApplicationId,
            "merchantId": record.id,
            "status": bank_status,
            "decision": {
                "approved": bank_status == "approved",
                "reason": decision.get("reason") or data.get("reason"),
                "accountNumber": decision.get("accountNumber"),
                "merchantCode": decision.get("merchantCode"),
            },
            "processedAt": data.get("processedAt") or self.clock(),
        }
        outcome, updated = self.apply_decision(to_decision_callback(payload), source="reconciliation")
        out["action"] = outcome
        out["status"] = updated.status
        return out

    def reconcile_pending(self) -> Dict[str, int]:
        summary = {"checked": 0, "applied": 0, "stillPending": 0, "errors": 0}
        for record in self.store.list_by_status(sm.PENDING_BANK_APPROVAL):
            summary["checked"] += 1
            try:
                result = self.reconcile(record.id)
            except OnboardingError as e:
                summary["errors"] += 1
                log(event="reconcile_failed", level="warning", merchantId=record.id, code=e.code,
                    retryable=e.retryable)
                continue
            if result.get("action") == APPLIED:
                summary["applied"] += 1
            elif result.get("action") == "still_pending":
                summary["stillPending"] += 1
        return summary

    # ------------------------------------------------------------------
    # development helper
    # ------------------------------------------------------------------
    def apply_test_decision(self, merchant_id: str, approved: bool) -> Tuple[str, MerchantApplication]:
        if settings.is_production:
            raise BadRequestError("Test webhook not available in production", code="NOT_AVAILABLE")
        record = self.store.get_by_id(merchant_id)
        if not record.bankApplicationId:
            raise BadRequestError("Merchant has no bank application", code="NO_BANK_APPLICATION")
        callback = DecisionCallback(
            applicationId=record.bankApplicationId,
            merchantId=record.id,
            approved=approved,
            reason=None if approved else "Test rejection",
            accountNumber="TEST123456" if approved else None,
            merchantCode="MERCH001" if approved else None,
            processedAt=self.clock(),
        )
        return self.apply_decision(callback, source="test")


def build_default_orchestrator() -> OnboardingOrchestrator:
    # Lazy imports keep module import cheap for workers and tests
    from onboarding.bank.client import BankGateway
    from onboarding.bank.signature import WebhookAuthenticator
    from onboarding.notify.dispatcher import QueuedNotificationDispatcher
    from onboarding.store.merchant_repo import RedisMerchantStore

    return OnboardingOrchestrator(
        store=RedisMerchantStore(),
        gateway=BankGateway(),
        notifier=QueuedNotificationDispatcher(),
        authenticator=WebhookAuthenticator(),
    )
