import copy
import json
import threading
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from onboarding.bank.payloads import check_webhook_structure
from onboarding.bank.signature import WebhookAuthenticator, compute_signature
from onboarding.core.orchestrator import OnboardingOrchestrator
from onboarding.errors import ConflictError, NotFoundError
from onboarding.notify.dispatcher import NotificationDispatcher
from onboarding.store.base import MerchantRecordStore
from onboarding.store.models import BankSubmissionResult
from onboarding.utils.time import now_ms

WEBHOOK_SECRET = "whsec_test_secret"
BANK_APP_ID = "BANK-APP-1001"


class InMemoryMerchantStore(MerchantRecordStore):
    """Dict-backed store with the same compare-and-set contract as the Redis one."""

    def __init__(self):
        self.records = {}
        self.writes = 0
        self._mu = threading.Lock()

    def create(self, record):
        with self._mu:
            if any(r.ownerId == record.ownerId for r in self.records.values()):
                raise ConflictError("Merchant profile already exists", code="MERCHANT_ALREADY_EXISTS")
            self.records[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def get_by_id(self, merchant_id):
        with self._mu:
            record = self.records.get(merchant_id)
            if record is None:
                raise NotFoundError("Merchant not found", code="MERCHANT_NOT_FOUND")
            return copy.deepcopy(record)

    def _find(self, pred):
        with self._mu:
            for record in self.records.values():
                if pred(record):
                    return copy.deepcopy(record)
        return None

    def get_by_owner(self, owner_id):
        return self._find(lambda r: r.ownerId == owner_id)

    def get_by_bank_application_id(self, application_id):
        found = self._find(lambda r: r.bankApplicationId == application_id)
        return found or self._find(lambda r: application_id in r.previousBankApplicationIds)

    def update_status(self, merchant_id, expected_current, new_status, fields=None):
        with self._mu:
            record = self.records.get(merchant_id)
            if record is None:
                raise NotFoundError("Merchant not found", code="MERCHANT_NOT_FOUND")
            if record.status != expected_current:
                raise ConflictError("Status changed", code="STATUS_CHANGED")
            updated = self.merge(copy.deepcopy(record), new_status, fields)
            self.records[merchant_id] = updated
            self.writes += 1
            return copy.deepcopy(updated)

    def update_fields(self, merchant_id, expected_current, fields):
        return self.update_status(merchant_id, expected_current, None, fields)

    def list_by_status(self, status=None):
        with self._mu:
            out = [copy.deepcopy(r) for r in self.records.values() if status is None or r.status == status]
        return sorted(out, key=lambda r: r.createdAt or "")

    def delete(self, merchant_id):
        with self._mu:
            if merchant_id not in self.records:
                raise NotFoundError("Merchant not found", code="MERCHANT_NOT_FOUND")
            del self.records[merchant_id]


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.status_changes = []
        self.admin_submissions = []

    def notify_status_change(self, merchant, old_status, new_status):
        self.status_changes.append((merchant.id, old_status, new_status))

    def notify_admin_new_submission(self, merchant):
        self.admin_submissions.append(merchant.id)


class ThreadLockFactory:
    """Per-merchant in-process lock; contention surfaces as MERCHANT_LOCKED like the Redis lock."""

    def __init__(self, timeout: float = 0.2):
        self.timeout = timeout
        self.acquired = []
        self._locks = {}
        self._mu = threading.Lock()

    @contextmanager
    def __call__(self, merchant_id):
        with self._mu:
            lk = self._locks.setdefault(merchant_id, threading.Lock())
        if not lk.acquire(timeout=self.timeout):
            raise ConflictError("Another operation is in progress for this merchant", code="MERCHANT_LOCKED")
        try:
            self.acquired.append(merchant_id)
            yield
        finally:
            lk.release()


@pytest.fixture(autouse=True)
def no_metrics():
    # Metrics write to Redis; keep unit tests off the network
    with patch("onboarding.core.orchestrator.metrics") as orch_metrics, \
         patch("onboarding.bank.client.metrics"):
        yield orch_metrics


@pytest.fixture
def store():
    return InMemoryMerchantStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lock_factory():
    return ThreadLockFactory()


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.submit.return_value = BankSubmissionResult(
        applicationId=BANK_APP_ID,
        estimatedProcessingTime="2-3 business days",
        message="Application received",
    )
    gw.verify_webhook.side_effect = lambda payload: check_webhook_structure(payload)[0]
    return gw


@pytest.fixture
def authenticator():
    return WebhookAuthenticator(secret=WEBHOOK_SECRET, tolerance_sec=300)


@pytest.fixture
def orch(store, gateway, notifier, authenticator, lock_factory):
    ids = iter(f"m-{i:04d}-0000-4000-8000-000000000000" for i in range(1, 1000))
    return OnboardingOrchestrator(
        store=store,
        gateway=gateway,
        notifier=notifier,
        authenticator=authenticator,
        lock=lock_factory,
        id_factory=lambda: next(ids),
    )


@pytest.fixture
def complete_profile():
    return {
        "businessName": "Chai Point Traders",
        "businessType": "retail",
        "registrationNumber": "REG-2024-0042",
        "taxId": "27AAPFU0939F1ZV",
        "email": "owner@chaipoint.example",
        "phone": "+91 98765 43210",
        "website": "https://chaipoint.example",
        "addressLine1": "12 MG Road",
        "city": "Bengaluru",
        "state": "KA",
        "postalCode": "560001",
        "country": "IN",
        "documents": [
            {"type": "business_license", "url": "https://files.example/bl.pdf", "filename": "bl.pdf"},
            {"type": "tax_certificate", "url": "https://files.example/tax.pdf", "filename": "tax.pdf"},
            {"type": "id_proof", "url": "https://files.example/id.pdf", "filename": "id.pdf"},
        ],
    }


@pytest.fixture
def sign():
    """Returns f(payload) -> (raw_body, signature, timestamp) signed with the test secret."""
    def _sign(payload, timestamp=None, secret=WEBHOOK_SECRET):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        ts = str(timestamp if timestamp is not None else now_ms())
        return raw, compute_signature(secret, ts, raw), ts
    return _sign


@pytest.fixture
def decision_payload():
    def _payload(merchant_id, approved=True, application_id=BANK_APP_ID, reason=None):
        decision = {"approved": approved}
        if approved:
            decision.update({"accountNumber": "ACC-778899", "merchantCode": "MC-0042"})
        else:
            decision["reason"] = reason or "Documents could not be verified"
        return {
            "applicationId": application_id,
            "merchantId": merchant_id,
            "status": "approved" if approved else "rejected",
            "decision": decision,
            "processedAt": "2026-01-15T10:00:00Z",
        }
    return _payload


@pytest.fixture
def pending_merchant(orch, complete_profile):
    """A merchant already handed to the bank (pending_bank_approval, BANK_APP_ID)."""
    record = orch.save_profile("owner-1", complete_profile)
    orch.submit_for_review("owner-1")
    orch.admin_validate(record.id, "admin-1")
    return orch.get_merchant(record.id)
