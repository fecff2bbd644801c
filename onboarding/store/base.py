"""
Merchant record store contract.

The orchestrator only talks to this interface. Implementations own persistence
and must make `update_status` / `update_fields` a compare-and-set on the
expected current status so two writers can never both succeed.
"""
from abc import ABC, abstractmethod
from dataclasses import fields as dc_fields
from typing import Any, Dict, List, Optional

from onboarding.core import state_machine as sm
from onboarding.errors import ConflictError
from onboarding.store.models import MerchantApplication

# Never writable through update_* calls
IMMUTABLE_FIELDS = {"id", "ownerId", "createdAt"}


class MerchantRecordStore(ABC):

    @abstractmethod
    def create(self, record: MerchantApplication) -> MerchantApplication:
        """Persist a new record. ConflictError if the owner already has one."""
        ...

    @abstractmethod
    def get_by_id(self, merchant_id: str) -> MerchantApplication:
        """NotFoundError when absent."""
        ...

    @abstractmethod
    def get_by_owner(self, owner_id: str) -> Optional[MerchantApplication]:
        ...

    @abstractmethod
    def get_by_bank_application_id(self, application_id: str) -> Optional[MerchantApplication]:
        ...

    @abstractmethod
    def update_status(self, merchant_id: str, expected_current: str, new_status: str,
                      fields: Optional[Dict[str, Any]] = None) -> MerchantApplication:
        """Conditional update; ConflictError if the stored status is no longer expected_current."""
        ...

    @abstractmethod
    def update_fields(self, merchant_id: str, expected_current: str,
                      fields: Dict[str, Any]) -> MerchantApplication:
        """Same compare-and-set as update_status, without changing status."""
        ...

    @abstractmethod
    def list_by_status(self, status: Optional[str] = None) -> List[MerchantApplication]:
        ...

    @abstractmethod
    def delete(self, merchant_id: str) -> None:
        ...

    @staticmethod
    def merge(record: MerchantApplication, new_status: Optional[str],
              fields: Optional[Dict[str, Any]]) -> MerchantApplication:
        """
        Apply a write to an in-hand record, enforcing the write-once bank id.
        An assigned id can only be cleared, and only by a write that also
        archives it into previousBankApplicationIds.
        """
        fields = fields or {}
        allowed = {f.name for f in dc_fields(MerchantApplication)} - IMMUTABLE_FIELDS
        archived = fields.get("previousBankApplicationIds") or []
        for k, v in fields.items():
            if k not in allowed:
                continue
            if k == "bankApplicationId" and record.bankApplicationId and v != record.bankApplicationId \
                    and not (v is None and record.bankApplicationId in archived):
                raise ConflictError(
                    "Bank application id is already assigned and cannot change",
                    code="BANK_APPLICATION_ID_IMMUTABLE",
                )
            setattr(record, k, v)
        if new_status is not None:
            record.status = sm.ensure_known_status(new_status)
        return record
