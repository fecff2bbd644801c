import json
import inspect
from typing import Any, Dict, List, Optional

from redis.exceptions import WatchError

from onboarding.core import state_machine as sm
from onboarding.errors import ConflictError, NotFoundError
from onboarding.observability.logging import log
from onboarding.store.base import MerchantRecordStore
from onboarding.store.models import MerchantApplication
from onboarding.store.redis_conn import get_redis

PREFIX = "merchant:"
ALL_KEY = f"{PREFIX}all"


def _key(merchant_id: str) -> str:
    return f"{PREFIX}record:{merchant_id}"


def _owner_key(owner_id: str) -> str:
    return f"{PREFIX}owner:{owner_id}"


def _bank_key(application_id: str) -> str:
    return f"{PREFIX}bank:{application_id}"


def _status_key(status: str) -> str:
    return f"{PREFIX}status:{status}"


def _filter_record_kwargs(data: dict) -> dict:
    """
    Drop unknown fields so MerchantApplication(**kwargs) never explodes
    """
    sig = inspect.signature(MerchantApplication)
    allowed = set(sig.parameters.keys())
    return {k: v for k, v in data.items() if k in allowed}


def _loads(raw: str) -> MerchantApplication:
    data = _filter_record_kwargs(json.loads(raw))
    record = MerchantApplication(**data)
    # A status outside the enum is corruption, not something to coerce
    sm.ensure_known_status(record.status)
    return record


def _dumps(record: MerchantApplication) -> str:
    return json.dumps(record.to_dict())


class RedisMerchantStore(MerchantRecordStore):
    """
    Records as JSON strings plus owner/bank/status indexes, written in MULTI blocks.
    Bank index entries outlive archiving so late callbacks for an old application
    still resolve to their merchant.
    """

    def __init__(self, redis=None):
        self._redis = redis

    @property
    def r(self):
        return self._redis if self._redis is not None else get_redis()

    def create(self, record: MerchantApplication) -> MerchantApplication:
        r = self.r
        if not r.set(_owner_key(record.ownerId), record.id, nx=True):
            raise ConflictError(
                "Merchant profile already exists for this user",
                code="MERCHANT_ALREADY_EXISTS",
            )
        pipe = r.pipeline()
        pipe.set(_key(record.id), _dumps(record))
        pipe.sadd(ALL_KEY, record.id)
        pipe.sadd(_status_key(record.status), record.id)
        pipe.execute()
        return record

    def get_by_id(self, merchant_id: str) -> MerchantApplication:
        raw = self.r.get(_key(merchant_id))
        if not raw:
            raise NotFoundError("Merchant not found", code="MERCHANT_NOT_FOUND")
        return _loads(raw)

    def _get_indexed(self, index_key: str) -> Optional[MerchantApplication]:
        r = self.r
        merchant_id = r.get(index_key)
        if not merchant_id:
            return None
        raw = r.get(_key(merchant_id))
        return _loads(raw) if raw else None

    def get_by_owner(self, owner_id: str) -> Optional[MerchantApplication]:
        return self._get_indexed(_owner_key(owner_id))

    def get_by_bank_application_id(self, application_id: str) -> Optional[MerchantApplication]:
        return self._get_indexed(_bank_key(application_id))

    def update_status(self, merchant_id: str, expected_current: str, new_status: str,
                      fields: Optional[Dict[str, Any]] = None) -> MerchantApplication:
        return self._compare_and_set(merchant_id, expected_current, new_status, fields)

    def update_fields(self, merchant_id: str, expected_current: str,
                      fields: Dict[str, Any]) -> MerchantApplication:
        return self._compare_and_set(merchant_id, expected_current, None, fields)

    def _compare_and_set(self, merchant_id: str, expected_current: str,
                         new_status: Optional[str], fields: Optional[Dict[str, Any]]) -> MerchantApplication:
        key = _key(merchant_id)
        with self.r.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                if not raw:
                    raise NotFoundError("Merchant not found", code="MERCHANT_NOT_FOUND")
                record = _loads(raw)
                if record.status != expected_current:
                    raise ConflictError(
                        f"Merchant status changed to {record.status} (expected {expected_current})",
                        code="STATUS_CHANGED",
                    )

                old_status = record.status
                old_bank_id = record.bankApplicationId
                record = self.merge(record, new_status, fields)

                new_bank_id = record.bankApplicationId
                if new_bank_id and new_bank_id != old_bank_id:
                    owner_of_bank_id = pipe.get(_bank_key(new_bank_id))
                    if owner_of_bank_id and owner_of_bank_id != merchant_id:
                        raise ConflictError(
                            "Bank application id already belongs to another merchant",
                            code="BANK_APPLICATION_ID_IN_USE",
                        )

                pipe.multi()
                pipe.set(key, _dumps(record))
                if record.status != old_status:
                    pipe.srem(_status_key(old_status), merchant_id)
                    pipe.sadd(_status_key(record.status), merchant_id)
                if new_bank_id and new_bank_id != old_bank_id:
                    pipe.set(_bank_key(new_bank_id), merchant_id)
                pipe.execute()
            except WatchError:
                log(event="merchant_cas_conflict", level="warning", merchantId=merchant_id,
                    fromStatus=expected_current, toStatus=new_status or expected_current)
                raise ConflictError("Merchant record changed concurrently", code="CONCURRENT_UPDATE")
        return record

    def list_by_status(self, status: Optional[str] = None) -> List[MerchantApplication]:
        r = self.r
        if status is not None:
            sm.ensure_known_status(status)
            ids = r.smembers(_status_key(status)) or set()
        else:
            ids = r.smembers(ALL_KEY) or set()
        ids = sorted(ids)
        if not ids:
            return []
        out = []
        for raw in r.mget([_key(i) for i in ids]):
            if raw:
                out.append(_loads(raw))
        return sorted(out, key=lambda m: m.createdAt or "")

    def delete(self, merchant_id: str) -> None:
        record = self.get_by_id(merchant_id)
        pipe = self.r.pipeline()
        pipe.delete(_key(merchant_id))
        pipe.delete(_owner_key(record.ownerId))
        for application_id in [record.bankApplicationId] + list(record.previousBankApplicationIds):
            if application_id:
                pipe.delete(_bank_key(application_id))
        pipe.srem(_status_key(record.status), merchant_id)
        pipe.srem(ALL_KEY, merchant_id)
        pipe.execute()
