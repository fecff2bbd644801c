"""
Onboarding Metrics Snapshot
---------------------------
Lightweight Redis counters/timers for the webhook and bank-submission paths,
plus a single snapshot function consumed by /admin/metrics. Recording is
best-effort: a metrics failure is logged and never fails the request that
triggered it.
"""
from __future__ import annotations
import time
from typing import List, Tuple

from onboarding.store.redis_conn import get_redis
from onboarding.observability.logging import log

K_WH_RECEIVED  = "metrics:webhook:received"
K_WH_APPLIED   = "metrics:webhook:applied"
K_WH_DUPLICATE = "metrics:webhook:duplicate"
K_WH_REJECTED  = "metrics:webhook:rejected"

K_BANK_ATT  = "metrics:bank:attempts"
K_BANK_OK   = "metrics:bank:success"
K_BANK_FAIL = "metrics:bank:failure"
K_BANK_LAT  = "metrics:bank:latencies"          # LPUSH ms

_MAX_SAMPLES = 500  # cap to bound percentile computation cost

def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])

def _incr(key: str) -> None:
    try:
        get_redis().incr(key, 1)
    except Exception as e:
        log(event="metrics_write_failed", level="warning", key=key, error=str(e)[:200])

def _record_latency(ms: int) -> None:
    try:
        r = get_redis()
        r.lpush(K_BANK_LAT, int(ms))
        r.ltrim(K_BANK_LAT, 0, _MAX_SAMPLES - 1)
    except Exception as e:
        log(event="metrics_write_failed", level="warning", key=K_BANK_LAT, error=str(e)[:200])

def increment_webhook_received() -> None:
    _incr(K_WH_RECEIVED)

def increment_webhook_applied() -> None:
    _incr(K_WH_APPLIED)

def increment_webhook_duplicate() -> None:
    _incr(K_WH_DUPLICATE)

def increment_webhook_rejected() -> None:
    _incr(K_WH_REJECTED)

def increment_bank_submit_attempt() -> None:
    _incr(K_BANK_ATT)

def record_bank_submit_success(ms: int) -> None:
    _incr(K_BANK_OK)
    _record_latency(ms)

def record_bank_submit_failure(ms: int) -> None:
    _incr(K_BANK_FAIL)
    _record_latency(ms)

def _read_latencies_s() -> List[float]:
    r = get_redis()
    out: List[float] = []
    for x in r.lrange(K_BANK_LAT, 0, _MAX_SAMPLES - 1) or []:
        try:
            out.append(float(x) / 1000.0)
        except (TypeError, ValueError):
            continue
    return out

def _p50_p95(latencies_s: List[float]) -> Tuple[float, float]:
    if not latencies_s:
        return 0.0, 0.0
    return _percentile(latencies_s, 0.50), _percentile(latencies_s, 0.95)

def get_metrics_snapshot() -> dict:
    r = get_redis()

    def _count(key: str) -> int:
        return int(r.get(key) or 0)

    received = _count(K_WH_RECEIVED)
    applied = _count(K_WH_APPLIED)
    bank_att = _count(K_BANK_ATT)
    bank_ok = _count(K_BANK_OK)
    p50, p95 = _p50_p95(_read_latencies_s())

    return {
        "webhooks_received": received,
        "webhooks_applied": applied,
        "webhooks_duplicate": _count(K_WH_DUPLICATE),
        "webhooks_rejected": _count(K_WH_REJECTED),
        "bank_submit_attempts": bank_att,
        "bank_submit_success": bank_ok,
        "bank_submit_failure": _count(K_BANK_FAIL),
        "bank_submit_success_rate": round((bank_ok / bank_att) * 100.0, 3) if bank_att else 0.0,
        "p50_bank_latency": round(p50, 3),
        "p95_bank_latency": round(p95, 3),
        "snapshot_at": int(time.time()),
    }
