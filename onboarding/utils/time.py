import time
from datetime import datetime, timezone

def now_ms() -> int:
    return int(time.time() * 1000)

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def parse_timestamp_ms(ts):
    """
    Normalize a timestamp to epoch milliseconds (int).
    Accepts:
    - int/float or a digit string: epoch ms (or seconds if suspiciously small)
    - ISO-8601 string: parsed via datetime.fromisoformat (supports trailing 'Z')
    Returns None when the value can't be interpreted.
    """
    if ts is None or isinstance(ts, bool):
        return None
    if isinstance(ts, (int, float)):
        v = int(ts)
        # Heuristic: if looks like seconds (< 10^12), convert to ms.
        return v * 1000 if 0 < v < 10**12 else v
    if isinstance(ts, str):
        s = ts.strip()
        if not s:
            return None
        if s.lstrip("-").isdigit():
            return parse_timestamp_ms(int(s))
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None

def later_iso(current, candidate: str) -> str:
    """Status timestamps only move forward."""
    if not current:
        return candidate
    cur_ms = parse_timestamp_ms(current)
    cand_ms = parse_timestamp_ms(candidate)
    if cur_ms is None or cand_ms is None:
        return candidate
    return candidate if cand_ms >= cur_ms else current
