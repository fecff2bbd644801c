import json
import time
from onboarding.settings import settings

# Redacted when PII redaction is enabled
SENSITIVE_KEYS = {
    "taxId", "accountNumber", "phone", "email", "payload", "body",
    "registrationNumber", "responseText",
}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def log(event: str, level: str = "info", **fields):
    payload = {"ts": int(time.time()), "event": event, "level": level}

    if settings.ENABLE_PII_REDACTION:
        clean_fields = {}
        for k, v in fields.items():
            if k in SENSITIVE_KEYS:
                clean_fields[k] = _redact_value(v)
            elif isinstance(v, dict):
                clean_fields[k] = {sk: (_redact_value(sv) if sk in SENSITIVE_KEYS else sv) for sk, sv in v.items()}
            else:
                clean_fields[k] = v
        payload.update(clean_fields)
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))

def signature_prefix(signature: str, length: int = 10) -> str:
    """Never log a full signature."""
    if not signature:
        return ""
    return signature[:length] + "..."
