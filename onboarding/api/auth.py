from fastapi import Header

from onboarding.errors import UnauthorizedError
from onboarding.settings import settings


def require_api_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    Owner API key is optional.
    - If API_KEY env is empty: allow all requests.
    - If API_KEY env is set: require matching x-api-key header.
    """
    if not getattr(settings, "API_KEY", ""):
        return
    if x_api_key != settings.API_KEY:
        raise UnauthorizedError("Invalid API key", code="INVALID_API_KEY")


def current_owner(x_owner_id: str = Header(default="", alias="x-owner-id")) -> str:
    # Identity is established upstream (gateway / session layer); we only require it to be present
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise UnauthorizedError("Owner identity required", code="MISSING_OWNER_ID")
    return owner_id
