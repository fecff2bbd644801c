import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from onboarding.api.deps import get_orchestrator
from onboarding.main import app
from onboarding.settings import settings

ADMIN_KEY = "admin-test-key"


@pytest.fixture
def client(orch):
    app.dependency_overrides[get_orchestrator] = lambda: orch
    with patch.object(settings, "ADMIN_RBAC_ENABLED", True), \
         patch.object(settings, "ADMIN_API_KEY", ADMIN_KEY), \
         patch.object(settings, "API_KEY", ""):
        yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def admin_headers():
    return {"x-admin-key": ADMIN_KEY, "x-admin-user": "admin-1"}


@pytest.fixture
def owner_headers():
    return {"x-owner-id": "owner-1"}
