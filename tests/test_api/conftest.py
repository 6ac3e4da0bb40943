from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rxautomate.main import app
from rxautomate.middleware.auth import verify_firebase_token
from rxautomate.validation.service import PrescriptionValidationService


@pytest.fixture
def mock_validation():
    return AsyncMock(spec=PrescriptionValidationService)


@pytest_asyncio.fixture
async def anonymous_client(mock_firestore, rate_limiter, spine_service, eps_service, bsa_service, mock_validation):
    app.state.firestore = mock_firestore
    app.state.rate_limiter = rate_limiter
    app.state.spine = spine_service
    app.state.eps = eps_service
    app.state.bsa = bsa_service
    app.state.validation = mock_validation
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def client(anonymous_client):
    app.dependency_overrides[verify_firebase_token] = lambda: {"uid": "user-001"}
    yield anonymous_client
    app.dependency_overrides.clear()
