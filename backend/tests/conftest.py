"""Shared fixtures: a scripted model gateway, sample catalogs, and an API client."""

from __future__ import annotations

import httpx
import pytest

from lens_inventory.models.contracts import Product
from tests.fakes import FakeGateway, make_catalog, make_image_b64


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def catalog() -> list[Product]:
    return make_catalog()


@pytest.fixture
def png_b64() -> str:
    return make_image_b64("PNG")


@pytest.fixture
async def client(gateway):
    """API client wired to the fake gateway, with session state cleared."""
    from lens_inventory.api.routes import sessions
    from lens_inventory.main import app

    app.dependency_overrides[sessions.get_gateway] = lambda: gateway
    sessions._sessions.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    sessions._sessions.clear()
