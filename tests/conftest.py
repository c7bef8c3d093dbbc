"""Shared fixtures for order console tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from apps.order_console import config
from apps.order_console.core import retry
from apps.order_console.core.client import AsyncOrderServiceClient
from libs.orders.models import Actor, Order, UserRole

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def no_retry_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip retry backoff. Patches the shared asyncio module, so only for HTTP tests."""

    async def _sleep(_: float) -> None:
        return None

    monkeypatch.setattr(retry.asyncio, "sleep", _sleep)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def order_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": "ord-1",
        "orderNumber": "CMD-0001",
        "orderType": "STOCK",
        "status": "PENDING",
        "date": "2026-03-02",
        "createdAt": "2026-03-02T08:55:00.000Z",
        "lastModifiedAt": "2026-03-02T08:59:00.000Z",
        "totalAmount": 100,
        "companyName": "Garage Nord",
        "items": [
            {
                "id": "it-1",
                "productRef": "REF-A",
                "productName": "Filtre à huile",
                "quantity": 3,
                "unitPrice": 20,
                "lineTotal": 60,
                "tvaRate": 20,
            },
            {
                "id": "it-2",
                "reference": "REF-B",
                "designation": "Plaquettes",
                "quantity": 2,
                "unitPrice": 20,
                "totalLine": 40,
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def make_order() -> Callable[..., Order]:
    def _make(**overrides: Any) -> Order:
        return Order.model_validate(order_payload(**overrides))

    return _make


@pytest.fixture()
def make_payload() -> Callable[..., dict[str, Any]]:
    return order_payload


@pytest.fixture()
def operator() -> Actor:
    return Actor(user_id="op-1", role=UserRole.FULL_ADMIN, full_name="Claire Martin")


@pytest.fixture()
def client_admin() -> Actor:
    return Actor(
        user_id="cli-1",
        role=UserRole.CLIENT_ADMIN,
        full_name="Paul Garage",
        company_name="Garage Nord",
    )


@pytest.fixture()
async def order_client(
    monkeypatch: pytest.MonkeyPatch, no_retry_sleep: None
) -> AsyncIterator[AsyncOrderServiceClient]:
    monkeypatch.setattr(config, "ORDER_SERVICE_URL", "http://testserver")
    monkeypatch.setattr(config, "INTERNAL_TOKEN_SECRET", "")
    monkeypatch.setattr(config, "DEBUG", False)
    client = AsyncOrderServiceClient()
    await client.startup()
    try:
        yield client
    finally:
        await client.shutdown()
