"""Async HTTP client for the order service.

Every operation is wrapped in ``with_retry``; payloads are parsed into the
``libs.orders`` models at this boundary so callers never see raw JSON.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, cast

import httpx
from pydantic import ValidationError

from apps.order_console import config
from apps.order_console.core.retry import with_retry
from libs.common.exceptions import TransientNetworkFailure
from libs.orders.models import DmsSyncResult, Order, OrderStatus

logger = logging.getLogger(__name__)


class AsyncOrderServiceClient:
    """Async HTTP client for order service calls."""

    _instance: AsyncOrderServiceClient | None = None

    def __init__(self) -> None:
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def get(cls) -> AsyncOrderServiceClient:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise RuntimeError("Client not initialized - call startup() first")
        return self._http_client

    async def startup(self) -> None:
        """Initialize client on console startup."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=config.ORDER_SERVICE_URL,
                timeout=httpx.Timeout(config.HTTP_TIMEOUT_SECONDS, connect=2.0),
                headers={"Content-Type": "application/json"},
            )

    async def shutdown(self) -> None:
        """Close client on console shutdown."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_auth_headers(
        self,
        user_id: str,
        role: str | None = None,
        company: str | None = None,
    ) -> dict[str, str]:
        """Build identity headers for order service requests.

        Args:
            user_id: User ID from the console session.
            role: User role. Falls back to DEV_ROLE only in DEBUG mode.
            company: Company of a client user; empty for operators.

        Returns:
            Dict of identity headers, signed when INTERNAL_TOKEN_SECRET is set.

        Raises:
            ValueError: In production mode if the identity is incomplete while
                signing is required.
        """
        headers: dict[str, str] = {}

        # SECURITY: Only use DEV_* fallbacks in DEBUG mode
        if config.DEBUG:
            resolved_role = role if role is not None else config.DEV_ROLE
            resolved_user_id = user_id or config.DEV_USER_ID
        else:
            resolved_role = role
            resolved_user_id = user_id or ""
            if config.INTERNAL_TOKEN_SECRET and not resolved_user_id:
                raise ValueError("User ID required for authenticated requests in production mode")

        if resolved_role:
            headers["X-User-Role"] = str(resolved_role)
        if resolved_user_id:
            headers["X-User-Id"] = str(resolved_user_id)
        if company:
            headers["X-User-Company"] = company

        secret = config.INTERNAL_TOKEN_SECRET
        if secret and resolved_user_id and resolved_role is not None:
            timestamp = str(int(time.time()))
            payload = json.dumps(
                {
                    "uid": str(resolved_user_id).strip(),
                    "role": str(resolved_role).strip(),
                    "company": company or "",
                    "ts": timestamp,
                },
                separators=(",", ":"),
                sort_keys=True,
            )
            signature = hmac.new(
                secret.encode("utf-8"),
                payload.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()
            headers["X-Request-Timestamp"] = timestamp
            headers["X-User-Signature"] = signature
        elif secret and not config.DEBUG:
            raise ValueError(
                "Role required for authenticated requests in production mode "
                "(INTERNAL_TOKEN_SECRET is set but role is missing)"
            )

        return headers

    def _json_dict(self, response: httpx.Response) -> dict[str, Any]:
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("Expected JSON object response")
        return cast(dict[str, Any], payload)

    def _json_list(self, response: httpx.Response) -> list[dict[str, Any]]:
        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("orders", payload.get("data"))
        if not isinstance(payload, list):
            raise ValueError("Expected JSON array response")
        return cast(list[dict[str, Any]], payload)

    @with_retry(max_attempts=3, method="GET")
    async def list_orders(
        self,
        user_id: str,
        role: str | None = None,
        company: str | None = None,
    ) -> list[Order]:
        """List orders, restricted to ``company`` when given (GET - idempotent).

        Entries that fail validation are skipped and logged rather than
        failing the whole list.
        """
        headers = self._get_auth_headers(user_id, role, company)
        params = {"company": company} if company else None
        resp = await self._client.get("/orders", headers=headers, params=params)
        resp.raise_for_status()
        orders: list[Order] = []
        for raw in self._json_list(resp):
            try:
                orders.append(Order.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "order_payload_invalid",
                    extra={"order_id": raw.get("id"), "error": str(exc)},
                )
        return orders

    @with_retry(max_attempts=3, method="PATCH")
    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        user_id: str,
        role: str | None = None,
    ) -> Order:
        """Move an order to ``status`` (PATCH)."""
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.patch(
            f"/orders/{order_id}/status", headers=headers, json={"status": status.value}
        )
        resp.raise_for_status()
        return Order.model_validate(self._json_dict(resp))

    @with_retry(max_attempts=3, method="PUT")
    async def update_order_contents(
        self,
        order_id: str,
        items: list[dict[str, Any]],
        user_id: str,
        role: str | None = None,
        company: str | None = None,
    ) -> Order:
        """Replace the lines of a PENDING order (PUT - idempotent)."""
        headers = self._get_auth_headers(user_id, role, company)
        resp = await self._client.put(f"/orders/{order_id}", headers=headers, json={"items": items})
        resp.raise_for_status()
        return Order.model_validate(self._json_dict(resp))

    @with_retry(max_attempts=3, method="PATCH")
    async def ship_order(
        self,
        order_id: str,
        items: list[dict[str, Any]],
        user_id: str,
        role: str | None = None,
    ) -> Order:
        """Submit delivered quantities per line (PATCH - not idempotent).

        Args:
            items: ``[{"itemId": ..., "quantityDelivered": ...}, ...]`` covering
                every line of the order.
        """
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.patch(
            f"/orders/{order_id}/ship", headers=headers, json={"items": items}
        )
        resp.raise_for_status()
        return Order.model_validate(self._json_dict(resp))

    @with_retry(max_attempts=3, method="DELETE")
    async def delete_order(
        self,
        order_id: str,
        user_id: str,
        role: str | None = None,
    ) -> dict[str, Any]:
        """Hard-delete an order (DELETE - privileged, irreversible)."""
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.delete(f"/orders/{order_id}", headers=headers)
        resp.raise_for_status()
        if not resp.content:
            return {}
        return self._json_dict(resp)

    @with_retry(max_attempts=3, method="POST")
    async def sync_dms_orders(
        self,
        user_id: str,
        role: str | None = None,
    ) -> DmsSyncResult:
        """Reconcile orders with the DMS (POST - not idempotent)."""
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.post("/orders/sync-dms", headers=headers)
        resp.raise_for_status()
        return DmsSyncResult.model_validate(self._json_dict(resp))

    @with_retry(max_attempts=3, method="POST")
    async def print_preparation_slip(
        self,
        order_id: str,
        user_id: str,
        role: str | None = None,
    ) -> None:
        """Ask the service to print the preparation slip (POST, fire-and-forget)."""
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.post(f"/orders/{order_id}/print", headers=headers)
        resp.raise_for_status()

    @with_retry(max_attempts=3, method="PATCH")
    async def set_order_editing(
        self,
        order_id: str,
        is_editing: bool,
        user_id: str,
        role: str | None = None,
        company: str | None = None,
    ) -> Order:
        """Acquire or release the edit lock on an order (PATCH).

        The service broadcasts the new lock state on the realtime channel.
        """
        headers = self._get_auth_headers(user_id, role, company)
        resp = await self._client.patch(
            f"/orders/{order_id}/editing", headers=headers, json={"isEditing": is_editing}
        )
        resp.raise_for_status()
        return Order.model_validate(self._json_dict(resp))

    async def fetch_order_positions(
        self,
        order_id: str,
        user_id: str,
        role: str | None = None,
    ) -> dict[str, str]:
        """Warehouse location per reference for the preparation slip.

        Positions are optional: any failure yields an empty mapping.
        """
        try:
            return await self._fetch_order_positions(order_id, user_id, role)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "order_positions_unavailable",
                extra={"order_id": order_id, "error": str(exc)},
            )
            return {}

    @with_retry(max_attempts=2, method="GET")
    async def _fetch_order_positions(
        self,
        order_id: str,
        user_id: str,
        role: str | None = None,
    ) -> dict[str, str]:
        headers = self._get_auth_headers(user_id, role)
        resp = await self._client.get(f"/orders/{order_id}/positions", headers=headers)
        resp.raise_for_status()
        payload = self._json_dict(resp)
        positions = payload.get("positions", payload)
        if not isinstance(positions, dict):
            raise ValueError("Expected positions object")
        return {str(ref): str(location) for ref, location in positions.items() if location}


def service_error_message(exc: Exception, default: str) -> str:
    """Message to show the user for a failed call.

    Uses the service-provided ``message`` when the error response carries one.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message")
            if isinstance(message, list):
                message = ", ".join(str(part) for part in message)
            if message:
                return str(message)
    return default


def as_network_failure(exc: Exception, operation: str, default: str) -> TransientNetworkFailure:
    """Wrap a failed call into the error shown to the user."""
    status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
    return TransientNetworkFailure(
        service_error_message(exc, default), operation=operation, status_code=status_code
    )


__all__ = ["AsyncOrderServiceClient", "as_network_failure", "service_error_message"]
