"""
Order domain models.

All models are frozen pydantic models: nothing is mutated in place, updates go
through ``model_copy(update=...)`` and the cached entry is replaced wholesale.

The order service has shipped several spellings of the same field over time
(``productRef``/``reference``, ``lineTotal``/``totalLine``, ``totalHt``/
``totalAmount``, ``tvaRate``/``tauxTVA``/``tva``/``codeTva``...). They are
collapsed here, at ingestion, so business logic only ever sees one name.
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class OrderStatus(str, Enum):
    """Order lifecycle states (see ``libs.orders.state_machine``)."""

    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    PREPARATION = "PREPARATION"
    SHIPPED = "SHIPPED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"


ORDER_STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "En attente",
    OrderStatus.VALIDATED: "Validée",
    OrderStatus.PREPARATION: "En préparation",
    OrderStatus.SHIPPED: "Expédiée",
    OrderStatus.INVOICED: "Facturée",
    OrderStatus.CANCELLED: "Annulée",
}


class OrderType(str, Enum):
    STOCK = "STOCK"
    QUICK = "QUICK"


class DocumentType(str, Enum):
    BL = "BL"
    INVOICE = "INVOICE"


class Availability(str, Enum):
    """Stock availability snapshot taken when a line is added."""

    DISPONIBLE = "DISPONIBLE"
    RUPTURE = "RUPTURE"

    @classmethod
    def from_stock(cls, stock: int) -> Availability:
        return cls.DISPONIBLE if stock > 0 else cls.RUPTURE


class UserRole(str, Enum):
    """
    Console roles.

    SYSTEM_ADMIN: everything, including hard-delete
    FULL_ADMIN: back-office operator without configuration access
    PARTIAL_ADMIN: back-office operator, orders only
    CLIENT_ADMIN: client user allowed to edit and cancel its pending orders
    CLIENT_USER: client user, view and cancel only
    """

    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    FULL_ADMIN = "FULL_ADMIN"
    PARTIAL_ADMIN = "PARTIAL_ADMIN"
    CLIENT_ADMIN = "CLIENT_ADMIN"
    CLIENT_USER = "CLIENT_USER"


OPERATOR_ROLES = frozenset({UserRole.SYSTEM_ADMIN, UserRole.FULL_ADMIN, UserRole.PARTIAL_ADMIN})
CLIENT_ROLES = frozenset({UserRole.CLIENT_ADMIN, UserRole.CLIENT_USER})


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_decimal(value: Any) -> Decimal | None:
    value = _blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Actor(_FrozenModel):
    """The user driving a console session."""

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId", "id"))
    role: UserRole
    full_name: str = Field(default="", validation_alias=AliasChoices("full_name", "fullName"))
    company_name: str | None = Field(
        default=None, validation_alias=AliasChoices("company_name", "companyName")
    )

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES


class OrderItem(_FrozenModel):
    """One order line."""

    id: str | None = None
    reference: str = Field(validation_alias=AliasChoices("reference", "productRef"))
    designation: str = Field(
        default="", validation_alias=AliasChoices("designation", "productName")
    )
    quantity: int = Field(ge=0)
    quantity_delivered: int | None = Field(
        default=None, validation_alias=AliasChoices("quantity_delivered", "quantityDelivered")
    )
    unit_price: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("unit_price", "unitPrice")
    )
    total_line: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("total_line", "totalLine", "lineTotal"),
    )
    tva_rate: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("tva_rate", "tvaRate", "tauxTVA", "tva", "codeTva"),
    )
    availability: Availability | None = None
    location: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_line_total(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if any(data.get(key) is not None for key in ("total_line", "totalLine", "lineTotal")):
            return data
        unit = _to_decimal(data.get("unit_price", data.get("unitPrice"))) or Decimal("0")
        quantity = data.get("quantity") or 0
        return {**data, "total_line": unit * int(quantity)}

    @model_validator(mode="before")
    @classmethod
    def _clamp_delivered(cls, data: Any) -> Any:
        """Keep ``0 <= quantity_delivered <= quantity`` for every ingested line."""
        if not isinstance(data, dict):
            return data
        for key in ("quantity_delivered", "quantityDelivered"):
            raw = data.get(key)
            if raw is None:
                continue
            try:
                delivered, ordered = int(raw), int(data.get("quantity") or 0)
            except (TypeError, ValueError):
                return data
            return {**data, key: min(max(delivered, 0), max(ordered, 0))}
        return data

    @field_validator("tva_rate", mode="before")
    @classmethod
    def _normalize_tva(cls, value: Any) -> Decimal | None:
        return _to_decimal(value)

    @field_validator("unit_price", "total_line", mode="before")
    @classmethod
    def _normalize_money(cls, value: Any) -> Decimal:
        return _to_decimal(value) or Decimal("0")

    @field_validator("availability", "location", mode="before")
    @classmethod
    def _normalize_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def to_payload(self) -> dict[str, Any]:
        """Line shape expected by ``updateOrderContents``."""
        payload: dict[str, Any] = {
            "reference": self.reference,
            "productRef": self.reference,
            "designation": self.designation,
            "productName": self.designation,
            "quantity": self.quantity,
            "unitPrice": float(self.unit_price),
            "totalLine": float(self.total_line),
            "lineTotal": float(self.total_line),
        }
        if self.tva_rate is not None:
            payload["tvaRate"] = float(self.tva_rate)
        if self.availability is not None:
            payload["availability"] = self.availability.value
        return payload


class OrderDocumentRef(_FrozenModel):
    type: DocumentType
    ref: str
    url: str = ""


class Order(_FrozenModel):
    """
    Order aggregate as seen by the console.

    ``last_modified_at`` drives the validation cooldown; when the service does
    not send it, ``effective_last_modified`` falls back to ``date``.
    """

    id: str
    order_number: str | None = Field(
        default=None, validation_alias=AliasChoices("order_number", "orderNumber")
    )
    order_type: OrderType = Field(
        default=OrderType.STOCK, validation_alias=AliasChoices("order_type", "orderType")
    )
    dms_ref: str | None = Field(default=None, validation_alias=AliasChoices("dms_ref", "dmsRef"))
    status: OrderStatus
    date: date
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    last_modified_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_modified_at", "lastModifiedAt")
    )

    is_editing: bool = Field(default=False, validation_alias=AliasChoices("is_editing", "isEditing"))
    editing_by_user_id: str | None = Field(
        default=None, validation_alias=AliasChoices("editing_by_user_id", "editingByUserId")
    )
    editing_by_user_name: str | None = Field(
        default=None, validation_alias=AliasChoices("editing_by_user_name", "editingByUserName")
    )
    editing_started_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("editing_started_at", "editingStartedAt")
    )

    total_amount: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("total_amount", "totalAmount", "totalHt")
    )
    company_id: str | None = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )
    company_name: str | None = Field(
        default=None, validation_alias=AliasChoices("company_name", "companyName")
    )
    user_email: str | None = Field(
        default=None, validation_alias=AliasChoices("user_email", "userEmail")
    )
    items: tuple[OrderItem, ...] = ()
    documents: tuple[OrderDocumentRef, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _normalize_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {key: _blank_to_none(value) for key, value in data.items()}

        # Calendar date: the service sends "YYYY-MM-DD" or nothing; derive from createdAt.
        if data.get("date") is None:
            created = data.get("created_at") or data.get("createdAt")
            if isinstance(created, datetime):
                data["date"] = created.date()
            elif isinstance(created, str):
                data["date"] = created[:10]
        elif isinstance(data["date"], str) and len(data["date"]) > 10:
            data["date"] = data["date"][:10]

        editing_user = data.get("editingByUser")
        if isinstance(editing_user, dict) and not data.get("editingByUserName"):
            data["editing_by_user_name"] = editing_user.get("fullName")

        if not data.get("documents"):
            documents: list[dict[str, str]] = []
            if data.get("blNumber"):
                documents.append({"type": "BL", "ref": str(data["blNumber"])})
            if data.get("invoiceNumber"):
                documents.append({"type": "INVOICE", "ref": str(data["invoiceNumber"])})
            data["documents"] = documents

        if data.get("items") is None:
            data["items"] = ()
        return data

    @field_validator("total_amount", mode="before")
    @classmethod
    def _normalize_total(cls, value: Any) -> Decimal:
        return _to_decimal(value) or Decimal("0")

    @field_validator("created_at", "last_modified_at", "editing_started_at")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @property
    def effective_last_modified(self) -> datetime:
        if self.last_modified_at is not None:
            return self.last_modified_at
        return datetime.combine(self.date, time.min, tzinfo=UTC)

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def display_ref(self) -> str:
        return self.order_number or self.dms_ref or self.id[:8]

    def item(self, item_id: str) -> OrderItem | None:
        return next((line for line in self.items if line.id == item_id), None)


class EditingStatus(_FrozenModel):
    """Payload of ``orderEditingStatusChanged``; one entry per locked order."""

    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"))
    is_editing: bool = Field(validation_alias=AliasChoices("is_editing", "isEditing"))
    editing_by_user_id: str | None = Field(
        default=None, validation_alias=AliasChoices("editing_by_user_id", "editingByUserId")
    )
    editing_by_user_name: str | None = Field(
        default=None, validation_alias=AliasChoices("editing_by_user_name", "editingByUserName")
    )
    editing_started_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("editing_started_at", "editingStartedAt")
    )

    @field_validator("editing_started_at")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class OrderUpdateEvent(_FrozenModel):
    """Payload of ``orderUpdated``. A hint to refetch, never applied as a delta."""

    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"))
    status: OrderStatus | None = None
    total_ht: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("total_ht", "totalHt")
    )
    last_modified_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_modified_at", "lastModifiedAt")
    )


class DmsSyncResult(_FrozenModel):
    """Result of one reconciliation run against the DMS."""

    synced: int = 0
    message: str = ""
    errors: tuple[str, ...] = ()
    success: bool = True


class Product(_FrozenModel):
    """Catalog product snapshot."""

    reference: str
    designation: str = ""
    brand: str = ""
    family: str = ""
    stock: int = 0
    price_ht: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("price_ht", "priceHT", "price", "pricePublic"),
    )
    code_origine: str | None = Field(
        default=None, validation_alias=AliasChoices("code_origine", "codeOrigine")
    )
    tva_rate: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("tva_rate", "tvaRate", "tauxTVA", "tva", "codeTva"),
    )

    @field_validator("tva_rate", mode="before")
    @classmethod
    def _normalize_tva(cls, value: Any) -> Decimal | None:
        return _to_decimal(value)

    @field_validator("price_ht", mode="before")
    @classmethod
    def _normalize_price(cls, value: Any) -> Decimal:
        return _to_decimal(value) or Decimal("0")


class CartItem(_FrozenModel):
    """
    A product snapshot with the quantity, net price and availability fixed at
    add-time. Neither price nor availability is refreshed afterwards.
    """

    product: Product
    quantity: int = Field(gt=0)
    client_net_price: Decimal
    availability: Availability

    @property
    def reference(self) -> str:
        return self.product.reference

    @property
    def designation(self) -> str:
        return self.product.designation

    @property
    def tva_rate(self) -> Decimal | None:
        return self.product.tva_rate

    @property
    def line_total(self) -> Decimal:
        return self.client_net_price * self.quantity

    def to_order_item(self) -> OrderItem:
        return OrderItem(
            reference=self.reference,
            designation=self.designation,
            quantity=self.quantity,
            unit_price=self.client_net_price,
            total_line=self.line_total,
            tva_rate=self.tva_rate,
            availability=self.availability,
        )


__all__ = [
    "Actor",
    "Availability",
    "CLIENT_ROLES",
    "CartItem",
    "DmsSyncResult",
    "DocumentType",
    "EditingStatus",
    "OPERATOR_ROLES",
    "ORDER_STATUS_LABELS",
    "Order",
    "OrderDocumentRef",
    "OrderItem",
    "OrderStatus",
    "OrderType",
    "OrderUpdateEvent",
    "Product",
    "UserRole",
]
