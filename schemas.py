"""
Request and settings schemas for the theater canteen API.

JSON bodies use camelCase keys (``theaterId``, ``productId``); models expose
snake_case attributes through an alias generator. Stored documents are plain
dicts written with the camelCase keys (``model_dump(by_alias=True)``).
"""
import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "served", "cancelled", "completed"]
PaymentMethod = Literal["cash", "card", "upi", "wallet", "bank_transfer"]
OrderType = Literal["dine_in", "takeaway", "delivery"]
StockEntryType = Literal["ADDED", "RETURNED", "SOLD", "EXPIRED", "DAMAGED", "ADJUSTMENT"]


def _object_id(value: Optional[str]) -> Optional[str]:
    if value is not None and not ObjectId.is_valid(value):
        raise ValueError("must be a valid id")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Auth
# -----------------------------
class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# -----------------------------
# Orders
# -----------------------------
class OrderItemIn(CamelModel):
    product_id: str
    quantity: int = Field(..., ge=1)

    @field_validator("product_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class CustomerInfo(CamelModel):
    name: str = "Walk-in Customer"
    phone: Optional[str] = None
    email: Optional[str] = None


class OrderCreate(CamelModel):
    theater_id: str
    items: List[OrderItemIn] = Field(..., min_length=1)
    customer_info: Optional[CustomerInfo] = None
    customer_name: Optional[str] = None
    table_number: Optional[str] = None
    section: Optional[str] = None
    special_instructions: Optional[str] = None
    order_notes: Optional[str] = None
    payment_method: PaymentMethod = "cash"
    order_type: OrderType = "dine_in"
    idempotency_key: Optional[str] = Field(None, max_length=100)

    @field_validator("theater_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class OrderStatusUpdate(CamelModel):
    status: OrderStatus


# -----------------------------
# Catalogue
# -----------------------------
class CategoryIn(CamelModel):
    theater_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    image: Optional[str] = None
    sort_order: int = 0

    @field_validator("theater_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class ProductTypeIn(CamelModel):
    theater_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)

    @field_validator("theater_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class ProductTypeUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class ProductPricing(CamelModel):
    base_price: float = Field(..., ge=0)
    currency: str = "INR"


class ProductInventory(CamelModel):
    current_stock: float = Field(0, ge=0)
    track_stock: bool = True
    min_stock: float = Field(0, ge=0)
    unit: str = "piece"


class ProductIn(CamelModel):
    theater_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category_id: Optional[str] = None
    product_type_id: Optional[str] = None
    pricing: ProductPricing
    inventory: ProductInventory = ProductInventory()
    is_available: bool = True
    image: Optional[str] = None

    @field_validator("theater_id", "category_id", "product_type_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[str] = None
    product_type_id: Optional[str] = None
    pricing: Optional[ProductPricing] = None
    inventory: Optional[ProductInventory] = None
    is_available: Optional[bool] = None
    is_active: Optional[bool] = None
    image: Optional[str] = None

    @field_validator("category_id", "product_type_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


# -----------------------------
# QR names
# -----------------------------
class QRNameIn(CamelModel):
    theater_id: str
    qr_name: str = Field(..., min_length=1, max_length=100)
    seat_class: str = Field(..., min_length=1, max_length=50)
    description: str = Field("", max_length=500)
    is_active: bool = True

    @field_validator("theater_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)

    @field_validator("qr_name", "seat_class", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class QRNameUpdate(CamelModel):
    qr_name: Optional[str] = Field(None, min_length=1, max_length=100)
    seat_class: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


# -----------------------------
# Roles
# -----------------------------
class Permission(CamelModel):
    page: str
    page_name: Optional[str] = None
    has_access: bool = True
    route: Optional[str] = None


class RoleIn(CamelModel):
    theater_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    permissions: List[Permission] = []
    priority: int = Field(10, ge=1)
    is_active: bool = True

    @field_validator("theater_id")
    @classmethod
    def check_ids(cls, v: Optional[str]) -> Optional[str]:
        return _object_id(v)


class RoleUpdate(CamelModel):
    """Every role field a client may send; which ones are accepted depends on the role."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: Optional[List[Permission]] = None
    priority: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    is_global: Optional[bool] = None
    can_delete: Optional[bool] = None
    can_edit: Optional[bool] = None
    is_default: Optional[bool] = None


# -----------------------------
# Theaters
# -----------------------------
class TheaterIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    location: str = ""


# -----------------------------
# Stock ledger
# -----------------------------
class StockEntryIn(CamelModel):
    date: datetime.date
    type: StockEntryType
    quantity: float
    used_stock: float = Field(0, ge=0)
    damage_stock: float = Field(0, ge=0)
    expire_date: Optional[datetime.date] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None


# -----------------------------
# Settings
# -----------------------------
class GeneralSettings(CamelModel):
    """Known general configuration keys; anything else in a payload is dropped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    application_name: str = "Theater Canteen System"
    browser_tab_title: str = "YQPayNow - Theater Canteen"
    logo_url: str = ""
    qr_code_url: str = ""
    environment: str = "development"
    default_currency: str = "INR"
    timezone: str = "Asia/Kolkata"
    date_format: str = "DD/MM/YYYY"
    time_format: str = "12hour"
    language_region: str = "en-IN"
    currency: str = "INR"
    currency_symbol: str = "₹"
    primary_color: str = "#8B5CF6"
    secondary_color: str = "#6366F1"
    tax_rate: float = 18
    service_charge_rate: float = 0
    site_name: Optional[str] = None
    site_description: Optional[str] = None
    order_timeout: Optional[int] = None
    maintenance_mode: bool = False
    allow_registration: bool = True
    require_email_verification: bool = False
    require_phone_verification: bool = False
    max_orders_per_day: Optional[int] = None
    min_order_amount: Optional[float] = None
    delivery_charge: Optional[float] = None
    free_delivery_threshold: Optional[float] = None
    frontend_url: Optional[str] = None


class GeneralSettingsUpdate(GeneralSettings):
    pass
