"""
Request schemas for the Plant Shop API.

Each Pydantic model validates one JSON body before it reaches a service.
Product create/update travel as multipart forms (they may carry an image)
and are parsed in main.py instead.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from database import MAX_SQL_INT


def _lenient_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, int) else int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return max(-MAX_SQL_INT, min(MAX_SQL_INT, number))


# -----------------
# Auth
# -----------------

class RegisterRequest(BaseModel):
    email: str = Field("", description="Account e-mail, normalized to lowercase")
    username: Optional[str] = Field(None, description="Defaults to the e-mail local part")
    password: str = Field("", description="At least 6 characters")


class LoginRequest(BaseModel):
    identifier: Optional[str] = Field(None, description="E-mail or username")
    id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    password: str = ""

    def who(self) -> str:
        for candidate in (self.identifier, self.id, self.email, self.username):
            if candidate and str(candidate).strip():
                return str(candidate).strip()
        return ""


# -----------------
# Catalog
# -----------------

class CategoryIn(BaseModel):
    name: str = Field(..., description="Category display name, e.g. 'Plantas de Interior'")
    slug: Optional[str] = Field(None, description="Derived from name when omitted")


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None


# -----------------
# Profile
# -----------------

PROFILE_FIELDS = (
    "full_name",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "country",
)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


# ------------
# Order Models
# ------------

class OrderItemIn(BaseModel):
    product_id: Optional[int] = Field(None, description="Catalog product; omit for a manual item")
    name: Optional[str] = Field(None, description="Overrides the product name snapshot")
    qty: int = Field(1, description="Quantity, at least 1")
    unit_price: int = Field(
        0,
        validation_alias=AliasChoices("unit_price", "unit_price_cents"),
        description="Overrides the product price snapshot; 0 means use the product price",
    )

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_ref(cls, v):
        pid = _lenient_int(v)
        return pid if pid else None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        if v is None:
            return None
        name = str(v).strip()
        return name or None

    @field_validator("qty", mode="before")
    @classmethod
    def _clamp_qty(cls, v):
        return max(1, _lenient_int(v) or 1)

    @field_validator("unit_price", mode="before")
    @classmethod
    def _clamp_price(cls, v):
        return max(0, _lenient_int(v) or 0)


class CustomerIn(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None


class CreateOrder(BaseModel):
    date: Optional[datetime] = Field(None, description="Order date; unparseable values mean now")
    customer: CustomerIn = Field(default_factory=CustomerIn)
    items: List[OrderItemIn] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v):
        if v in (None, ""):
            return datetime.now(timezone.utc)
        if isinstance(v, datetime):
            return v
        try:
            return datetime.fromisoformat(str(v).replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_default(cls, v):
        return v or {}
