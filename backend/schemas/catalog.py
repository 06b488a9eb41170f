# schemas/catalog.py
# ============================================================================
# TSF SHOP — CATALOG SCHEMAS
# ============================================================================
# Product record as persisted in the catalog document, plus the admin
# create/update payloads and the id/boolean normalization rules.
# ============================================================================

import re
import time
import unicodedata
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class ProductType(str, Enum):
    COURSE = "course"
    INDICATOR = "indicator"
    BOT = "bot"
    PHYSICAL = "physical"
    OTHER = "other"


class DeliveryType(str, Enum):
    DRIVE_LINK = "drive_link"
    INSTRUCTION_PAGE = "instruction_page"
    GENERATED_ACCESS = "generated_access"
    NONE = "none"


# ============================================================================
# SECTION 2: NORMALIZATION HELPERS
# ============================================================================

_TRUTHY = {"true", "1", "yes", "on"}


def normalize_bool(value: Any) -> bool:
    """true / "true" / 1 / "1" are true, anything else supplied is false."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def slugify(name: str) -> str:
    text = unicodedata.normalize("NFD", name.lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-") or "producto"


def to_base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_product_id(name: str, existing_ids: set[str]) -> str:
    """Slug of the name plus a base-36 millisecond suffix, unique in existing_ids."""
    base = f"{slugify(name)}-{to_base36(int(time.time() * 1000))}"
    candidate = base
    counter = 1
    while candidate in existing_ids:
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


# ============================================================================
# SECTION 3: PRODUCT
# ============================================================================

class Product(BaseModel):
    """A sellable product. The whole catalog is a list of these."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: ProductType = ProductType.OTHER
    short_description: str = ""
    price_cents: int = Field(..., ge=0)
    currency: str = "USD"
    image_url: str = ""
    is_active: bool = True
    is_featured: bool = True
    delivery_type: DeliveryType = DeliveryType.GENERATED_ACCESS
    delivery_value: str = ""
    instructions: str = ""
    pdf_url: str = ""
    email_subject: Optional[str] = None
    email_body: Optional[str] = None

    @field_validator("is_active", "is_featured", mode="before")
    @classmethod
    def _normalize_flags(cls, value: Any) -> bool:
        if value is None:
            return True
        return normalize_bool(value)

    @property
    def grants_digital_access(self) -> bool:
        return self.type != ProductType.PHYSICAL.value and self.delivery_type != DeliveryType.NONE.value


class ProductCreate(BaseModel):
    """Admin create payload. name and price_cents are checked by the service."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    type: ProductType = ProductType.OTHER
    short_description: str = ""
    price_cents: Optional[int] = Field(default=None, ge=0)
    currency: str = "USD"
    image_url: str = ""
    is_active: Any = None
    is_featured: Any = None
    delivery_type: DeliveryType = DeliveryType.GENERATED_ACCESS
    delivery_value: str = ""
    instructions: str = ""
    pdf_url: str = ""
    email_subject: Optional[str] = None
    email_body: Optional[str] = None


class ProductUpdate(BaseModel):
    """Admin update payload; only fields actually sent are merged."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[ProductType] = None
    short_description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Any = None
    is_featured: Any = None
    delivery_type: Optional[DeliveryType] = None
    delivery_value: Optional[str] = None
    instructions: Optional[str] = None
    pdf_url: Optional[str] = None
    email_subject: Optional[str] = None
    email_body: Optional[str] = None

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True, mode="json")
        data.pop("id", None)
        # null clears the optional email templates; elsewhere it means "unchanged"
        data = {
            k: v for k, v in data.items()
            if v is not None or k in ("email_subject", "email_body")
        }
        for flag in ("is_active", "is_featured"):
            if flag in data:
                data[flag] = normalize_bool(data[flag])
        return data


__all__ = [
    "ProductType",
    "DeliveryType",
    "Product",
    "ProductCreate",
    "ProductUpdate",
    "normalize_bool",
    "slugify",
    "generate_product_id",
]
