# schemas/fulfillment.py
# ============================================================================
# TSF SHOP — CHECKOUT & FULFILLMENT SCHEMAS
# ============================================================================
# Cart payloads coming from the storefront, the normalized view of a
# provider checkout session, and the records written by fulfillment.
#
# PRICES:
# Cart prices are integer minor currency units (cents). Stripe receives
# them unchanged as unit_amount. Nothing in the backend rescales them.
# ============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# SECTION 1: CART / CHECKOUT REQUESTS
# ============================================================================

class CartItem(BaseModel):
    """One cart line as sent by the storefront."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "product_id"))
    name: str = Field(default="Producto TSF")
    price_cents: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("price_cents", "price"),
    )
    quantity: int = Field(default=1, ge=1, validation_alias=AliasChoices("quantity", "qty"))

    def compact(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "price": self.price_cents, "quantity": self.quantity}
        if self.id:
            out["id"] = self.id
        return out


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items: Optional[List[CartItem]] = None
    buyer_name: Optional[str] = Field(default="", validation_alias=AliasChoices("buyerName", "buyer_name"))
    buyer_email: Optional[str] = Field(default="", validation_alias=AliasChoices("buyerEmail", "buyer_email"))
    buyer_whatsapp: Optional[str] = Field(
        default="", validation_alias=AliasChoices("buyerWhatsApp", "buyer_whatsapp")
    )
    success_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("successUrl", "success_url"))
    cancel_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("cancelUrl", "cancel_url"))


class CheckoutResponse(BaseModel):
    url: str


class CheckoutSuccessRequest(BaseModel):
    session_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("session_id", "sessionId")
    )


# ============================================================================
# SECTION 2: PROVIDER SESSION (normalized)
# ============================================================================

class ProviderLineItem(BaseModel):
    description: str = ""
    product_id: Optional[str] = None
    quantity: int = 1
    amount_total: int = 0


class ProviderSession(BaseModel):
    """What fulfillment needs from a Stripe checkout session."""
    id: str
    payment_status: str = "unpaid"
    status: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    line_items: List[ProviderLineItem] = Field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    def buyer_email(self) -> Optional[str]:
        md = self.metadata
        return (
            self.customer_email
            or md.get("buyerEmail")
            or md.get("buyer_email")
            or md.get("email")
            or None
        )

    def buyer_name(self) -> str:
        md = self.metadata
        return md.get("buyerName") or md.get("buyer_name") or self.customer_name or "Cliente Stripe"

    def buyer_whatsapp(self) -> Optional[str]:
        md = self.metadata
        return md.get("buyerWhatsApp") or md.get("buyer_whatsapp") or None


# ============================================================================
# SECTION 3: ACCESS RECORDS & MARKER
# ============================================================================

class AccessRecord(BaseModel):
    """Bearer-token record; immutable once written."""
    token: str
    product_id: str
    product_name: str
    email: str
    created_at: str = Field(default_factory=utc_now_iso)
    delivery_type: str
    delivery_value: str = ""
    instructions: str = ""
    pdf_url: str = ""


class AccessLink(BaseModel):
    token: str
    product_id: str
    product_name: str
    access_url: str
    delivery_type: str
    delivery_value: str = ""
    instructions: str = ""
    pdf_url: str = ""
    # email templates travel with the link so the email can be rendered
    # without a second catalog read
    email_subject: Optional[str] = Field(default=None, exclude=True)
    email_body: Optional[str] = Field(default=None, exclude=True)


class SessionMarker(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    access_links: List[AccessLink] = Field(default_factory=list, alias="accessLinks")
    created_at: str = Field(default_factory=utc_now_iso)


class FulfillmentResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    email: str
    access_links: List[AccessLink] = Field(default_factory=list, alias="accessLinks")
    already_processed: bool = Field(default=False, exclude=True)


# ============================================================================
# SECTION 4: CRM STAGES
# ============================================================================

class PaymentOutcome(str, Enum):
    COMPLETED = "completed"
    EXPIRED = "expired"
    REJECTED = "rejected"


__all__ = [
    "CartItem",
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutSuccessRequest",
    "ProviderLineItem",
    "ProviderSession",
    "AccessRecord",
    "AccessLink",
    "SessionMarker",
    "FulfillmentResult",
    "PaymentOutcome",
    "utc_now_iso",
]
