from schemas.catalog import (
    Product,
    ProductCreate,
    ProductUpdate,
    ProductType,
    DeliveryType,
)
from schemas.fulfillment import (
    CartItem,
    CheckoutRequest,
    CheckoutSuccessRequest,
    ProviderSession,
    ProviderLineItem,
    AccessRecord,
    AccessLink,
    SessionMarker,
    FulfillmentResult,
    PaymentOutcome,
)

__all__ = [
    "Product",
    "ProductCreate",
    "ProductUpdate",
    "ProductType",
    "DeliveryType",
    "CartItem",
    "CheckoutRequest",
    "CheckoutSuccessRequest",
    "ProviderSession",
    "ProviderLineItem",
    "AccessRecord",
    "AccessLink",
    "SessionMarker",
    "FulfillmentResult",
    "PaymentOutcome",
]
