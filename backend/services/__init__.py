# services/__init__.py
# ============================================================================
# TSF SHOP — SERVICES MODULE
# ============================================================================
# Admin CRUD, checkout, fulfillment, notifications and access lookup
# ============================================================================

from services.admin_service import AdminProductService
from services.checkout_service import CheckoutService
from services.payments import IPaymentGateway, StripeGateway, MercadoPagoClient
from services.notifications import (
    AccessEmailSender,
    KommoCrmClient,
    LeadContact,
    NotificationDispatcher,
)
from services.fulfillment import FulfillmentReconciler, WebhookProcessor
from services.access_lookup import AccessLookupService

__all__ = [
    "AdminProductService",
    "CheckoutService",
    "IPaymentGateway",
    "StripeGateway",
    "MercadoPagoClient",
    "AccessEmailSender",
    "KommoCrmClient",
    "LeadContact",
    "NotificationDispatcher",
    "FulfillmentReconciler",
    "WebhookProcessor",
    "AccessLookupService",
]
