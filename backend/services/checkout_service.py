# services/checkout_service.py
# ============================================================================
# TSF SHOP — CHECKOUT SESSION INITIATOR
# ============================================================================
# Cart payload -> Stripe line items + buyer metadata -> hosted checkout URL.
#
# The session metadata is the only channel through which fulfillment later
# learns the buyer's contact details, so it always carries them. Each line
# item also carries the internal product id (when the cart knows it) in its
# product metadata, so fulfillment does not depend on name matching alone.
# ============================================================================

import json
from typing import Dict, List, Optional
from urllib.parse import urlparse

import structlog

from errors import ValidationError
from schemas.fulfillment import CartItem, CheckoutRequest
from services.payments import IPaymentGateway, MercadoPagoClient

logger = structlog.get_logger(component="checkout")

# Stripe rejects metadata values longer than this
METADATA_VALUE_LIMIT = 500


def with_session_placeholder(url: str) -> str:
    if "{CHECKOUT_SESSION_ID}" in url:
        return url
    separator = "&" if urlparse(url).query else "?"
    return f"{url}{separator}session_id={{CHECKOUT_SESSION_ID}}"


class CheckoutService:
    def __init__(
        self,
        gateway: IPaymentGateway,
        currency: str = "usd",
        default_success_url: str = "",
        default_cancel_url: str = "",
        mercadopago: Optional[MercadoPagoClient] = None,
    ):
        self.gateway = gateway
        self.currency = currency.lower()
        self.default_success_url = default_success_url
        self.default_cancel_url = default_cancel_url
        self.mercadopago = mercadopago

    @staticmethod
    def _require_items(items) -> List[CartItem]:
        if not items:
            raise ValidationError("No items to charge")
        return items

    def build_line_items(self, items: List[CartItem]) -> List[dict]:
        line_items = []
        for item in items:
            product_data: Dict[str, object] = {"name": item.name}
            if item.id:
                product_data["metadata"] = {"product_id": item.id}
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": product_data,
                    "unit_amount": item.price_cents,
                },
                "quantity": item.quantity,
            })
        return line_items

    @staticmethod
    def build_metadata(request: CheckoutRequest, items: List[CartItem]) -> Dict[str, str]:
        metadata = {
            "buyerName": request.buyer_name or "",
            "buyerEmail": request.buyer_email or "",
            "buyerWhatsApp": request.buyer_whatsapp or "",
        }
        cart = json.dumps([item.compact() for item in items], ensure_ascii=False, separators=(",", ":"))
        if len(cart) <= METADATA_VALUE_LIMIT:
            metadata["cart"] = cart
        else:
            logger.warning("cart_metadata_omitted", length=len(cart), items=len(items))
        return metadata

    async def create_checkout(self, request: CheckoutRequest) -> str:
        items = self._require_items(request.items)
        success_url = with_session_placeholder(request.success_url or self.default_success_url)
        cancel_url = request.cancel_url or self.default_cancel_url

        url = await self.gateway.create_checkout_session(
            line_items=self.build_line_items(items),
            metadata=self.build_metadata(request, items),
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=request.buyer_email or None,
        )
        logger.info(
            "checkout_created",
            items=len(items),
            amount_cents=sum(i.price_cents * i.quantity for i in items),
        )
        return url

    async def create_mercadopago_preference(self, request: CheckoutRequest) -> str:
        items = self._require_items(request.items)
        if self.mercadopago is None:
            raise ValidationError("Mercado Pago checkout is not available")
        return await self.mercadopago.create_preference(
            items,
            success_url=request.success_url or self.default_success_url,
            cancel_url=request.cancel_url or self.default_cancel_url,
        )
