"""
Payment Providers
=================
Thin adapters over the payment providers the storefront uses:

- StripeGateway: checkout sessions, session retrieval, webhook verification
- MercadoPagoClient: checkout preferences over the REST API

The Stripe SDK is blocking, so each call runs in a worker thread under
asyncio.wait_for. Provider failures surface as PaymentProviderError with
the provider's message; nothing here touches the key-value store.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import stripe
import structlog

from errors import DependencyUnavailable, PaymentProviderError, ValidationError
from schemas.fulfillment import CartItem, ProviderLineItem, ProviderSession

logger = structlog.get_logger(component="payments")


# =============================================================================
# INTERFACE
# =============================================================================

class IPaymentGateway(ABC):
    """What checkout and fulfillment need from the card processor."""

    @abstractmethod
    async def create_checkout_session(
        self,
        line_items: List[dict],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str:
        """Create a hosted checkout and return its URL."""
        pass

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> ProviderSession:
        pass

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify the signature over the raw body and return the event."""
        pass


# =============================================================================
# STRIPE
# =============================================================================

def _to_plain(obj: Any) -> dict:
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return obj or {}


def session_from_stripe(data: dict) -> ProviderSession:
    """Normalize a Stripe checkout session (with expanded line items)."""
    items = []
    for li in (data.get("line_items") or {}).get("data") or []:
        price = li.get("price") or {}
        product = price.get("product")
        product_id = None
        product_name = None
        if isinstance(product, dict):
            product_id = (product.get("metadata") or {}).get("product_id")
            product_name = product.get("name")
        items.append(ProviderLineItem(
            description=li.get("description") or product_name or "",
            product_id=product_id,
            quantity=li.get("quantity") or 1,
            amount_total=li.get("amount_total") or 0,
        ))

    details = data.get("customer_details") or {}
    return ProviderSession(
        id=data["id"],
        payment_status=data.get("payment_status") or "unpaid",
        status=data.get("status"),
        customer_email=details.get("email") or data.get("customer_email"),
        customer_name=details.get("name"),
        amount_total=data.get("amount_total"),
        currency=data.get("currency"),
        metadata={k: str(v) for k, v in (data.get("metadata") or {}).items() if v is not None},
        line_items=items,
    )


class StripeGateway(IPaymentGateway):
    def __init__(self, secret_key: str, webhook_secret: str, timeout_seconds: float = 10.0):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._timeout = timeout_seconds

    async def _call(self, fn, *args, **kwargs):
        if not self._secret_key:
            raise PaymentProviderError("Stripe is not configured")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, api_key=self._secret_key, **kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("stripe_timeout", call=getattr(fn, "__qualname__", str(fn)))
            raise PaymentProviderError("Stripe request timed out") from e
        except stripe.StripeError as e:
            logger.error("stripe_error", error=str(e), error_type=type(e).__name__)
            raise PaymentProviderError(e.user_message or str(e)) from e

    async def create_checkout_session(
        self,
        line_items: List[dict],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str:
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = await self._call(stripe.checkout.Session.create, **params)
        logger.info("stripe_session_created", stripe_session_id=session.id)
        return session.url

    async def retrieve_session(self, session_id: str) -> ProviderSession:
        session = await self._call(
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["line_items", "line_items.data.price.product"],
        )
        return session_from_stripe(_to_plain(session))

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        if not self._webhook_secret:
            logger.error("webhook_secret_missing")
            raise DependencyUnavailable("Webhook signing secret is not configured")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise ValidationError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise ValidationError("Invalid webhook payload") from e
        return json.loads(payload)


# =============================================================================
# MERCADO PAGO
# =============================================================================

class MercadoPagoClient:
    """Checkout preferences. Prices arrive in cents and leave in units."""

    def __init__(
        self,
        access_token: str,
        http: httpx.AsyncClient,
        api_url: str = "https://api.mercadopago.com",
        currency: str = "ARS",
    ):
        self._token = access_token
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._currency = currency

    def build_preference(self, items: List[CartItem], success_url: str, cancel_url: str) -> dict:
        return {
            "items": [
                {
                    "title": item.name,
                    "quantity": item.quantity,
                    "currency_id": self._currency,
                    "unit_price": item.price_cents / 100,
                }
                for item in items
            ],
            "back_urls": {
                "success": success_url,
                "failure": cancel_url,
                "pending": cancel_url,
            },
            "auto_return": "approved",
        }

    async def create_preference(self, items: List[CartItem], success_url: str, cancel_url: str) -> str:
        if not self._token:
            raise DependencyUnavailable("Mercado Pago is not configured")

        body = self.build_preference(items, success_url, cancel_url)
        try:
            response = await self._http.post(
                f"{self._api_url}/checkout/preferences",
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as e:
            logger.error("mercadopago_request_failed", error=str(e))
            raise PaymentProviderError("Mercado Pago request failed") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            logger.error("mercadopago_error", status=response.status_code, message=message)
            raise PaymentProviderError(message or "Error creating Mercado Pago preference")

        preference = response.json()
        logger.info("mercadopago_preference_created", preference_id=preference.get("id"))
        return preference["init_point"]
