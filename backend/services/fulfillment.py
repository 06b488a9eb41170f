"""
Fulfillment Reconciler
======================
Turns a paid Stripe checkout session into access records, exactly once.

Flow per session_id:
    marker present?  -> return cached result (no provider call)
    session paid?    -> else PaymentNotCompleted (no marker)
    buyer email?     -> else MissingBuyerEmail (no marker)
    match line items against the catalog (product_id metadata, then name)
    mint one access record per digital product
    commit marker (SET NX)  -> losing writer returns the winner's marker
    notify (email + CRM) only from the committing call

Both triggers (client POST /api/checkout-success and the signed webhook)
run through the same reconciler, so the marker is the only commit point.
"""

import asyncio
import secrets
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import structlog

from errors import MissingBuyerEmail, PaymentNotCompleted, ShopError, ValidationError
from schemas.catalog import Product
from schemas.fulfillment import (
    AccessLink,
    AccessRecord,
    FulfillmentResult,
    PaymentOutcome,
    ProviderLineItem,
    ProviderSession,
    SessionMarker,
)
from services.notifications import LeadContact, NotificationDispatcher
from services.payments import IPaymentGateway, session_from_stripe
from storage.access_store import AccessStore
from storage.catalog_store import CatalogStore

logger = structlog.get_logger(component="fulfillment")


def new_access_token() -> str:
    return secrets.token_urlsafe(24)


def build_access_url(base_url: str, token: str) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'token': token})}"


def match_products(
    line_items: List[ProviderLineItem],
    products: List[Product],
) -> Tuple[List[Product], List[ProviderLineItem]]:
    """Returns (matched products in line-item order, unmatched line items)."""
    by_id = {p.id: p for p in products}
    matched: List[Product] = []
    unmatched: List[ProviderLineItem] = []
    for item in line_items:
        product = by_id.get(item.product_id) if item.product_id else None
        if product is None:
            product = next((p for p in products if p.name == item.description), None)
        if product is None:
            unmatched.append(item)
        else:
            matched.append(product)
    return matched, unmatched


class FulfillmentReconciler:
    def __init__(
        self,
        gateway: IPaymentGateway,
        catalog: CatalogStore,
        access: AccessStore,
        notifier: NotificationDispatcher,
        access_base_url: str,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.access = access
        self.notifier = notifier
        self.access_base_url = access_base_url

        self._session_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._session_lock_users: Dict[str, int] = defaultdict(int)
        self._session_locks_mutex = asyncio.Lock()

    async def _get_session_lock(self, session_id: str) -> asyncio.Lock:
        async with self._session_locks_mutex:
            self._session_lock_users[session_id] += 1
            return self._session_locks[session_id]

    async def _release_session_lock(self, session_id: str) -> None:
        # drop the lock once nobody holds or waits on it
        async with self._session_locks_mutex:
            self._session_lock_users[session_id] -= 1
            if self._session_lock_users[session_id] <= 0:
                del self._session_lock_users[session_id]
                self._session_locks.pop(session_id, None)

    @staticmethod
    def _from_marker(marker: SessionMarker) -> FulfillmentResult:
        return FulfillmentResult(
            email=marker.email,
            access_links=marker.access_links,
            already_processed=True,
        )

    async def reconcile(self, session_id: Optional[str]) -> FulfillmentResult:
        if not session_id:
            raise ValidationError("Missing session_id")

        session_lock = await self._get_session_lock(session_id)
        try:
            async with session_lock:
                return await self._reconcile_locked(session_id)
        finally:
            await self._release_session_lock(session_id)

    async def _reconcile_locked(self, session_id: str) -> FulfillmentResult:
        log = logger.bind(stripe_session_id=session_id)

        marker = await self.access.get_marker(session_id)
        if marker is not None:
            log.info("fulfillment_already_processed")
            return self._from_marker(marker)

        session = await self.gateway.retrieve_session(session_id)
        if not session.is_paid:
            log.info("fulfillment_unpaid", payment_status=session.payment_status)
            raise PaymentNotCompleted()

        email = session.buyer_email()
        if not email:
            log.warning("fulfillment_missing_email")
            raise MissingBuyerEmail()

        products = await self.catalog.get()
        matched, unmatched = match_products(session.line_items, products)
        for item in unmatched:
            log.warning(
                "line_item_unmatched",
                description=item.description,
                product_id=item.product_id,
            )

        links = await self._grant_access(matched, email)

        committed = await self.access.commit_marker(
            session_id, SessionMarker(email=email, access_links=links)
        )
        if not committed:
            # lost the race; records minted above are unreferenced
            winner = await self.access.get_marker(session_id)
            log.info("fulfillment_marker_exists", orphaned_records=len(links))
            if winner is not None:
                return self._from_marker(winner)

        log.info("fulfillment_committed", email=email, links=len(links), matched=len(matched))

        contact = LeadContact(
            email=email,
            name=session.buyer_name(),
            whatsapp=session.buyer_whatsapp(),
            amount_cents=session.amount_total,
        )
        await self.notifier.purchase_completed(contact, links)

        return FulfillmentResult(email=email, access_links=links)

    async def _grant_access(self, products: List[Product], email: str) -> List[AccessLink]:
        links: List[AccessLink] = []
        for product in products:
            if not product.grants_digital_access:
                continue
            token = new_access_token()
            record = AccessRecord(
                token=token,
                product_id=product.id,
                product_name=product.name,
                email=email,
                delivery_type=product.delivery_type,
                delivery_value=product.delivery_value or "",
                instructions=product.instructions or "",
                pdf_url=product.pdf_url or "",
            )
            await self.access.save_record(record)
            links.append(AccessLink(
                token=token,
                product_id=product.id,
                product_name=product.name,
                access_url=build_access_url(self.access_base_url, token),
                delivery_type=record.delivery_type,
                delivery_value=record.delivery_value,
                instructions=record.instructions,
                pdf_url=record.pdf_url,
                email_subject=product.email_subject,
                email_body=product.email_body,
            ))
        return links


# =============================================================================
# WEBHOOK ROUTER
# =============================================================================

WebhookHandler = Callable[[dict, str], Any]


class WebhookRouter:
    """Maps Stripe event types to handlers."""

    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger().bind(component="webhook_router")

    def register(self, *event_types: str):
        def decorator(handler: WebhookHandler):
            for event_type in event_types:
                self._handlers[event_type] = handler
                self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: dict, correlation_id: str) -> Optional[Any]:
        event_type = event.get("type", "unknown")
        handler = self._handlers.get(event_type)
        if not handler:
            self._logger.info("no_handler", event_type=event_type)
            return None
        return await handler(event, correlation_id)

    @property
    def supported_events(self) -> List[str]:
        return list(self._handlers.keys())


def contact_from_payment_intent(intent: dict) -> LeadContact:
    metadata = intent.get("metadata") or {}
    return LeadContact(
        email=intent.get("receipt_email") or metadata.get("buyerEmail") or metadata.get("email"),
        name=metadata.get("buyerName"),
        whatsapp=metadata.get("buyerWhatsApp"),
        amount_cents=intent.get("amount"),
    )


def contact_from_session(session: ProviderSession) -> LeadContact:
    return LeadContact(
        email=session.buyer_email(),
        name=session.buyer_name(),
        whatsapp=session.buyer_whatsapp(),
        amount_cents=session.amount_total,
    )


class WebhookProcessor:
    """Verified Stripe events -> reconciler or CRM stage updates."""

    def __init__(self, reconciler: FulfillmentReconciler, notifier: NotificationDispatcher):
        self.reconciler = reconciler
        self.notifier = notifier
        self.router = WebhookRouter()
        self._register_handlers()

    def _register_handlers(self):
        @self.router.register(
            "checkout.session.completed",
            "checkout.session.async_payment_succeeded",
        )
        async def handle_paid(event: dict, correlation_id: str):
            session = session_from_stripe(event["data"]["object"])
            if not session.is_paid:
                logger.info(
                    "webhook_session_not_paid",
                    stripe_session_id=session.id,
                    payment_status=session.payment_status,
                    correlation_id=correlation_id,
                )
                return None
            return await self.reconciler.reconcile(session.id)

        @self.router.register("checkout.session.expired")
        async def handle_expired(event: dict, correlation_id: str):
            session = session_from_stripe(event["data"]["object"])
            await self.notifier.lead(PaymentOutcome.EXPIRED, contact_from_session(session))

        @self.router.register("checkout.session.async_payment_failed")
        async def handle_session_failed(event: dict, correlation_id: str):
            session = session_from_stripe(event["data"]["object"])
            await self.notifier.lead(PaymentOutcome.REJECTED, contact_from_session(session))

        @self.router.register("payment_intent.payment_failed")
        async def handle_intent_failed(event: dict, correlation_id: str):
            intent = event["data"]["object"]
            await self.notifier.lead(PaymentOutcome.REJECTED, contact_from_payment_intent(intent))

    async def handle(self, event: dict) -> Optional[Any]:
        """Runs after the 200 has been sent; failures are logged, not raised."""
        correlation_id = event.get("id") or "unknown"
        event_type = event.get("type", "unknown")
        logger.info("webhook_received", event_type=event_type, correlation_id=correlation_id)
        try:
            return await self.router.route(event, correlation_id)
        except ShopError as e:
            logger.warning(
                "webhook_handler_rejected",
                event_type=event_type,
                correlation_id=correlation_id,
                error=e.error,
                message=e.message,
            )
        except Exception as e:
            logger.error(
                "webhook_handler_failed",
                event_type=event_type,
                correlation_id=correlation_id,
                error=str(e),
                exc_info=True,
            )
        return None
