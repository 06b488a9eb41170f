import asyncio
import hashlib
import hmac
import json
import time
from typing import Dict, List, Optional

import httpx
import pytest
import resend
from fastapi.testclient import TestClient

from api.server import create_app
from config import ShopConfig
from errors import PaymentProviderError
from schemas.catalog import Product
from schemas.fulfillment import ProviderLineItem, ProviderSession
from services.payments import IPaymentGateway, StripeGateway
from storage.kv_store import InMemoryKeyValueStore

ADMIN_TOKEN = "admin-secret"
WEBHOOK_SECRET = "whsec_test_secret"
ACCESS_BASE_URL = "https://shop.test/access.html"


# =============================================================================
# FAKES
# =============================================================================

class FakePaymentGateway(IPaymentGateway):
    """Stores sessions in memory; webhook verification is the real Stripe check."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.sessions: Dict[str, ProviderSession] = {}
        self.created: List[dict] = []
        self.retrieve_calls: List[str] = []
        self._verifier = StripeGateway("", webhook_secret)

    def add_session(
        self,
        session_id: str,
        line_items: List[ProviderLineItem],
        payment_status: str = "paid",
        customer_email: Optional[str] = "buyer@example.com",
        metadata: Optional[Dict[str, str]] = None,
        amount_total: int = 4900,
    ) -> ProviderSession:
        session = ProviderSession(
            id=session_id,
            payment_status=payment_status,
            status="complete",
            customer_email=customer_email,
            amount_total=amount_total,
            currency="usd",
            metadata=metadata or {},
            line_items=line_items,
        )
        self.sessions[session_id] = session
        return session

    async def create_checkout_session(
        self,
        line_items,
        metadata,
        success_url,
        cancel_url,
        customer_email=None,
    ) -> str:
        self.created.append({
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
        })
        return f"https://checkout.stripe.test/pay/cs_test_{len(self.created)}"

    async def retrieve_session(self, session_id: str) -> ProviderSession:
        self.retrieve_calls.append(session_id)
        if session_id not in self.sessions:
            raise PaymentProviderError(f"No such checkout.session: '{session_id}'")
        return self.sessions[session_id]

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        return self._verifier.verify_webhook(payload, signature)


class OutboundRecorder:
    """httpx.MockTransport handler for Kommo and Mercado Pago."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_hosts: set = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.fail_hosts:
            return httpx.Response(500, json={"message": "upstream down"})
        if host == "tsf.kommo.test":
            return httpx.Response(200, json={"_embedded": {"leads": [{"id": 1}]}})
        if host == "api.mercadopago.com":
            return httpx.Response(201, json={"id": "pref_1", "init_point": "https://mp.test/init/pref_1"})
        return httpx.Response(404, json={"message": "unknown host"})

    def to(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def leads(self) -> List[list]:
        return [json.loads(r.content) for r in self.to("tsf.kommo.test")]


class EmailRecorder:
    """Stands in for resend.Emails.send."""

    def __init__(self):
        self.sent: List[dict] = []
        self.fail = False

    def __call__(self, params, *args, **kwargs):
        if self.fail:
            raise RuntimeError("resend unavailable")
        self.sent.append(params)
        return {"id": f"email_{len(self.sent)}"}


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config() -> ShopConfig:
    return ShopConfig(
        admin_token=ADMIN_TOKEN,
        stripe_secret_key="sk_test_unused",
        stripe_webhook_secret=WEBHOOK_SECRET,
        access_base_url=ACCESS_BASE_URL,
        checkout_success_url="https://shop.test/checkout-success-stripe.html",
        checkout_cancel_url="https://shop.test/cart.html",
        resend_api_key="re_test",
        email_from="TSF SHOP <shop@test>",
        kommo_base_url="https://tsf.kommo.test",
        kommo_api_token="kommo_test",
        kommo_pipeline_id=100,
        kommo_status_completed=11,
        kommo_status_expired=12,
        kommo_status_rejected=13,
        kommo_cf_email=501,
        kommo_cf_whatsapp=502,
        mp_access_token="mp_test",
        log_format="console",
        log_level="WARNING",
    )


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def outbound() -> OutboundRecorder:
    return OutboundRecorder()


@pytest.fixture
def emails(monkeypatch) -> EmailRecorder:
    recorder = EmailRecorder()
    monkeypatch.setattr(resend, "api_key", None)
    monkeypatch.setattr(resend.Emails, "send", recorder)
    return recorder


@pytest.fixture
def client(config, kv, gateway, outbound, emails):
    http = httpx.AsyncClient(transport=httpx.MockTransport(outbound))
    app = create_app(config, kv=kv, gateway=gateway, http_client=http)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"x-admin-token": ADMIN_TOKEN}


@pytest.fixture
def seed_products(kv):
    """Writes products straight into the catalog document."""
    def _seed(*products: Product):
        run(kv.set_json("tsf:products", [p.model_dump(mode="json") for p in products]))
    return _seed
