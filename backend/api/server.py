"""
TSF SHOP Backend Server
=======================
FastAPI server for the storefront:
- Public catalog
- Admin product CRUD (x-admin-token)
- Stripe checkout + fulfillment (client POST and signed webhook)
- Mercado Pago preferences
- Access lookup by token
- Health monitoring

Run:
    uvicorn api.server:app --app-dir backend
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Type, TypeVar
from uuid import uuid4

import httpx
import structlog
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import ShopConfig
from errors import ShopError, ValidationError
from schemas.catalog import ProductCreate, ProductUpdate
from schemas.fulfillment import CheckoutRequest, CheckoutResponse, CheckoutSuccessRequest, PaymentOutcome
from services.access_lookup import AccessLookupService
from services.admin_service import AdminProductService
from services.checkout_service import CheckoutService
from services.fulfillment import FulfillmentReconciler, WebhookProcessor
from services.notifications import AccessEmailSender, KommoCrmClient, NotificationDispatcher
from services.payments import IPaymentGateway, MercadoPagoClient, StripeGateway
from storage.access_store import AccessStore
from storage.catalog_store import CatalogStore
from storage.kv_store import IKeyValueStore, RedisKeyValueStore

VERSION = "1.0.0"

logger = structlog.get_logger(component="server")

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# LOGGING
# =============================================================================

def configure_logging(config: ShopConfig) -> None:
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if config.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.log_level.upper(), logging.INFO)
        ),
    )


# =============================================================================
# COMPOSITION ROOT
# =============================================================================

@dataclass
class ShopServices:
    kv: IKeyValueStore
    catalog: CatalogStore
    admin: AdminProductService
    checkout: CheckoutService
    reconciler: FulfillmentReconciler
    webhooks: WebhookProcessor
    access: AccessLookupService
    gateway: IPaymentGateway


def build_services(
    config: ShopConfig,
    kv: IKeyValueStore,
    http: httpx.AsyncClient,
    gateway: Optional[IPaymentGateway] = None,
) -> ShopServices:
    gateway = gateway or StripeGateway(
        config.stripe_secret_key,
        config.stripe_webhook_secret,
        timeout_seconds=config.dependency_timeout_seconds,
    )
    catalog = CatalogStore(kv, config.key_prefix)
    access = AccessStore(kv, config.key_prefix)

    notifier = NotificationDispatcher(
        email=AccessEmailSender(
            config.resend_api_key,
            sender=config.email_from,
            timeout_seconds=config.dependency_timeout_seconds,
        ),
        crm=KommoCrmClient(
            http,
            base_url=config.kommo_base_url,
            api_token=config.kommo_api_token,
            pipeline_id=config.kommo_pipeline_id,
            stage_ids={
                PaymentOutcome.COMPLETED: config.kommo_status_completed,
                PaymentOutcome.EXPIRED: config.kommo_status_expired,
                PaymentOutcome.REJECTED: config.kommo_status_rejected,
            },
            cf_email=config.kommo_cf_email,
            cf_whatsapp=config.kommo_cf_whatsapp,
        ),
    )
    reconciler = FulfillmentReconciler(
        gateway=gateway,
        catalog=catalog,
        access=access,
        notifier=notifier,
        access_base_url=config.access_base_url,
    )
    checkout = CheckoutService(
        gateway,
        currency=config.stripe_currency,
        default_success_url=config.checkout_success_url,
        default_cancel_url=config.checkout_cancel_url,
        mercadopago=MercadoPagoClient(
            config.mp_access_token,
            http,
            api_url=config.mp_api_url,
            currency=config.mp_currency,
        ),
    )
    return ShopServices(
        kv=kv,
        catalog=catalog,
        admin=AdminProductService(catalog, config.admin_token),
        checkout=checkout,
        reconciler=reconciler,
        webhooks=WebhookProcessor(reconciler, notifier),
        access=AccessLookupService(access),
        gateway=gateway,
    )


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _services(request: Request) -> ShopServices:
    return request.app.state.services


async def _json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _parse(model: Type[ModelT], data: dict) -> ModelT:
    try:
        return model.model_validate(data)
    except SchemaError as e:
        raise ValidationError(str(e)) from e


def _cors_headers(config: ShopConfig, request: Request) -> dict:
    origin = request.headers.get("origin")
    if "*" in config.cors_origins:
        allow_origin = "*"
    elif origin in config.cors_origins:
        allow_origin = origin
    else:
        allow_origin = config.cors_origins[0]
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, x-admin-token, stripe-signature",
    }


HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    config: Optional[ShopConfig] = None,
    kv: Optional[IKeyValueStore] = None,
    gateway: Optional[IPaymentGateway] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Collaborators passed in are used as-is and left open on shutdown."""
    config = config or ShopConfig.from_env()
    configure_logging(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("server_starting", version=VERSION, env=config.env)

        store = kv or RedisKeyValueStore.from_url(
            config.redis_url, timeout_seconds=config.dependency_timeout_seconds
        )
        http = http_client or httpx.AsyncClient(timeout=config.dependency_timeout_seconds)
        app.state.services = build_services(config, store, http, gateway)

        yield

        logger.info("server_shutting_down")
        if http_client is None:
            await http.aclose()
        if kv is None:
            await store.close()

    app = FastAPI(
        title="TSF SHOP Backend",
        description="Catalog, checkout and fulfillment for TRADING SIN FRONTERAS SHOP",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config

    # -------------------------------------------------------------------------
    # Middleware
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def cors_and_errors(request: Request, call_next):
        headers = _cors_headers(config, request)
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=headers)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "unhandled_exception",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            response = JSONResponse(
                status_code=500,
                content={"error": "internal_server_error", "message": "Internal server error"},
            )
        response.headers.update(headers)
        return response

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = str(uuid4())[:8]
        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.error, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": "validation_error", "message": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
                "message": str(exc.detail),
            },
            headers=getattr(exc, "headers", None),
        )

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check(request: Request):
        store_ok = await _services(request).kv.ping()
        return JSONResponse(
            status_code=200 if store_ok else 503,
            content={
                "status": "healthy" if store_ok else "degraded",
                "version": VERSION,
                "store_connected": store_ok,
            },
        )

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    @app.get("/api/products")
    async def list_products(request: Request):
        products = await _services(request).catalog.list_active()
        return {"products": [p.model_dump(mode="json") for p in products]}

    # -------------------------------------------------------------------------
    # Admin CRUD (token checked before the body is parsed)
    # -------------------------------------------------------------------------

    @app.get("/api/admin-products")
    async def admin_list(request: Request):
        admin = _services(request).admin
        admin.authorize(request.headers.get("x-admin-token"))
        products = await admin.list_products()
        return {"products": [p.model_dump(mode="json") for p in products]}

    @app.post("/api/admin-products")
    async def admin_create(request: Request):
        admin = _services(request).admin
        admin.authorize(request.headers.get("x-admin-token"))
        payload = _parse(ProductCreate, await _json_body(request))
        product = await admin.create_product(payload)
        return JSONResponse(status_code=201, content={"ok": True, "product": product.model_dump(mode="json")})

    @app.put("/api/admin-products")
    async def admin_update(request: Request):
        admin = _services(request).admin
        admin.authorize(request.headers.get("x-admin-token"))
        payload = _parse(ProductUpdate, await _json_body(request))
        product = await admin.update_product(payload)
        return {"ok": True, "product": product.model_dump(mode="json")}

    @app.delete("/api/admin-products")
    async def admin_delete(request: Request):
        admin = _services(request).admin
        admin.authorize(request.headers.get("x-admin-token"))
        body = await _json_body(request)
        product_id = body.get("id") or request.query_params.get("id")
        await admin.delete_product(product_id)
        return {"ok": True}

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    @app.post("/api/create-checkout", response_model=CheckoutResponse)
    async def create_checkout(payload: CheckoutRequest, request: Request):
        url = await _services(request).checkout.create_checkout(payload)
        return CheckoutResponse(url=url)

    @app.post("/api/create-mp-preference", response_model=CheckoutResponse)
    async def create_mp_preference(payload: CheckoutRequest, request: Request):
        url = await _services(request).checkout.create_mercadopago_preference(payload)
        return CheckoutResponse(url=url)

    # -------------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------------

    @app.post("/api/checkout-success")
    async def checkout_success(request: Request):
        payload = _parse(CheckoutSuccessRequest, await _json_body(request))
        result = await _services(request).reconciler.reconcile(payload.session_id)
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/webhook")
    async def stripe_webhook(request: Request, background_tasks: BackgroundTasks):
        """
        Stripe webhook handler. The signature is verified over the raw body;
        processing happens after the 200 is sent.
        """
        services = _services(request)
        payload = await request.body()
        event = services.gateway.verify_webhook(payload, request.headers.get("stripe-signature"))
        background_tasks.add_task(services.webhooks.handle, event)
        return {"received": True}

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    @app.get("/api/access")
    async def get_access(request: Request, token: Optional[str] = None):
        return await _services(request).access.lookup(token)

    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=app.state.config.host,
        port=app.state.config.port,
        reload=app.state.config.env == "development",
        log_level="info",
    )
