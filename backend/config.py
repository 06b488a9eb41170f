# config.py
# ============================================================================
# TSF SHOP — CONFIGURATION
# ============================================================================
# Every setting comes from the environment. Handlers never read os.environ
# directly; they receive a ShopConfig built once at the composition root.
# ============================================================================

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_int(name: str, default: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional_int(name: str) -> Optional[int]:
    value = _env_int(name, 0)
    return value or None


@dataclass
class ShopConfig:
    """Runtime configuration for the storefront backend."""

    # Key-value store
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "tsf:"

    # Admin
    admin_token: str = ""

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    # Storefront URLs
    access_base_url: str = "https://tradingsinfronteras-shop.vercel.app/access.html"
    checkout_success_url: str = "https://tradingsinfronteras-shop.vercel.app/checkout-success-stripe.html"
    checkout_cancel_url: str = "https://tradingsinfronteras-shop.vercel.app/cart.html"

    # Email (Resend)
    resend_api_key: str = ""
    email_from: str = "TSF SHOP <no-reply@tradingsinfronteras.com>"

    # CRM (Kommo)
    kommo_base_url: str = ""
    kommo_api_token: str = ""
    kommo_pipeline_id: int = 0
    kommo_status_completed: int = 0
    kommo_status_expired: int = 0
    kommo_status_rejected: int = 0
    kommo_cf_email: Optional[int] = None
    kommo_cf_whatsapp: Optional[int] = None

    # Mercado Pago
    mp_access_token: str = ""
    mp_api_url: str = "https://api.mercadopago.com"
    mp_currency: str = "ARS"

    # Runtime
    dependency_timeout_seconds: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_format: str = "json"
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "production"

    @classmethod
    def from_env(cls) -> "ShopConfig":
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        defaults = cls()
        return cls(
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            key_prefix=os.getenv("SHOP_KEY_PREFIX", defaults.key_prefix),
            admin_token=(os.getenv("ADMIN_TOKEN") or "").strip(),
            stripe_secret_key=(os.getenv("STRIPE_SECRET_KEY") or "").strip(),
            stripe_webhook_secret=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
            stripe_currency=(os.getenv("STRIPE_CURRENCY") or "usd").strip().lower(),
            access_base_url=os.getenv("ACCESS_BASE_URL", defaults.access_base_url),
            checkout_success_url=os.getenv("CHECKOUT_SUCCESS_URL", defaults.checkout_success_url),
            checkout_cancel_url=os.getenv("CHECKOUT_CANCEL_URL", defaults.checkout_cancel_url),
            resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip(),
            email_from=os.getenv("EMAIL_FROM", defaults.email_from),
            kommo_base_url=(os.getenv("KOMMO_BASE_URL") or "").strip().rstrip("/"),
            kommo_api_token=(os.getenv("KOMMO_API_TOKEN") or "").strip(),
            kommo_pipeline_id=_env_int("KOMMO_PIPELINE_ID"),
            kommo_status_completed=_env_int("KOMMO_STATUS_ID_COMPLETADO"),
            kommo_status_expired=_env_int("KOMMO_STATUS_ID_INCOMPLETO"),
            kommo_status_rejected=_env_int("KOMMO_STATUS_ID_RECHAZADO"),
            kommo_cf_email=_env_optional_int("KOMMO_CF_EMAIL"),
            kommo_cf_whatsapp=_env_optional_int("KOMMO_CF_WHATSAPP"),
            mp_access_token=(os.getenv("MP_ACCESS_TOKEN") or "").strip(),
            mp_currency=(os.getenv("MP_CURRENCY") or "ARS").strip().upper(),
            dependency_timeout_seconds=float(os.getenv("DEPENDENCY_TIMEOUT_SECONDS", "10")),
            cors_origins=origins or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            env=os.getenv("ENV", "production"),
        )
