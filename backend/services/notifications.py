"""
Notification Dispatch
=====================
Post-purchase side effects that must never fail a fulfillment:

- AccessEmailSender: HTML access email through the Resend SDK
- KommoCrmClient: lead creation in the Kommo pipeline, one stage per
  payment outcome (completed / expired / rejected)
- NotificationDispatcher: runs both and swallows (logs) every failure

Missing credentials turn each channel into a logged no-op.
"""

import asyncio
import html
from typing import List, Optional, Tuple

import httpx
import resend
import structlog
from pydantic import BaseModel

from schemas.fulfillment import AccessLink, PaymentOutcome

logger = structlog.get_logger(component="notifications")

DEFAULT_SUBJECT = "Tu acceso a TRADING SIN FRONTERAS SHOP"


class LeadContact(BaseModel):
    """Buyer contact as known from the provider session or payment intent."""
    email: Optional[str] = None
    name: Optional[str] = None
    whatsapp: Optional[str] = None
    amount_cents: Optional[int] = None


# =============================================================================
# EMAIL RENDERING
# =============================================================================

def _is_absolute_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def render_link_block(link: AccessLink, buyer_name: str) -> str:
    if link.email_body:
        # product-specific template; values are escaped, the template is trusted
        return (
            link.email_body
            .replace("{{name}}", html.escape(buyer_name))
            .replace("{{product}}", html.escape(link.product_name))
            .replace("{{delivery}}", html.escape(link.delivery_value))
            .replace("{{access_url}}", html.escape(link.access_url))
        )

    parts = [
        f"<li><strong>{html.escape(link.product_name)}</strong><br/>",
        f'Acceso: <a href="{html.escape(link.access_url)}">{html.escape(link.access_url)}</a>',
    ]
    if link.delivery_value and _is_absolute_url(link.delivery_value):
        parts.append(
            f'<br/>Contenido: <a href="{html.escape(link.delivery_value)}" target="_blank">'
            f"Hacé clic acá para acceder al material</a>"
        )
    if link.instructions:
        parts.append(f"<br/><em>Instrucciones:</em> {html.escape(link.instructions)}")
    if link.pdf_url:
        parts.append(f'<br/><a href="{html.escape(link.pdf_url)}">Descargar PDF</a>')
    parts.append("</li>")
    return "".join(parts)


def render_access_email(links: List[AccessLink], buyer_name: str = "trader") -> Tuple[str, str]:
    """Returns (subject, html)."""
    subject = DEFAULT_SUBJECT
    if len(links) == 1 and links[0].email_subject:
        subject = links[0].email_subject

    blocks = "".join(render_link_block(link, buyer_name) for link in links)
    body = f"""
    <div style="font-family: sans-serif; color: #111;">
      <p>Hola {html.escape(buyer_name)},</p>
      <h2>Gracias por tu compra en TRADING SIN FRONTERAS SHOP</h2>
      <p>Estos son tus accesos privados a los productos digitales:</p>
      <ul>{blocks}</ul>
      <p>Te recomendamos guardar este correo para futuras consultas.</p>
      <p>Cualquier duda, respondé a este correo indicando tu nombre y el mail de compra.</p>
      <p>Un abrazo,<br/>Rodrigo Pérez – Trading Sin Fronteras</p>
    </div>
    """
    return subject, body


# =============================================================================
# CHANNELS
# =============================================================================

class AccessEmailSender:
    """The resend SDK is blocking; sends run in a worker thread."""

    def __init__(self, api_key: str, sender: str, timeout_seconds: float = 10.0):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _send(self, params: dict) -> dict:
        resend.api_key = self._api_key
        return resend.Emails.send(params)

    async def send_access_email(
        self,
        to: str,
        links: List[AccessLink],
        buyer_name: str = "trader",
    ) -> Optional[str]:
        if not self.enabled:
            logger.info("email_disabled", reason="RESEND_API_KEY not configured")
            return None

        subject, body = render_access_email(links, buyer_name)
        params = {"from": self._sender, "to": [to], "subject": subject, "html": body}
        response = await asyncio.wait_for(asyncio.to_thread(self._send, params), timeout=self._timeout)

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("email_sent", to=to, links=len(links), message_id=message_id)
        return message_id


class KommoCrmClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        api_token: str,
        pipeline_id: int,
        stage_ids: dict,
        cf_email: Optional[int] = None,
        cf_whatsapp: Optional[int] = None,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._token = api_token
        self._pipeline_id = pipeline_id
        self._stage_ids = stage_ids
        self._cf_email = cf_email
        self._cf_whatsapp = cf_whatsapp

    @property
    def enabled(self) -> bool:
        return bool(self._base_url and self._token and self._pipeline_id)

    def build_lead(self, status_id: int, contact: LeadContact) -> list:
        lead_fields = []
        if self._cf_email and contact.email:
            lead_fields.append({"field_id": self._cf_email, "values": [{"value": contact.email}]})
        if self._cf_whatsapp and contact.whatsapp:
            lead_fields.append({"field_id": self._cf_whatsapp, "values": [{"value": contact.whatsapp}]})

        contact_fields = []
        if contact.whatsapp:
            contact_fields.append({
                "field_code": "PHONE",
                "values": [{"value": contact.whatsapp, "enum_code": "OTHER"}],
            })
        if contact.email:
            contact_fields.append({
                "field_code": "EMAIL",
                "values": [{"value": contact.email, "enum_code": "WORK"}],
            })

        lead = {
            "name": f"Stripe · {contact.email}",
            "price": round((contact.amount_cents or 0) / 100),
            "pipeline_id": self._pipeline_id,
            "status_id": status_id,
            "_embedded": {
                "contacts": [{
                    "name": contact.name or "Cliente Stripe",
                    "custom_fields_values": contact_fields,
                }],
            },
        }
        if lead_fields:
            lead["custom_fields_values"] = lead_fields
        return [lead]

    async def create_lead(self, outcome: PaymentOutcome, contact: LeadContact) -> bool:
        if not self.enabled:
            logger.info("crm_disabled", reason="Kommo not configured")
            return False
        status_id = self._stage_ids.get(outcome)
        if not contact.email or not status_id:
            logger.warning("crm_lead_skipped", outcome=outcome.value, has_email=bool(contact.email))
            return False

        response = await self._http.post(
            f"{self._base_url}/api/v4/leads",
            json=self.build_lead(status_id, contact),
            headers={"Authorization": f"Bearer {self._token}"},
        )
        response.raise_for_status()
        logger.info("crm_lead_created", outcome=outcome.value, email=contact.email)
        return True


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    def __init__(self, email: AccessEmailSender, crm: KommoCrmClient):
        self.email = email
        self.crm = crm

    async def purchase_completed(self, contact: LeadContact, links: List[AccessLink]) -> None:
        if links and contact.email:
            try:
                await self.email.send_access_email(contact.email, links, contact.name or "trader")
            except Exception as e:
                logger.error("email_failed", to=contact.email, error=str(e), exc_info=True)
        await self.lead(PaymentOutcome.COMPLETED, contact)

    async def lead(self, outcome: PaymentOutcome, contact: LeadContact) -> None:
        try:
            await self.crm.create_lead(outcome, contact)
        except Exception as e:
            logger.error("crm_lead_failed", outcome=outcome.value, error=str(e), exc_info=True)
