"""
Order notification adapters.

Two messages per materialized order: the vendor is told a new order is
waiting, the customer gets a confirmation. Callers always dispatch these
through the best-effort helper, so a failed send never blocks an order.
"""

import html
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import httpx
import structlog

from schemas.domain import Order, Vendor

logger = structlog.get_logger().bind(component="notifications")


class EmailConfig:
    API_URL: str = os.getenv("EMAIL_API_URL", "https://api.resend.com")
    API_KEY: str = os.getenv("EMAIL_API_KEY", "")
    FROM_ADDRESS: str = os.getenv("EMAIL_FROM", "orders@cakeshop.com")
    TIMEOUT_SECONDS: float = 10.0


# =============================================================================
# TEMPLATES
# =============================================================================

class EmailTemplates:
    """Subject and HTML body for each order notification."""

    BRANDING = {
        "company_name": "Cake Shop",
        "primary_color": "#db2777",
        "footer_text": "Thank you for ordering with Cake Shop!",
    }

    @staticmethod
    def _money(amount) -> str:
        return f"₹{amount:,.2f}"

    @staticmethod
    def _when(value: Optional[datetime]) -> str:
        return value.strftime("%d %b %Y, %I:%M %p") if value else "To be confirmed"

    def _items_table(self, order: Order) -> str:
        rows = []
        for item in order.items:
            note = f"<br><small>{html.escape(item.customization)}</small>" if item.customization else ""
            rows.append(
                f"<tr><td>{html.escape(item.name)}{note}</td>"
                f"<td>{item.quantity}</td>"
                f"<td>{self._money(item.price * item.quantity)}</td></tr>"
            )
        return (
            "<table width='100%' cellpadding='6'>"
            "<tr><th align='left'>Item</th><th>Qty</th><th>Amount</th></tr>"
            + "".join(rows)
            + "</table>"
        )

    def _address(self, order: Order) -> str:
        address = order.delivery_address
        if address is None:
            return ""
        parts = [address.full_name, address.address, address.city, address.landmark, address.pincode, address.phone]
        return "<br>".join(html.escape(p) for p in parts if p)

    def _wrap(self, heading: str, body: str) -> str:
        b = self.BRANDING
        return (
            f"<div style='font-family:sans-serif;max-width:600px;margin:auto'>"
            f"<h2 style='color:{b['primary_color']}'>{heading}</h2>"
            f"{body}"
            f"<p style='color:#6b7280;font-size:12px'>{b['footer_text']}</p>"
            f"</div>"
        )

    def vendor_order(self, order: Order, vendor: Vendor) -> tuple[str, str]:
        subject = f"New Order #{order.order_number} - Action Required"
        body = (
            f"<p>Hi {html.escape(vendor.name)}, you have a new order.</p>"
            f"<p><strong>Order:</strong> {order.order_number}<br>"
            f"<strong>Delivery by:</strong> {self._when(order.estimated_delivery)}<br>"
            f"<strong>Payment:</strong> {order.payment_method}</p>"
            f"{self._items_table(order)}"
            f"<p><strong>Deliver to:</strong><br>{self._address(order)}</p>"
            f"<p><strong>Order total:</strong> {self._money(order.final_amount)}</p>"
        )
        return subject, self._wrap("New order received", body)

    def customer_confirmation(self, order: Order, vendor: Vendor, customer_name: Optional[str]) -> tuple[str, str]:
        subject = f"Order Confirmed - #{order.order_number}"
        greeting = f"Hi {html.escape(customer_name)}," if customer_name else "Hi,"
        body = (
            f"<p>{greeting} your order is confirmed and {html.escape(vendor.name)} is on it.</p>"
            f"<p><strong>Order:</strong> {order.order_number}<br>"
            f"<strong>Estimated delivery:</strong> {self._when(order.estimated_delivery)}</p>"
            f"{self._items_table(order)}"
            f"<p>Delivery fee: {self._money(order.delivery_fee)}<br>"
            f"Discount: {self._money(order.discount)}<br>"
            f"<strong>Total paid:</strong> {self._money(order.final_amount)}</p>"
        )
        return subject, self._wrap("Order confirmed", body)


# =============================================================================
# NOTIFIERS
# =============================================================================

class Notifier(ABC):

    @abstractmethod
    async def notify_vendor(self, order: Order, vendor: Vendor) -> Optional[str]:
        pass

    @abstractmethod
    async def notify_customer(
        self,
        order: Order,
        vendor: Vendor,
        customer_email: str,
        customer_name: Optional[str] = None,
    ) -> Optional[str]:
        pass

    async def close(self):
        pass


class EmailNotifier(Notifier):
    """Sends through a Resend-compatible HTTP API. Returns the message id."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        from_address: Optional[str] = None,
        templates: Optional[EmailTemplates] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else EmailConfig.API_KEY
        self.api_url = (api_url or EmailConfig.API_URL).rstrip("/")
        self.from_address = from_address or EmailConfig.FROM_ADDRESS
        self.templates = templates or EmailTemplates()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=EmailConfig.TIMEOUT_SECONDS,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, to: str, subject: str, body: str, **context) -> str:
        response = await self._get_client().post(
            "/emails",
            json={"from": self.from_address, "to": [to], "subject": subject, "html": body},
        )
        if response.status_code >= 300:
            logger.error("email_send_failed", status_code=response.status_code, **context)
            response.raise_for_status()
        message_id = response.json().get("id")
        logger.info("email_sent", message_id=message_id, **context)
        return message_id

    async def notify_vendor(self, order: Order, vendor: Vendor) -> Optional[str]:
        if not vendor.email:
            logger.warning("vendor_email_missing", order_id=order.id, vendor_id=vendor.id)
            return None
        subject, body = self.templates.vendor_order(order, vendor)
        return await self._send(vendor.email, subject, body, order_id=order.id, recipient="vendor")

    async def notify_customer(
        self,
        order: Order,
        vendor: Vendor,
        customer_email: str,
        customer_name: Optional[str] = None,
    ) -> Optional[str]:
        subject, body = self.templates.customer_confirmation(order, vendor, customer_name)
        return await self._send(customer_email, subject, body, order_id=order.id, recipient="customer")


class LoggingNotifier(Notifier):
    """Used when no email credentials are configured."""

    async def notify_vendor(self, order: Order, vendor: Vendor) -> Optional[str]:
        logger.info(
            "vendor_notification_logged",
            order_id=order.id,
            order_number=order.order_number,
            vendor_id=vendor.id,
        )
        return None

    async def notify_customer(
        self,
        order: Order,
        vendor: Vendor,
        customer_email: str,
        customer_name: Optional[str] = None,
    ) -> Optional[str]:
        logger.info(
            "customer_notification_logged",
            order_id=order.id,
            order_number=order.order_number,
            vendor_id=vendor.id,
        )
        return None


def build_notifier() -> Notifier:
    if EmailConfig.API_KEY:
        return EmailNotifier()
    logger.warning("email_api_key_missing", fallback="logging")
    return LoggingNotifier()
