"""
Order notification emails over SMTP.

Sending is best-effort: every attempt is recorded in email_logs and failures are
logged, never raised to the caller. The Mailer is injected so handlers can be
exercised without a live SMTP server.
"""
import html
import logging
import smtplib
from datetime import datetime
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import EmailLog, EmailType, Order, Shipment
from app.services.shiprocket_status import pretty_shipment_status

logger = logging.getLogger(__name__)


class MailerNotConfigured(Exception):
    pass


class Mailer:
    """Thin SMTP sender. One connection per message."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_ssl: bool = False,
        from_addr: str = "",
        timeout: float = 30.0,
    ):
        self.host = (host or "").strip()
        self.port = port or 587
        self.user = (user or "").strip()
        self.password = password or ""
        self.use_ssl = use_ssl
        self.from_addr = (from_addr or "").strip() or self.user
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send(self, to_email: str, subject: str, html_body: str, from_name: str = "CaseBuddy") -> None:
        if not self.configured:
            raise MailerNotConfigured("Email credentials not configured")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f'"{from_name}" <{self.from_addr}>'
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                server.login(self.user, self.password)
                server.sendmail(self.from_addr, [to_email], msg.as_string())
            return
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            server.login(self.user, self.password)
            server.sendmail(self.from_addr, [to_email], msg.as_string())


def get_mailer() -> Mailer:
    """Mailer built from settings. FastAPI dependency; tests override it."""
    return Mailer(
        host=settings.EMAIL_HOST,
        port=settings.EMAIL_PORT,
        user=settings.EMAIL_USER,
        password=settings.EMAIL_PASSWORD,
        use_ssl=settings.EMAIL_SECURE,
        from_addr=settings.EMAIL_FROM,
        timeout=settings.HTTP_TIMEOUT_SEC,
    )


def _log_email(db: Session, order_id: Optional[int], email_type: str, recipient: str, subject: str,
               status: str, error: Optional[str] = None) -> None:
    try:
        db.add(EmailLog(
            order_id=order_id,
            email_type=email_type,
            recipient_email=recipient,
            subject=subject,
            status=status,
            error_message=error,
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("Failed to write email log for order %s: %s", order_id, e)


def deliver(db: Session, mailer: Mailer, order_id: Optional[int], email_type: EmailType,
            to_email: Optional[str], subject: str, html_body: str, from_name: str = "CaseBuddy") -> bool:
    """Send one email; returns True if sent. Never raises."""
    if not to_email:
        logger.warning("Skipping %s email for order %s: no recipient", email_type.value, order_id)
        return False
    try:
        mailer.send(to_email, subject, html_body, from_name=from_name)
    except Exception as e:
        logger.warning("Failed to send %s email for order %s to %s: %s", email_type.value, order_id, to_email, e)
        _log_email(db, order_id, email_type.value, to_email, subject, "failed", str(e))
        return False
    logger.info("Sent %s email for order %s to %s", email_type.value, order_id, to_email)
    _log_email(db, order_id, email_type.value, to_email, subject, "sent")
    return True


# --- Rendering ---

_THEMES = {
    "success": "linear-gradient(135deg, #22c55e 0%, #16a34a 100%)",
    "info": "linear-gradient(135deg, #2563eb 0%, #1d4ed8 100%)",
    "warning": "linear-gradient(135deg, #f59e0b 0%, #d97706 100%)",
    "danger": "linear-gradient(135deg, #ef4444 0%, #dc2626 100%)",
}


def esc(value: Any) -> str:
    return html.escape(str(value if value is not None else ""), quote=True)


def format_money(value: Any) -> str:
    try:
        return f"₹{Decimal(str(value or 0)):.2f}"
    except Exception:
        return f"₹{value}"


def build_email_shell(title: str, body_html: str, theme: str = "info", subtitle: Optional[str] = None) -> str:
    header_bg = _THEMES.get(theme, _THEMES["danger"])
    subtitle_html = f'<p style="margin:8px 0 0 0;">{esc(subtitle)}</p>' if subtitle else ""
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <style>
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #111827; background: #ffffff; }}
      .container {{ max-width: 640px; margin: 0 auto; padding: 18px; }}
      .header {{ background: {header_bg}; color: #fff; padding: 22px; text-align: center; border-radius: 12px 12px 0 0; }}
      .content {{ background: #f9fafb; padding: 22px; border-radius: 0 0 12px 12px; }}
      .card {{ background: #fff; padding: 16px; margin: 14px 0; border-radius: 10px; border: 1px solid #e5e7eb; }}
      .item {{ padding: 12px 0; border-bottom: 1px solid #eee; }}
      .customization {{ margin-top: 10px; padding: 10px; background: #fff7ed; border-radius: 8px; border-left: 4px solid #fb923c; }}
      .footer {{ text-align: center; margin-top: 16px; color: #6b7280; font-size: 12px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1 style="margin:0;">{esc(title)}</h1>
        {subtitle_html}
      </div>
      <div class="content">
        {body_html}
        <div class="footer">
          <p style="margin:0;">Questions? Contact us at {esc(settings.SUPPORT_EMAIL)}</p>
          <p style="margin:6px 0 0 0;">&copy; {datetime.now().year} CaseBuddy. All rights reserved.</p>
        </div>
      </div>
    </div>
  </body>
</html>"""


def build_items_html(items: List[Dict[str, Any]], images: Dict[int, str]) -> str:
    parts = []
    for item in items:
        img = images.get(item.get("product_id")) if item.get("product_id") is not None else None
        image_html = (
            f'<img src="{esc(img)}" alt="{esc(item["product_name"])}" '
            f'style="width:90px;height:auto;border-radius:10px;border:1px solid #eee;display:block;margin:0 0 10px 0;" />'
            if img else ""
        )
        lines = [image_html, f'<p style="margin:0 0 6px 0;"><strong>{esc(item["product_name"])}</strong></p>']
        if item.get("phone_model"):
            lines.append(f'<p style="margin:0 0 4px 0;">Phone Model: {esc(item["phone_model"])}</p>')
        if item.get("design_name"):
            lines.append(f'<p style="margin:0 0 4px 0;">Design: {esc(item["design_name"])}</p>')
        lines.append(f'<p style="margin:0 0 4px 0;">Quantity: {esc(item["quantity"])}</p>')
        custom = item.get("customization") or {}
        if custom:
            rows = []
            if custom.get("customText"):
                rows.append(f'Text: "{esc(custom["customText"])}"<br/>')
            if custom.get("font"):
                rows.append(f'Font: {esc(custom["font"])}<br/>')
            if custom.get("placement"):
                rows.append(f'Placement: {esc(str(custom["placement"]).replace("_", " "))}')
            lines.append(f'<div class="customization"><strong>Customization:</strong><br/>{"".join(rows)}</div>')
        parts.append(f'<div class="item">{"".join(lines)}</div>')
    return "".join(parts)


def _address_html(order: Order) -> str:
    line2 = f"<p style=\"margin:0;\">{esc(order.shipping_address_line2)}</p>" if order.shipping_address_line2 else ""
    return (
        f'<p style="margin:0;">{esc(order.shipping_address_line1)}</p>{line2}'
        f'<p style="margin:0;">{esc(order.shipping_city)}, {esc(order.shipping_state)} - {esc(order.shipping_pincode)}</p>'
        f'<p style="margin:0;">Mobile: {esc(order.customer_mobile)}</p>'
    )


def _totals_html(order: Order) -> str:
    return (
        f"<p>Subtotal: {format_money(order.subtotal)}</p>"
        f"<p>Shipping: {format_money(order.shipping_cost)}</p>"
        f'<p style="font-size:18px;font-weight:bold;">Total: {format_money(order.total_amount)}</p>'
    )


def render_customer_confirmation(order: Order, items_html: str) -> str:
    created = order.created_at.strftime("%d %b %Y") if order.created_at else ""
    body = (
        f"<p>Dear {esc(order.customer_name)},</p>"
        "<p>Your payment was received and your order is confirmed.</p>"
        f'<div class="card"><h2>Order #{esc(order.order_number)}</h2><p>Date: {esc(created)}</p>'
        f"<h3>Items</h3>{items_html}{_totals_html(order)}</div>"
        f'<div class="card"><h3>Shipping Address</h3>{_address_html(order)}</div>'
    )
    return build_email_shell("Order Confirmed!", body, theme="success", subtitle="Thank you for your purchase")


def render_admin_new_order(order: Order, items_html: str) -> str:
    body = (
        f'<div class="card"><p><strong>Payment Status:</strong> {esc((order.payment_status or "").upper())}</p>'
        f'<p><strong>Order Status:</strong> {esc((order.order_status or "").upper())}</p>'
        f'<p><strong>Payment Method:</strong> {esc(order.payment_method or "N/A")}</p>'
        f'<p><strong>Payment ID:</strong> {esc(order.payment_id or "N/A")}</p></div>'
        f'<div class="card"><h2>Customer</h2><p>Name: {esc(order.customer_name)}</p>'
        f"<p>Email: {esc(order.customer_email)}</p><p>Mobile: {esc(order.customer_mobile)}</p></div>"
        f'<div class="card"><h2>Shipping Address</h2>{_address_html(order)}</div>'
        f'<div class="card"><h2>Items</h2>{items_html}{_totals_html(order)}</div>'
    )
    if order.notes:
        body += f'<div class="card"><h3>Notes</h3><p>{esc(order.notes)}</p></div>'
    return build_email_shell("New Order Received", body, theme="info", subtitle=f"Order #{order.order_number}")


def render_payment_failed(order: Order, items_html: str, failure_reason: Optional[str], for_admin: bool) -> str:
    reason = f"<p>Reason: {esc(failure_reason)}</p>" if failure_reason else ""
    if for_admin:
        intro = (
            f"<p>Payment failed for order #{esc(order.order_number)} "
            f"({esc(order.customer_name)}, {esc(order.customer_email)}, {esc(order.customer_mobile)}).</p>"
        )
    else:
        intro = (
            f"<p>Dear {esc(order.customer_name)},</p>"
            "<p>We could not complete the payment for your order, so it has been cancelled. "
            "No amount has been captured. You are welcome to place the order again.</p>"
        )
    body = f'{intro}<div class="card">{reason}<h3>Items</h3>{items_html}{_totals_html(order)}</div>'
    return build_email_shell("Payment Failed", body, theme="danger", subtitle=f"Order #{order.order_number}")


def render_delivered(order: Order, shipment: Optional[Shipment]) -> str:
    tracking = ""
    if shipment is not None:
        status = pretty_shipment_status(shipment.status) or "Delivered"
        tracking = f"<p>Courier: {esc(shipment.shiprocket_courier_name or 'N/A')}</p>"
        tracking += f"<p>AWB: {esc(shipment.shiprocket_awb or 'N/A')}</p><p>Status: {esc(status)}</p>"
        if shipment.tracking_url:
            tracking += f'<p><a href="{esc(shipment.tracking_url)}">View tracking</a></p>'
    body = (
        f"<p>Dear {esc(order.customer_name)},</p>"
        f"<p>Your order #{esc(order.order_number)} has been delivered. We hope you love it!</p>"
        f'<div class="card">{tracking}</div>'
    )
    return build_email_shell("Order Delivered", body, theme="success", subtitle=f"Order #{order.order_number}")


# --- Notifications ---

def send_order_confirmation_emails(db: Session, mailer: Mailer, order: Order,
                                   items: List[Dict[str, Any]], images: Dict[int, str]) -> None:
    items_html = build_items_html(items, images)
    deliver(
        db, mailer, order.id, EmailType.ORDER_CONFIRMATION, order.customer_email,
        f"Order Confirmation - Order #{order.order_number}",
        render_customer_confirmation(order, items_html),
    )
    deliver(
        db, mailer, order.id, EmailType.ADMIN_NEW_ORDER, settings.admin_recipient,
        f"New Order #{order.order_number} - {order.customer_name}",
        render_admin_new_order(order, items_html),
        from_name="CaseBuddy Orders",
    )


def send_payment_failed_emails(db: Session, mailer: Mailer, order: Order, items: List[Dict[str, Any]],
                               images: Dict[int, str], failure_reason: Optional[str] = None) -> None:
    items_html = build_items_html(items, images)
    deliver(
        db, mailer, order.id, EmailType.PAYMENT_FAILED, order.customer_email,
        f"Payment Failed - Order #{order.order_number}",
        render_payment_failed(order, items_html, failure_reason, for_admin=False),
    )
    deliver(
        db, mailer, order.id, EmailType.ADMIN_PAYMENT_FAILED, settings.admin_recipient,
        f"Payment Failed - Order #{order.order_number} - {order.customer_name}",
        render_payment_failed(order, items_html, failure_reason, for_admin=True),
        from_name="CaseBuddy Orders",
    )


def send_delivered_email(db: Session, mailer: Mailer, order: Order, shipment: Optional[Shipment]) -> bool:
    return deliver(
        db, mailer, order.id, EmailType.ORDER_DELIVERED, order.customer_email,
        f"Your Order #{order.order_number} has been Delivered",
        render_delivered(order, shipment),
    )
