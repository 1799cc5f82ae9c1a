# storefront/mailer.py
"""Transactional email.

Every send goes through ``send_email`` which renders nothing itself, talks
SMTP and records an ``EmailLog`` row. It never raises: callers treat email
as best effort so an order or a registration is not lost because the relay
is down.
"""
import logging
import re
import smtplib
from types import SimpleNamespace
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import requests
from flask import current_app, render_template_string

from .database import main_session
from .models import EmailLog
from .utils import format_money

log = logging.getLogger("shop")

_TAGS = re.compile(r"<[^>]*>")

LAYOUT = """
<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;color:#333">
  <h2 style="color:#2b8a7e">{{ site_name }}</h2>
  {{ body|safe }}
  <hr><p style="font-size:12px;color:#888">{{ site_name }}</p>
</div>
"""

WELCOME = """
<p>Hola {{ user_name }},</p>
<p>Gracias por registrarte en {{ site_name }}. Ya podés explorar el catálogo y hacer tus pedidos.</p>
<p><a href="{{ base_url }}">Ir a la tienda</a></p>
"""

ORDER_CONFIRMATION = """
<p>Hola {{ order.customer_name }},</p>
<p>Recibimos tu pedido <strong>{{ order.id }}</strong>.</p>
<table cellpadding="4">
{% for it in order.items %}
  <tr><td>{{ it.product_name }}</td><td>x{{ it.quantity }}</td><td>{{ money(it.unit_price_cents * it.quantity) }}</td></tr>
{% endfor %}
</table>
<p><strong>Total: {{ money(order.total_cents) }}</strong></p>
<p>Método de pago: {{ order.payment_method }}</p>
"""

ADMIN_ORDER = """
<p>{{ headline }}</p>
<p>Pedido <strong>{{ order.id }}</strong> de {{ order.customer_name }} &lt;{{ order.customer_email }}&gt;</p>
<ul>
{% for it in order.items %}<li>{{ it.product_name }} x{{ it.quantity }}</li>{% endfor %}
</ul>
<p>Total: {{ money(order.total_cents) }} - Estado: {{ order.status }}</p>
<p>Envío: {{ order.shipping_line() }}</p>
"""

STATUS_LABELS = {
    "pending": "Pendiente",
    "payment_pending": "Esperando pago",
    "pending_transfer": "Esperando transferencia",
    "confirmed": "Confirmado",
    "processing": "En preparación",
    "shipped": "Enviado",
    "delivered": "Entregado",
    "cancelled": "Cancelado",
}

ORDER_STATUS = """
<p>Hola {{ order.customer_name }},</p>
<p>Tu pedido <strong>{{ order.id }}</strong> cambió de estado: <strong>{{ label }}</strong>.</p>
{% if order.tracking_number %}<p>Seguimiento: {{ order.tracking_number }}</p>{% endif %}
"""

TRACKING = """
<p>Hola {{ order.customer_name }},</p>
<p>Tu pedido <strong>{{ order.id }}</strong> ya fue despachado.</p>
<p>Número de seguimiento: <strong>{{ order.tracking_number }}</strong></p>
{% if order.tracking_url %}<p><a href="{{ order.tracking_url }}">Seguir envío</a></p>{% endif %}
"""

PASSWORD_RESET = """
<p>Hola {{ user_name }},</p>
<p>Recibimos un pedido para restablecer tu contraseña. El enlace vence en {{ hours }} hora(s).</p>
<p><a href="{{ link }}">Restablecer contraseña</a></p>
<p>Si no fuiste vos, ignorá este mensaje.</p>
"""

CONTACT_ADMIN = """
<p>Nuevo mensaje de contacto</p>
<p><strong>{{ nombre }}</strong> &lt;{{ email }}&gt; {% if telefono %}({{ telefono }}){% endif %}</p>
<p><strong>{{ asunto }}</strong></p>
<p>{{ mensaje }}</p>
"""

CONTACT_CONFIRMATION = """
<p>Hola {{ nombre }},</p>
<p>Recibimos tu mensaje "{{ asunto }}". Te vamos a responder a la brevedad.</p>
"""

TEST = """
<p>{{ message }}</p>
"""


def _render(body_tpl, **ctx):
    cfg = current_app.config
    ctx.setdefault("site_name", cfg["SITE_NAME"])
    ctx.setdefault("base_url", cfg["PUBLIC_BASE_URL"])
    ctx.setdefault("money", format_money)
    body = render_template_string(body_tpl, **ctx)
    return render_template_string(LAYOUT, body=body, site_name=ctx["site_name"])


def _record(email_type, to, subject, status, error=None, order_id=None):
    try:
        with main_session() as db:
            db.add(EmailLog(email_type=email_type, recipient=to, subject=subject,
                            status=status, error=error, order_id=order_id))
            db.commit()
    except Exception as e:
        log.warning(f"Email log write failed: {e}")


def _deliver(to, subject, html, text):
    cfg = current_app.config
    if not cfg.get("SMTP_HOST"):
        raise RuntimeError("SMTP not configured")
    m = MIMEMultipart("alternative")
    m["Subject"] = subject
    m["From"] = formataddr((cfg["EMAIL_FROM_NAME"], cfg["EMAIL_FROM"]))
    m["To"] = to
    m.attach(MIMEText(text, "plain", "utf-8"))
    m.attach(MIMEText(html, "html", "utf-8"))
    with smtplib.SMTP(cfg["SMTP_HOST"], cfg["SMTP_PORT"], timeout=10) as s:
        if cfg.get("SMTP_STARTTLS"):
            s.starttls()
        if cfg.get("SMTP_USER") and cfg.get("SMTP_PASS"):
            s.login(cfg["SMTP_USER"], cfg["SMTP_PASS"])
        s.send_message(m)


def send_email(to, subject, html, text=None, email_type="generic", order_id=None):
    """Send one message; returns ``(ok, error)``."""
    text = text or _TAGS.sub("", html)
    try:
        _deliver(to, subject, html, text)
    except Exception as e:
        log.warning(f"Email '{email_type}' to {to} failed: {e}")
        _record(email_type, to, subject, "failed", str(e), order_id)
        return False, str(e)
    log.info(f"Email '{email_type}' sent to {to}")
    _record(email_type, to, subject, "sent", None, order_id)
    return True, None


def admin_address():
    cfg = current_app.config
    return cfg.get("ALERT_EMAIL_TO") or cfg["EMAIL_FROM"]


def notify(msg: str):
    """Ping the shop owner over Slack and the alert mailbox."""
    cfg = current_app.config
    try:
        if cfg.get("SLACK_WEBHOOK_URL"):
            requests.post(cfg["SLACK_WEBHOOK_URL"], json={"text": msg}, timeout=5)
    except Exception as e:
        log.warning(f"Slack notify failed: {e}")
    if cfg.get("SMTP_HOST") and cfg.get("ALERT_EMAIL_TO"):
        send_email(cfg["ALERT_EMAIL_TO"], f"[{cfg['SITE_NAME']}] Notification",
                   f"<p>{msg}</p>", text=msg, email_type="admin_notification")


# ---------- typed senders ----------
def send_welcome_email(user_name, user_email):
    html = _render(WELCOME, user_name=user_name or user_email)
    return send_email(user_email, f"Bienvenido a {current_app.config['SITE_NAME']}", html,
                      email_type="welcome")

def send_order_confirmation(order):
    html = _render(ORDER_CONFIRMATION, order=order)
    return send_email(order.customer_email, f"Pedido {order.id} recibido", html,
                      email_type="order_confirmation", order_id=order.id)

def send_admin_order_notification(order, headline="Nuevo pedido"):
    html = _render(ADMIN_ORDER, order=order, headline=headline)
    return send_email(admin_address(), f"{headline}: {order.id}", html,
                      email_type="admin_notification", order_id=order.id)

def send_order_status_email(order):
    label = STATUS_LABELS.get(order.status, order.status)
    html = _render(ORDER_STATUS, order=order, label=label)
    return send_email(order.customer_email, f"Pedido {order.id}: {label}", html,
                      email_type="order_status", order_id=order.id)

def send_tracking_email(order):
    html = _render(TRACKING, order=order)
    return send_email(order.customer_email, f"Pedido {order.id} despachado", html,
                      email_type="tracking", order_id=order.id)

def send_password_reset_email(user_name, user_email, token):
    cfg = current_app.config
    link = f"{cfg['PUBLIC_BASE_URL']}/auth/reset-password?token={token}"
    html = _render(PASSWORD_RESET, user_name=user_name or user_email, link=link,
                   hours=cfg["RESET_TOKEN_HOURS"])
    return send_email(user_email, "Restablecer contraseña", html, email_type="password_reset")

def send_contact_emails(form, admin_to):
    """Admin copy must go through; the sender's receipt is best effort."""
    html = _render(CONTACT_ADMIN, **form)
    ok, err = send_email(admin_to, f"Nuevo mensaje de contacto: {form['asunto']}", html,
                         email_type="contact")
    if ok:
        html = _render(CONTACT_CONFIRMATION, **form)
        send_email(form["email"], "Mensaje recibido", html, email_type="contact_confirmation")
    return ok, err

def send_test_email(recipient, test_type="custom", subject=None, message=None):
    if test_type == "welcome":
        return send_welcome_email("Cliente de prueba", recipient)
    if test_type == "order_confirmation":
        item = SimpleNamespace(product_name="Taza personalizada", quantity=2, unit_price_cents=450000)
        sample = SimpleNamespace(id="ORD-TEST", customer_name="Cliente de prueba", customer_email=recipient,
                                 items=[item], total_cents=900000, payment_method="cash_on_pickup")
        return send_order_confirmation(sample)
    html = _render(TEST, message=message or "Este es un email de prueba.")
    return send_email(recipient, subject or f"[{current_app.config['SITE_NAME']}] Email de prueba",
                      html, email_type="test")
