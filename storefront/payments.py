# storefront/payments.py
import logging

import stripe
from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from .database import main_session
from .errors import ApiError
from .mailer import notify, send_order_status_email
from .models import Order
from .orders import restore_stock
from .utils import json_body, str_field

log = logging.getLogger("shop")

payments_bp = Blueprint("payments", __name__)

# gateway payment status -> order status; None keeps the current one
ORDER_STATUS_FOR_PAYMENT = {
    "approved": "confirmed",
    "pending": None,
    "in_process": None,
    "rejected": "cancelled",
    "cancelled": "cancelled",
}

# stripe checkout event -> our payment status
PAYMENT_STATUS_FOR_EVENT = {
    "checkout.session.completed": "approved",
    "checkout.session.async_payment_succeeded": "approved",
    "checkout.session.async_payment_failed": "rejected",
    "checkout.session.expired": "cancelled",
}


def apply_payment_status(db, order, payment_status, payment_id=None):
    """Move an order along after the gateway reports on it.

    Returns True when the order status changed. Final orders are left alone
    so a late or replayed notification cannot reopen them.
    """
    if order.status in ("cancelled", "delivered", "shipped"):
        log.info(f"Ignoring payment status {payment_status} for {order.status} order {order.id}")
        return False
    order.payment_status = payment_status
    if payment_id:
        order.payment_id = str(payment_id)
    new_status = ORDER_STATUS_FOR_PAYMENT.get(payment_status)
    if not new_status or new_status == order.status:
        return False
    if new_status == "cancelled":
        restore_stock(db, order)
    order.status = new_status
    return True


@payments_bp.get("/health")
def health():
    return jsonify({"configured": bool(current_app.config.get("STRIPE_SECRET_KEY")),
                    "webhook": bool(current_app.config.get("STRIPE_WEBHOOK_SECRET"))})

@payments_bp.post("/checkout")
@login_required
def create_checkout():
    cfg = current_app.config
    if not cfg.get("STRIPE_SECRET_KEY"):
        raise ApiError("Pasarela de pago no configurada", 500)
    order_id = str_field(json_body(), "orderId")
    if not order_id:
        raise ApiError("Order ID requerido", 400)
    base = cfg["PUBLIC_BASE_URL"].rstrip("/")

    with main_session() as db:
        o = db.get(Order, order_id)
        if not o or o.user_id != int(current_user.id):
            raise ApiError("Pedido no encontrado", 404)
        if o.payment_method != "stripe" or o.status != "payment_pending":
            raise ApiError("El pedido no está esperando un pago online", 400)

        line_items = [{
            "quantity": it.quantity,
            "price_data": {
                "currency": cfg["CURRENCY"].lower(),
                "unit_amount": it.unit_price_cents,
                "product_data": {"name": it.product_name or f"Item {it.product_id}"},
            },
        } for it in o.items]
        try:
            cs = stripe.checkout.Session.create(
                mode="payment",
                customer_email=o.customer_email,
                line_items=line_items,
                client_reference_id=o.id,
                success_url=f"{base}/checkout/success?order_id={o.id}",
                cancel_url=f"{base}/checkout/failure?order_id={o.id}",
                metadata={"order_id": o.id, "user_id": str(current_user.id)},
            )
        except Exception as e:
            log.exception("Stripe checkout create failed")
            notify(f"Stripe checkout failed for order {o.id}: {e}")
            raise ApiError("No se pudo iniciar el pago. Intentá nuevamente.", 502)
        o.checkout_session_id = cs.id
        db.commit()
    return jsonify({"success": True, "id": cs.id, "url": cs.url, "orderId": order_id})

@payments_bp.get("/webhook")
def webhook_ping():
    return jsonify({"status": "OK"})

@payments_bp.post("/webhook")
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig = request.headers.get("Stripe-Signature", "")
    try:
        event = stripe.Webhook.construct_event(payload, sig, current_app.config.get("STRIPE_WEBHOOK_SECRET"))
    except Exception as e:
        log.warning(f"Stripe webhook signature failure: {e}")
        return jsonify({"error": "bad signature"}), 400

    payment_status = PAYMENT_STATUS_FOR_EVENT.get(event["type"])
    if payment_status is None:
        log.info(f"Unhandled stripe event {event['type']}")
        return jsonify({"received": True})

    data = event["data"]["object"]
    order_id = data.get("client_reference_id") or (data.get("metadata") or {}).get("order_id")
    if event["type"] == "checkout.session.completed" and data.get("payment_status") not in (None, "paid", "no_payment_required"):
        # async methods (bank debits) settle later
        payment_status = "pending"
    try:
        changed = False
        with main_session() as db:
            o = db.get(Order, order_id) if order_id else None
            if o is None:
                log.warning(f"Stripe event {event['type']} for unknown order {order_id}")
                return jsonify({"received": True})
            changed = apply_payment_status(db, o, payment_status, data.get("payment_intent") or data.get("id"))
            db.commit()
            o.to_dict()
        log.info(f"Order {order_id} payment {payment_status} (changed={changed})")
        if changed:
            send_order_status_email(o)
            if o.status == "confirmed":
                notify(f"Order {o.id} paid by {o.customer_email}")
        return jsonify({"received": True})
    except Exception as e:
        log.exception("Stripe webhook error")
        notify(f"Stripe webhook error: {e}")
        return jsonify({"error": "Error procesando webhook"}), 500
