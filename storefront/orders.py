# storefront/orders.py
import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from sqlalchemy import select

from .auth import is_admin, admin_required
from .cache import store_cache
from .catalog import normalize_items, stock_errors
from .database import main_session
from .errors import ApiError
from .mailer import send_order_confirmation, send_admin_order_notification, notify
from .models import Order, OrderItem, Product, PaymentNotice, PAYMENT_METHODS, CANCELLABLE_STATUSES
from .site import load_settings
from .utils import json_body, generate_order_id, is_valid_order_id, format_money, str_field

log = logging.getLogger("shop")

orders_bp = Blueprint("orders", __name__)

INITIAL_STATUS = {
    "stripe": "payment_pending",
    "transfer": "pending_transfer",
    "cash_on_pickup": "pending",
}
# settings.paymentMethods flag per method
METHOD_SETTING = {"stripe": "stripe", "transfer": "transfer", "cash_on_pickup": "cashOnPickup"}


def restore_stock(db, order):
    for it in order.items:
        p = db.get(Product, it.product_id)
        if p:
            p.stock += it.quantity
    store_cache.invalidate_by_pattern("products")

def _new_order_id(db):
    oid = generate_order_id()
    while db.get(Order, oid) is not None:
        oid = generate_order_id(randomize=True)
    return oid

def _load_order(db, order_id):
    if not is_valid_order_id(order_id):
        raise ApiError("ID de pedido inválido", 400)
    o = db.get(Order, order_id)
    if not o:
        raise ApiError("Pedido no encontrado", 404)
    if not is_admin() and o.user_id != int(current_user.id):
        # do not reveal someone else's order
        raise ApiError("Pedido no encontrado", 404)
    return o


@orders_bp.get("")
@orders_bp.get("/")
@login_required
def list_orders():
    user_email = (request.args.get("userEmail") or "").strip().lower()
    with main_session() as db:
        q = select(Order).order_by(Order.created_at.desc())
        if is_admin():
            if user_email:
                q = q.where(Order.customer_email == user_email)
        else:
            q = q.where(Order.user_id == int(current_user.id))
        orders = [o.to_dict() for o in db.execute(q).scalars().all()]
    return jsonify({"success": True, "orders": orders})

@orders_bp.post("")
@orders_bp.post("/")
@login_required
def create_order():
    data = json_body()
    items = normalize_items(data.get("items"))
    info = data.get("customerInfo") or {}
    if not isinstance(info, dict):
        raise ApiError("customerInfo inválido", 400)
    method = data.get("paymentMethod") or "cash_on_pickup"
    if method not in PAYMENT_METHODS:
        raise ApiError("Método de pago inválido", 400)
    if not load_settings()["paymentMethods"].get(METHOD_SETTING[method], False):
        raise ApiError("Método de pago no disponible", 400)

    first = str_field(info, "firstName")
    last = str_field(info, "lastName")
    name = f"{first} {last}".strip() or current_user.name
    email = (str_field(info, "email") or current_user.email).lower()

    with main_session() as db:
        errors = stock_errors(db, items)
        if errors:
            raise ApiError("Stock insuficiente", 409, errors=errors)

        o = Order(
            id=_new_order_id(db),
            user_id=int(current_user.id),
            customer_email=email,
            customer_name=name,
            status=INITIAL_STATUS[method],
            payment_method=method,
            payment_status="pending",
            first_name=first,
            last_name=last,
            address=str_field(info, "address"),
            city=str_field(info, "city"),
            state=str_field(info, "state"),
            zip_code=str_field(info, "zipCode"),
            phone=str_field(info, "phone"),
            notes=str_field(data, "notes"),
        )
        total = 0
        for it in items:
            p = db.get(Product, it["productId"])
            p.stock -= it["quantity"]
            total += p.price_cents * it["quantity"]
            o.items.append(OrderItem(product_id=p.id, product_name=p.name,
                                     quantity=it["quantity"], unit_price_cents=p.price_cents))
        o.total_cents = total
        db.add(o)
        db.commit()
        payload = o.to_dict()

    store_cache.invalidate_by_pattern("products")
    log.info(f"Order {o.id} created by {current_user.email} total={total} method={method}")
    send_order_confirmation(o)
    if load_settings()["notifications"].get("newOrders", True):
        send_admin_order_notification(o)
    return jsonify({"success": True, "orderId": o.id, "order": payload}), 201

@orders_bp.get("/<order_id>")
@login_required
def get_order(order_id):
    with main_session() as db:
        o = _load_order(db, order_id)
        return jsonify({"success": True, "order": o.to_dict()})

@orders_bp.post("/<order_id>/cancel")
@login_required
def cancel_order(order_id):
    reason = str_field(json_body(), "reason")
    with main_session() as db:
        o = _load_order(db, order_id)
        if o.status not in CANCELLABLE_STATUSES:
            raise ApiError("Este pedido no puede ser cancelado. Ya está siendo procesado o fue completado.", 400)
        o.status = "cancelled"
        o.payment_status = "cancelled"
        if reason:
            o.notes = f"{o.notes}\nCancelado: {reason}".strip()
        restore_stock(db, o)
        db.commit()
        o.to_dict()  # loads items before the session closes

    log.info(f"Order {order_id} cancelled by {current_user.email}")
    send_admin_order_notification(o, headline="Pedido cancelado")
    return jsonify({"success": True, "message": "Pedido cancelado exitosamente",
                    "orderId": order_id, "newStatus": "cancelled"})


# --------------------------- TRANSFER PROOFS ---------------------------
@orders_bp.post("/payment-sent")
@login_required
def payment_sent():
    data = json_body()
    order_id = str_field(data, "orderId")
    if not order_id:
        raise ApiError("Order ID requerido", 400)
    with main_session() as db:
        o = _load_order(db, order_id)
        notice = db.execute(select(PaymentNotice).where(PaymentNotice.order_id == o.id)).scalar_one_or_none()
        if notice is None:
            notice = PaymentNotice(order_id=o.id)
            db.add(notice)
        notice.payment_method = str_field(data, "paymentMethod") or "transfer"
        notice.status = "proof_sent"
        notice.processed = False
        db.commit()
        total = o.total_cents
    notify(f"Payment proof sent for order {order_id} ({format_money(total)})")
    return jsonify({"success": True, "orderId": order_id,
                    "message": "Notificación de comprobante recibida correctamente"})

@orders_bp.get("/payment-sent")
@admin_required
def list_payment_notices():
    order_id = request.args.get("orderId")
    with main_session() as db:
        if order_id:
            n = db.execute(select(PaymentNotice).where(PaymentNotice.order_id == order_id)).scalar_one_or_none()
            if not n:
                raise ApiError("Notificación no encontrada", 404)
            return jsonify(n.to_dict())
        rows = db.execute(select(PaymentNotice).order_by(PaymentNotice.notified_at.desc())).scalars().all()
        return jsonify([n.to_dict() for n in rows])
