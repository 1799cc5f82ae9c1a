# storefront/admin.py
import logging
import os
import secrets
import time

from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
from PIL import Image, UnidentifiedImageError
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from .auth import admin_required
from .cache import store_cache
from .catalog import load_products, product_stats, load_categories, load_colors, load_motivos
from .database import main_session
from .errors import ApiError
from .mailer import send_order_status_email, send_tracking_email, send_test_email
from .models import (
    Product, Category, Color, Motivo, Order, User, EmailLog,
    PRODUCT_STATUSES, ORDER_STATUSES, USER_ROLES,
)
from .orders import restore_stock
from .site import load_settings, save_settings
from .utils import (
    json_body, to_cents, generate_slug, generate_tracking_url, tracking_url_suggestions,
    order_date_from_id, is_valid_email, str_field, from_cents,
)

log = logging.getLogger("shop")

admin_bp = Blueprint("admin", __name__)

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
IMAGE_FORMATS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


@admin_bp.before_request
@admin_required
def guard():
    return None


def _bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)

def _list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [x.strip() for x in value.split(",") if x.strip()]
    if isinstance(value, list):
        return [str(x).strip() for x in value if str(x).strip()]
    raise ApiError("Se esperaba una lista", 400)

def _require_id(data):
    try:
        return int(data.get("id"))
    except (TypeError, ValueError):
        raise ApiError("ID requerido", 400)


# --------------------------- PRODUCTS ---------------------------
def _apply_product_fields(p, data):
    try:
        if "name" in data: p.name = str_field(data, "name")
        if "description" in data: p.description = str_field(data, "description", strip=False)
        if "price" in data: p.price_cents = to_cents(data["price"])
        if "originalPrice" in data:
            p.original_price_cents = to_cents(data["originalPrice"]) if data["originalPrice"] not in (None, "") else None
        if "stock" in data: p.stock = int(data["stock"] or 0)
    except (TypeError, ValueError):
        raise ApiError("Precio o stock inválido", 400)
    if p.price_cents is not None and p.price_cents < 0:
        raise ApiError("El precio no puede ser negativo", 400)
    if p.stock is not None and p.stock < 0:
        raise ApiError("El stock no puede ser negativo", 400)
    for field, attr in (("category", "category"), ("subcategory", "subcategory"),
                        ("sku", "sku"), ("brand", "brand"), ("medidas", "medidas")):
        if field in data:
            setattr(p, attr, str_field(data, field))
    if "images" in data: p.images = _list(data["images"])
    if "tags" in data: p.tags = _list(data["tags"])
    if "colores" in data: p.colores = _list(data["colores"])
    if "motivos" in data: p.motivos = _list(data["motivos"])
    if "isFeatured" in data: p.is_featured = _bool(data["isFeatured"])
    if "isActive" in data: p.status = "active" if _bool(data["isActive"]) else "inactive"
    if "status" in data:
        if data["status"] not in PRODUCT_STATUSES:
            raise ApiError("Estado inválido. Debe ser: " + ", ".join(PRODUCT_STATUSES), 400)
        p.status = data["status"]

@admin_bp.get("/products")
def admin_products():
    products = load_products(True)
    return jsonify({"success": True, "products": products, "stats": product_stats(products)})

@admin_bp.post("/products")
def admin_create_product():
    data = json_body()
    if not data.get("name") or not data.get("description") or data.get("price") in (None, "") or not data.get("category"):
        raise ApiError("Datos requeridos faltantes", 400)
    p = Product(status="active", stock=0, images_json="[]", tags_json="[]",
                colores_json="[]", motivos_json="[]")
    _apply_product_fields(p, data)
    if not p.sku:
        p.sku = f"SKU-{int(time.time() * 1000)}"
    with main_session() as db:
        db.add(p)
        db.commit()
        payload = p.to_dict()
    store_cache.invalidate_by_pattern("products")
    log.info(f"Product {p.id} created by {current_user.email}")
    return jsonify({"success": True, "productId": p.id, "product": payload}), 201

@admin_bp.put("/products")
def admin_update_product():
    data = json_body()
    pid = _require_id(data)
    with main_session() as db:
        p = db.get(Product, pid)
        if not p:
            raise ApiError("Producto no encontrado", 404)
        _apply_product_fields(p, data)
        if not p.name:
            raise ApiError("El nombre no puede quedar vacío", 400)
        db.commit()
        payload = p.to_dict()
    store_cache.invalidate_by_pattern("products")
    return jsonify({"success": True, "message": "Producto actualizado exitosamente", "product": payload})

@admin_bp.delete("/products")
def admin_deactivate_product():
    pid = _require_id(json_body())
    with main_session() as db:
        p = db.get(Product, pid)
        if not p:
            raise ApiError("Producto no encontrado", 404)
        p.status = "inactive"
        db.commit()
    store_cache.invalidate_by_pattern("products")
    return jsonify({"success": True, "message": "Producto eliminado exitosamente"})

@admin_bp.delete("/products/<int:pid>/permanent-delete")
def admin_purge_product(pid):
    with main_session() as db:
        p = db.get(Product, pid)
        if not p:
            raise ApiError("Producto no encontrado", 404)
        db.delete(p)
        db.commit()
    store_cache.invalidate_by_pattern("products")
    log.info(f"Product {pid} permanently deleted by {current_user.email}")
    return jsonify({"success": True, "message": "Producto eliminado permanentemente"})

@admin_bp.patch("/products/<int:pid>/status")
def admin_product_status(pid):
    status = json_body().get("status")
    if status not in PRODUCT_STATUSES:
        raise ApiError("Estado inválido. Debe ser: " + ", ".join(PRODUCT_STATUSES), 400)
    with main_session() as db:
        p = db.get(Product, pid)
        if not p:
            raise ApiError("Producto no encontrado", 404)
        p.status = status
        db.commit()
    store_cache.invalidate_by_pattern("products")
    return jsonify({"success": True, "productId": pid, "newStatus": status,
                    "message": f"Producto {pid} actualizado a estado: {status}"})


# --------------------------- ORDERS ---------------------------
def order_stats(orders):
    stats = {s: 0 for s in ORDER_STATUSES}
    stats["total"] = len(orders)
    revenue = 0
    for o in orders:
        stats[o.status] = stats.get(o.status, 0) + 1
        if o.status != "cancelled":
            revenue += o.total_cents
    stats["totalRevenue"] = from_cents(revenue)
    return stats

@admin_bp.get("/orders")
def admin_orders():
    status = request.args.get("status")
    day = request.args.get("date")
    with main_session() as db:
        rows = db.execute(select(Order).order_by(Order.created_at.desc())).scalars().all()
        stats = order_stats(rows)
        orders = [o.to_dict() for o in rows]
    if status:
        orders = [o for o in orders if o["status"] == status]
    if day:
        # the id carries the order date
        orders = [o for o in orders if str(order_date_from_id(o["id"])) == day]
    return jsonify({"success": True, "orders": orders, "stats": stats})

@admin_bp.put("/orders/status")
def admin_order_status():
    data = json_body()
    order_id, status = str_field(data, "orderId"), str_field(data, "status")
    if not order_id or not status:
        raise ApiError("ID de pedido y estado son requeridos", 400)
    if status not in ORDER_STATUSES:
        raise ApiError("Estado de pedido inválido", 400)
    with main_session() as db:
        o = db.get(Order, order_id)
        if not o:
            raise ApiError("Pedido no encontrado", 404)
        previous = o.status
        if status == "cancelled" and previous != "cancelled":
            # goods that already left the shop are not back on the shelf
            if previous not in ("shipped", "delivered"):
                restore_stock(db, o)
            o.payment_status = "cancelled"
        elif previous == "cancelled" and status != "cancelled":
            raise ApiError("Un pedido cancelado no puede reabrirse", 400)
        o.status = status
        if data.get("notes"):
            o.notes = f"{o.notes}\n{str_field(data, 'notes')}".strip()
        db.commit()
        o.to_dict()
    log.info(f"Order {order_id}: {previous} -> {status} by {current_user.email}")
    if previous != status:
        send_order_status_email(o)
    return jsonify({"success": True, "orderId": order_id, "newStatus": status,
                    "message": f"Pedido {order_id} actualizado a estado: {status}"})

@admin_bp.put("/orders/tracking")
def admin_order_tracking():
    data = json_body()
    order_id = str_field(data, "orderId")
    number = str_field(data, "trackingNumber")
    if not order_id or not number:
        raise ApiError("ID de pedido y número de tracking requeridos", 400)
    if not 5 <= len(number) <= 50:
        raise ApiError("El número de tracking debe tener entre 5 y 50 caracteres", 400)
    url = str_field(data, "shippingUrl")
    if not url:
        url = generate_tracking_url(load_settings()["shipping"].get("trackingUrl"), number)
    elif "{tracking}" in url:
        url = generate_tracking_url(url, number)

    with main_session() as db:
        o = db.get(Order, order_id)
        if not o:
            raise ApiError("Pedido no encontrado", 404)
        o.tracking_number = number
        o.tracking_url = url or None
        if o.status in ("pending", "confirmed", "processing"):
            o.status = "shipped"
        db.commit()
        o.to_dict()
    ok, _ = send_tracking_email(o)
    return jsonify({"success": True, "message": "Número de tracking actualizado exitosamente",
                    "trackingUrl": o.tracking_url, "customerNotified": ok})

@admin_bp.get("/tracking-carriers")
def admin_tracking_carriers():
    return jsonify({"success": True, "carriers": tracking_url_suggestions(request.args.get("q", ""))})


# --------------------------- USERS ---------------------------
@admin_bp.get("/users")
def admin_users():
    with main_session() as db:
        totals = {
            uid: (count, spent or 0)
            for uid, count, spent in db.execute(
                select(Order.user_id, func.count(Order.id), func.sum(Order.total_cents))
                .where(Order.status != "cancelled")
                .group_by(Order.user_id)
            ).all()
        }
        users = []
        for u in db.execute(select(User).order_by(User.created_at.desc())).scalars().all():
            d = u.to_dict()
            count, spent = totals.get(u.id, (0, 0))
            d["ordersCount"], d["totalSpent"] = count, from_cents(spent)
            users.append(d)
    return jsonify({"success": True, "users": users})

@admin_bp.put("/users")
def admin_update_user():
    data = json_body()
    uid = _require_id(data)
    with main_session() as db:
        u = db.get(User, uid)
        if not u:
            raise ApiError("Usuario no encontrado", 404)
        if "role" in data:
            if data["role"] not in USER_ROLES:
                raise ApiError("Rol inválido", 400)
            if u.id == int(current_user.id) and data["role"] != "admin":
                raise ApiError("No podés quitarte el rol de administrador", 400)
            u.role = data["role"]
        if "isActive" in data:
            if u.id == int(current_user.id) and not _bool(data["isActive"]):
                raise ApiError("No podés desactivar tu propia cuenta", 400)
            u.is_active = _bool(data["isActive"])
        if "name" in data:
            u.name = str_field(data, "name")
        db.commit()
        payload = u.to_dict()
    return jsonify({"success": True, "user": payload})

@admin_bp.get("/user-roles")
def admin_user_roles():
    with main_session() as db:
        users = [{"id": u.id, "email": u.email, "name": u.name, "role": u.role}
                 for u in db.execute(select(User).order_by(User.email)).scalars().all()]
    return jsonify({"users": users})

@admin_bp.put("/user-roles")
def admin_set_user_role():
    data = json_body()
    email = str_field(data, "email").lower()
    role = data.get("role")
    if not email or not role:
        raise ApiError("Email y rol son requeridos", 400)
    if role not in USER_ROLES:
        raise ApiError("Rol inválido", 400)
    with main_session() as db:
        u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u:
            raise ApiError("Usuario no encontrado", 404)
        u.role = role
        db.commit()
    log.info(f"Role of {email} set to {role} by {current_user.email}")
    return jsonify({"message": "Rol actualizado exitosamente"})


# --------------------------- CATEGORIES ---------------------------
@admin_bp.get("/categories")
def admin_categories():
    return jsonify({"success": True, "categories": load_categories(True)})

@admin_bp.post("/categories")
def admin_create_category():
    data = json_body()
    name = str_field(data, "name")
    if not name:
        raise ApiError("El nombre es requerido", 400)
    slug = generate_slug(str_field(data, "slug") or name)
    if not slug:
        raise ApiError("Nombre inválido", 400)
    c = Category(name=name, description=str_field(data, "description", strip=False), slug=slug,
                 is_active=_bool(data.get("isActive", True)))
    try:
        with main_session() as db:
            db.add(c)
            db.commit()
            payload = c.to_dict()
    except IntegrityError:
        raise ApiError("Ya existe una categoría con ese nombre", 409)
    store_cache.invalidate_by_pattern("categories")
    return jsonify({"success": True, "categoryId": c.id, "category": payload}), 201

@admin_bp.put("/categories")
def admin_update_category():
    data = json_body()
    cid = _require_id(data)
    try:
        with main_session() as db:
            c = db.get(Category, cid)
            if not c:
                raise ApiError("Categoría no encontrada", 404)
            if data.get("name"):
                c.name = str_field(data, "name")
                c.slug = generate_slug(str_field(data, "slug") or c.name)
            if "description" in data:
                c.description = str_field(data, "description", strip=False)
            if "isActive" in data:
                c.is_active = _bool(data["isActive"])
            db.commit()
            payload = c.to_dict()
    except IntegrityError:
        raise ApiError("Ya existe una categoría con ese nombre", 409)
    store_cache.invalidate_by_pattern("categories")
    return jsonify({"success": True, "category": payload})

@admin_bp.delete("/categories")
def admin_delete_category():
    cid = _require_id(json_body())
    with main_session() as db:
        c = db.get(Category, cid)
        if not c:
            raise ApiError("Categoría no encontrada", 404)
        db.delete(c)
        db.commit()
    store_cache.invalidate_by_pattern("categories")
    return jsonify({"success": True, "message": "Categoría eliminada"})


# --------------------------- COLORS / MOTIVOS ---------------------------
def _register_named_crud(model, loader, path, label):
    """Colors and motivos share the same {nombre, disponible} shape."""

    def listing():
        return jsonify({"success": True, path: loader(True)})

    def create():
        data = json_body()
        nombre = str_field(data, "nombre")
        if not nombre:
            raise ApiError("El nombre es requerido", 400)
        row = model(nombre=nombre, disponible=_bool(data.get("disponible", True)))
        try:
            with main_session() as db:
                db.add(row)
                db.commit()
                payload = row.to_dict()
        except IntegrityError:
            raise ApiError(f"Ya existe un {label} con ese nombre", 409)
        store_cache.invalidate_by_pattern(path)
        return jsonify({"success": True, "id": row.id, label: payload}), 201

    def update():
        data = json_body()
        rid = _require_id(data)
        try:
            with main_session() as db:
                row = db.get(model, rid)
                if not row:
                    raise ApiError(f"{label.capitalize()} no encontrado", 404)
                if data.get("nombre"):
                    row.nombre = str_field(data, "nombre")
                if "disponible" in data:
                    row.disponible = _bool(data["disponible"])
                db.commit()
                payload = row.to_dict()
        except IntegrityError:
            raise ApiError(f"Ya existe un {label} con ese nombre", 409)
        store_cache.invalidate_by_pattern(path)
        return jsonify({"success": True, label: payload})

    def delete():
        rid = _require_id(json_body())
        with main_session() as db:
            row = db.get(model, rid)
            if not row:
                raise ApiError(f"{label.capitalize()} no encontrado", 404)
            db.delete(row)
            db.commit()
        store_cache.invalidate_by_pattern(path)
        return jsonify({"success": True})

    for method, view in (("GET", listing), ("POST", create), ("PUT", update), ("DELETE", delete)):
        admin_bp.add_url_rule(f"/{path}", endpoint=f"{path}_{view.__name__}",
                              view_func=view, methods=[method])

_register_named_crud(Color, load_colors, "colors", "color")
_register_named_crud(Motivo, load_motivos, "motivos", "motivo")


# --------------------------- SETTINGS / LOGS / CACHE ---------------------------
@admin_bp.get("/settings")
def admin_settings():
    return jsonify({"success": True, "settings": load_settings()})

@admin_bp.put("/settings")
def admin_update_settings():
    settings = save_settings(json_body())
    log.info(f"Settings updated by {current_user.email}")
    return jsonify({"success": True, "settings": settings})

@admin_bp.get("/email-logs")
def admin_email_logs():
    args = request.args
    try:
        limit = int(args["limit"]) if args.get("limit") else None
    except ValueError:
        raise ApiError("limit inválido", 400)
    with main_session() as db:
        q = select(EmailLog).order_by(EmailLog.created_at.desc(), EmailLog.id.desc())
        if args.get("type"):
            q = q.where(EmailLog.email_type == args["type"])
        if args.get("status"):
            q = q.where(EmailLog.status == args["status"])
        if args.get("orderId"):
            q = q.where(EmailLog.order_id == args["orderId"])
        if limit:
            q = q.limit(limit)
        logs = [e.to_dict() for e in db.execute(q).scalars().all()]
    return jsonify({"success": True, "logs": logs, "count": len(logs),
                    "filters": {k: args.get(k) for k in ("type", "status", "orderId", "limit")}})

@admin_bp.post("/cache/clear")
def admin_clear_cache():
    dropped = len(store_cache)
    store_cache.clear()
    log.info(f"Cache cleared by {current_user.email} ({dropped} entries)")
    return jsonify({"success": True, "cleared": dropped})

@admin_bp.post("/test-email")
def admin_test_email():
    data = json_body()
    to = str_field(data, "recipientEmail")
    if not is_valid_email(to):
        raise ApiError("Email de destino inválido", 400)
    test_type = data.get("testType") or "custom"
    if test_type not in ("welcome", "order_confirmation", "custom"):
        raise ApiError("Tipo de prueba inválido", 400)
    ok, err = send_test_email(to, test_type, str_field(data, "customSubject") or None,
                              str_field(data, "customMessage", strip=False) or None)
    if not ok:
        return jsonify({"success": False, "error": err}), 500
    return jsonify({"success": True})


# --------------------------- UPLOADS ---------------------------
@admin_bp.post("/upload")
def admin_upload():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ApiError("No se proporcionó archivo", 400)
    if f.mimetype not in ALLOWED_IMAGE_TYPES:
        raise ApiError("Tipo de archivo no permitido. Use JPG, PNG o WebP", 400)
    data = f.read()
    if len(data) > current_app.config["MAX_UPLOAD_BYTES"]:
        raise ApiError("El archivo es demasiado grande. Máximo 5MB", 400)
    try:
        f.stream.seek(0)
        with Image.open(f.stream) as img:
            img.verify()
        f.stream.seek(0)
        with Image.open(f.stream) as img:
            fmt = (img.format or "").upper()
            width, height = img.size
    except (UnidentifiedImageError, OSError):
        raise ApiError("El archivo no es una imagen válida", 400)
    # the decoded format decides, not what the client claimed
    ext = IMAGE_FORMATS.get(fmt)
    if not ext:
        raise ApiError("Tipo de archivo no permitido. Use JPG, PNG o WebP", 400)

    upload_dir = current_app.config["UPLOAD_DIR"]
    os.makedirs(upload_dir, exist_ok=True)
    name = f"product_{int(time.time())}_{secrets.token_hex(4)}.{ext}"
    with open(os.path.join(upload_dir, name), "wb") as out:
        out.write(data)
    log.info(f"Uploaded {f.filename} as {name} ({len(data)} bytes)")
    return jsonify({"url": f"/media/{name}", "filename": name, "originalName": f.filename,
                    "size": len(data), "type": Image.MIME.get(fmt, f.mimetype), "width": width, "height": height})
