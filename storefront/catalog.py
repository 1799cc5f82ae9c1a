# storefront/catalog.py
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import select

from .auth import is_admin
from .cache import cached
from .database import main_session
from .errors import ApiError
from .models import Product, Category, Color, Motivo, PRODUCT_STATUSES
from .utils import json_body

log = logging.getLogger("shop")

catalog_bp = Blueprint("catalog", __name__)


# --------------------------- cached reads ---------------------------
@cached("products")
def load_products(include_inactive=False):
    with main_session() as db:
        q = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
        if not include_inactive:
            q = q.where(Product.status == "active")
        return [p.to_dict() for p in db.execute(q).scalars().all()]

@cached("categories")
def load_categories(include_inactive=False):
    with main_session() as db:
        q = select(Category).order_by(Category.name)
        if not include_inactive:
            q = q.where(Category.is_active.is_(True))
        return [c.to_dict() for c in db.execute(q).scalars().all()]

@cached("colors")
def load_colors(include_unavailable=False):
    with main_session() as db:
        q = select(Color).order_by(Color.nombre)
        if not include_unavailable:
            q = q.where(Color.disponible.is_(True))
        return [c.to_dict() for c in db.execute(q).scalars().all()]

@cached("motivos")
def load_motivos(include_unavailable=False):
    with main_session() as db:
        q = select(Motivo).order_by(Motivo.nombre)
        if not include_unavailable:
            q = q.where(Motivo.disponible.is_(True))
        return [m.to_dict() for m in db.execute(q).scalars().all()]

def product_stats(products):
    stats = {"total": len(products)}
    for s in PRODUCT_STATUSES:
        stats[s] = sum(1 for p in products if p["status"] == s)
    return stats

def find_product(product_id, include_inactive=False):
    for p in load_products(include_inactive):
        if str(p["id"]) == str(product_id):
            return p
    return None


# --------------------------- PRODUCTS ---------------------------
@catalog_bp.get("/products")
def list_products():
    wants_all = request.args.get("includeInactive") == "true" or request.args.get("admin") == "true"
    if wants_all and not is_admin():
        raise ApiError("No autorizado", 401)

    products = load_products(wants_all)
    status = request.args.get("status")
    category = request.args.get("category")
    q = (request.args.get("q") or "").strip().lower()
    filtered = products
    if status:
        filtered = [p for p in filtered if p["status"] == status]
    if category:
        filtered = [p for p in filtered if p["category"].lower() == category.lower()]
    if q:
        filtered = [p for p in filtered
                    if q in p["name"].lower() or q in (p["description"] or "").lower()
                    or any(q in t.lower() for t in p["tags"])]

    body = {"success": True, "products": filtered, "count": len(filtered), "isAdmin": wants_all}
    if wants_all:
        body["stats"] = product_stats(products)
    return jsonify(body)

@catalog_bp.get("/products/<int:pid>")
def get_product(pid):
    p = find_product(pid, include_inactive=is_admin())
    if not p:
        raise ApiError("Producto no encontrado", 404)
    return jsonify({"success": True, "product": p})

@catalog_bp.get("/products/<int:pid>/colors-motivos")
def product_colors_motivos(pid):
    p = find_product(pid, include_inactive=True)
    if not p:
        raise ApiError("Producto no encontrado", 404)
    colors = [c for c in load_colors() if c["nombre"] in p["colores"]]
    motivos = [m for m in load_motivos() if m["nombre"] in p["motivos"]]
    resp = jsonify({"colors": colors, "motivos": motivos})
    resp.headers["Cache-Control"] = "public, max-age=30, stale-while-revalidate=60"
    return resp

@catalog_bp.get("/products/stock")
def products_stock():
    raw = request.args.get("ids", "")
    try:
        ids = [int(x) for x in raw.split(",") if x.strip()]
    except ValueError:
        raise ApiError("ids inválidos", 400)
    with main_session() as db:
        q = select(Product.id, Product.stock)
        if ids:
            q = q.where(Product.id.in_(ids))
        rows = db.execute(q).all()
    return jsonify({"success": True, "stock": {str(pid): stock for pid, stock in rows}})

def stock_errors(db, items):
    """Lines that ask for more than is on hand (or for unknown products)."""
    errors = []
    for it in items:
        pid = it["productId"]
        p = db.get(Product, pid)
        available = p.stock if p and p.status == "active" else 0
        if it["quantity"] > available:
            errors.append({"productId": pid, "productName": p.name if p else "",
                           "requested": it["quantity"], "available": available})
    return errors

def normalize_items(raw_items):
    """Accept ``[{productId|id|product:{id}, quantity}]`` and merge duplicates."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ApiError("Items requeridos", 400)
    merged = {}
    for it in raw_items:
        if not isinstance(it, dict):
            raise ApiError("Item inválido", 400)
        pid = it.get("productId") or it.get("id") or (it.get("product") or {}).get("id")
        try:
            pid = int(pid)
            qty = int(it.get("quantity", 1))
        except (TypeError, ValueError):
            raise ApiError("Item inválido", 400)
        if qty < 1:
            raise ApiError("La cantidad debe ser al menos 1", 400)
        merged[pid] = merged.get(pid, 0) + qty
    return [{"productId": pid, "quantity": qty} for pid, qty in merged.items()]

@catalog_bp.post("/check-stock")
def check_stock():
    items = normalize_items(json_body().get("items"))
    with main_session() as db:
        errors = stock_errors(db, items)
    return jsonify({"available": not errors, "errors": errors})


# --------------------------- TAXONOMIES ---------------------------
@catalog_bp.get("/categories")
def list_categories():
    cats = load_categories()
    return jsonify({"success": True, "categories": cats, "count": len(cats)})

@catalog_bp.get("/colors")
def list_colors():
    return jsonify({"success": True, "colors": load_colors()})

@catalog_bp.get("/motivos")
def list_motivos():
    return jsonify({"success": True, "motivos": load_motivos()})
