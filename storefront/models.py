# storefront/models.py
import json
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import declarative_base, relationship

from .utils import from_cents

Base = declarative_base()

PRODUCT_STATUSES = ("active", "inactive", "pending", "draft")
ORDER_STATUSES = (
    "pending", "payment_pending", "pending_transfer",
    "confirmed", "processing", "shipped", "delivered", "cancelled",
)
CANCELLABLE_STATUSES = ("pending", "payment_pending", "pending_transfer")
PAYMENT_METHODS = ("stripe", "cash_on_pickup", "transfer")
PAYMENT_STATUSES = ("pending", "approved", "rejected", "cancelled")
USER_ROLES = ("user", "admin", "moderator")


def _iso(dt):
    return dt.isoformat() if dt else None

def _load_list(raw):
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        # legacy comma separated cells
        return [x.strip() for x in raw.split(",") if x.strip()]
    return data if isinstance(data, list) else []


# ----------------- USERS -----------------
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(200), unique=True, nullable=False)
    name = Column(String(200), nullable=False, default="")
    image = Column(String(500))
    password_hash = Column(String(200))  # null for OAuth-only accounts
    provider = Column(String(20), nullable=False, default="credentials")
    role = Column(String(20), nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = Column(DateTime)
    orders = relationship("Order", back_populates="user")

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "image": self.image,
            "role": self.role,
            "provider": self.provider,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "lastLogin": _iso(self.last_login),
        }

class ResetToken(Base):
    __tablename__ = "reset_tokens"
    id = Column(Integer, primary_key=True)
    token = Column(String(128), unique=True, nullable=False)
    email = Column(String(200), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    used = Column(Boolean, nullable=False, default=False)


# ----------------- CATALOG -----------------
class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    price_cents = Column(Integer, nullable=False, default=0)
    original_price_cents = Column(Integer)
    category = Column(String(120), nullable=False, default="")
    subcategory = Column(String(120), default="")
    images_json = Column(Text, default="[]")
    stock = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")
    sku = Column(String(64))
    brand = Column(String(120), default="")
    tags_json = Column(Text, default="[]")
    medidas = Column(String(200), default="")
    colores_json = Column(Text, default="[]")
    motivos_json = Column(Text, default="[]")
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def images(self):
        return _load_list(self.images_json)

    @images.setter
    def images(self, value):
        self.images_json = json.dumps(list(value or []))

    @property
    def tags(self):
        return _load_list(self.tags_json)

    @tags.setter
    def tags(self, value):
        self.tags_json = json.dumps(list(value or []))

    @property
    def colores(self):
        return _load_list(self.colores_json)

    @colores.setter
    def colores(self, value):
        self.colores_json = json.dumps(list(value or []))

    @property
    def motivos(self):
        return _load_list(self.motivos_json)

    @motivos.setter
    def motivos(self, value):
        self.motivos_json = json.dumps(list(value or []))

    def img_url(self):
        imgs = self.images
        return imgs[0] if imgs else None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": from_cents(self.price_cents),
            "originalPrice": from_cents(self.original_price_cents),
            "category": self.category,
            "subcategory": self.subcategory,
            "image": self.img_url(),
            "images": self.images,
            "stock": self.stock,
            "status": self.status,
            "sku": self.sku,
            "brand": self.brand,
            "tags": self.tags,
            "medidas": self.medidas,
            "colores": self.colores,
            "motivos": self.motivos,
            "isFeatured": self.is_featured,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, default="")
    slug = Column(String(160), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "slug": self.slug,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

class Color(Base):
    __tablename__ = "colors"
    id = Column(Integer, primary_key=True)
    nombre = Column(String(120), unique=True, nullable=False)
    disponible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {"id": self.id, "nombre": self.nombre, "disponible": self.disponible,
                "createdAt": _iso(self.created_at), "updatedAt": _iso(self.updated_at)}

class Motivo(Base):
    __tablename__ = "motivos"
    id = Column(Integer, primary_key=True)
    nombre = Column(String(120), unique=True, nullable=False)
    disponible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {"id": self.id, "nombre": self.nombre, "disponible": self.disponible,
                "createdAt": _iso(self.created_at), "updatedAt": _iso(self.updated_at)}


# ----------------- ORDERS -----------------
class Order(Base):
    __tablename__ = "orders"
    id = Column(String(40), primary_key=True)  # ORD-YYYYMMDD-NNNNNN
    user_id = Column(Integer, ForeignKey("users.id"))
    customer_email = Column(String(200), nullable=False)
    customer_name = Column(String(200), nullable=False, default="")
    total_cents = Column(Integer, nullable=False, default=0)
    status = Column(String(30), nullable=False, default="pending")
    payment_method = Column(String(30), nullable=False, default="cash_on_pickup")
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_id = Column(String(128))
    checkout_session_id = Column(String(128))
    first_name = Column(String(120), default="")
    last_name = Column(String(120), default="")
    address = Column(Text, default="")
    city = Column(String(120), default="")
    state = Column(String(120), default="")
    zip_code = Column(String(20), default="")
    phone = Column(String(40), default="")
    tracking_number = Column(String(64))
    tracking_url = Column(String(500))
    notes = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    def shipping_line(self):
        parts = [f"{self.first_name} {self.last_name}".strip(), self.address, self.city,
                 self.state, self.zip_code, self.phone]
        return ", ".join(p for p in parts if p)

    def to_dict(self):
        return {
            "id": self.id,
            "customer": {"id": self.user_id, "name": self.customer_name, "email": self.customer_email},
            "items": [it.to_dict() for it in self.items],
            "total": from_cents(self.total_cents),
            "status": self.status,
            "paymentMethod": self.payment_method,
            "paymentStatus": self.payment_status,
            "paymentId": self.payment_id,
            "shippingAddress": {
                "firstName": self.first_name,
                "lastName": self.last_name,
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "zipCode": self.zip_code,
                "phone": self.phone,
            },
            "trackingNumber": self.tracking_number,
            "trackingUrl": self.tracking_url,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True)
    order_id = Column(String(40), ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, nullable=False)  # no FK, products can be purged
    product_name = Column(String(200), nullable=False, default="")
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(Integer, nullable=False, default=0)
    order = relationship("Order", back_populates="items")

    def to_dict(self):
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "price": from_cents(self.unit_price_cents),
        }

class PaymentNotice(Base):
    __tablename__ = "payment_notices"
    id = Column(Integer, primary_key=True)
    order_id = Column(String(40), ForeignKey("orders.id"), unique=True, nullable=False)
    payment_method = Column(String(30), nullable=False, default="transfer")
    status = Column(String(30), nullable=False, default="proof_sent")
    notified_at = Column(DateTime, default=datetime.utcnow)
    processed = Column(Boolean, nullable=False, default=False)

    def to_dict(self):
        return {"orderId": self.order_id, "paymentMethod": self.payment_method,
                "status": self.status, "notifiedAt": _iso(self.notified_at),
                "processed": self.processed}


# ----------------- SITE -----------------
class Setting(Base):
    __tablename__ = "settings"
    key = Column(String(80), primary_key=True)
    value = Column(Text, nullable=False)  # json encoded
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class EmailLog(Base):
    __tablename__ = "email_logs"
    id = Column(Integer, primary_key=True)
    email_type = Column(String(40), nullable=False)
    recipient = Column(String(200), nullable=False)
    subject = Column(String(300), nullable=False, default="")
    status = Column(String(20), nullable=False)  # sent|failed
    error = Column(Text)
    order_id = Column(String(40))
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.email_type,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "error": self.error,
            "orderId": self.order_id,
            "createdAt": _iso(self.created_at),
        }
