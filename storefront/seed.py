# storefront/seed.py
"""Load a small demo catalog. Safe to run repeatedly: rows are matched by sku/name."""
from sqlalchemy import select

from .config import Config
from .database import init_engine, main_session
from .models import Product, Category, Color, Motivo
from .utils import generate_slug

CATEGORIES = ["Tazas", "Remeras", "Gorras"]
COLORS = ["Blanco", "Negro", "Verde agua"]
MOTIVOS = ["Floral", "Geométrico", "Infantil"]

PRODUCTS = [
    dict(sku="TAZA-001", name="Taza personalizada", description="Taza de cerámica 11oz",
         price_cents=450000, category="Tazas", stock=25,
         images=["https://picsum.photos/seed/taza/600/600"],
         colores=["Blanco", "Negro"], motivos=["Floral", "Infantil"], is_featured=True),
    dict(sku="REM-001", name="Remera estampada", description="Remera de algodón peinado",
         price_cents=1200000, category="Remeras", stock=15,
         images=["https://picsum.photos/seed/remera/600/600"],
         colores=["Blanco", "Verde agua"], motivos=["Geométrico"]),
    dict(sku="GOR-001", name="Gorra bordada", description="Gorra ajustable con bordado",
         price_cents=800000, category="Gorras", stock=10,
         images=["https://picsum.photos/seed/gorra/600/600"],
         colores=["Negro"], motivos=[]),
]


def seed():
    with main_session() as db:
        for name in CATEGORIES:
            slug = generate_slug(name)
            if not db.execute(select(Category).where(Category.slug == slug)).scalar_one_or_none():
                db.add(Category(name=name, slug=slug))
        for model, names in ((Color, COLORS), (Motivo, MOTIVOS)):
            for nombre in names:
                if not db.execute(select(model).where(model.nombre == nombre)).scalar_one_or_none():
                    db.add(model(nombre=nombre))
        for d in PRODUCTS:
            p = db.execute(select(Product).where(Product.sku == d["sku"])).scalar_one_or_none()
            if p is None:
                p = Product()
                db.add(p)
            for k, v in d.items():
                setattr(p, k, v)
        db.commit()
    return len(PRODUCTS)


if __name__ == "__main__":
    init_engine(Config.DATABASE_URL)
    print("Seeded products:", seed())
