# storefront/utils.py
import re
import secrets
import time
import unicodedata
from datetime import datetime, date
from urllib.parse import urlparse, quote

from flask import request, current_app

from .errors import ApiError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

def format_money(cents: int, currency: str = None) -> str:
    currency = (currency or current_app.config["CURRENCY"]).upper()
    if currency == "USD":
        return f"${cents/100:.2f}"
    if currency == "ARS":
        # 1234567 -> "$ 12.345,67"
        whole, frac = divmod(abs(int(cents)), 100)
        sign = "-" if cents < 0 else ""
        return f"{sign}$ {whole:,}".replace(",", ".") + f",{frac:02d}"
    return f"{cents/100:.2f} {currency}"

def to_cents(value) -> int:
    """Prices arrive as decimal units ("1500.5") or ints; store cents."""
    if value is None or value == "":
        raise ValueError("price required")
    return int(round(float(value) * 100))

def is_valid_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email))

# ---------- Order ids ----------
_NEW_ID = re.compile(r"^ORD-(\d{4})(\d{2})(\d{2})-\d{6}$")
_OLD_ID = re.compile(r"^ORD-(\d{13})$")

def generate_order_id(now: datetime = None, randomize: bool = False) -> str:
    now = now or datetime.now()
    if randomize:
        tail = f"{secrets.randbelow(1_000_000):06d}"
    else:
        tail = str(int(time.time() * 1000))[-6:]
    return f"ORD-{now:%Y%m%d}-{tail}"

def is_valid_order_id(order_id: str) -> bool:
    return bool(_NEW_ID.match(order_id or "") or _OLD_ID.match(order_id or ""))

def order_date_from_id(order_id: str):
    m = _NEW_ID.match(order_id or "")
    if m:
        y, mo, d = (int(x) for x in m.groups())
        try:
            return date(y, mo, d)
        except ValueError:
            return None
    m = _OLD_ID.match(order_id or "")
    if m:
        return datetime.fromtimestamp(int(m.group(1)) / 1000).date()
    return None

# ---------- Tracking ----------
POPULAR_TRACKING_URLS = {
    "correoArgentino": ("Correo Argentino", "https://seguimiento.correoargentino.com.ar/seguimiento/{tracking}"),
    "oca": ("OCA", "https://www1.oca.com.ar/OcaEpaktracking/Tracking.aspx?numero={tracking}"),
    "andreani": ("Andreani", "https://www.andreani.com/seguimiento?numero={tracking}"),
    "mercadoEnvios": ("Mercado Envíos", "https://www.mercadolibre.com.ar/ayuda/seguimiento?tracking={tracking}"),
    "correoUruguayo": ("Correo Uruguayo", "https://www.correo.com.uy/seguimiento?codigo={tracking}"),
    "dhl": ("DHL", "https://www.dhl.com/ar-es/home/tracking.html?tracking-id={tracking}"),
    "fedex": ("FedEx", "https://www.fedex.com/es-ar/tracking.html?trknbr={tracking}"),
}

def generate_tracking_url(template: str, tracking_number: str) -> str:
    if not template or not tracking_number:
        return ""
    return template.replace("{tracking}", quote(tracking_number, safe=""), 1)

def validate_tracking_url_template(url: str) -> bool:
    if not url:
        return True
    if "{tracking}" not in url:
        return False
    parsed = urlparse(url.replace("{tracking}", "TEST123"))
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)

def tracking_url_suggestions(company: str = ""):
    term = (company or "").lower()
    return [
        {"key": key, "name": name, "url": url}
        for key, (name, url) in POPULAR_TRACKING_URLS.items()
        if term in name.lower() or term in key.lower()
    ]

# ---------- Slugs ----------
def generate_slug(name: str) -> str:
    s = unicodedata.normalize("NFD", (name or "").lower())
    s = "".join(ch for ch in s if unicodedata.category(ch) != "Mn")
    s = re.sub(r"[^a-z0-9\s-]", "", s).strip()
    s = re.sub(r"\s+", "-", s)
    return re.sub(r"-+", "-", s)

def str_field(data: dict, key: str, default: str = "", strip: bool = True) -> str:
    """Read a text field from a JSON body; anything but a string is a 400."""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ApiError(f"El campo {key} debe ser texto", 400)
    return value.strip() if strip else value

def from_cents(cents):
    """Cents as stored -> currency units as the API speaks them."""
    return None if cents is None else cents / 100

def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError("JSON object expected", 400)
    return data
