# storefront/site.py
import copy
import json
import logging
from datetime import datetime

from flask import Blueprint, jsonify, current_app

from .cache import cached, store_cache
from .database import main_session
from .errors import ApiError
from .mailer import send_contact_emails
from .models import Setting
from .utils import json_body, is_valid_email, validate_tracking_url_template, str_field

log = logging.getLogger("shop")

site_bp = Blueprint("site", __name__)

DEFAULT_SETTINGS = {
    "storeName": "Verde Agua Personalizados",
    "contactEmail": "",
    "contactFormEmail": "",
    "description": "Productos personalizados",
    "currency": "ARS",
    "whatsapp": "",
    "notifications": {"newOrders": True, "lowStock": True, "newUsers": False},
    "paymentMethods": {"stripe": True, "cashOnPickup": True, "transfer": True},
    "shipping": {"trackingUrl": "", "trackingUrlPlaceholder": "https://ejemplo.com/seguimiento/{tracking}"},
}


def _merge(base, stored):
    out = copy.deepcopy(base)
    for k, v in stored.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k].update(v)
        else:
            out[k] = v
    return out

@cached("settings")
def load_settings():
    with main_session() as db:
        stored = {s.key: json.loads(s.value) for s in db.query(Setting).all()}
    settings = _merge(DEFAULT_SETTINGS, stored)
    settings["lastUpdated"] = stored.get("lastUpdated")
    return settings

def save_settings(updates):
    """Validate and persist a partial settings document."""
    updates = {k: v for k, v in updates.items() if k != "lastUpdated"}
    unknown = set(updates) - set(DEFAULT_SETTINGS)
    if unknown:
        raise ApiError(f"Claves desconocidas: {', '.join(sorted(unknown))}", 400)
    for key, value in updates.items():
        expected = DEFAULT_SETTINGS[key]
        if isinstance(expected, dict):
            if not isinstance(value, dict):
                raise ApiError(f"{key} debe ser un objeto", 400)
            kind = str if key == "shipping" else bool
            bad = [k for k, v in value.items() if not isinstance(v, kind)]
            if bad:
                raise ApiError(f"{key}: valores inválidos en {', '.join(sorted(bad))}", 400)
        elif not isinstance(value, type(expected)):
            raise ApiError(f"{key} debe ser texto", 400)
    tracking = (updates.get("shipping") or {}).get("trackingUrl")
    if tracking and not validate_tracking_url_template(tracking):
        raise ApiError("La URL de seguimiento debe ser una URL válida y contener {tracking}", 400)
    for key in ("contactEmail", "contactFormEmail"):
        if updates.get(key) and not is_valid_email(updates[key]):
            raise ApiError(f"{key} no es un email válido", 400)

    current = load_settings()
    with main_session() as db:
        for key, value in updates.items():
            if isinstance(value, dict):
                value = {**current[key], **value}
            row = db.get(Setting, key)
            if row is None:
                db.add(Setting(key=key, value=json.dumps(value)))
            else:
                row.value = json.dumps(value)
        stamp = db.get(Setting, "lastUpdated")
        now = json.dumps(datetime.utcnow().isoformat())
        if stamp is None:
            db.add(Setting(key="lastUpdated", value=now))
        else:
            stamp.value = now
        db.commit()
    store_cache.invalidate_by_pattern("settings")
    return load_settings()


@site_bp.get("/health")
def health():
    return jsonify({"status": "ok", "site": current_app.config["SITE_NAME"]})

@site_bp.get("/settings/public")
def public_settings():
    s = load_settings()
    return jsonify({
        "storeName": s["storeName"],
        "description": s["description"],
        "currency": s["currency"],
        "contactEmail": s["contactEmail"],
        "paymentMethods": s["paymentMethods"],
    })

@site_bp.get("/contact/config")
def contact_config():
    s = load_settings()
    return jsonify({
        "success": True,
        "contactEmail": s["contactFormEmail"] or s["contactEmail"],
        "whatsapp": s["whatsapp"] or current_app.config.get("WHATSAPP_NUMBER", ""),
    })

@site_bp.post("/contact")
def contact():
    data = json_body()
    form = {k: str_field(data, k) for k in ("nombre", "email", "telefono", "asunto", "mensaje")}
    if not (form["nombre"] and form["email"] and form["asunto"] and form["mensaje"]):
        raise ApiError("Todos los campos obligatorios deben ser completados", 400)
    if not is_valid_email(form["email"]):
        raise ApiError("El formato del email no es válido", 400)

    s = load_settings()
    to = s["contactFormEmail"] or s["contactEmail"] or current_app.config["EMAIL_FROM"]
    ok, err = send_contact_emails(form, to)
    if not ok:
        log.error(f"Contact email failed: {err}")
        raise ApiError("Error al enviar el mensaje. Inténtalo nuevamente.", 500)
    return jsonify({"success": True, "message": "Mensaje enviado correctamente"})
