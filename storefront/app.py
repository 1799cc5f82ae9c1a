# storefront/app.py
import logging
import os

import stripe
from flask import Flask, jsonify, send_from_directory, current_app
from flask_login import LoginManager

from .auth import init_oauth
from .config import Config
from .cache import store_cache
from .database import init_engine, main_session
from .errors import register_error_handlers
from .models import User
from .utils import format_money

log = logging.getLogger("shop")

# ---------- Logging ----------
def setup_logging(log_file):
    log.setLevel(logging.INFO)
    if log.handlers:
        return
    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        log.addHandler(fh)
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    log.addHandler(ch)

# ---------- Auth ----------
login_manager = LoginManager()

@login_manager.user_loader
def load_user(user_id):
    from .auth import LoginUser
    with main_session() as db:
        u = db.get(User, int(user_id))
        return LoginUser(u) if u and u.is_active else None

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "No autorizado"}), 401


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    setup_logging(app.config.get("LOG_FILE"))
    init_engine(app.config["DATABASE_URL"])
    store_cache.clear()
    stripe.api_key = app.config.get("STRIPE_SECRET_KEY")
    app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_UPLOAD_BYTES"] + 64 * 1024

    login_manager.init_app(app)
    init_oauth(app)
    register_error_handlers(app)

    from .auth import auth_bp
    from .catalog import catalog_bp
    from .orders import orders_bp
    from .payments import payments_bp
    from .admin import admin_bp
    from .site import site_bp
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(site_bp, url_prefix="/api")

    @app.context_processor
    def inject_globals():
        return {"SITE_NAME": app.config["SITE_NAME"], "format_money": format_money}

    @app.get("/media/<path:filename>")
    def media(filename):
        return send_from_directory(os.path.abspath(current_app.config["UPLOAD_DIR"]),
                                   filename, conditional=True)

    log.info(f"{app.config['SITE_NAME']} started ({app.config['DATABASE_URL'].split('://')[0]})")
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "7000")), debug=True)
