# storefront/auth.py
import logging
import secrets
from datetime import datetime, timedelta
from functools import wraps

import bcrypt
from authlib.integrations.base_client import OAuthError, MismatchingStateError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, jsonify, request, redirect, current_app, url_for
from flask_login import UserMixin, login_user, logout_user, login_required, current_user
from requests import RequestException
from sqlalchemy import select

from .database import main_session
from .errors import ApiError
from .mailer import send_welcome_email, send_password_reset_email, notify
from .models import User, ResetToken
from .utils import json_body, is_valid_email, str_field

log = logging.getLogger("shop")

auth_bp = Blueprint("auth", __name__)

PASSWORD_MIN_LENGTH = 6
GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


class LoginUser(UserMixin):
    def __init__(self, u: User):
        self.id = str(u.id)
        self.email = u.email
        self.name = u.name
        self.role = u.role


def init_oauth(app):
    """Attach an Authlib registry to the app with the Google client."""
    oauth = OAuth(app)
    oauth.register(
        name="google",
        client_id=app.config.get("GOOGLE_CLIENT_ID"),
        client_secret=app.config.get("GOOGLE_CLIENT_SECRET"),
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={"scope": "openid email profile"},
    )
    return oauth

def google_client():
    return current_app.extensions["authlib.integrations.flask_client"].google


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()

def check_password(password: str, pw_hash: str) -> bool:
    if not pw_hash:
        return False
    return bcrypt.checkpw(password.encode(), pw_hash.encode())

def is_admin(user=None) -> bool:
    user = user or current_user
    if not getattr(user, "is_authenticated", False):
        return False
    admins = current_app.config.get("ADMIN_EMAILS") or []
    return user.role == "admin" or user.email.lower() in admins

def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "No autorizado"}), 401
        if not is_admin():
            return jsonify({"error": "Permisos insuficientes"}), 403
        return fn(*args, **kwargs)
    return wrapper

def _role_for(email, default="user"):
    admins = current_app.config.get("ADMIN_EMAILS") or []
    return "admin" if email in admins else default


# --------------------------- CREDENTIALS ---------------------------
@auth_bp.post("/register")
def register():
    data = json_body()
    email = str_field(data, "email").lower()
    password = str_field(data, "password", strip=False)
    name = str_field(data, "name")
    if not email or not password or not name:
        raise ApiError("Email, contraseña y nombre son requeridos", 400)
    if not is_valid_email(email):
        raise ApiError("El formato del email no es válido", 400)
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ApiError(f"La contraseña debe tener al menos {PASSWORD_MIN_LENGTH} caracteres", 400)

    with main_session() as db:
        exists = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists:
            raise ApiError("El usuario ya existe", 409)
        u = User(email=email, name=name, password_hash=hash_password(password),
                 provider="credentials", role=_role_for(email), last_login=datetime.utcnow())
        db.add(u)
        db.commit()
        login_user(LoginUser(u))
        payload = u.to_dict()

    log.info(f"Registered user {email}")
    send_welcome_email(name, email)
    return jsonify({"success": True, "user": payload}), 201

@auth_bp.post("/login")
def login():
    data = json_body()
    email = str_field(data, "email").lower()
    password = str_field(data, "password", strip=False)
    if not email or not password:
        raise ApiError("Email y contraseña son requeridos", 400)
    with main_session() as db:
        u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u or not u.is_active or not check_password(password, u.password_hash):
            log.info(f"Failed login attempt for {email}")
            raise ApiError("Credenciales inválidas", 401)
        u.last_login = datetime.utcnow()
        db.commit()
        login_user(LoginUser(u))
        payload = u.to_dict()
    return jsonify({"success": True, "user": payload})

@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})

@auth_bp.get("/me")
@login_required
def me():
    with main_session() as db:
        u = db.get(User, int(current_user.id))
        return jsonify({"user": u.to_dict()})

@auth_bp.get("/user-role")
@login_required
def user_role():
    admin = is_admin()
    return jsonify({"success": True, "role": "admin" if admin else current_user.role,
                    "isAdmin": admin, "email": current_user.email})


# --------------------------- GOOGLE OAUTH ---------------------------
def _callback_url():
    return current_app.config["PUBLIC_BASE_URL"].rstrip("/") + url_for("auth.google_callback")

def _require_google():
    google = google_client()
    if not google.client_id:
        raise ApiError("Google OAuth no configurado", 500)
    return google

@auth_bp.get("/google")
def google_login():
    google = _require_google()
    try:
        return google.authorize_redirect(_callback_url())
    except (OAuthError, RequestException) as e:
        log.warning(f"Google OAuth redirect failed: {e}")
        raise ApiError("No se pudo iniciar el inicio de sesión con Google", 502)

def get_or_create_oauth_user(db, email, name, image=None):
    u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    created = False
    if u is None:
        u = User(email=email, name=name or email, image=image, provider="google",
                 role=_role_for(email))
        db.add(u)
        created = True
    else:
        if image and not u.image:
            u.image = image
        if not u.name and name:
            u.name = name
    u.last_login = datetime.utcnow()
    db.commit()
    return u, created

@auth_bp.get("/google/callback")
def google_callback():
    google = _require_google()
    try:
        token = google.authorize_access_token()
        profile = token.get("userinfo") or google.userinfo(token=token)
    except MismatchingStateError:
        raise ApiError("Estado OAuth inválido", 400)
    except OAuthError as e:
        log.warning(f"Google OAuth rejected: {e}")
        raise ApiError(request.args.get("error") or "No se pudo completar el inicio de sesión con Google", 400)
    except RequestException as e:
        log.warning(f"Google OAuth exchange failed: {e}")
        raise ApiError("No se pudo completar el inicio de sesión con Google", 502)

    email = (profile.get("email") or "").lower()
    if not email or not profile.get("email_verified", True):
        raise ApiError("La cuenta de Google no tiene un email verificado", 400)

    with main_session() as db:
        u, created = get_or_create_oauth_user(db, email, profile.get("name"), profile.get("picture"))
        if not u.is_active:
            raise ApiError("Cuenta deshabilitada", 403)
        login_user(LoginUser(u))
        name = u.name
    if created:
        send_welcome_email(name, email)
        notify(f"New user signed up with Google: {email}")
    return redirect(current_app.config["PUBLIC_BASE_URL"])


# --------------------------- PASSWORD RESET ---------------------------
@auth_bp.post("/forgot-password")
def forgot_password():
    email = str_field(json_body(), "email").lower()
    if not email:
        raise ApiError("Email requerido", 400)
    hours = current_app.config["RESET_TOKEN_HOURS"]
    token = None
    with main_session() as db:
        u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if u and u.password_hash and u.is_active:
            token = secrets.token_hex(32)
            db.add(ResetToken(token=token, email=email,
                              expires_at=datetime.utcnow() + timedelta(hours=hours)))
            db.commit()
            name = u.name
    if token:
        send_password_reset_email(name, email, token)
    else:
        log.info(f"Password reset requested for unknown or OAuth account {email}")
    # same answer either way
    return jsonify({"success": True,
                    "message": "Si el email está registrado, vas a recibir un enlace para restablecer la contraseña"})

@auth_bp.post("/reset-password")
def reset_password():
    data = json_body()
    token = str_field(data, "token")
    password = str_field(data, "password", strip=False)
    if not token or not password:
        raise ApiError("Token y contraseña son requeridos", 400)
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ApiError(f"La contraseña debe tener al menos {PASSWORD_MIN_LENGTH} caracteres", 400)
    with main_session() as db:
        rt = db.execute(select(ResetToken).where(ResetToken.token == token)).scalar_one_or_none()
        if not rt or rt.used or rt.expires_at < datetime.utcnow():
            raise ApiError("Token inválido o expirado", 400)
        u = db.execute(select(User).where(User.email == rt.email)).scalar_one_or_none()
        if not u:
            raise ApiError("Usuario no encontrado", 404)
        u.password_hash = hash_password(password)
        rt.used = True
        db.commit()
    log.info(f"Password reset for {rt.email}")
    return jsonify({"success": True, "message": "Contraseña actualizada"})
