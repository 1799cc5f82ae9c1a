# storefront/config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _csv(name, default=""):
    return [x.strip().lower() for x in os.getenv(name, default).split(",") if x.strip()]

class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-key")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///storefront.db")

    SITE_NAME = os.getenv("SITE_NAME", "Verde Agua Personalizados")
    CURRENCY  = os.getenv("CURRENCY", "ARS")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")
    ADMIN_EMAILS = _csv("ADMIN_EMAILS")
    LOG_FILE = os.getenv("LOG_FILE", "app.log")

    # Notifications
    SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    SMTP_STARTTLS = os.getenv("SMTP_STARTTLS", "true").lower() == "true"
    EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@localhost")
    EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "Verde Agua")
    ALERT_EMAIL_TO = os.getenv("ALERT_EMAIL_TO")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Google OAuth
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

    # Uploads
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

    CACHE_TTL_MINUTES = int(os.getenv("CACHE_TTL_MINUTES", "5"))
    RESET_TOKEN_HOURS = int(os.getenv("RESET_TOKEN_HOURS", "1"))
    WHATSAPP_NUMBER = os.getenv("WHATSAPP_NUMBER", "")
