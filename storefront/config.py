"""
Configuration for the storefront service.

All values come from environment variables and are read once at import time.
"""
import os
from decimal import Decimal

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sql").lower()  # "sql" or "document"
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
DOCUMENT_DB_PATH = os.getenv("DOCUMENT_DB_PATH", "./storefront.json")
REDIS_URL = os.getenv("REDIS_URL", "")

# JWT settings for the admin panel
SECRET_KEY = os.getenv("SECRET_KEY", "3f9c1e0b7d2a4c68a1e5b9f0d7c3a2e4b6f8d0c2a4e6b8d0f2a4c6e8b0d2f4a6")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@store.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
CURRENCY = os.getenv("CURRENCY", "KWD")

# Shipping defaults used when no settings record exists
DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal("90")
DEFAULT_SHIPPING_COST = Decimal("5")

# Card / KNET gateway
# Test: https://apitest.myfatoorah.com | Live Kuwait: https://api.myfatoorah.com
MYFATOORAH_BASE_URL = os.getenv("MYFATOORAH_BASE_URL", "https://apitest.myfatoorah.com").rstrip("/")
MYFATOORAH_API_KEY = os.getenv("MYFATOORAH_API_KEY", "")
MYFATOORAH_WEBHOOK_SECRET = os.getenv("MYFATOORAH_WEBHOOK_SECRET", "")
MYFATOORAH_WEBHOOK_HEADER = os.getenv("MYFATOORAH_WEBHOOK_HEADER", "x-webhook-secret")
MYFATOORAH_COUNTRY_CODE = os.getenv("MYFATOORAH_COUNTRY_CODE", "+965")

# Buy-now-pay-later gateway
# Sandbox: https://sandbox-api.deema.me or https://staging-api.deema.me | Live: https://api.deema.me
DEEMA_BASE_URL = os.getenv("DEEMA_BASE_URL", "https://sandbox-api.deema.me").rstrip("/")
DEEMA_API_KEY = os.getenv("DEEMA_API_KEY", "")
DEEMA_AUTH = os.getenv("DEEMA_AUTH", "basic").lower()  # basic | basic64 | bearer
DEEMA_WEBHOOK_SECRET = os.getenv("DEEMA_WEBHOOK_SECRET", "")
DEEMA_WEBHOOK_HEADER = os.getenv("DEEMA_WEBHOOK_HEADER", "x-webhook-secret")
DEEMA_SANDBOX_MIN = Decimal(os.getenv("DEEMA_SANDBOX_MIN", "100"))
DEEMA_SANDBOX_MAX = Decimal(os.getenv("DEEMA_SANDBOX_MAX", "200"))

PAYMENT_TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "15"))  # seconds

# Translation of Arabic free text for delivery drivers
TRANSLATE_URL = os.getenv("TRANSLATE_URL", "https://libretranslate.com/translate")
TRANSLATE_API_KEY = os.getenv("TRANSLATE_API_KEY", "")
TRANSLATE_TIMEOUT = float(os.getenv("TRANSLATE_TIMEOUT", "5"))

# WhatsApp Cloud API
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v21.0").rstrip("/")
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_TIMEOUT = 5.0
