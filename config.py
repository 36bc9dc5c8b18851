import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Primary session (issued by the identity provider)
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = "HS256"

# Admin MFA flag
MFA_SECRET = os.getenv("MFA_SECRET", JWT_SECRET)
MFA_VERIFIED_HOURS = 24

# Mercado Pago
MERCADO_PAGO_ACCESS_TOKEN = os.getenv("MERCADO_PAGO_ACCESS_TOKEN")
MERCADO_PAGO_API_URL = os.getenv("MERCADO_PAGO_API_URL", "https://api.mercadopago.com")
SITE_URL = os.getenv("SITE_URL", "https://palestrababy.com.br")
NOTIFICATION_URL = os.getenv("NOTIFICATION_URL", f"{SITE_URL}/api/webhooks/mercadopago")

# Email (Resend)
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Palestra Baby <onboarding@resend.dev>")

# Shipping quotes (Melhor Envio) and address lookup (ViaCEP)
MELHOR_ENVIO_TOKEN = os.getenv("MELHOR_ENVIO_TOKEN")
MELHOR_ENVIO_API_URL = os.getenv("MELHOR_ENVIO_API_URL", "https://sandbox.melhorenvio.com.br")
STORE_POSTAL_CODE = os.getenv("STORE_POSTAL_CODE", "02062000")
VIACEP_URL = os.getenv("VIACEP_URL", "https://viacep.com.br")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

# Orders still pending without a payment id after this long show up in the admin stale view
STALE_PENDING_MINUTES = int(os.getenv("STALE_PENDING_MINUTES", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
