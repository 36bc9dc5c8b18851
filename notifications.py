from typing import Optional

import httpx
import structlog

from config import EMAIL_FROM, HTTP_TIMEOUT_SECONDS, RESEND_API_KEY
from errors import EmailDeliveryFailed

logger = structlog.get_logger().bind(component="mailer")

RESEND_URL = "https://api.resend.com/emails"


def render_otp_email(code: str, minutes: int) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background-color: #f6f3ec; padding: 40px 20px;">
      <div style="max-width: 460px; margin: 0 auto; background: white; border-radius: 16px; padding: 40px;">
        <h1 style="color: #1F5C46; font-size: 24px; text-align: center;">Palestra Baby</h1>
        <p style="color: #333; font-size: 16px;">Olá! Seu código de verificação é:</p>
        <div style="text-align: center; margin: 24px 0; letter-spacing: 8px; font-size: 32px; font-weight: bold; color: #1F5C46;">
          {code}
        </div>
        <p style="color: #666; font-size: 14px; text-align: center;">
          Este código expira em <strong>{minutes} minutos</strong>.
        </p>
        <p style="color: #999; font-size: 12px; text-align: center;">
          Se você não solicitou este código, ignore este email.
        </p>
      </div>
    </body>
    </html>
    """


class ResendMailer:
    def __init__(self, api_key: Optional[str] = RESEND_API_KEY, sender: str = EMAIL_FROM,
                 client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.sender = sender
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=HTTP_TIMEOUT_SECONDS)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            logger.error("api_key_missing")
            raise EmailDeliveryFailed("Email delivery not configured")
        try:
            response = self._client.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("email_send_failed", error=str(e))
            raise EmailDeliveryFailed("Could not send verification email") from e
