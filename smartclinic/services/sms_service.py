import logging
from typing import Optional

from twilio.rest import Client

from ..core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None

def _get_client() -> Optional[Client]:
    global _client
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
        return None
    if _client is None:
        _client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return _client

def send_sms(to: str, body: str) -> bool:
    """Send a text message; returns False when it was not delivered to Twilio."""
    if not to:
        return False

    client = _get_client()
    if client is None:
        logger.info(f"SMS to {to} not sent (Twilio not configured): {body}")
        return False

    try:
        message = client.messages.create(
            body=body,
            from_=settings.TWILIO_FROM_NUMBER,
            to=to,
        )
        logger.info(f"SMS sent to {to} (sid={message.sid})")
        return True
    except Exception as e:
        logger.error(f"Failed to send SMS to {to}: {str(e)}")
        return False
