"""
Hubtel service for sending transactional SMS.
"""

import logging
from typing import Any, Dict

import requests

from ..config import Settings
from ..core.phone import normalize_phone

logger = logging.getLogger(__name__)

HUBTEL_SMS_URL = "https://smsc.hubtel.com/v1/messages/send"


def send_sms(settings: Settings, phone_number: str, message_text: str) -> Dict[str, Any]:
    """
    Send an SMS through Hubtel.

    Never raises: the outcome is reported so the caller can record it.

    Args:
        settings: Current service settings (Hubtel credentials, sender id)
        phone_number: Destination number, any formatting
        message_text: Message body

    Returns:
        {"success": True, "data": <Hubtel body>} or
        {"success": False, "error": <reason or Hubtel body>}
    """
    if not settings.hubtel_client_id or not settings.hubtel_client_secret:
        logger.error("Hubtel credentials not configured (HUBTEL_CLIENT_ID or HUBTEL_CLIENT_SECRET)")
        return {"success": False, "error": "Hubtel credentials missing."}

    payload = {
        "From": settings.hubtel_sender,
        "To": normalize_phone(phone_number),
        "Content": message_text,
    }

    try:
        logger.debug(f"Hubtel SMS payload: {payload}")
        response = requests.post(
            HUBTEL_SMS_URL,
            json=payload,
            auth=(settings.hubtel_client_id, settings.hubtel_client_secret),
            timeout=settings.upstream_timeout_seconds,
        )
    except requests.exceptions.Timeout as e:
        logger.error(f"Hubtel request timed out: {str(e)}")
        return {"success": False, "error": f"Hubtel timeout: {str(e)}"}
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to send Hubtel SMS (network error): {str(e)}")
        return {"success": False, "error": str(e)}

    try:
        body = response.json()
    except ValueError:
        body = response.text

    if not 200 <= response.status_code < 300:
        logger.error(f"Hubtel Send Error {response.status_code}: {body}")
        return {"success": False, "error": body}

    logger.info(f"Hubtel SMS sent to {payload['To']}")
    return {"success": True, "data": body}
