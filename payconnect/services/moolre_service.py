"""
Moolre payment service for direct mobile-money charges (prompt or OTP-gated).
"""

import logging
from typing import Any, Dict, Optional

import requests

from ..config import Settings
from ..errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)

PAYMENT_PATH = "/open/transact/payment"

# Moolre response code asking for an OTP before the prompt is sent
OTP_REQUIRED_CODE = "TP14"

CURRENCY = "GHS"
PAYMENT_TYPE = 1
PAYMENT_REFERENCE = "Data Purchase"


def format_amount(amount: Any) -> str:
    """Moolre expects the amount as a fixed-point string, e.g. "10.00"."""
    return f"{float(amount):.2f}"


def build_charge_payload(settings: Settings, payer: str, amount: Any, order_id: str,
                         channel: int, otpcode: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the body for POST /open/transact/payment.

    Args:
        settings: Current service settings (account number, callback URL)
        payer: Normalized payer phone (digits only)
        amount: Requested amount in GHS
        order_id: Order reference sent as ``externalref``
        channel: Moolre channel code for the payer's network
        otpcode: OTP supplied by the customer, if any

    Returns:
        The JSON payload dictionary
    """
    payload = {
        "type": PAYMENT_TYPE,
        "channel": channel,
        "currency": CURRENCY,
        "payer": payer,
        "amount": format_amount(amount),
        "externalref": order_id,
        "otpcode": otpcode or "",
        "reference": PAYMENT_REFERENCE,
        "accountnumber": settings.moolre_account_number,
    }
    if settings.webhook_url:
        payload["callback"] = settings.webhook_url
    return payload


def request_payment(settings: Settings, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Send a charge request to Moolre and return its JSON body.

    Processor-level rejections (4xx with a JSON body) are returned as-is so
    the caller can branch on ``status``/``code``.

    Raises:
        UpstreamTimeout: If Moolre does not answer within the configured timeout
        UpstreamError: On network failure, 5xx, or a non-JSON response
    """
    url = f"{settings.moolre_base.rstrip('/')}{PAYMENT_PATH}"
    headers = {
        "Content-Type": "application/json",
        "X-API-PUBKEY": settings.moolre_public_api_key,
        "X-API-USER": settings.moolre_username,
    }

    try:
        logger.info(f"Initiating Moolre charge {payload['externalref']} on channel {payload['channel']} "
                    f"for GHS {payload['amount']}")
        logger.debug(f"Moolre payload: {payload}")
        response = requests.post(url, json=payload, headers=headers,
                                 timeout=settings.upstream_timeout_seconds)
    except requests.exceptions.Timeout as e:
        logger.error(f"Moolre request timed out after {settings.upstream_timeout_seconds}s: {str(e)}")
        raise UpstreamTimeout("Moolre API timed out", details=str(e))
    except requests.exceptions.RequestException as e:
        logger.error(f"Moolre request failed (network error): {str(e)}")
        raise UpstreamError("Moolre API failed", details=str(e))

    logger.info(f"Moolre Response: {response.status_code} - {response.text}")

    try:
        data = response.json()
    except ValueError:
        logger.error(f"Moolre response is not valid JSON: {response.text}")
        raise UpstreamError("Moolre API failed", details=response.text)

    if response.status_code >= 500 or not isinstance(data, dict):
        logger.error(f"Moolre API error {response.status_code}: {data}")
        raise UpstreamError("Moolre API failed", details=data)

    return data


def extract_session_id(data: Dict[str, Any]) -> Optional[str]:
    """Session id returned alongside an OTP challenge, if Moolre sent one."""
    session_id = data.get("sessionid")
    nested = data.get("data")
    if not session_id and isinstance(nested, dict):
        session_id = nested.get("sessionid")
    return str(session_id) if session_id else None
