"""
Payment initiation: validate the request, charge via Moolre, and branch on
whether Moolre wants an OTP first.

The pending entry is written before Moolre is called so a webhook that races
ahead of the HTTP response still finds the order metadata. Failed calls put
back whatever entry existed before.
"""

import logging
import math
import secrets
from typing import Any, Dict, Optional

from fastapi.concurrency import run_in_threadpool

from ..config import Settings
from ..errors import (
    ConfigurationError,
    PayconnectError,
    UnexpectedResponseError,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from ..services import moolre_service
from .models import InitiationResult, InitiationStatus, OrderState, PendingTransaction
from .phone import normalize_phone, resolve_channel
from .stores import PendingTransactionStore

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "T"
_ORDER_ID_LOW = 10 ** 14
_ORDER_ID_SPAN = 9 * 10 ** 14

REQUEST_FIELDS = ("phone", "amount", "externalref", "otpcode")


def generate_order_id() -> str:
    """'T' followed by a random 15-digit number."""
    return f"{ORDER_ID_PREFIX}{_ORDER_ID_LOW + secrets.randbelow(_ORDER_ID_SPAN)}"


def status_for_error(error: PayconnectError) -> Optional[InitiationStatus]:
    if isinstance(error, ValidationError):
        return InitiationStatus.REJECTED
    if isinstance(error, UnexpectedResponseError):
        return InitiationStatus.UNEXPECTED_RESPONSE
    if isinstance(error, UpstreamTimeout):
        return InitiationStatus.UPSTREAM_TIMEOUT
    if isinstance(error, UpstreamError):
        return InitiationStatus.UPSTREAM_UNAVAILABLE
    return None


def _validate(body: Dict[str, Any]) -> None:
    phone = body.get("phone")
    amount = body.get("amount")
    if not phone or amount in (None, ""):
        raise ValidationError("Missing phone or amount")

    if isinstance(amount, bool):
        raise ValidationError("Invalid amount", details=amount)
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Invalid amount", details=amount)
    if not math.isfinite(value):
        raise ValidationError("Invalid amount", details=amount)
    if not value > 0:
        raise ValidationError("Amount must be greater than zero", details=amount)

    if not normalize_phone(phone):
        raise ValidationError("Invalid phone number", details=phone)


def _is_success(data: Dict[str, Any]) -> bool:
    return str(data.get("status")) == "1"


def _restore(store: PendingTransactionStore, order_id: str, previous: Optional[PendingTransaction]) -> None:
    if previous is None:
        store.delete(order_id)
    else:
        store.put(order_id, previous)


async def initiate_payment(body: Dict[str, Any], settings: Settings,
                           store: PendingTransactionStore) -> InitiationResult:
    """
    Run one charge request through Moolre.

    Args:
        body: Request JSON ({phone, amount, externalref?, otpcode?, ...metadata})
        settings: Current service settings
        store: Pending transaction store shared with the webhook handler

    Returns:
        InitiationResult for OTP_REQUIRED, PROMPT_SENT, VERIFIED_AND_PROMPT_SENT
        or OTP_FAILED

    Raises:
        ValidationError: Missing or malformed phone/amount
        ConfigurationError: Moolre credentials not configured
        UpstreamError / UpstreamTimeout: Moolre unreachable
        UnexpectedResponseError: Moolre answered with an unknown shape
    """
    _validate(body)

    missing = settings.missing_moolre_credentials()
    if missing:
        logger.error(f"Moolre configuration missing: {', '.join(missing)}")
        raise ConfigurationError("Server config error", details=missing)

    otpcode = body.get("otpcode") or None
    metadata = {k: v for k, v in body.items() if k not in REQUEST_FIELDS}
    payer = normalize_phone(body["phone"])
    order_id = str(body.get("externalref") or generate_order_id())
    channel = resolve_channel(payer)

    previous = store.get(order_id)
    if previous is not None:
        # OTP re-submission: the caller usually only resends phone/amount/otpcode
        metadata = {**previous.metadata, **metadata}

    payload = moolre_service.build_charge_payload(settings, payer, body["amount"], order_id, channel, otpcode)
    record = PendingTransaction(
        order_id=order_id,
        payer=payer,
        amount=payload["amount"],
        channel=channel,
        metadata=metadata,
        session_id=previous.session_id if previous else None,
        state=previous.state if previous else OrderState.INITIATED,
    )
    store.put(order_id, record)

    try:
        data = await run_in_threadpool(moolre_service.request_payment, settings, payload)
    except UpstreamError:
        _restore(store, order_id, previous)
        raise

    is_success = _is_success(data)
    code = data.get("code")
    message = data.get("message") or ""

    # OTP required before Moolre sends the prompt
    if not otpcode and code == moolre_service.OTP_REQUIRED_CODE:
        store.set_state(order_id, OrderState.OTP_PENDING)
        session_id = moolre_service.extract_session_id(data)
        if session_id:
            store.merge_session_id(order_id, session_id)
        logger.info(f"Order {order_id}: OTP required")
        return InitiationResult(success=True, order_id=order_id,
                                status=InitiationStatus.OTP_REQUIRED, message=message)

    # OTP submission
    if otpcode:
        if is_success:
            # Entry stays until the webhook consumes it for reconciliation
            store.set_state(order_id, OrderState.PROMPT_SENT)
            logger.info(f"Order {order_id}: OTP verified, prompt sent")
            return InitiationResult(success=True, order_id=order_id,
                                    status=InitiationStatus.VERIFIED_AND_PROMPT_SENT, message=message)

        _restore(store, order_id, previous)
        logger.warning(f"Order {order_id}: OTP rejected by Moolre ({code}): {message}")
        return InitiationResult(success=False, order_id=order_id,
                                status=InitiationStatus.OTP_FAILED, message=message, http_status=400)

    # Direct prompt (no OTP)
    if is_success:
        store.set_state(order_id, OrderState.PROMPT_SENT)
        logger.info(f"Order {order_id}: prompt sent to {payer}")
        return InitiationResult(success=True, order_id=order_id,
                                status=InitiationStatus.PROMPT_SENT, message=message)

    _restore(store, order_id, previous)
    logger.error(f"Unexpected Moolre Response for {order_id}: {data}")
    raise UnexpectedResponseError("Unexpected Moolre response", details=data)
