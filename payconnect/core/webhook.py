"""
Moolre payment webhook: authenticate, de-duplicate, reconcile order metadata,
notify the customer by SMS and record the order in Airtable.

Moolre retries aggressively on anything but a 200, so every outcome is turned
into a WebhookAck and internal failures are only logged.
"""

import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi.concurrency import run_in_threadpool

from ..config import Settings
from ..errors import AuthenticationError
from ..services import airtable_service, hubtel_service
from .models import PLACEHOLDER, OrderState, PendingTransaction, WebhookAck
from .phone import extract_payer_number, normalize_phone
from .stores import DuplicateSuppressionWindow, PendingTransactionStore

logger = logging.getLogger(__name__)

TX_SUCCESS = 1
EXPRESS_MARKER = "(express)"

EXPRESS_SMS = ("Your data purchase of {plan} for {recipient} will be delivered in 5-30 minutes. "
               "Order ID: {order_id}. Support: {support}")
STANDARD_SMS = ("Your data purchase of {plan} for {recipient} will be delivered in 30 min-4 hours. "
                "Order ID: {order_id}. Support: {support}")


def authenticate(payload: Dict[str, Any], settings: Settings) -> None:
    """
    Compare the shared secret in the payload with MOOLRE_SECRET.

    Raises:
        AuthenticationError: Secret missing, mismatched, or not configured
    """
    if not settings.moolre_secret:
        logger.error("MOOLRE_SECRET not configured; rejecting webhook")
        raise AuthenticationError("Webhook secret not configured")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    incoming = str(data.get("secret") or payload.get("secret") or "")
    if not hmac.compare_digest(incoming.encode("utf-8"), settings.moolre_secret.encode("utf-8")):
        raise AuthenticationError("Invalid secret")


def is_express(plan: str, delivery: Optional[str]) -> bool:
    if EXPRESS_MARKER in (plan or "").lower():
        return True
    return str(delivery or "").strip().lower() == "express"


def compose_sms(order_id: str, plan: str, recipient: str, delivery: Optional[str], support: str) -> str:
    template = EXPRESS_SMS if is_express(plan, delivery) else STANDARD_SMS
    return template.format(plan=plan, recipient=recipient, order_id=order_id, support=support)


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _to_amount(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def reconcile(order_id: str, data: Dict[str, Any], pending: Optional[PendingTransaction]) -> Dict[str, Any]:
    """
    Merge what we know about an order.

    Display fields come from the pending entry first, then Moolre's metadata,
    then the "N/A" placeholder. The customer phone prefers Moolre's payer, then
    metadata.customer_id, then the payer recorded at initiation.
    """
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    stored = pending.metadata if pending else {}

    plan = _first(stored.get("dataPlan"), metadata.get("dataPlan")) or PLACEHOLDER
    recipient = _first(stored.get("recipient"), metadata.get("recipient")) or PLACEHOLDER
    email = _first(stored.get("email"), metadata.get("email")) or PLACEHOLDER
    delivery = _first(stored.get("delivery"), metadata.get("delivery"))

    fallback_phone = _first(metadata.get("customer_id"), pending.payer if pending else None) or ""
    customer_phone = normalize_phone(extract_payer_number(data.get("payer"), str(fallback_phone)))

    amount = _first(data.get("amount"), pending.amount if pending else None)

    return {
        "order_id": order_id,
        "plan": str(plan),
        "recipient": str(recipient),
        "email": str(email),
        "delivery": delivery,
        "customer_phone": customer_phone,
        "amount": _to_amount(amount),
    }


def build_order_fields(order: Dict[str, Any], sms_result: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "Order ID": order["order_id"],
        "Customer Phone": order["customer_phone"],
        "Customer Email": order["email"],
        "Data Recipient Number": order["recipient"],
        "Data Plan": order["plan"],
        "Amount": order["amount"],
        "Status": "Pending",
        "Hubtel Sent": bool(sms_result.get("success")),
        "Hubtel Response": json.dumps(sms_result.get("data") or sms_result.get("error") or {}, default=str),
        "Moolre Response": json.dumps(payload or {}, default=str),
    }


async def handle_webhook(payload: Dict[str, Any], settings: Settings, store: PendingTransactionStore,
                         window: DuplicateSuppressionWindow) -> WebhookAck:
    """Process one Moolre callback. Never raises."""
    try:
        return await _process(payload, settings, store, window)
    except AuthenticationError as e:
        logger.warning(f"Moolre webhook rejected: {e.message}")
        return WebhookAck(success=False, message="Invalid secret")
    except Exception as e:
        logger.exception(f"Webhook handler error: {str(e)}")
        return WebhookAck(success=False, message="Internal webhook error")


async def _process(payload: Dict[str, Any], settings: Settings, store: PendingTransactionStore,
                   window: DuplicateSuppressionWindow) -> WebhookAck:
    if not isinstance(payload, dict):
        return WebhookAck(success=False, message="Malformed webhook payload")

    authenticate(payload, settings)

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    txstatus = _to_int(data.get("txstatus"))
    order_id = str(data.get("externalref") or "").strip()
    logger.info(f"Moolre webhook received: externalref={order_id or '<missing>'} txstatus={txstatus}")

    if not order_id:
        logger.warning("Moolre webhook missing externalref")
        return WebhookAck(success=False, message="Missing externalref")

    # Non-success statuses leave the window and the pending entry untouched
    if txstatus != TX_SUCCESS:
        if not window.should_process(order_id):
            logger.info(f"Duplicate webhook ignored for {order_id}")
            return WebhookAck(success=True, message="Duplicate webhook ignored")
        logger.warning(f"Order {order_id}: payment not successful (txstatus={txstatus})")
        return WebhookAck(success=True, message="Payment not successful", state=OrderState.FAILED)

    # Check-and-mark happens before the first await
    if not window.claim(order_id):
        logger.info(f"Duplicate webhook ignored for {order_id}")
        return WebhookAck(success=True, message="Duplicate webhook ignored")

    existing = await run_in_threadpool(airtable_service.find_orders, settings, order_id)
    if existing:
        store.delete(order_id)
        logger.info(f"Order {order_id} already recorded in Airtable, skipping")
        return WebhookAck(success=True, message="Order already recorded")

    pending = store.pop(order_id)
    if pending is None:
        state = OrderState.PENDING_CONFIRMATION_LOST
        logger.warning(f"Order {order_id}: no pending metadata (restart or expiry), recording with placeholders")
    else:
        state = OrderState.CONFIRMED
        logger.info(f"Order {order_id}: {pending.state.value} -> {state.value}")

    order = reconcile(order_id, data, pending)
    sms_text = compose_sms(order_id, order["plan"], order["recipient"], order["delivery"], settings.support_phone)

    if order["customer_phone"]:
        sms_result = await run_in_threadpool(hubtel_service.send_sms, settings, order["customer_phone"], sms_text)
    else:
        logger.warning(f"Order {order_id}: no customer phone, SMS skipped")
        sms_result = {"success": False, "error": "No customer phone"}

    fields = build_order_fields(order, sms_result, payload)
    await run_in_threadpool(airtable_service.create_order, settings, fields)
    logger.info(f"✅ Airtable Record created for Order ID: {order_id}")

    if not sms_result.get("success"):
        return WebhookAck(success=True, message="Airtable record created, SMS not sent", state=state)
    return WebhookAck(success=True, message="SMS sent and Airtable record created", state=state)
