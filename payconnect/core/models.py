"""
Data types shared by the initiation flow and the webhook handler.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

PLACEHOLDER = "N/A"


class OrderState(str, Enum):
    """Lifecycle of one order reference across both code paths."""

    INITIATED = "INITIATED"
    OTP_PENDING = "OTP_PENDING"
    PROMPT_SENT = "PROMPT_SENT"
    CONFIRMED = "CONFIRMED"
    PENDING_CONFIRMATION_LOST = "PENDING_CONFIRMATION_LOST"
    FAILED = "FAILED"


class InitiationStatus(str, Enum):
    """Outcome reported to the caller of /api/momo-payment."""

    OTP_REQUIRED = "OTP_REQUIRED"
    PROMPT_SENT = "PROMPT_SENT"
    VERIFIED_AND_PROMPT_SENT = "VERIFIED_AND_PROMPT_SENT"
    OTP_FAILED = "OTP_FAILED"
    REJECTED = "REJECTED"
    UNEXPECTED_RESPONSE = "UNEXPECTED_RESPONSE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"


class PendingTransaction(BaseModel):
    """Initiation-time metadata held until Moolre confirms the payment."""

    order_id: str
    payer: str
    amount: str
    channel: int
    metadata: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    state: OrderState = OrderState.INITIATED
    created_at: float = Field(default_factory=time.time)

    @property
    def data_plan(self) -> Optional[str]:
        return self.metadata.get("dataPlan")

    @property
    def recipient(self) -> Optional[str]:
        return self.metadata.get("recipient")

    @property
    def email(self) -> Optional[str]:
        return self.metadata.get("email")

    @property
    def delivery(self) -> Optional[str]:
        return self.metadata.get("delivery")


class InitiationResult(BaseModel):
    """Successful (2xx or OTP_FAILED) outcome of a charge request."""

    success: bool
    order_id: str
    status: InitiationStatus
    message: str = ""
    http_status: int = 200

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "orderId": self.order_id,
            "status": self.status.value,
            "message": self.message,
        }


class WebhookAck(BaseModel):
    """Body returned to Moolre. Always sent with HTTP 200."""

    success: bool
    message: str
    state: Optional[OrderState] = Field(default=None, exclude=True)

    def to_response(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}
