"""
FastAPI entry point for the Payconnect Moolre backend.
Handles direct mobile-money charges and Moolre payment webhooks.
"""

import os
import time
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .errors import PayconnectError
from .core.initiation import initiate_payment, status_for_error
from .core.stores import DuplicateSuppressionWindow, PendingTransactionStore
from .core.webhook import handle_webhook

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()

# In-memory workflow state (single process only)
_pending_store: Optional[PendingTransactionStore] = None
_suppression_window: Optional[DuplicateSuppressionWindow] = None


def get_pending_store() -> PendingTransactionStore:
    """Get or create the pending transaction store for this process."""
    global _pending_store

    if _pending_store is None:
        _pending_store = PendingTransactionStore(ttl_seconds=get_settings().pending_ttl_seconds)
    return _pending_store


def get_suppression_window() -> DuplicateSuppressionWindow:
    """Get or create the webhook duplicate-suppression window for this process."""
    global _suppression_window

    if _suppression_window is None:
        _suppression_window = DuplicateSuppressionWindow()
    return _suppression_window


def reset_state() -> None:
    """Drop all in-memory workflow state (what a process restart does)."""
    global _pending_store, _suppression_window
    _pending_store = None
    _suppression_window = None


# Initialize FastAPI app
app = FastAPI(title="Payconnect Moolre Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Route not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.get("/")
async def index():
    return {"status": "Payconnect Moolre Backend Running"}


@app.get("/api/test")
async def api_test():
    return {"message": "Backend live!"}


@app.get("/health")
async def health_check():
    """Liveness plus the size of the in-memory workflow state."""
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "timestamp": int(time.time() * 1000),
        "pending": len(get_pending_store()),
        "suppressed": len(get_suppression_window()),
    }


def _error_response(error: PayconnectError, order_id: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "error": error.message}
    status = status_for_error(error)
    if status is not None:
        content["status"] = status.value
    if order_id:
        content["orderId"] = order_id
    if error.details is not None:
        content["details"] = error.details
    return JSONResponse(status_code=error.status_code, content=content)


# Direct Mobile Money Payment (POST)
@app.post("/api/momo-payment")
async def momo_payment(request: Request):
    """
    Starts a Moolre charge. Returns OTP_REQUIRED when the network wants an OTP;
    the caller then re-submits the same externalref with ``otpcode``.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})

    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Request body must be an object"})

    try:
        settings = get_settings()
        result = await initiate_payment(body, settings, get_pending_store())
    except PayconnectError as e:
        logger.error(f"Payment initiation failed: {e.message}")
        return _error_response(e, body.get("externalref"))
    except Exception as e:
        logger.exception(f"Payment handler error: {str(e)}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to process payment",
                                                      "details": str(e)})

    return JSONResponse(status_code=result.http_status, content=result.to_response())


# Moolre Webhook (POST)
@app.post("/api/webhook/moolre")
async def moolre_webhook(request: Request):
    """
    Receives payment confirmations from Moolre. Always answers 200 so Moolre
    does not retry; failures are logged here.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Moolre webhook body is not valid JSON")
        return {"success": False, "message": "Invalid JSON body"}

    try:
        settings = get_settings()
    except PayconnectError as e:
        logger.error(f"Webhook configuration error: {e.message}")
        return {"success": False, "message": "Internal webhook error"}

    ack = await handle_webhook(payload, settings, get_pending_store(), get_suppression_window())
    return ack.to_response()


def run() -> None:
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    run()
