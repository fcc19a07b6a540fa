"""
Error taxonomy for the Payconnect payment workflow.
"""

from typing import Any, Optional


class PayconnectError(Exception):
    """Base class for all Payconnect errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PayconnectError):
    """Missing or malformed request fields. Never retried."""

    status_code = 400


class ConfigurationError(PayconnectError):
    """Required credentials or settings are absent or invalid."""

    status_code = 500


class UpstreamError(PayconnectError):
    """A Moolre, Hubtel or Airtable call failed."""

    status_code = 502


class UpstreamTimeout(UpstreamError):
    """A collaborator call exceeded the configured timeout."""


class AuthenticationError(PayconnectError):
    """Webhook shared secret did not match."""

    status_code = 401


class UnexpectedResponseError(UpstreamError):
    """Moolre answered with a shape the workflow does not recognise."""

    status_code = 500
