"""
Airtable service: the Orders table is the system of record for paid orders.
"""

import logging
from typing import Any, Dict, List
from urllib.parse import quote

import requests

from ..config import Settings
from ..errors import ConfigurationError, UpstreamError, UpstreamTimeout

logger = logging.getLogger(__name__)

AIRTABLE_API = "https://api.airtable.com/v0"
ORDER_ID_FIELD = "Order ID"


def _table_url(settings: Settings) -> str:
    if not settings.airtable_api_key or not settings.airtable_base:
        error_msg = "Airtable configuration missing. Set AIRTABLE_API_KEY and AIRTABLE_BASE."
        logger.error(error_msg)
        raise ConfigurationError(error_msg)
    return f"{AIRTABLE_API}/{settings.airtable_base}/{quote(settings.airtable_table, safe='')}"


def _formula_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def find_orders(settings: Settings, order_id: str) -> List[Dict[str, Any]]:
    """
    Look up Orders rows whose "Order ID" equals ``order_id``.

    Returns:
        The matching Airtable records (empty list when none)

    Raises:
        ConfigurationError: If Airtable credentials are not configured
        UpstreamError: If the request fails
    """
    url = _table_url(settings)
    params = {"filterByFormula": f"({{{ORDER_ID_FIELD}}}={_formula_literal(order_id)})"}
    headers = {"Authorization": f"Bearer {settings.airtable_api_key}"}

    try:
        response = requests.get(url, params=params, headers=headers,
                                timeout=settings.upstream_timeout_seconds)
        response.raise_for_status()
        records = response.json().get("records", [])
    except requests.exceptions.Timeout as e:
        logger.error(f"Airtable Read timed out for {order_id}: {str(e)}")
        raise UpstreamTimeout("Airtable read timed out", details=str(e))
    except requests.exceptions.RequestException as e:
        logger.error(f"Airtable Read Error for {order_id}: {_error_details(e)}")
        raise UpstreamError("Failed to read from Airtable.", details=_error_details(e))
    except ValueError as e:
        logger.error(f"Airtable Read returned invalid JSON for {order_id}: {str(e)}")
        raise UpstreamError("Failed to read from Airtable.", details=str(e))

    logger.debug(f"Airtable lookup for {order_id}: {len(records)} record(s)")
    return records


def create_order(settings: Settings, fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create one Orders row.

    Raises:
        ConfigurationError: If Airtable credentials are not configured
        UpstreamError: If the request fails
    """
    url = _table_url(settings)
    headers = {
        "Authorization": f"Bearer {settings.airtable_api_key}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(url, json={"fields": fields}, headers=headers,
                                 timeout=settings.upstream_timeout_seconds)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.Timeout as e:
        logger.error(f"Airtable Create timed out: {str(e)}")
        raise UpstreamTimeout("Airtable create timed out", details=str(e))
    except requests.exceptions.RequestException as e:
        logger.error(f"Airtable Create Error: {_error_details(e)}")
        raise UpstreamError("Failed to create record in Airtable.", details=_error_details(e))
    except ValueError as e:
        logger.error(f"Airtable Create returned invalid JSON: {str(e)}")
        raise UpstreamError("Failed to create record in Airtable.", details=str(e))


def _error_details(error: requests.exceptions.RequestException) -> Any:
    response = getattr(error, "response", None)
    if response is None:
        return str(error)
    try:
        return response.json()
    except ValueError:
        return response.text
