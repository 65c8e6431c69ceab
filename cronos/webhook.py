"""
Webhook notification of run summaries.

Delivery is best-effort: failures are logged and never raised.
"""

import logging
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)


def send_webhook(url: str, payload: Dict[str, Any], timeout: float = 30.0) -> bool:
    """
    POST the payload as JSON to the webhook URL.

    Args:
        url: Webhook endpoint
        payload: JSON-serializable body
        timeout: Request timeout in seconds

    Returns:
        True if the endpoint answered with a 2xx status, False otherwise
    """
    if not url:
        return False

    logger.info("Sending webhook notification...")

    try:
        response = requests.post(
            url,
            json=payload,
            headers={'Content-Type': 'application/json'},
            timeout=timeout
        )
    except requests.RequestException as e:
        logger.error(f"Failed to send webhook notification: {e}")
        return False

    if not response.ok:
        logger.error(
            f"Failed to send webhook notification: status {response.status_code}: {response.text[:500]}"
        )
        return False

    logger.info("Webhook notification sent successfully")
    return True
