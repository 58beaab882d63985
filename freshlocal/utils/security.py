import logging
from typing import Any, Dict, Optional, Union
import stripe
from ..errors import WebhookSignatureInvalid

logger = logging.getLogger(__name__)

def construct_event(payload: Union[bytes, str], header: Optional[str], secret: str,
                    tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE) -> Dict[str, Any]:
    """Verify a processor webhook and return its event as a plain dict.

    Raises WebhookSignatureInvalid for a missing or forged signature, a stale
    timestamp or a body that does not decode; nothing in the payload is
    trusted first.
    """
    if not header or not secret:
        raise WebhookSignatureInvalid()

    try:
        event = stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature rejected: {e.user_message}")
        raise WebhookSignatureInvalid()
    except ValueError:
        # Includes bodies that are not UTF-8
        raise WebhookSignatureInvalid("Webhook payload is not valid JSON")

    data = event.to_dict()
    if "type" not in data:
        raise WebhookSignatureInvalid("Webhook payload is not an event")
    return data
