"""Webhook HMAC signature generation and verification.

Outbound webhook steps and event forwarding are signed with
HMAC-SHA256 so receivers can verify the payload authenticity; inbound
events posted to ``/api/v1/events`` are verified the same way.

Headers:
  X-Workflow-Signature: sha256=<hex_digest>
  X-Workflow-Timestamp: <unix_timestamp>
  X-Workflow-Delivery: <unique_delivery_id>

Verification:
  1. Check timestamp is within tolerance (default: 5 minutes)
  2. Compute HMAC-SHA256 over: f"{timestamp}.{body}"
  3. Compare with X-Workflow-Signature using constant-time comparison
"""

import hashlib
import hmac
import secrets
import time
from typing import Optional
from uuid import uuid4

SIGNATURE_HEADER = "X-Workflow-Signature"
TIMESTAMP_HEADER = "X-Workflow-Timestamp"
DELIVERY_HEADER = "X-Workflow-Delivery"

DEFAULT_TOLERANCE_SECONDS = 300  # 5 minutes


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    sign_input = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), sign_input, hashlib.sha256).hexdigest()


def sign_webhook_payload(
    payload: bytes,
    secret: str,
    timestamp: Optional[int] = None,
    delivery_id: Optional[str] = None,
) -> dict[str, str]:
    """Sign a payload and return the headers to send with it.

    Args:
        payload: Raw request body bytes
        secret: Signing secret shared with the receiver
        timestamp: Unix timestamp (defaults to now)
        delivery_id: Unique delivery ID (defaults to UUID)
    """
    ts = timestamp or int(time.time())
    return {
        SIGNATURE_HEADER: f"sha256={compute_signature(payload, secret, ts)}",
        TIMESTAMP_HEADER: str(ts),
        DELIVERY_HEADER: delivery_id or str(uuid4()),
    }


def verify_webhook_signature(
    payload: bytes,
    secret: str,
    signature_header: Optional[str],
    timestamp_header: Optional[str],
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """Verify a webhook signature.

    Returns:
        True if signature is valid and timestamp is within tolerance
    """
    try:
        ts = int(timestamp_header)
    except (ValueError, TypeError):
        return False

    current = now if now is not None else int(time.time())
    if abs(current - ts) > tolerance:
        return False

    if not signature_header or not signature_header.startswith("sha256="):
        return False

    return hmac.compare_digest(
        compute_signature(payload, secret, ts),
        signature_header[len("sha256="):],
    )


def generate_webhook_secret() -> str:
    """Generate a cryptographically secure signing secret."""
    return f"whsec_{secrets.token_urlsafe(32)}"
