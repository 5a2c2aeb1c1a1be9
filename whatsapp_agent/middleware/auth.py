import hashlib
import hmac

import structlog

logger = structlog.get_logger()

SIGNATURE_PREFIX = "sha256="


def verify_signature(raw_body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Validate the x-hub-signature-256 header against the raw request body.

    The HMAC must be computed over the bytes exactly as received, never over a
    re-serialized copy of the parsed JSON. Uses hmac.compare_digest to prevent
    timing attacks. Never raises; every rejection is logged with its reason.
    """
    if not signature_header:
        logger.warning("signature_rejected", reason="missing_header")
        return False
    if not app_secret:
        logger.warning("signature_rejected", reason="missing_secret")
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("signature_rejected", reason="malformed_prefix")
        return False

    received_hex = signature_header[len(SIGNATURE_PREFIX):]
    if not received_hex:
        logger.warning("signature_rejected", reason="empty_hash")
        return False
    try:
        received = bytes.fromhex(received_hex)
    except ValueError:
        logger.warning("signature_rejected", reason="malformed_hash")
        return False

    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    if len(received) != len(expected):
        logger.warning("signature_rejected", reason="length_mismatch")
        return False
    if not hmac.compare_digest(received, expected):
        logger.warning("signature_rejected", reason="mismatch")
        return False
    return True


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    """Return the header value Meta would send for *raw_body* (``sha256=<hex>``)."""
    return SIGNATURE_PREFIX + hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
