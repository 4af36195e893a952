"""HMAC signature for dispatch chunk callbacks.

Chunk messages published to the queue carry an X-Job-Signature header
(HMAC-SHA256 of the raw body with JOB_CALLBACK_SECRET). The callback
endpoint MUST validate it before touching any job.
"""

import hashlib
import hmac


def sign_job_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of raw_body."""
    return hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()


def validate_job_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Validate a callback signature using constant-time comparison.

    Args:
        raw_body: Raw request body bytes, exactly as received
        signature: Value of the X-Job-Signature header (hex)
        secret: JOB_CALLBACK_SECRET

    Returns:
        True if signature is valid, False otherwise (including empty secret)
    """
    if not secret or not signature:
        return False

    expected = sign_job_payload(raw_body, secret)
    return hmac.compare_digest(expected.lower(), signature.lower())
