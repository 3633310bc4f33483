import hashlib
import hmac


def verify_wa_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """
    Verify the X-Hub-Signature-256 header sent by the WhatsApp Cloud API.
    The header looks like ``sha256=<hexdigest>``; the HMAC is computed over
    the raw request body using the app secret.
    """
    if not signature:
        return False
    received = signature.split("=", 1)[1] if signature.startswith("sha256=") else signature
    expected = hmac.new(
        key=secret.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    # Use compare_digest to prevent timing attacks
    return hmac.compare_digest(expected, received)
