import hashlib
import hmac
from typing import Optional, Union


ALGORITHM = hashlib.sha256


def compute_signature(message: Union[str, bytes], secret: str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, ALGORITHM).hexdigest()


def verify_signature(
    message: Optional[Union[str, bytes]],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check a gateway-issued HMAC-SHA256 hex signature.

    Any missing piece fails verification; there is no "skip" mode.
    """
    if message is None or not signature or not secret:
        return False
    expected = compute_signature(message, secret)
    try:
        return hmac.compare_digest(expected, signature.strip())
    except TypeError:
        # non-ASCII str signatures
        return False


def payment_message(order_id: str, payment_id: str) -> str:
    return f"{order_id}|{payment_id}"


class SignatureVerifier:
    """Verifies checkout confirmations and webhook bodies against shared secrets."""

    def __init__(self, key_secret: str, webhook_secret: str):
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret

    def verify_payment(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        if not order_id or not payment_id:
            return False
        return verify_signature(payment_message(order_id, payment_id), signature, self._key_secret)

    def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(raw_body, signature, self._webhook_secret)
