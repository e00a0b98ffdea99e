import hashlib
import hmac

from budget_tracker.core.security import (
    SignatureVerifier,
    compute_signature,
    payment_message,
    verify_signature,
)


def test_payment_message_joins_order_and_payment():
    assert payment_message("order_a", "pay_a") == "order_a|pay_a"


def test_compute_signature_is_hex_hmac_sha256():
    expected = hmac.new(b"s3cret", b"order_a|pay_a", hashlib.sha256).hexdigest()
    assert compute_signature("order_a|pay_a", "s3cret") == expected


def test_verify_signature_accepts_matching_signature():
    signature = compute_signature("order_a|pay_a", "s3cret")
    assert verify_signature("order_a|pay_a", signature, "s3cret") is True


def test_verify_signature_rejects_forged_signature():
    assert verify_signature("order_a|pay_a", "deadbeef" * 8, "s3cret") is False


def test_verify_signature_rejects_signature_from_other_secret():
    signature = compute_signature("order_a|pay_a", "other")
    assert verify_signature("order_a|pay_a", signature, "s3cret") is False


def test_verify_signature_fails_closed_on_missing_parts():
    signature = compute_signature("order_a|pay_a", "s3cret")
    assert verify_signature("order_a|pay_a", None, "s3cret") is False
    assert verify_signature("order_a|pay_a", "", "s3cret") is False
    assert verify_signature("order_a|pay_a", signature, "") is False
    assert verify_signature(None, signature, "s3cret") is False


def test_verify_signature_non_ascii_signature_is_rejected():
    assert verify_signature("order_a|pay_a", "ñandú", "s3cret") is False


def test_verifier_webhook_uses_exact_raw_bytes():
    verifier = SignatureVerifier("s3cret", "whsec")
    raw = b'{"event": "payment.captured"}'
    signature = compute_signature(raw, "whsec")

    assert verifier.verify_webhook(raw, signature) is True
    # whitespace change means a different body
    assert verifier.verify_webhook(b'{"event":"payment.captured"}', signature) is False


def test_verifier_payment_uses_key_secret_not_webhook_secret():
    verifier = SignatureVerifier("s3cret", "whsec")
    good = compute_signature("order_a|pay_a", "s3cret")
    wrong = compute_signature("order_a|pay_a", "whsec")

    assert verifier.verify_payment("order_a", "pay_a", good) is True
    assert verifier.verify_payment("order_a", "pay_a", wrong) is False
    assert verifier.verify_payment("", "pay_a", good) is False
