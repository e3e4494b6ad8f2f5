# bundleshop/utils/security.py
import hashlib
import hmac
from typing import Optional


def sign_payload(secret: str, raw_body: bytes, digestmod=hashlib.sha512) -> str:
    """Hex HMAC of the exact request bytes"""
    return hmac.new(secret.encode(), raw_body, digestmod).hexdigest()


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str],
                     digestmod=hashlib.sha512) -> bool:
    """Constant-time check of a hex HMAC signature"""
    if not secret or not signature:
        return False
    expected = sign_payload(secret, raw_body, digestmod)
    return hmac.compare_digest(expected, signature.strip().lower())


def bearer_matches(secret: str, authorization: Optional[str]) -> bool:
    """True when no secret is configured or the header carries it"""
    if not secret:
        return True
    return hmac.compare_digest(authorization or "", f"Bearer {secret}")
