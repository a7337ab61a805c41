import base64
import hashlib
import hmac


def secrets_match(provided: str | None, expected: str | None) -> bool:
    """Timing-safe karşılaştırma; beklenen sır boşsa asla eşleşmez."""
    p = (provided or "").encode("utf-8")
    e = (expected or "").encode("utf-8")
    if not e:
        return False
    return hmac.compare_digest(p, e)


def line_signature(body: bytes, channel_secret: str) -> str:
    """LINE: base64(HMAC-SHA256(channel_secret, body))."""
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_line_signature(body: bytes, signature: str | None, channel_secret: str) -> bool:
    if not signature or not channel_secret:
        return False
    return hmac.compare_digest(line_signature(body, channel_secret), signature.strip())
