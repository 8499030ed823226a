# tests/helpers.py
import hashlib
import hmac
import json
import time
from typing import Optional

WEBHOOK_SECRET = "whsec_test_secret"
CHECKOUT_URL = "https://pay.example/cs_1"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Заголовок подписи в формате провайдера: t=<unix>,v1=<hmac-sha256>"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


def donation_metadata(project_id: str = "p1", donor_type: str = "token", donor_id: str = "tk_abc", **extra) -> dict:
    metadata = {"project_id": project_id, "donor_type": donor_type, "donor_id": donor_id}
    metadata.update(extra)
    return metadata
