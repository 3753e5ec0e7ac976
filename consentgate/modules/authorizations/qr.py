"""Patient QR payloads used to start an access request.

The patient app renders ``{"type": "health_access_request", "digitalIdentifier",
"version", "timestamp"}`` as JSON. Scanners may hand it back either verbatim or
base64 encoded (standard or URL-safe alphabet).
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from consentgate.core.base import utcnow
from consentgate.core.config import settings
from consentgate.core.errors import ValidationError

log = logging.getLogger(__name__)

QR_TYPE = "health_access_request"
QR_VERSION = "1.0"

@dataclass(frozen=True)
class PatientQRPayload:
    digital_identifier: str
    version: str | None = None
    timestamp: datetime | None = None

def build_patient_qr(digital_identifier: str, now: datetime | None = None) -> dict:
    return {
        "type": QR_TYPE,
        "digitalIdentifier": digital_identifier,
        "version": QR_VERSION,
        "timestamp": (now or utcnow()).isoformat(),
    }

def encode_qr(payload: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()

def _b64decode(text: str) -> str:
    padded = text + "=" * (-len(text) % 4)
    if "-" in text or "_" in text:
        return base64.urlsafe_b64decode(padded).decode("utf-8")
    return base64.b64decode(padded).decode("utf-8")

def _decode_text(raw: str) -> dict:
    text = raw.strip()
    if not text:
        raise ValidationError("Empty QR code data")
    if not text.startswith("{"):
        try:
            text = _b64decode(text)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            raise ValidationError("Invalid QR code format")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise ValidationError("Invalid QR code format")
    if not isinstance(data, dict):
        raise ValidationError("Invalid QR code format")
    return data

def _parse_timestamp(value) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.debug("Ignoring unparseable QR timestamp %r", value)
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

def parse_patient_qr(raw: str | dict, now: datetime | None = None) -> PatientQRPayload:
    data = raw if isinstance(raw, dict) else _decode_text(raw)
    if data.get("type") != QR_TYPE:
        raise ValidationError("Invalid QR code type")
    digital_identifier = data.get("digitalIdentifier")
    if not isinstance(digital_identifier, str) or not digital_identifier.strip():
        raise ValidationError("QR code is missing the digital identifier")

    ts = _parse_timestamp(data.get("timestamp"))
    if ts is not None and (now or utcnow()) - ts > timedelta(hours=settings.QR_MAX_AGE_HOURS):
        log.warning("QR code is older than %s hours", settings.QR_MAX_AGE_HOURS)
    version = data.get("version")
    return PatientQRPayload(
        digital_identifier=digital_identifier.strip(),
        version=str(version) if version is not None else None,
        timestamp=ts,
    )
