import re
from typing import Dict, Optional

from flask import request

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SHIPPING_ADDRESS_ALIASES = {
    "street": ("street", "line1", "address", "street1"),
    "city": ("city", "town"),
    "state": ("state", "region", "province"),
    "zip_code": ("zip_code", "zipCode", "zip", "postcode", "postal_code", "postalCode"),
    "country": ("country",),
}


def request_payload() -> Dict:
    """JSON body, or the form fields of a multipart/urlencoded request."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    if request.form:
        return request.form.to_dict()
    return {}


def pick(payload: Optional[Dict], *keys, default=None):
    """First present value among ``keys`` (snake_case name, then aliases)."""
    if not isinstance(payload, dict):
        return default
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def normalize_shipping_address(payload) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}

    normalized: Dict[str, str] = {}
    for field, aliases in SHIPPING_ADDRESS_ALIASES.items():
        value = pick(payload, *aliases)
        trimmed = clean_text(value)
        if trimmed:
            normalized[field] = trimmed
    return normalized
