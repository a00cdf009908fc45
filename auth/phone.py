"""Phone-number normalisation to E.164."""

from __future__ import annotations

import re

from auth.errors import ValidationError

_E164 = re.compile(r"^\+[1-9]\d{7,14}$")
_LOCAL_UZ = re.compile(r"^9\d{8}$")


def normalize_phone(raw: str) -> str:
    """Return raw as an E.164 number or raise ValidationError.

    Accepts the shapes users actually type: "+998 90 123-45-67",
    "998901234567", or the nine-digit local form "901234567", which is
    assumed to be Uzbek (+998).
    """
    text = (raw or "").strip()
    digits = re.sub(r"\D", "", text)
    if digits.startswith("998") and len(digits) >= 12:
        candidate = f"+{digits}"
    elif _LOCAL_UZ.match(digits):
        candidate = f"+998{digits}"
    elif len(digits) == 12:
        candidate = f"+{digits}"
    elif text.startswith("+"):
        candidate = f"+{digits}"
    else:
        candidate = text
    if not _E164.match(candidate):
        raise ValidationError("Phone number must be in international format, e.g. +998901234567.")
    return candidate
