"""Text normalization used by the similarity engine and manufacturer lookup."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: str | None) -> str:
    """Normalize free text for fuzzy comparison.

    Normalization rules:
    - Unicode NFKC normalization
    - Casefold
    - Collapse runs of whitespace to one space
    - Strip leading/trailing whitespace

    Examples:
        "  White   Oak Flooring " -> "white oak flooring"
        "CARRARA Marble" -> "carrara marble"
    """
    if not value:
        return ""
    value = unicodedata.normalize("NFKC", value)
    value = value.casefold()
    return _WHITESPACE.sub(" ", value).strip()


def normalize_name_key(value: str | None) -> str:
    """Key for exact, case-insensitive name lookup.

    Same rules as normalize_text, so " Ébène   Design" and "ébène design" share a key.
    """
    return normalize_text(value)


def normalize_code(value: str | None) -> str:
    """Normalize a reference code / SKU for identity comparison.

    NFKC, trimmed and casefolded; every inner character is significant
    ("wo-3-nat" and "WO-3-NAT " compare equal, "A_1" and "A1" do not).
    """
    if not value:
        return ""
    return unicodedata.normalize("NFKC", value).strip().casefold()


def normalize_website(value: str | None) -> str:
    """Reduce a website to its bare host + path for identity comparison.

    Examples:
        "https://www.PremiumWoods.com/" -> "premiumwoods.com"
        "premiumwoods.com" -> "premiumwoods.com"
    """
    if not value:
        return ""
    value = value.strip().lower()
    value = re.sub(r"^[a-z]+://", "", value)
    value = value.removeprefix("www.")
    return value.rstrip("/")


def normalize_email(value: str | None) -> str:
    return value.strip().lower() if value else ""
