"""
Language utilities for the voice signup flow.

Every user-facing string exists in exactly two locales: English ("en") and
Arabic ("ar"). A single per-session locale selects between them.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Literal, Optional

Locale = Literal["en", "ar"]

_ARABIC_CHAR_RE = re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]")
_LATIN_CHAR_RE = re.compile(r"[A-Za-z\u00C0-\u024F]")

# Tatweel and harakat carry no meaning for prefix matching.
_ARABIC_DECORATION_RE = re.compile(r"[\u0640\u064B-\u065F\u0670]")


def normalize_locale(raw: Optional[str], default: Locale = "en") -> Locale:
    """
    Normalize a client language tag ("ar-QA", "en_US", "AR") into a Locale.
    """
    if not raw:
        return default
    norm = raw.strip().lower()
    if norm.startswith("ar"):
        return "ar"
    if norm.startswith("en"):
        return "en"
    return default


def is_arabic_text(text: str) -> bool:
    """True when the text contains Arabic-script letters and no Latin letters."""
    return bool(_ARABIC_CHAR_RE.search(text or "")) and not _LATIN_CHAR_RE.search(text or "")


def normalize_for_matching(text: str) -> str:
    text = (text or "").strip().casefold()
    text = text.replace("’", "'").replace("‘", "'")
    text = _ARABIC_DECORATION_RE.sub("", text)
    text = re.sub(r"\s+", " ", text)
    return text


@dataclass(frozen=True)
class LocalizedText:
    """A string in both supported locales."""

    en: str
    ar: str

    def get(self, locale: Locale) -> str:
        return self.ar if locale == "ar" else self.en

    def format(self, locale: Locale, **values: str) -> str:
        text = self.get(locale)
        if not values:
            return text
        try:
            return text.format(**values)
        except (KeyError, IndexError, ValueError):
            return text

    def __bool__(self) -> bool:
        return bool(self.en or self.ar)


def localize(locale: Locale, en: str, ar: str) -> str:
    return ar if locale == "ar" else en
