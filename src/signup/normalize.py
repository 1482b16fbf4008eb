"""
Utterance normalization.

Turns raw speech transcripts (or typed text) into canonical field values.
Every function here is pure and total: worst case the trimmed input comes back.

Spelled input is common for unfamiliar names and usernames. The speech model
returns it as separated letters ("a b d u l l a h", "A-B-D-U-L-L-A-H"), which
`join_spelled_letters` glues back into one token.
"""

from __future__ import annotations

from datetime import date
import re
from typing import Iterable, Optional

from src.signup.countries import COUNTRIES, Country
from src.signup.language import is_arabic_text, normalize_for_matching

_EDGE_PUNCT = " \t\r\n.,!?;:'\"()[]{}<>«»،؛؟…-–—"

_SPELL_SPLIT_RE = re.compile(r"[\s\-.,]+")

_BOUNDARY = r"(?=$|[\s,.:;!?\-–—،])[\s,.:;!?\-–—،]*"

_WS_BOUNDARY = r"(?=\s)\s*"

# Hyphens join name parts ("So-yeon"), so they never end a filler.
_FILLER_BOUNDARY = r"(?=$|[\s,.:;!?،])[\s,.:;!?،]*"

_FILLERS = (
    r"u+m+", r"u+h+", r"e+r+m+", r"h+m+", r"e+u+h+", r"a+h+", r"o+k+a+y+", r"so", r"well",
    r"اه+", r"ام+", r"يعني",
)


def _prefix_re(prefixes: Iterable[str], boundary: str = _BOUNDARY) -> re.Pattern[str]:
    return re.compile(r"^(?:" + "|".join(prefixes) + r")" + boundary, re.IGNORECASE)


_FILLER_RE = _prefix_re(_FILLERS, boundary=_FILLER_BOUNDARY)
# Emails may legitimately start with "so." or "well-", so only a following space counts.
_EMAIL_FILLER_RE = _prefix_re(_FILLERS, boundary=_WS_BOUNDARY)


_NAME_PREFIX_RE = _prefix_re(
    (
        r"my full name is",
        r"my name is",
        r"my name'?s",
        r"the name is",
        r"name is",
        r"you can call me",
        r"call me",
        r"this is",
        r"it'?s",
        r"it is",
        r"i am",
        r"i'?m",
        r"أنا اسمي",
        r"انا اسمي",
        r"اسمي هو",
        r"إسمي",
        r"اسمي",
        r"أنا",
        r"انا",
    )
)

_USERNAME_PREFIX_RE = _prefix_re(
    (
        r"my user ?name should be",
        r"my user ?name will be",
        r"my user ?name is",
        r"my user ?name'?s",
        r"user ?name is",
        r"user ?name",
        r"i'?d like",
        r"i want",
        r"make it",
        r"let'?s go with",
        r"it'?s",
        r"it is",
        r"اسم المستخدم هو",
        r"اسم المستخدم",
        r"اسم مستخدمي",
        r"يوزري",
        r"خليه",
    )
)

_EMAIL_PREFIX_RE = _prefix_re(
    (
        r"my email address is",
        r"my e-?mail is",
        r"my e-?mail'?s",
        r"e-?mail is",
        r"it'?s",
        r"it is",
        r"بريدي الإلكتروني هو",
        r"بريدي الالكتروني هو",
        r"بريدي هو",
        r"بريدي",
        r"ايميلي هو",
        r"إيميلي",
        r"ايميلي",
    ),
    boundary=_WS_BOUNDARY,
)

_FREE_TEXT_PREFIX_RE = _prefix_re(
    (
        r"my date of birth is",
        r"my birthday is",
        r"i was born on",
        r"i was born in",
        r"born on",
        r"born in",
        r"my country is",
        r"my city is",
        r"i come from",
        r"i am from",
        r"i'?m from",
        r"i live in",
        r"i am in",
        r"i'?m in",
        r"it'?s",
        r"it is",
        r"from",
        r"تاريخ ميلادي",
        r"ولدت في",
        r"ولدت",
        r"مواليد",
        r"أنا من",
        r"انا من",
        r"أعيش في",
        r"اعيش في",
        r"مدينتي",
        r"بلدي",
        r"من",
        r"في",
    )
)

_SPOKEN_AT_SPLIT_RE = re.compile(r"^(.*?)\s+(?:at|@|آت|أت|ات)\s+(.+)$")
_SPOKEN_AT_RE = re.compile(r"\s+(?:at|آت|أت)\s+")
_SPOKEN_DOT_RE = re.compile(r"\s+(?:dot|point|دوت|نقطة|نقطه)\s+")
_SPOKEN_UNDERSCORE_RE = re.compile(r"\s+(?:underscore|أندرسكور|اندرسكور)\s+")
_SPOKEN_DASH_RE = re.compile(r"\s+(?:dash|hyphen|شرطة)\s+")

_ARABIC_INDIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")

_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
    "يناير": 1, "فبراير": 2, "مارس": 3, "أبريل": 4, "ابريل": 4, "إبريل": 4,
    "مايو": 5, "يونيو": 6, "يونيه": 6, "يوليو": 7, "يوليه": 7, "أغسطس": 8, "اغسطس": 8,
    "سبتمبر": 9, "أكتوبر": 10, "اكتوبر": 10, "نوفمبر": 11, "ديسمبر": 12,
}


def _strip_leading(
    text: str,
    prefix_re: re.Pattern[str],
    filler_re: re.Pattern[str] = _FILLER_RE,
) -> str:
    """Strip hesitation fillers and one of the given prefixes, repeatedly."""
    previous = None
    while text and text != previous:
        previous = text
        text = filler_re.sub("", text, count=1).strip()
        text = prefix_re.sub("", text, count=1).strip()
    return text


def _prepare(raw: str) -> str:
    text = (raw or "").strip()
    text = text.replace("’", "'").replace("‘", "'")
    return re.sub(r"\s+", " ", text)


def join_spelled_letters(raw: str) -> str:
    """
    Join letter-by-letter spelling into one token.

    Input qualifies when it holds at least three single-character tokens
    (Latin letter, digit, or one Arabic letter) separated by spaces, dashes,
    dots or commas, and every token is either a single character or a run of
    digits ("v x r 10"). Anything else is returned unchanged.
    """
    if not raw:
        return raw or ""

    tokens = [tok for tok in _SPELL_SPLIT_RE.split(raw.strip()) if tok]
    singles = sum(1 for tok in tokens if len(tok) == 1 and tok.isalnum())
    if singles < 3:
        return raw

    for tok in tokens:
        if len(tok) == 1 and tok.isalnum():
            continue
        if tok.isdigit():
            continue
        return raw

    return "".join(tokens).lower()


def _capitalize_word(word: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in word.split("-"))


def extract_name(raw: str) -> str:
    """
    Extract a display name: "my name is john smith" -> "John Smith".

    Arabic-script names keep their text as spoken ("اسمي علي" -> "علي").
    """
    text = _strip_leading(_prepare(raw), _NAME_PREFIX_RE)
    text = text.strip(_EDGE_PUNCT)
    if not text:
        return ""

    text = join_spelled_letters(text)
    text = re.sub(r"\s+", " ", text).strip()
    if is_arabic_text(text):
        return text

    return " ".join(_capitalize_word(word) for word in text.split(" "))


def extract_username(raw: str) -> str:
    """
    Extract a username: "my username should be John Doe!" -> "john_doe".

    Output only ever contains [a-z0-9_], so normalizing twice is a no-op.
    """
    text = _strip_leading(_prepare(raw), _USERNAME_PREFIX_RE)
    text = text.strip(_EDGE_PUNCT)
    if not text:
        return ""

    text = re.sub(r"[^\w\s\-.]", "", text)
    text = join_spelled_letters(text.strip())
    text = text.lower().strip()
    text = re.sub(r"\s+", "_", text)
    return re.sub(r"[^a-z0-9_]", "", text)


def clean_email(raw: str) -> str:
    """
    Rebuild an email address from speech: "v x r 10 at hotmail dot com" -> "vxr10@hotmail.com".
    """
    text = _prepare(raw).lower()
    text = _strip_leading(text, _EMAIL_PREFIX_RE, _EMAIL_FILLER_RE)

    match = _SPOKEN_AT_SPLIT_RE.match(text)
    if match:
        local = join_spelled_letters(match.group(1).strip())
        text = f"{local}@{match.group(2).strip()}"

    text = _SPOKEN_AT_RE.sub("@", text)
    text = _SPOKEN_DOT_RE.sub(".", text)
    text = _SPOKEN_UNDERSCORE_RE.sub("_", text)
    text = _SPOKEN_DASH_RE.sub("-", text)
    text = re.sub(r"\s+", "", text)
    text = re.sub(r"@{2,}", "@", text)
    text = re.sub(r"\.{2,}", ".", text)
    return text.strip(".,!?;:'\"،؟")


def extract_free_text(raw: str) -> str:
    """Strip fillers and lead-in phrases ("i'm from", "أنا من") from a free answer."""
    text = _strip_leading(_prepare(raw), _FREE_TEXT_PREFIX_RE)
    return text.strip(_EDGE_PUNCT)


def _parse_date(text: str) -> Optional[date]:
    t = text.translate(_ARABIC_INDIC_DIGITS).casefold()
    t = re.sub(r"(\d+)(?:st|nd|rd|th)\b", r"\1", t)
    t = re.sub(r"[,،]", " ", t)
    t = re.sub(r"\b(?:of|the)\b", " ", t)
    t = re.sub(r"\s+", " ", t).strip()

    try:
        match = re.fullmatch(r"(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})", t)
        if match:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        match = re.fullmatch(r"(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})", t)
        if match:
            first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
            # Day-first unless that cannot be a valid month.
            if second > 12 >= first:
                return date(year, first, second)
            return date(year, second, first)

        year = month = day = None
        for token in t.split(" "):
            if token in _MONTHS and month is None:
                month = _MONTHS[token]
            elif token.isdigit() and len(token) == 4 and year is None:
                year = int(token)
            elif token.isdigit() and len(token) <= 2 and day is None:
                day = int(token)
        if year and month and day:
            return date(year, month, day)
    except ValueError:
        return None

    return None


def parse_date_of_birth(raw: str) -> str:
    """ISO date when the answer parses as one, else the cleaned answer."""
    text = extract_free_text(raw)
    if not text:
        return ""
    parsed = _parse_date(text)
    return parsed.isoformat() if parsed else text


def match_country(spoken: str, countries: Iterable[Country] = COUNTRIES) -> Optional[Country]:
    """
    Resolve a spoken country.

    Exact match on name, Arabic name or code first, then substring containment
    in either direction. None when nothing matches; callers keep the raw text.
    """
    text = normalize_for_matching(spoken)
    if not text:
        return None

    table = tuple(countries)
    for country in table:
        if text in (normalize_for_matching(country.name), normalize_for_matching(country.name_ar), country.code.casefold()):
            return country

    for country in table:
        for name in (normalize_for_matching(country.name), normalize_for_matching(country.name_ar)):
            if name in text or text in name:
                return country

    return None


def normalize_for_step(step_id: str, raw: str) -> str:
    """Normalize a transcript for the field collected by the given step."""
    if step_id == "name":
        return extract_name(raw)
    if step_id == "username":
        return extract_username(raw)
    if step_id == "email":
        return clean_email(raw)
    if step_id == "dob":
        return parse_date_of_birth(raw)
    if step_id in ("country", "city"):
        return extract_free_text(raw)
    return (raw or "").strip()
