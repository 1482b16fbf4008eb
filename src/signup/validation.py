"""
Field validation for the signup form.

`validate()` returns a localized error message or None. It never raises and
never touches form state; callers commit only when it returns None.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import re
from typing import Any, Callable, Optional

from src.signup.language import Locale, localize

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s.]+(?:\.[^@\s.]+)*\.[^@\s.]{2,}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


@dataclass(frozen=True)
class ValidationContext:
    locale: Locale = "en"
    password: str = ""
    min_password_length: int = 6
    today: Optional[date] = None


def _is_name_char(ch: str) -> bool:
    return ch.isalpha() or ch in " -'.ـ"


def validate_display_name(value: str, context: ValidationContext) -> Optional[str]:
    name = (value or "").strip()
    if not name:
        return localize(context.locale, "Name is required", "الاسم مطلوب")
    if len(name) < NAME_MIN_LENGTH:
        return localize(context.locale, "Name is too short", "الاسم قصير جدًا")
    if len(name) > NAME_MAX_LENGTH:
        return localize(
            context.locale,
            f"Name must be {NAME_MAX_LENGTH} characters or less",
            f"يجب ألا يتجاوز الاسم {NAME_MAX_LENGTH} حرفًا",
        )
    if not all(_is_name_char(ch) for ch in name):
        return localize(
            context.locale,
            "Name can only contain letters, spaces, hyphens and apostrophes",
            "يمكن أن يحتوي الاسم على أحرف ومسافات وشرطات فقط",
        )
    return None


def validate_username(value: str, context: ValidationContext) -> Optional[str]:
    if not (value or "").strip():
        return localize(context.locale, "Username is required", "اسم المستخدم مطلوب")
    return None


def validate_email(value: str, context: ValidationContext) -> Optional[str]:
    email = (value or "").strip()
    if not email:
        return localize(context.locale, "Email is required", "البريد الإلكتروني مطلوب")
    if not _EMAIL_RE.match(email):
        return localize(
            context.locale,
            "Please enter a valid email address",
            "يرجى إدخال بريد إلكتروني صالح",
        )
    return None


def validate_password(value: str, context: ValidationContext) -> Optional[str]:
    if not value:
        return localize(context.locale, "Password is required", "كلمة المرور مطلوبة")
    if len(value) < context.min_password_length:
        return localize(
            context.locale,
            f"Password must be at least {context.min_password_length} characters",
            f"يجب أن تتكون كلمة المرور من {context.min_password_length} أحرف على الأقل",
        )
    return None


def validate_confirm_password(value: str, context: ValidationContext) -> Optional[str]:
    if not value:
        return localize(context.locale, "Please confirm your password", "يرجى تأكيد كلمة المرور")
    if value != context.password:
        return localize(context.locale, "Passwords do not match", "كلمتا المرور غير متطابقتين")
    return None


def validate_terms(value: Any, context: ValidationContext) -> Optional[str]:
    if value is not True:
        return localize(
            context.locale,
            "You must agree to the Privacy Policy and Terms of Service",
            "يجب الموافقة على سياسة الخصوصية وشروط الخدمة",
        )
    return None


def validate_date_of_birth(value: str, context: ValidationContext) -> Optional[str]:
    # Optional; only a parsed ISO date is checked.
    text = (value or "").strip()
    if not text or not _ISO_DATE_RE.match(text):
        return None
    try:
        born = date.fromisoformat(text)
    except ValueError:
        return localize(context.locale, "That date doesn't look right", "هذا التاريخ غير صحيح")
    if born > (context.today or date.today()):
        return localize(
            context.locale,
            "Date of birth can't be in the future",
            "لا يمكن أن يكون تاريخ الميلاد في المستقبل",
        )
    return None


def _always_valid(value: Any, context: ValidationContext) -> Optional[str]:
    return None


_VALIDATORS: dict[str, Callable[[Any, ValidationContext], Optional[str]]] = {
    "name": validate_display_name,
    "username": validate_username,
    "email": validate_email,
    "password": validate_password,
    "confirm_password": validate_confirm_password,
    "terms": validate_terms,
    "dob": validate_date_of_birth,
    "country": _always_valid,
    "city": _always_valid,
}


def validate(field_id: str, value: Any, context: Optional[ValidationContext] = None) -> Optional[str]:
    """
    Validate a normalized value for the given field (step id).

    Unknown fields always pass.
    """
    validator = _VALIDATORS.get(str(getattr(field_id, "value", field_id)), _always_valid)
    return validator(value, context or ValidationContext())
