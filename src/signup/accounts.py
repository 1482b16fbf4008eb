"""
Account creation collaborator.

The orchestrator hands the complete form to `AccountCreator.create_account()`
exactly once per entry into the `creating` step. The Supabase-compatible
implementation talks to the GoTrue `/auth/v1/signup` endpoint.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.signup.config import Config, get_config

logger = structlog.get_logger(__name__)


class FailureReason(str, Enum):
    WEAK_PASSWORD = "weak_password"
    OTHER = "other"


@dataclass(frozen=True)
class AccountFields:
    """Everything the backend needs to create an account."""
    email: str
    password: str
    full_name: str
    username: str
    date_of_birth: str = ""
    country: str = ""
    country_code: str = ""
    city: str = ""

    def metadata(self) -> dict[str, str]:
        return {
            "full_name": self.full_name,
            "username": self.username,
            "date_of_birth": self.date_of_birth,
            "country": self.country,
            "country_code": self.country_code,
            "city": self.city,
        }


@dataclass(frozen=True)
class AccountCreationResult:
    success: bool
    needs_email_confirmation: bool = False
    reason: Optional[FailureReason] = None
    message: str = ""

    @classmethod
    def created(cls, needs_email_confirmation: bool) -> "AccountCreationResult":
        return cls(success=True, needs_email_confirmation=needs_email_confirmation)

    @classmethod
    def failed(cls, reason: FailureReason, message: str = "") -> "AccountCreationResult":
        return cls(success=False, reason=reason, message=message)


class AccountCreator(ABC):
    @abstractmethod
    async def create_account(self, fields: AccountFields) -> AccountCreationResult:
        """Create the account. Failures are returned, never raised."""
        ...


class SignupUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email: Optional[str] = None
    email_confirmed_at: Optional[str] = None
    confirmed_at: Optional[str] = None


class SignupResponse(BaseModel):
    """
    GoTrue answers with a session wrapper (`{"user": ...}`) when auto-confirm is
    on, and with the bare user object when email confirmation is pending.
    """
    model_config = ConfigDict(extra="ignore")

    user: Optional[SignupUser] = None
    access_token: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SignupResponse":
        if "user" in payload:
            return cls.model_validate(payload)
        return cls(user=SignupUser.model_validate(payload))


class SignupErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[Union[int, str]] = None
    error_code: Optional[str] = None
    msg: Optional[str] = None
    message: Optional[str] = None
    error_description: Optional[str] = None
    weak_password: Optional[dict[str, Any]] = Field(default=None)

    @property
    def text(self) -> str:
        return self.msg or self.message or self.error_description or ""


_WEAK_PASSWORD_HINTS = ("weak", "easy to guess", "password should", "pwned")


def classify_failure(body: SignupErrorBody) -> FailureReason:
    """
    Weak-password detection prefers the structured `error_code`; message
    heuristics are only consulted when the backend sent no code at all.
    """
    error_code = body.error_code or (body.code if isinstance(body.code, str) else None)
    if error_code:
        return FailureReason.WEAK_PASSWORD if error_code == "weak_password" else FailureReason.OTHER
    if body.weak_password:
        return FailureReason.WEAK_PASSWORD

    lower = body.text.lower()
    if any(hint in lower for hint in _WEAK_PASSWORD_HINTS):
        return FailureReason.WEAK_PASSWORD
    return FailureReason.OTHER


def _redact_email(email: str) -> str:
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "[EMAIL]"
    return f"{local[:1]}***@{domain}"


class SupabaseAccountCreator(AccountCreator):
    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        *,
        redirect_to: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.signup_url = f"{supabase_url.rstrip('/')}/auth/v1/signup"
        self.redirect_to = redirect_to
        self.timeout = timeout
        self._anon_key = anon_key
        self._client = client

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "SupabaseAccountCreator":
        config = config or get_config()
        return cls(
            config.supabase_url,
            config.supabase_anon_key,
            redirect_to=config.email_redirect_url or f"{config.base_url}/confirmed",
        )

    async def create_account(self, fields: AccountFields) -> AccountCreationResult:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._anon_key}",
        }
        params = {"redirect_to": self.redirect_to} if self.redirect_to else None
        body = {"email": fields.email, "password": fields.password, "data": fields.metadata()}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.signup_url, json=body, headers=headers, params=params, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.signup_url, json=body, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.error("Account backend unreachable", error=str(e))
            return AccountCreationResult.failed(FailureReason.OTHER, str(e))

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code >= 400:
            try:
                error = SignupErrorBody.model_validate(payload)
            except ValidationError:
                error = SignupErrorBody()
            reason = classify_failure(error)
            logger.warning(
                "Account creation rejected",
                status_code=response.status_code,
                reason=reason.value,
                error_code=error.error_code,
                email=_redact_email(fields.email),
            )
            return AccountCreationResult.failed(reason, error.text or f"Signup failed ({response.status_code})")

        try:
            result = SignupResponse.from_payload(payload)
        except ValidationError as e:
            logger.error("Unexpected signup response", error=str(e))
            return AccountCreationResult.failed(FailureReason.OTHER, "Unexpected signup response")

        if result.user is None or not result.user.id:
            return AccountCreationResult.failed(FailureReason.OTHER, "Signup returned no user")

        needs_confirmation = not (result.user.email_confirmed_at or result.user.confirmed_at)
        logger.info(
            "Account created",
            email=_redact_email(fields.email),
            needs_email_confirmation=needs_confirmation,
        )
        return AccountCreationResult.created(needs_confirmation)
