"""
Tests for the account creation collaborator.
"""

import json

import httpx
import pytest

from src.signup.accounts import (
    AccountFields,
    FailureReason,
    SignupErrorBody,
    SupabaseAccountCreator,
    classify_failure,
)
from src.signup.config import get_config

FIELDS = AccountFields(
    email="sara@example.com",
    password="s3cret!",
    full_name="Sara Ali",
    username="sara_ali",
    date_of_birth="1990-03-05",
    country="Qatar",
    country_code="QA",
    city="Doha",
)


def _creator(handler) -> SupabaseAccountCreator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseAccountCreator(
        "https://project.supabase.test/",
        "anon-key",
        redirect_to="https://signup.test/confirmed",
        client=client,
    )


class TestClassifyFailure:

    def test_error_code_wins(self):
        body = SignupErrorBody(error_code="weak_password", msg="Something else")
        assert classify_failure(body) == FailureReason.WEAK_PASSWORD

    def test_other_error_code_ignores_message(self):
        body = SignupErrorBody(error_code="email_exists", msg="Password is weak")
        assert classify_failure(body) == FailureReason.OTHER

    def test_weak_password_field(self):
        body = SignupErrorBody(weak_password={"reasons": ["length"]})
        assert classify_failure(body) == FailureReason.WEAK_PASSWORD

    def test_message_fallback(self):
        body = SignupErrorBody(code=422, msg="Password should be at least 8 characters.")
        assert classify_failure(body) == FailureReason.WEAK_PASSWORD

    def test_unknown(self):
        assert classify_failure(SignupErrorBody(code=500, msg="Database error")) == FailureReason.OTHER


class TestSupabaseAccountCreator:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "user-1", "email": "sara@example.com"})

        await _creator(handler).create_account(FIELDS)

        assert seen["url"].path == "/auth/v1/signup"
        assert seen["url"].params["redirect_to"] == "https://signup.test/confirmed"
        assert seen["headers"]["apikey"] == "anon-key"
        assert seen["headers"]["authorization"] == "Bearer anon-key"
        assert seen["body"]["email"] == "sara@example.com"
        assert seen["body"]["password"] == "s3cret!"
        assert seen["body"]["data"] == {
            "full_name": "Sara Ali",
            "username": "sara_ali",
            "date_of_birth": "1990-03-05",
            "country": "Qatar",
            "country_code": "QA",
            "city": "Doha",
        }

    @pytest.mark.asyncio
    async def test_pending_confirmation(self):
        result = await _creator(
            lambda request: httpx.Response(200, json={"id": "user-1", "email": "sara@example.com"})
        ).create_account(FIELDS)

        assert result.success
        assert result.needs_email_confirmation

    @pytest.mark.asyncio
    async def test_auto_confirmed_session(self):
        payload = {
            "access_token": "token",
            "user": {"id": "user-1", "email_confirmed_at": "2024-01-01T00:00:00Z"},
        }
        result = await _creator(lambda request: httpx.Response(200, json=payload)).create_account(FIELDS)

        assert result.success
        assert not result.needs_email_confirmation

    @pytest.mark.asyncio
    async def test_weak_password_rejection(self):
        payload = {"code": 422, "error_code": "weak_password", "msg": "Password is known to be weak"}
        result = await _creator(lambda request: httpx.Response(422, json=payload)).create_account(FIELDS)

        assert not result.success
        assert result.reason == FailureReason.WEAK_PASSWORD
        assert result.message == "Password is known to be weak"

    @pytest.mark.asyncio
    async def test_other_rejection(self):
        payload = {"code": 422, "error_code": "email_exists", "msg": "User already registered"}
        result = await _creator(lambda request: httpx.Response(422, json=payload)).create_account(FIELDS)

        assert result.reason == FailureReason.OTHER
        assert result.message == "User already registered"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        result = await _creator(lambda request: httpx.Response(502, text="Bad gateway")).create_account(FIELDS)

        assert result.reason == FailureReason.OTHER
        assert result.message == "Signup failed (502)"

    @pytest.mark.asyncio
    async def test_network_failure_is_returned_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        result = await _creator(handler).create_account(FIELDS)

        assert not result.success
        assert result.reason == FailureReason.OTHER

    @pytest.mark.asyncio
    async def test_missing_user_is_failure(self):
        result = await _creator(lambda request: httpx.Response(200, json={})).create_account(FIELDS)
        assert not result.success

    def test_from_config_defaults_redirect(self):
        creator = SupabaseAccountCreator.from_config(get_config())
        assert creator.signup_url == "https://project.supabase.test/auth/v1/signup"
        assert creator.redirect_to == "https://signup.test/confirmed"
