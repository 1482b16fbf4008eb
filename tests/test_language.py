"""
Tests for locale handling and the interview script.
"""

import pytest

from src.signup.language import (
    LocalizedText,
    is_arabic_text,
    localize,
    normalize_for_matching,
    normalize_locale,
)
from src.signup.steps import (
    ANSWERABLE_STEP_COUNT,
    GREETING_TEXT,
    STEPS,
    VERBATIM_INSTRUCTION,
    StepId,
    acknowledgements_for,
    pick_acknowledgement,
    step_index,
)


class TestLocale:

    @pytest.mark.parametrize(
        "raw, expected",
        [("ar-QA", "ar"), ("AR", "ar"), ("en_US", "en"), ("fr", "en"), (None, "en"), ("", "en")],
    )
    def test_normalize_locale(self, raw, expected):
        assert normalize_locale(raw) == expected

    def test_normalize_locale_custom_default(self):
        assert normalize_locale("de", default="ar") == "ar"

    def test_is_arabic_text(self):
        assert is_arabic_text("مرحبا")
        assert not is_arabic_text("hello")
        assert not is_arabic_text("مرحبا hello")

    def test_normalize_for_matching_drops_tatweel(self):
        assert normalize_for_matching("  قـطـر ") == "قطر"

    def test_localized_text(self):
        text = LocalizedText("Hi {name}", "أهلا {name}")
        assert text.get("en") == "Hi {name}"
        assert text.format("ar", name="سارة") == "أهلا سارة"
        assert bool(LocalizedText("", "")) is False

    def test_format_missing_placeholder_returns_template(self):
        assert LocalizedText("Hi {name}", "").format("en", other="x") == "Hi {name}"

    def test_localize(self):
        assert localize("ar", "yes", "نعم") == "نعم"
        assert localize("en", "yes", "نعم") == "yes"


class TestSteps:

    def test_order(self):
        assert [step.id for step in STEPS] == [
            StepId.GREETING,
            StepId.NAME,
            StepId.USERNAME,
            StepId.EMAIL,
            StepId.PASSWORD,
            StepId.CONFIRM_PASSWORD,
            StepId.DOB,
            StepId.COUNTRY,
            StepId.CITY,
            StepId.TERMS,
            StepId.CREATING,
            StepId.WELCOME,
        ]

    def test_optional_steps(self):
        optional = {step.id for step in STEPS if not step.required}
        assert optional == {StepId.DOB, StepId.COUNTRY, StepId.CITY}

    def test_password_family_is_typed(self):
        assert not STEPS[step_index(StepId.PASSWORD)].voice
        assert not STEPS[step_index(StepId.CONFIRM_PASSWORD)].voice

    def test_silent_steps(self):
        silent = {step.id for step in STEPS if step.is_silent}
        assert silent == {StepId.GREETING, StepId.CREATING, StepId.WELCOME}
        assert ANSWERABLE_STEP_COUNT == 9

    def test_every_prompt_is_bilingual(self):
        for step in STEPS:
            if not step.is_silent:
                assert step.prompt.en and step.prompt.ar

    def test_step_index_accepts_string(self):
        assert step_index("email") == 3

    def test_greeting_names_agent(self):
        assert "Wakti" in GREETING_TEXT.format("en", agent_name="Wakti")

    def test_verbatim_instruction_wraps_text(self):
        assert '"What\'s your name?"' in VERBATIM_INSTRUCTION.format("en", text="What's your name?")


class TestAcknowledgements:

    def test_pick_uses_chooser(self):
        picked = pick_acknowledgement(StepId.NAME, "en", choose=lambda options: options[-1])
        assert picked == acknowledgements_for(StepId.NAME, "en")[-1]

    def test_arabic_remarks(self):
        assert all(is_arabic_text(remark) for remark in acknowledgements_for("email", "ar"))

    @pytest.mark.parametrize("step_id", [StepId.PASSWORD, StepId.CONFIRM_PASSWORD, StepId.TERMS, StepId.GREETING])
    def test_no_remark_for_typed_or_silent_steps(self, step_id):
        assert pick_acknowledgement(step_id, "en") is None
