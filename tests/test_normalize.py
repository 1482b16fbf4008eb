"""
Tests for utterance normalization.
"""

import pytest

from src.signup.normalize import (
    clean_email,
    extract_free_text,
    extract_name,
    extract_username,
    join_spelled_letters,
    match_country,
    normalize_for_step,
    parse_date_of_birth,
)


class TestSpelledLetters:
    """Tests for joining letter-by-letter spelling."""

    def test_space_separated_letters_join(self):
        assert join_spelled_letters("a b d u l l a h") == "abdullah"

    def test_dash_separated_letters_join_lowercase(self):
        assert join_spelled_letters("A-L-I") == "ali"

    def test_letters_with_digit_run(self):
        assert join_spelled_letters("v x r 10") == "vxr10"

    def test_fewer_than_three_singles_unchanged(self):
        assert join_spelled_letters("j smith") == "j smith"

    def test_mixed_words_unchanged(self):
        assert join_spelled_letters("j o hn") == "j o hn"

    def test_empty(self):
        assert join_spelled_letters("") == ""


class TestExtractName:
    """Tests for name extraction."""

    def test_strips_lead_in_and_capitalizes(self):
        assert extract_name("my name is john smith") == "John Smith"

    def test_strips_filler_then_lead_in(self):
        assert extract_name("um, my name is sara") == "Sara"

    def test_trailing_punctuation(self):
        assert extract_name("I'm Omar.") == "Omar"

    def test_spelled_name(self):
        assert extract_name("a-l-i") == "Ali"

    def test_hyphenated_name(self):
        assert extract_name("mary-jane watson") == "Mary-Jane Watson"

    @pytest.mark.parametrize(
        "spoken, expected",
        [
            ("my name is So-yeon Park", "So-Yeon Park"),
            ("Ah-young Lee", "Ah-Young Lee"),
            ("Well-Smith", "Well-Smith"),
            ("um-hee Kim", "Um-Hee Kim"),
        ],
    )
    def test_hyphenated_name_starting_like_filler(self, spoken, expected):
        assert extract_name(spoken) == expected

    def test_filler_before_hyphenated_name(self):
        assert extract_name("so, my name is So-yeon Park") == "So-Yeon Park"

    def test_arabic_name_kept(self):
        assert extract_name("اسمي علي") == "علي"

    def test_only_lead_in_yields_empty(self):
        assert extract_name("my name is") == ""

    def test_idempotent(self):
        once = extract_name("call me ahmed hassan")
        assert extract_name(once) == once


class TestExtractUsername:
    """Tests for username extraction."""

    def test_lead_in_and_spaces(self):
        assert extract_username("my username should be John Doe!") == "john_doe"

    def test_spelled_username(self):
        assert extract_username("j o h n 9 9") == "john99"

    def test_only_safe_characters(self):
        assert extract_username("cool.cat-42") == "coolcat42"

    def test_idempotent(self):
        once = extract_username("make it Star Gazer")
        assert once == "star_gazer"
        assert extract_username(once) == once


class TestCleanEmail:
    """Tests for spoken email reconstruction."""

    def test_spoken_at_and_dot(self):
        assert clean_email("v x r 10 at hotmail dot com") == "vxr10@hotmail.com"

    def test_lead_in_and_case(self):
        assert clean_email("My email is John.Doe@Example.com") == "john.doe@example.com"

    def test_underscore_and_dash(self):
        assert clean_email("first underscore last at my dash mail dot org") == "first_last@my-mail.org"

    def test_trailing_period(self):
        assert clean_email("sam@site.io.") == "sam@site.io"

    def test_idempotent(self):
        once = clean_email("it's alex at gmail dot com")
        assert once == "alex@gmail.com"
        assert clean_email(once) == once


class TestDateOfBirth:
    """Tests for date parsing."""

    def test_spoken_month_day_year(self):
        assert parse_date_of_birth("I was born on March 5th, 1990") == "1990-03-05"

    def test_day_first_numeric(self):
        assert parse_date_of_birth("15/08/1992") == "1992-08-15"

    def test_month_first_when_day_first_impossible(self):
        assert parse_date_of_birth("08/15/1992") == "1992-08-15"

    def test_iso_passthrough(self):
        assert parse_date_of_birth("1985-12-01") == "1985-12-01"

    def test_arabic_indic_digits(self):
        assert parse_date_of_birth("٠٥/٠٣/١٩٩٠") == "1990-03-05"

    def test_unparseable_returns_cleaned_text(self):
        assert parse_date_of_birth("a long time ago") == "a long time ago"

    def test_invalid_calendar_date_not_parsed(self):
        assert parse_date_of_birth("31/02/1990") == "31/02/1990"


class TestFreeTextAndCountry:
    """Tests for country and city answers."""

    def test_strips_lead_in(self):
        assert extract_free_text("I'm from Qatar.") == "Qatar"

    def test_arabic_lead_in(self):
        assert extract_free_text("أنا من مصر") == "مصر"

    def test_match_by_name(self):
        country = match_country("saudi arabia")
        assert country is not None
        assert country.code == "SA"

    def test_match_by_arabic_name(self):
        country = match_country("قطر")
        assert country is not None
        assert country.code == "QA"

    def test_match_by_code(self):
        country = match_country("ae")
        assert country is not None
        assert country.name == "United Arab Emirates"

    def test_partial_match(self):
        country = match_country("emirates")
        assert country is not None
        assert country.code == "AE"

    def test_no_match(self):
        assert match_country("Atlantis") is None

    def test_empty(self):
        assert match_country("") is None


class TestNormalizeForStep:
    """Tests for the per-step dispatcher."""

    @pytest.mark.parametrize(
        "step_id, raw, expected",
        [
            ("name", "my name is john", "John"),
            ("username", "username is Cool Cat", "cool_cat"),
            ("email", "bob at test dot com", "bob@test.com"),
            ("dob", "born on 1 jan 2000", "2000-01-01"),
            ("country", "I live in Egypt", "Egypt"),
            ("city", "my city is Doha", "Doha"),
            ("password", "  secret  ", "secret"),
        ],
    )
    def test_dispatch(self, step_id, raw, expected):
        assert normalize_for_step(step_id, raw) == expected

    def test_empty_input(self):
        assert normalize_for_step("name", "") == ""
