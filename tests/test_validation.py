from datetime import date

import pytest

from clientflow.client.validation import (
    password_strength,
    validate_date_range,
    validate_email,
    validate_field,
    validate_file_size,
    validate_file_type,
    validate_form,
    validate_min_length,
    validate_password,
    validate_percentage,
    validate_phone,
    validate_positive_number,
    validate_required,
    validate_url,
)


def test_password_without_uppercase_is_rejected():
    result = validate_password("abc123")
    assert not result.is_valid


def test_password_meeting_all_rules_is_accepted():
    assert validate_password("Abcdef12").is_valid


@pytest.mark.parametrize(
    "password,error",
    [
        ("", "Password is required"),
        ("Ab1", "Password must be at least 8 characters"),
        ("abcdefg1", "Password must contain an uppercase letter"),
        ("ABCDEFG1", "Password must contain a lowercase letter"),
        ("Abcdefgh", "Password must contain a number"),
    ],
)
def test_password_reports_first_failing_rule(password, error):
    assert validate_password(password).error == error


def test_email_format():
    assert validate_email("emma@clientflow.io").is_valid
    assert validate_email("").error == "Email is required"
    assert validate_email("emma@clientflow").error == "Invalid email format"
    assert not validate_email("emma @clientflow.io").is_valid


def test_optional_fields_accept_empty_values():
    assert validate_phone("").is_valid
    assert validate_url(None).is_valid


def test_phone_needs_ten_digits():
    assert validate_phone("+1 (555) 123-4567").is_valid
    assert not validate_phone("555-1234").is_valid
    assert not validate_phone("call me maybe").is_valid


def test_url_needs_scheme_and_host():
    assert validate_url("https://clientflow.io/reports").is_valid
    assert not validate_url("clientflow.io").is_valid


def test_required_rejects_blank_strings():
    assert not validate_required("   ").is_valid
    assert not validate_required(None).is_valid
    assert validate_required(0).is_valid


def test_numeric_validators():
    assert validate_positive_number("12.5").is_valid
    assert not validate_positive_number(-1).is_valid
    assert not validate_positive_number("abc").is_valid
    assert validate_percentage(100).is_valid
    assert not validate_percentage(100.1).is_valid


def test_date_range():
    assert validate_date_range(date(2024, 1, 1), date(2024, 1, 31)).is_valid
    assert validate_date_range("2024-01-31", "2024-01-01").error == "End date must be after start date"
    assert validate_date_range("not a date", "2024-01-01").error == "Please enter a valid date"


def test_file_checks():
    assert validate_file_size(10 * 1024 * 1024).is_valid
    assert validate_file_size(10 * 1024 * 1024 + 1).error == "File size must be less than 10MB"
    assert validate_file_type("report.PDF", ["pdf", ".png"]).is_valid
    assert not validate_file_type("script.exe", ["pdf", "png"]).is_valid


def test_validate_field_stops_at_first_failure():
    rules = [validate_required, lambda v: validate_min_length(v, 5)]
    assert validate_field("", rules).error == "This field is required"
    assert validate_field("abc", rules).error == "Minimum 5 characters required"
    assert validate_field("abcdef", rules).is_valid


def test_validate_form_collects_errors_per_field():
    errors = validate_form(
        {"email": "nope", "password": "Abcdef12"},
        {"email": [validate_email], "password": [validate_password]},
    )
    assert errors == {"email": "Invalid email format"}


def test_password_strength_labels():
    assert password_strength("") == (0, "None")
    assert password_strength("abc")[1] == "Weak"
    assert password_strength("Abcdef12!xyz")[1] == "Strong"
