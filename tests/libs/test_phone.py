import pytest

from libs.common.phone import (
    PhoneFormatError,
    build_phone_variants,
    is_valid_phone,
    normalize_phone,
    pretty_phone,
    provider_format,
    require_mobile_phone,
    require_phone,
)


@pytest.mark.parametrize(
    "raw",
    ["89991234567", "79991234567", "+7 (999) 123-45-67", "9991234567", "+7-999-123-45-67"],
)
def test_normalize_phone_to_canonical(raw):
    assert normalize_phone(raw) == "+79991234567"


def test_normalize_phone_keeps_last_ten_digits_of_long_input():
    assert normalize_phone("0079991234567") == "+79991234567"


def test_normalize_phone_short_input_is_invalid():
    normalized = normalize_phone("12345")
    assert normalized == "+12345"
    assert not is_valid_phone(normalized)
    with pytest.raises(PhoneFormatError):
        require_phone("12345")


def test_normalize_phone_empty():
    assert normalize_phone("") == ""
    assert normalize_phone(None) == ""


@pytest.mark.parametrize("raw", ["89991234567", "+7 999 123 45 67", "9991234567"])
def test_require_mobile_phone_accepts_mobile_numbers(raw):
    assert require_mobile_phone(raw) == "+79991234567"


@pytest.mark.parametrize("raw", ["+74951234567", "84951234567", "+380501234567", "12345"])
def test_require_mobile_phone_rejects_non_mobile(raw):
    with pytest.raises(PhoneFormatError):
        require_mobile_phone(raw)


def test_build_phone_variants():
    assert build_phone_variants("+79991234567") == [
        "+79991234567",
        "79991234567",
        "89991234567",
        "9991234567",
    ]
    assert build_phone_variants("123") == []


def test_provider_and_pretty_formats():
    assert provider_format("+79991234567") == "79991234567"
    assert pretty_phone("+79991234567") == "+7 999 123-45-67"
