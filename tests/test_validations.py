import pytest

from conftest import make_national_id
from unilib.validations import (
    format_national_id,
    only_digits,
    validate_email,
    validate_national_id,
)


@pytest.mark.parametrize(
    "national_id",
    ["123.456.789-09", "12345678909", "111.444.777-35", "11144477735", "529.982.247-25"],
)
def test_valid_national_ids(national_id):
    assert validate_national_id(national_id) is True


@pytest.mark.parametrize(
    "national_id",
    [
        "123.456.789-00",
        "111.111.111-11",
        "123.456.789-99",
        "123",
        "",
        "abc.def.ghi-jk",
        "123.456.789",
        "123.456.789-1",
        "123.456.789-091",
    ],
)
def test_invalid_national_ids(national_id):
    assert validate_national_id(national_id) is False


@pytest.mark.parametrize("base", [f"{n:09d}" for n in range(100000001, 999999999, 37999999)])
def test_generated_checksums_are_accepted(base):
    assert validate_national_id(make_national_id(base)) is True


@pytest.mark.parametrize("digit", "0123456789")
def test_repeated_digit_sequences_are_rejected(digit):
    assert validate_national_id(digit * 11) is False


def test_wrong_second_check_digit_is_rejected():
    national_id = make_national_id("529982247")
    tampered = national_id[:10] + str((int(national_id[10]) + 1) % 10)
    assert validate_national_id(tampered) is False


def test_format_national_id():
    assert format_national_id("12345678909") == "123.456.789-09"
    assert format_national_id("11144477735") == "111.444.777-35"


def test_format_national_id_keeps_existing_format():
    assert format_national_id("123.456.789-09") == "123.456.789-09"


def test_format_national_id_strips_non_digits():
    assert format_national_id("123abc456def789ghi09") == "123.456.789-09"
    assert format_national_id("123 456 789 09") == "123.456.789-09"


@pytest.mark.parametrize(
    "value", ["12345678909", "123.456.789-09", " 111 444 777 35 ", "123", ""]
)
def test_format_national_id_is_idempotent(value):
    once = format_national_id(value)
    assert format_national_id(once) == once


def test_only_digits():
    assert only_digits("(91) 99999-9999") == "91999999999"
    assert only_digits(None) == ""


@pytest.mark.parametrize(
    "email",
    [
        "teste@exemplo.com",
        "usuario.teste@dominio.com.br",
        "admin@cesupa.br",
        "joao.silva123@universidade.edu.br",
        "contato+info@empresa.org",
    ],
)
def test_valid_emails(email):
    assert validate_email(email) is True


@pytest.mark.parametrize(
    "email",
    [
        "email-invalido",
        "@dominio.com",
        "teste@",
        "teste@dominio",
        "",
        None,
        "teste..teste@dominio.com",
        "teste@dominio..com",
        "teste @dominio.com",
        "teste@dominio .com",
        ".teste@dominio.com",
        "teste.@dominio.com",
        "teste@dominio.com\n",
    ],
)
def test_invalid_emails(email):
    assert validate_email(email) is False
