import re

EMAIL_PATTERN = re.compile(
    r"(?!\.)(?!.*\.\.)[A-Za-z0-9._%+-]+(?<!\.)@(?:[A-Za-z0-9-]+\.)+[A-Za-z]{2,}"
)


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _check_digit(digits: str, first_weight: int) -> int:
    total = sum(int(d) * w for d, w in zip(digits, range(first_weight, 1, -1)))
    digit = 11 - (total % 11)
    return 0 if digit >= 10 else digit


def validate_national_id(value: str) -> bool:
    """Validate a CPF number, formatted or not."""
    digits = only_digits(value)
    if len(digits) != 11:
        return False
    if digits == digits[0] * 11:
        return False

    if _check_digit(digits[:9], 10) != int(digits[9]):
        return False
    return _check_digit(digits[:10], 11) == int(digits[10])


def format_national_id(value: str) -> str:
    """Return the ``XXX.XXX.XXX-XX`` form, or the bare digits if there are not 11."""
    digits = only_digits(value)
    if len(digits) != 11:
        return digits
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def validate_email(value: str) -> bool:
    if not value:
        return False
    return EMAIL_PATTERN.fullmatch(value) is not None
