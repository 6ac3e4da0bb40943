import re

_TEN_DIGITS = re.compile(r"^[0-9]{10}$")
_WHITESPACE = re.compile(r"\s")


def normalise(nhs_number: str) -> str:
    return _WHITESPACE.sub("", nhs_number)


def is_well_formed(nhs_number: str) -> bool:
    """Exactly 10 ASCII digits once whitespace is removed."""
    return bool(_TEN_DIGITS.match(normalise(nhs_number)))


def check_digit(first_nine: str) -> int | None:
    """Modulus 11 check digit for the first nine digits. None means no valid number exists."""
    total = sum(int(d) * (10 - i) for i, d in enumerate(first_nine))
    expected = (11 - total % 11) % 11
    if expected == 10:
        return None
    return expected


def validate_nhs_number(nhs_number: str, enforce_checksum: bool = True) -> bool:
    nhs_number = normalise(nhs_number)
    if not _TEN_DIGITS.match(nhs_number):
        return False
    if not enforce_checksum:
        return True
    return check_digit(nhs_number[:9]) == int(nhs_number[9])


def mask_nhs_number(value: str) -> str:
    if not value or len(value) < 4:
        return value
    return re.sub(r"\d", "*", value[:-4]) + value[-4:]
