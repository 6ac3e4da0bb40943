"""Tests for NHS number validation (modulus 11) and masking."""

import pytest

from rxautomate.nhs.nhs_number import (
    check_digit,
    is_well_formed,
    mask_nhs_number,
    normalise,
    validate_nhs_number,
)


class TestValidateNhsNumber:
    def test_valid_number(self):
        assert validate_nhs_number("9434765870") is True

    def test_whitespace_is_ignored(self):
        assert validate_nhs_number("943 476 5870") is True
        assert normalise(" 943 476\t5870 ") == "9434765870"

    def test_wrong_check_digit(self):
        assert validate_nhs_number("9434765871") is False

    def test_check_digit_of_ten_is_never_valid(self):
        # 1234567890: weighted sum 210, 11 - (210 % 11) == 10
        assert check_digit("123456789") is None
        assert validate_nhs_number("1234567890") is False

    @pytest.mark.parametrize("value", ["", "943476587", "94347658701", "94347658a0", "943-476-5870"])
    def test_malformed(self, value):
        assert validate_nhs_number(value) is False

    def test_checksum_can_be_relaxed(self):
        assert validate_nhs_number("9434765871", enforce_checksum=False) is True
        assert validate_nhs_number("94347658a1", enforce_checksum=False) is False

    def test_check_digit_eleven_maps_to_zero(self):
        assert check_digit("943476587") == 0

    def test_is_well_formed(self):
        assert is_well_formed("9434765871") is True
        assert is_well_formed("12345") is False


class TestMaskNhsNumber:
    def test_masks_all_but_last_four(self):
        assert mask_nhs_number("9434765870") == "******5870"

    def test_short_values_untouched(self):
        assert mask_nhs_number("123") == "123"
        assert mask_nhs_number("") == ""
