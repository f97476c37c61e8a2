"""Tests for the NIP checksum used by customer onboarding."""

import pytest

from taxflow_kernel.steps.nip import is_valid_nip, normalize_nip


class TestIsValidNip:
    @pytest.mark.parametrize("nip", ["5260250995", "7740001454", "526-025-09-95", "526 025 09 95"])
    def test_valid(self, nip):
        assert is_valid_nip(nip)

    @pytest.mark.parametrize(
        "nip",
        [
            "5260250994",  # wrong control digit
            "526025099",  # too short
            "52602509955",  # too long
            "52602509a5",
            "1111111111",  # all digits identical
            "0000000000",
            "",
            None,
        ],
    )
    def test_invalid(self, nip):
        assert not is_valid_nip(nip)

    def test_checksum_ten_maps_to_zero(self):
        # weighted sum of 123456789 is 230; 230 % 11 == 10
        assert is_valid_nip("1234567890")
        assert not is_valid_nip("1234567891")


class TestNormalizeNip:
    def test_strips_dashes_and_spaces(self):
        assert normalize_nip("526-025 09-95") == "5260250995"
