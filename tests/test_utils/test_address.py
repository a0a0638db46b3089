"""Tests for address and postcode normalization utilities."""

import pytest

from hmo_hunter.utils.address import (
    compact_postcode,
    extract_outcode,
    extract_street_number,
    is_full_postcode,
    is_number_token,
    normalize_address,
    normalize_postcode,
    significant_tokens,
)


class TestNormalizeAddress:
    @pytest.mark.parametrize(
        ("address", "expected"),
        [
            ("Flat 2, 10 Mare Street", "10 mare street"),
            ("St. John's Road", "st johns road"),
            ("10  DOWNING   STREET", "10 downing street"),
            ("Apartment 4B 22 Holloway Road", "22 holloway road"),
            ("12 Mare Street, Hackney, London", "12 mare street hackney london"),
        ],
    )
    def test_normalizes(self, address: str, expected: str) -> None:
        assert normalize_address(address) == expected

    @pytest.mark.parametrize("address", [None, ""])
    def test_empty(self, address: str | None) -> None:
        assert normalize_address(address) == ""


class TestExtractStreetNumber:
    def test_leading_number(self) -> None:
        assert extract_street_number("12a Mare Street") == "12a"

    def test_number_after_house_name(self) -> None:
        assert extract_street_number("The Lodge, 4 Mill Lane") == "4"

    def test_unit_prefix_stripped(self) -> None:
        assert extract_street_number("Flat 3, 10 Mare St") == "10"

    def test_postcode_digits_not_taken(self) -> None:
        assert extract_street_number("Mill Lane, London E8 3RH") is None

    def test_no_number(self) -> None:
        assert extract_street_number("Rose Cottage, Mill Lane") is None
        assert extract_street_number(None) is None


class TestTokens:
    def test_significant_tokens_drop_short_words_and_numbers(self) -> None:
        assert significant_tokens("10 Mare St, London") == {"mare", "london"}

    @pytest.mark.parametrize(("token", "expected"), [("10", True), ("12a", True), ("a12", False)])
    def test_is_number_token(self, token: str, expected: bool) -> None:
        assert is_number_token(token) is expected


class TestNormalizePostcode:
    @pytest.mark.parametrize(
        ("postcode", "expected"),
        [
            ("e83rh", "E8 3RH"),
            ("  n7   6pa ", "N7 6PA"),
            ("SW1A1AA", "SW1A 1AA"),
            ("e8", "E8"),
        ],
    )
    def test_normalizes(self, postcode: str, expected: str) -> None:
        assert normalize_postcode(postcode) == expected

    @pytest.mark.parametrize("postcode", [None, "", "   "])
    def test_empty(self, postcode: str | None) -> None:
        assert normalize_postcode(postcode) is None

    def test_compact(self) -> None:
        assert compact_postcode("n7 6pa") == "N76PA"


class TestPostcodeParts:
    @pytest.mark.parametrize(
        ("postcode", "expected"),
        [("E8 3RH", True), ("e83rh", True), ("E8", False), (None, False), ("nonsense", False)],
    )
    def test_is_full_postcode(self, postcode: str | None, expected: bool) -> None:
        assert is_full_postcode(postcode) is expected

    @pytest.mark.parametrize(
        ("postcode", "expected"),
        [("E8 3RH", "E8"), ("SW1A 1AA", "SW1A"), ("n16", "N16"), ("", None), ("123", None)],
    )
    def test_extract_outcode(self, postcode: str, expected: str | None) -> None:
        assert extract_outcode(postcode) == expected
