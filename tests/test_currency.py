"""
Test suite for currency module

Tests tier lookup, validation of caller-supplied identifiers, and the
composite account key.
"""

import pytest

from game_economy.currency import (
    CurrencyType, InvalidCurrencyError, AccountKey,
    DEFAULT_CURRENCY, resolve_currency
)


class TestCurrencyType:
    """Test CurrencyType lookup"""

    def test_four_tiers_in_order(self):
        """The closed set holds exactly four tiers, lowest first"""
        assert CurrencyType.names() == ["coin", "copper", "silver", "gold"]

    def test_from_name_is_case_insensitive(self):
        assert CurrencyType.from_name("coin") is CurrencyType.COIN
        assert CurrencyType.from_name("GOLD") is CurrencyType.GOLD
        assert CurrencyType.from_name("SiLvEr") is CurrencyType.SILVER

    def test_from_name_unknown_returns_none(self):
        """Unknown input is a well-defined miss, never an exception"""
        assert CurrencyType.from_name("platinum") is None
        assert CurrencyType.from_name("") is None
        assert CurrencyType.from_name(None) is None
        assert CurrencyType.from_name(42) is None

    def test_from_name_requires_exact_match(self):
        assert CurrencyType.from_name(" coin") is None
        assert CurrencyType.from_name("coins") is None
        assert CurrencyType.from_name("co") is None

    def test_column_is_tier_name(self):
        for currency in CurrencyType:
            assert currency.column == currency.value

    def test_default_currency(self):
        assert DEFAULT_CURRENCY is CurrencyType.COIN


class TestResolveCurrency:
    """Test validation entry point used by the stores"""

    def test_passes_enum_through(self):
        assert resolve_currency(CurrencyType.COPPER) is CurrencyType.COPPER

    def test_resolves_strings(self):
        assert resolve_currency("Copper") is CurrencyType.COPPER

    def test_rejects_unknown(self):
        with pytest.raises(InvalidCurrencyError) as exc_info:
            resolve_currency("gems")

        assert exc_info.value.currency == "gems"
        assert "coin" in str(exc_info.value)

    def test_rejects_sql_fragments(self):
        """Caller text never becomes a column name"""
        with pytest.raises(InvalidCurrencyError):
            resolve_currency("coin = 0; DROP TABLE economy_accounts; --")

    def test_invalid_currency_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_currency("diamond")


class TestAccountKey:
    """Test composite account key"""

    def test_equality_and_hashing(self):
        a = AccountKey("uuid-1", "PLAYER")
        b = AccountKey("uuid-1", "PLAYER")
        c = AccountKey("uuid-1", "GUILD")

        assert a == b
        assert hash(a) == hash(b)
        assert a != c
        assert len({a, b, c}) == 2

    def test_string_form(self):
        assert str(AccountKey("uuid-1", "PLAYER")) == "PLAYER:uuid-1"

    def test_rejects_empty_parts(self):
        with pytest.raises(ValueError):
            AccountKey("", "PLAYER")
        with pytest.raises(ValueError):
            AccountKey("uuid-1", "")
