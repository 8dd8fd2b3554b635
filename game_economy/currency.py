"""
Currency Tier Module

Defines the closed set of currency tiers tracked per account. Each tier maps
to exactly one balance column in the ledger table, so resolving a caller's
currency string through this module is the only way a column name ever
reaches a SQL statement.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union


class InvalidCurrencyError(ValueError):
    """Raised when a currency identifier is not one of the known tiers"""

    def __init__(self, currency: object):
        self.currency = currency
        super().__init__(
            f"Unknown currency '{currency}'. Expected one of: {', '.join(CurrencyType.names())}"
        )


class CurrencyType(Enum):
    """Currency tiers, lowest first. The value doubles as the column name."""
    COIN = "coin"
    COPPER = "copper"
    SILVER = "silver"
    GOLD = "gold"

    @property
    def column(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional['CurrencyType']:
        """
        Case-insensitive exact match against the tier names.

        Returns None for anything unknown instead of raising, so callers
        can branch on the result when parsing user input.
        """
        if not isinstance(name, str):
            return None
        lowered = name.lower()
        for currency in cls:
            if currency.value == lowered:
                return currency
        return None

    @classmethod
    def names(cls) -> List[str]:
        """All tier names in declaration order"""
        return [currency.value for currency in cls]


DEFAULT_CURRENCY = CurrencyType.COIN

# Conventional account_type tag for player wallets
PLAYER = "PLAYER"


def resolve_currency(currency: Union[CurrencyType, str]) -> CurrencyType:
    """
    Normalize a currency argument to a CurrencyType.

    Raises:
        InvalidCurrencyError: if the identifier is not a known tier
    """
    if isinstance(currency, CurrencyType):
        return currency
    resolved = CurrencyType.from_name(currency)
    if resolved is None:
        raise InvalidCurrencyError(currency)
    return resolved


@dataclass(frozen=True)
class AccountKey:
    """Composite ledger key: an identifier plus its category tag"""
    account_id: str
    account_type: str

    def __post_init__(self):
        if not self.account_id:
            raise ValueError("account_id must not be empty")
        if not self.account_type:
            raise ValueError("account_type must not be empty")

    def __str__(self) -> str:
        return f"{self.account_type}:{self.account_id}"

