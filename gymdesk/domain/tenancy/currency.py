"""
Account currency lookup and amount formatting.
"""
import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Optional, Union

from gymdesk.core.config import settings
from gymdesk.db.store import DataStore, DataStoreError, eq

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrencyInfo:
    symbol: str
    code: str
    name: str
    id: Optional[str] = None


CURRENCIES: Dict[str, CurrencyInfo] = {
    "INR": CurrencyInfo(symbol="₹", code="INR", name="Indian Rupee"),
    "USD": CurrencyInfo(symbol="$", code="USD", name="US Dollar"),
}

DEFAULT_CURRENCY: CurrencyInfo = CURRENCIES.get(settings.default_currency.upper(), CURRENCIES["INR"])

_NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_CURRENCY_NOISE = re.compile(r"[₹$,\s]")


def _group_digits(integer: str, indian: bool) -> str:
    """Group an unsigned digit string: 12,34,567 (Indian) or 1,234,567."""
    if len(integer) <= 3:
        return integer
    if not indian:
        return f"{int(integer):,}"

    head, tail = integer[:-3], integer[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Union[int, float, str, Decimal, None], code: str = "INR", show_code: bool = False) -> str:
    """
    Format an amount with its currency symbol, at most two decimals.

    INR uses Indian digit grouping (``₹12,34,567.5``); other currencies use
    Western grouping. Unparseable amounts render as ``{symbol}0``.
    """
    currency = CURRENCIES.get(code, DEFAULT_CURRENCY)

    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return f"{currency.symbol}0"
    if not value.is_finite():
        return f"{currency.symbol}0"

    rounded = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    integer, _, fraction = f"{abs(rounded):.2f}".partition(".")
    fraction = fraction.rstrip("0")

    number = _group_digits(integer, indian=(code == "INR"))
    if fraction:
        number = f"{number}.{fraction}"
    if rounded < 0:
        number = f"-{number}"

    if show_code:
        return f"{currency.symbol}{number} {currency.code}"
    return f"{currency.symbol}{number}"


def parse_currency(text: str) -> float:
    """Strip symbols, separators and whitespace; 0.0 when no number remains."""
    match = _NUMBER_PREFIX.match(_CURRENCY_NOISE.sub("", text or ""))
    if not match:
        return 0.0
    return float(match.group(0))


class CurrencyResolver:
    """Resolves an account's currency, caching successful lookups per account."""

    def __init__(self, store: DataStore):
        self.store = store
        self._cache: Dict[str, CurrencyInfo] = {}

    def resolve(self, account_id: str) -> CurrencyInfo:
        if account_id in self._cache:
            return self._cache[account_id]

        try:
            account = self.store.select_one("accounts", filters=(eq("id", account_id),), embed=("currency",))
        except DataStoreError as exc:
            logger.warning("Failed to fetch currency for account %s, using default: %s", account_id, exc)
            return DEFAULT_CURRENCY

        row = (account or {}).get("currency")
        if not row:
            logger.warning("Account %s has no currency configured, using default", account_id)
            return DEFAULT_CURRENCY

        info = CurrencyInfo(symbol=row["symbol"], code=row["code"], name=row["name"], id=row["id"])
        self._cache[account_id] = info
        return info

    def clear(self, account_id: Optional[str] = None) -> None:
        if account_id is None:
            self._cache.clear()
        else:
            self._cache.pop(account_id, None)
