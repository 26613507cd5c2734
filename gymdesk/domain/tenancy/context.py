"""
Tenant context and analytics scope resolution.

``TenantContext`` is an explicit object carrying the current account and
franchise, passed to whatever needs it; observers subscribe to be told when
it changes.
"""
import logging
from typing import Callable, List, Optional

from gymdesk.db.store import DataStore, DataStoreError, ScopeViolationError, eq
from gymdesk.domain.tenancy.currency import DEFAULT_CURRENCY, CurrencyInfo, CurrencyResolver, format_currency
from gymdesk.domain.tenancy.scope import TenantScope

logger = logging.getLogger(__name__)

ALL_FRANCHISES = "all"

Listener = Callable[["TenantContext"], None]


def list_franchises(store: DataStore, account_id: str) -> List[dict]:
    """Subaccounts of an account, ordered by name."""
    return store.select("subaccounts", filters=(eq("account_id", account_id),), order_by="name")


def is_account_owner(store: DataStore, *, user_id: str, account_id: str, subaccount_id: str) -> bool:
    membership = store.select_one(
        "user_accounts",
        filters=(
            eq("user_id", user_id),
            eq("account_id", account_id),
            eq("subaccount_id", subaccount_id),
        ),
    )
    return bool(membership and membership.get("is_owner"))


def resolve_analytics_scope(
    store: DataStore,
    *,
    user_id: Optional[str],
    account_id: str,
    subaccount_id: str,
    selected_franchise: str = ALL_FRANCHISES,
) -> TenantScope:
    """
    Work out which franchises an analytics request covers.

    Owners with franchises get all of them for ``"all"``, or the selected one,
    which must belong to the account. Everyone else, and any owner whose
    lookups fail, is scoped to the current subaccount.
    """
    current = TenantScope.single(subaccount_id)
    if not user_id:
        return current

    try:
        owner = is_account_owner(store, user_id=user_id, account_id=account_id, subaccount_id=subaccount_id)
    except DataStoreError as exc:
        logger.error("Error checking ownership for user %s: %s", user_id, exc)
        return current
    if not owner:
        return current

    try:
        franchises = list_franchises(store, account_id)
    except DataStoreError as exc:
        logger.error("Error loading franchises for account %s: %s", account_id, exc)
        return current
    if not franchises:
        return current

    franchise_ids = [row["id"] for row in franchises]
    if not selected_franchise or selected_franchise == ALL_FRANCHISES:
        return TenantScope.of(franchise_ids)
    if selected_franchise not in franchise_ids:
        raise ScopeViolationError(f"Franchise {selected_franchise} does not belong to account {account_id}")
    return TenantScope.single(selected_franchise)


class TenantContext:
    """Current account/franchise selection with change notification."""

    def __init__(
        self,
        account_id: Optional[str] = None,
        subaccount_id: Optional[str] = None,
        *,
        currency_resolver: Optional[CurrencyResolver] = None,
    ):
        self.account_id = account_id
        self.subaccount_id = subaccount_id
        self.currency_resolver = currency_resolver
        self.currency: CurrencyInfo = DEFAULT_CURRENCY
        self.version = 0
        self._listeners: List[Listener] = []
        if account_id:
            self._load_currency()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def switch(self, account_id: str, subaccount_id: str) -> bool:
        """Select a new account/franchise. Returns False when nothing changed."""
        if account_id == self.account_id and subaccount_id == self.subaccount_id:
            logger.debug("Tenant context unchanged, skipping update")
            return False

        account_changed = account_id != self.account_id
        self.account_id = account_id
        self.subaccount_id = subaccount_id
        if account_changed:
            self._load_currency()
        self._bump()
        return True

    def refresh(self) -> None:
        self._bump()

    def scope(self) -> TenantScope:
        if not self.subaccount_id:
            raise ScopeViolationError("No franchise selected")
        return TenantScope.single(self.subaccount_id)

    def format_amount(self, amount) -> str:
        return format_currency(amount, self.currency.code)

    def _load_currency(self) -> None:
        if self.currency_resolver is None or not self.account_id:
            self.currency = DEFAULT_CURRENCY
            return
        self.currency = self.currency_resolver.resolve(self.account_id)

    def _bump(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            listener(self)
