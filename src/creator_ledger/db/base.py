from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Mapping, Optional, Tuple

from ..models.account import Account, PaymentMethod
from ..models.items import ItemKind, MonetizableItemBase
from ..models.ledger import LedgerEvent
from ..models.membership import Membership, Ownership
from ..models.notification import NotificationEvent
from ..models.transaction import Transaction


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Concrete implementations (in-memory, MongoDB, ...) must provide:
    - `transaction()`: every write issued inside the block becomes visible
      together when the block exits normally, and none of them does when it
      raises. Nested blocks join the outer one.
    - `increment_item_counters()`: an atomic increment, never a
      read-then-write pair, so concurrent writers cannot lose updates.
    - Unique keys on ownerships (account, article) and on live memberships
      (account, target kind, target id), reported as `DuplicateRecordError`.
    - `TransactionConflictError` when a transaction lost a write conflict
      and may be retried as a whole.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        yield

    # Accounts
    @abstractmethod
    async def add_account(self, account: Account) -> Account: ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]: ...

    # Payment methods
    @abstractmethod
    async def add_payment_method(self, method: PaymentMethod) -> PaymentMethod: ...

    @abstractmethod
    async def get_payment_methods(self, account_id: str) -> Iterable[PaymentMethod]:
        """Newest first."""
        ...

    # Monetizable items
    @abstractmethod
    async def add_item(self, item: MonetizableItemBase) -> MonetizableItemBase: ...

    @abstractmethod
    async def get_item(
        self, kind: ItemKind, item_id: str
    ) -> Optional[MonetizableItemBase]: ...

    @abstractmethod
    async def list_items(self, kind: ItemKind) -> Iterable[MonetizableItemBase]: ...

    @abstractmethod
    async def increment_item_counters(
        self, kind: ItemKind, item_id: str, deltas: Mapping[str, int]
    ) -> None:
        """Atomically add `deltas` to the named counters of one item."""
        ...

    # Transactions
    @abstractmethod
    async def add_transaction(self, tx: Transaction) -> Transaction: ...

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...

    @abstractmethod
    async def get_transactions(
        self, account_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> Iterable[Transaction]:
        """Reverse chronological; ties resolve to the most recently recorded."""
        ...

    @abstractmethod
    async def count_transactions(self, account_id: str) -> int: ...

    @abstractmethod
    async def get_item_transactions(
        self, kind: ItemKind, item_id: str
    ) -> Iterable[Transaction]: ...

    @abstractmethod
    async def get_item_snapshot(
        self, kind: ItemKind, item_id: str
    ) -> Optional[Tuple[MonetizableItemBase, List[Transaction]]]:
        """
        The item and its transactions read from one consistent view: no
        commit lands between the two reads.
        """

    # Ownerships
    @abstractmethod
    async def add_ownership(self, ownership: Ownership) -> Ownership: ...

    @abstractmethod
    async def get_ownership(
        self, account_id: str, article_id: str
    ) -> Optional[Ownership]: ...

    @abstractmethod
    async def get_ownerships(self, account_id: str) -> Iterable[Ownership]: ...

    # Memberships
    @abstractmethod
    async def add_membership(self, membership: Membership) -> Membership: ...

    @abstractmethod
    async def get_live_membership(
        self, account_id: str, target_kind: ItemKind, target_id: str
    ) -> Optional[Membership]:
        """Membership with status trial or active, if any."""
        ...

    @abstractmethod
    async def get_memberships(self, account_id: str) -> Iterable[Membership]: ...

    # Notifications
    @abstractmethod
    async def add_notification_event(
        self, notification: NotificationEvent
    ) -> NotificationEvent: ...

    # Audit trail
    @abstractmethod
    async def add_ledger_event(self, event: LedgerEvent) -> LedgerEvent: ...
