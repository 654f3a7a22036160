from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .base import BaseDBManager
from ..errors import DuplicateRecordError, NotFoundError
from ..models.account import Account, PaymentMethod
from ..models.items import ItemKind, MonetizableItemBase
from ..models.ledger import LedgerEvent
from ..models.membership import Membership, Ownership
from ..models.notification import NotificationEvent
from ..models.transaction import Transaction


Check = Callable[[], None]
Apply = Callable[[], None]


@dataclass
class _WriteBatch:
    ops: List[Tuple[Check, Apply]] = field(default_factory=list)


class InMemoryDBManager(BaseDBManager):
    """
    In-memory implementation used for tests and local development.

    Writes made inside `transaction()` are staged per task and applied in a
    single synchronous step on exit, after every staged unique-key and
    existence check passes. Nothing awaits between check and apply, so other
    coroutines observe either all of a transaction or none of it. Every call
    yields to the event loop first to behave like real I/O.
    """

    def __init__(self) -> None:
        self._accounts: Dict[str, Account] = {}
        self._payment_methods: List[PaymentMethod] = []
        self._items: Dict[Tuple[ItemKind, str], MonetizableItemBase] = {}
        self._transactions: List[Transaction] = []
        self._ownerships: Dict[Tuple[str, str], Ownership] = {}
        self._memberships: List[Membership] = []
        self._notifications: List[NotificationEvent] = []
        self._ledger: List[LedgerEvent] = []
        self._id_counter: int = 0
        self._batch: ContextVar[Optional[_WriteBatch]] = ContextVar(
            f"inmemory_batch_{id(self)}", default=None
        )

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    @staticmethod
    async def _io() -> None:
        await asyncio.sleep(0)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._batch.get() is not None:
            yield
            return

        batch = _WriteBatch()
        token = self._batch.set(batch)
        try:
            yield
        finally:
            self._batch.reset(token)
        await self._io()
        self._commit(batch)

    def _commit(self, batch: _WriteBatch) -> None:
        for check, _ in batch.ops:
            check()
        for _, apply in batch.ops:
            apply()

    def _write(self, apply: Apply, check: Check = lambda: None) -> None:
        batch = self._batch.get()
        if batch is None:
            check()
            apply()
        else:
            batch.ops.append((check, apply))

    # Accounts
    async def add_account(self, account: Account) -> Account:
        await self._io()
        if account.id is None:
            account.id = self._next_id()
        self._write(lambda: self._accounts.__setitem__(account.id, account))
        return account

    async def get_account(self, account_id: str) -> Optional[Account]:
        await self._io()
        return self._accounts.get(account_id)

    # Payment methods
    async def add_payment_method(self, method: PaymentMethod) -> PaymentMethod:
        await self._io()
        if method.id is None:
            method.id = self._next_id()
        self._write(lambda: self._payment_methods.append(method))
        return method

    async def get_payment_methods(self, account_id: str) -> Iterable[PaymentMethod]:
        await self._io()
        methods = [m for m in self._payment_methods if m.account_id == account_id]
        return list(reversed(methods))

    # Monetizable items
    async def add_item(self, item: MonetizableItemBase) -> MonetizableItemBase:
        await self._io()
        if item.id is None:
            item.id = self._next_id()
        key = (item.item_kind, item.id)
        self._write(lambda: self._items.__setitem__(key, item))
        return item

    async def get_item(
        self, kind: ItemKind, item_id: str
    ) -> Optional[MonetizableItemBase]:
        await self._io()
        item = self._items.get((ItemKind(kind), item_id))
        # Callers get a snapshot; counters only change through the manager
        return item.model_copy(deep=True) if item is not None else None

    async def list_items(self, kind: ItemKind) -> Iterable[MonetizableItemBase]:
        await self._io()
        return [
            item.model_copy(deep=True)
            for (item_kind, _), item in self._items.items()
            if item_kind == ItemKind(kind)
        ]

    def _require_item(self, kind: ItemKind, item_id: str) -> MonetizableItemBase:
        item = self._items.get((ItemKind(kind), item_id))
        if item is None:
            raise NotFoundError(ItemKind(kind).value, item_id)
        return item

    async def increment_item_counters(
        self, kind: ItemKind, item_id: str, deltas: Mapping[str, int]
    ) -> None:
        await self._io()
        deltas = dict(deltas)

        def check() -> None:
            item = self._require_item(kind, item_id)
            unknown = set(deltas) - set(item.counter_fields)
            if unknown:
                raise ValueError(f"{item.kind} has no counters {sorted(unknown)}")

        def apply() -> None:
            item = self._items[(ItemKind(kind), item_id)]
            for name, delta in deltas.items():
                setattr(item, name, getattr(item, name) + delta)

        self._write(apply, check)

    # Transactions
    async def add_transaction(self, tx: Transaction) -> Transaction:
        await self._io()
        if tx.id is None:
            tx.id = self._next_id()
        self._write(lambda: self._transactions.append(tx))
        return tx

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        await self._io()
        for tx in self._transactions:
            if tx.id == transaction_id:
                return tx
        return None

    async def get_transactions(
        self, account_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> Iterable[Transaction]:
        await self._io()
        indexed = [
            (i, t) for i, t in enumerate(self._transactions) if t.account_id == account_id
        ]
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        txs = [t for _, t in indexed]
        end = offset + limit if limit is not None else None
        return txs[offset:end]

    async def count_transactions(self, account_id: str) -> int:
        await self._io()
        return sum(1 for t in self._transactions if t.account_id == account_id)

    async def get_item_transactions(
        self, kind: ItemKind, item_id: str
    ) -> Iterable[Transaction]:
        await self._io()
        return [
            t
            for t in self._transactions
            if t.item_kind == ItemKind(kind) and t.item_id == item_id
        ]

    async def get_item_snapshot(
        self, kind: ItemKind, item_id: str
    ) -> Optional[Tuple[MonetizableItemBase, List[Transaction]]]:
        await self._io()
        # Both reads happen without yielding, so no commit can interleave
        item = self._items.get((ItemKind(kind), item_id))
        if item is None:
            return None
        txs = [
            t
            for t in self._transactions
            if t.item_kind == ItemKind(kind) and t.item_id == item_id
        ]
        return item.model_copy(deep=True), txs

    # Ownerships
    async def add_ownership(self, ownership: Ownership) -> Ownership:
        await self._io()
        if ownership.id is None:
            ownership.id = self._next_id()
        key = (ownership.account_id, ownership.article_id)

        def check() -> None:
            if key in self._ownerships:
                raise DuplicateRecordError(Ownership.collection_name, key)

        self._write(lambda: self._ownerships.__setitem__(key, ownership), check)
        return ownership

    async def get_ownership(
        self, account_id: str, article_id: str
    ) -> Optional[Ownership]:
        await self._io()
        return self._ownerships.get((account_id, article_id))

    async def get_ownerships(self, account_id: str) -> Iterable[Ownership]:
        await self._io()
        return [o for o in self._ownerships.values() if o.account_id == account_id]

    # Memberships
    def _find_live_membership(
        self, account_id: str, target_kind: ItemKind, target_id: str
    ) -> Optional[Membership]:
        for m in self._memberships:
            if (
                m.account_id == account_id
                and m.target_kind == ItemKind(target_kind)
                and m.target_id == target_id
                and m.is_live
            ):
                return m
        return None

    async def add_membership(self, membership: Membership) -> Membership:
        await self._io()
        if membership.id is None:
            membership.id = self._next_id()

        def check() -> None:
            if not membership.is_live:
                return
            key = (membership.account_id, membership.target_kind, membership.target_id)
            if self._find_live_membership(*key) is not None:
                raise DuplicateRecordError(Membership.collection_name, key)

        self._write(lambda: self._memberships.append(membership), check)
        return membership

    async def get_live_membership(
        self, account_id: str, target_kind: ItemKind, target_id: str
    ) -> Optional[Membership]:
        await self._io()
        return self._find_live_membership(account_id, target_kind, target_id)

    async def get_memberships(self, account_id: str) -> Iterable[Membership]:
        await self._io()
        return [m for m in self._memberships if m.account_id == account_id]

    # Notifications
    async def add_notification_event(
        self, notification: NotificationEvent
    ) -> NotificationEvent:
        await self._io()
        if notification.id is None:
            notification.id = self._next_id()
        self._write(lambda: self._notifications.append(notification))
        return notification

    async def get_notification_events(self, account_id: str) -> List[NotificationEvent]:
        await self._io()
        return [n for n in self._notifications if n.account_id == account_id]

    # Audit trail
    async def add_ledger_event(self, event: LedgerEvent) -> LedgerEvent:
        await self._io()
        if event.id is None:
            event.id = self._next_id()
        self._write(lambda: self._ledger.append(event))
        return event

    async def get_ledger_events(self) -> List[LedgerEvent]:
        await self._io()
        return list(self._ledger)
