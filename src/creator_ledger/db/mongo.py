from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from bson import ObjectId
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from .base import BaseDBManager
from ..errors import DuplicateRecordError, NotFoundError, TransactionConflictError
from ..models.account import Account, PaymentMethod
from ..models.base import DBSerializableModel
from ..models.items import ItemKind, MonetizableItemBase, model_for_kind, parse_item
from ..models.ledger import LedgerEvent
from ..models.membership import LIVE_MEMBERSHIP_STATUSES, Membership, Ownership
from ..models.notification import NotificationEvent
from ..models.transaction import Transaction


logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=DBSerializableModel)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are ObjectId hex strings stored as `_id` and mirrored in the `id`
    attribute of each model, so they sort in insertion order within a
    process. `transaction()` opens a client session with a snapshot-read
    multi-document transaction (requires a replica set); every call made
    inside the block runs in that session. Counters change through `$inc`,
    and unique indexes created by `ensure_indexes()` back the ownership and
    live-membership idempotency guards (the partial index on membership
    status needs MongoDB 6.0+).
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        commit_attempts: int = 3,
    ) -> None:
        self._db = database
        self._client = client if client is not None else database.client
        self._commit_attempts = commit_attempts
        self._session: ContextVar[Optional[AsyncIOMotorClientSession]] = ContextVar(
            f"mongo_session_{id(self)}", default=None
        )

    @classmethod
    def from_client_uri(cls, uri: str, db_name: str) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri, tz_aware=True)
        return cls(client[db_name], client)

    async def ensure_indexes(self) -> None:
        await self._db[Ownership.collection_name].create_indexes(
            [
                IndexModel(
                    [("account_id", ASCENDING), ("article_id", ASCENDING)],
                    unique=True,
                    name="uniq_account_article",
                )
            ]
        )
        await self._db[Membership.collection_name].create_indexes(
            [
                IndexModel(
                    [
                        ("account_id", ASCENDING),
                        ("target_kind", ASCENDING),
                        ("target_id", ASCENDING),
                    ],
                    unique=True,
                    name="uniq_live_membership",
                    partialFilterExpression={
                        "status": {"$in": [s.value for s in LIVE_MEMBERSHIP_STATUSES]}
                    },
                )
            ]
        )
        await self._db[Transaction.collection_name].create_indexes(
            [
                IndexModel([("account_id", ASCENDING), ("created_at", DESCENDING)]),
                IndexModel([("item_kind", ASCENDING), ("item_id", ASCENDING)]),
            ]
        )
        await self._db[PaymentMethod.collection_name].create_indexes(
            [IndexModel([("account_id", ASCENDING), ("created_at", DESCENDING)])]
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._session.get() is not None:
            yield
            return

        try:
            async with await self._client.start_session() as session:
                session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                )
                token = self._session.set(session)
                try:
                    yield
                except BaseException:
                    if session.in_transaction:
                        await session.abort_transaction()
                    raise
                finally:
                    self._session.reset(token)
                await self._commit(session)
        except PyMongoError as exc:
            # Aborted before commit: the whole operation may safely run again
            if exc.has_error_label("TransientTransactionError"):
                raise TransactionConflictError(str(exc)) from exc
            raise

    async def _commit(self, session: AsyncIOMotorClientSession) -> None:
        """
        Commit, retrying only the commit itself while its outcome is unknown.
        Re-running the operation there could apply it twice.
        """
        for attempt in range(1, self._commit_attempts + 1):
            try:
                await session.commit_transaction()
                return
            except PyMongoError as exc:
                if (
                    not exc.has_error_label("UnknownTransactionCommitResult")
                    or attempt == self._commit_attempts
                ):
                    raise
                logger.warning(
                    "Transaction commit result unknown, retrying commit",
                    extra={"attempt": attempt},
                )

    @property
    def _s(self) -> Optional[AsyncIOMotorClientSession]:
        return self._session.get()

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = str(ObjectId())
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        data["id"] = str(data.pop("_id", data.get("id")))
        return model_cls.model_validate(data)

    async def _insert_unique(self, model: TModel, key: Any) -> TModel:
        col = self._db[model.collection_name]
        data = self._prepare_insert(model)
        try:
            await col.insert_one(data, session=self._s)
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(model.collection_name, key) from exc
        return model

    async def _insert(self, model: TModel) -> TModel:
        col = self._db[model.collection_name]
        await col.insert_one(self._prepare_insert(model), session=self._s)
        return model

    # Accounts
    async def add_account(self, account: Account) -> Account:
        return await self._insert(account)

    async def get_account(self, account_id: str) -> Optional[Account]:
        doc = await self._db[Account.collection_name].find_one(
            {"_id": account_id}, session=self._s
        )
        return self._decode(Account, doc)

    # Payment methods
    async def add_payment_method(self, method: PaymentMethod) -> PaymentMethod:
        return await self._insert(method)

    async def get_payment_methods(self, account_id: str) -> Iterable[PaymentMethod]:
        cursor = (
            self._db[PaymentMethod.collection_name]
            .find({"account_id": account_id}, session=self._s)
            .sort("created_at", DESCENDING)
        )
        docs = await cursor.to_list(length=None)
        return [self._decode(PaymentMethod, d) for d in docs]  # type: ignore[misc]

    # Monetizable items
    async def add_item(self, item: MonetizableItemBase) -> MonetizableItemBase:
        return await self._insert(item)

    async def get_item(
        self, kind: ItemKind, item_id: str
    ) -> Optional[MonetizableItemBase]:
        col = self._db[model_for_kind(kind).collection_name]
        doc = await col.find_one({"_id": item_id}, session=self._s)
        if doc is None:
            return None
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return parse_item(data)

    async def list_items(self, kind: ItemKind) -> Iterable[MonetizableItemBase]:
        col = self._db[model_for_kind(kind).collection_name]
        docs = await col.find({}, session=self._s).to_list(length=None)
        items = []
        for doc in docs:
            data = dict(doc)
            data["id"] = str(data.pop("_id"))
            items.append(parse_item(data))
        return items

    async def increment_item_counters(
        self, kind: ItemKind, item_id: str, deltas: Mapping[str, int]
    ) -> None:
        model = model_for_kind(kind)
        unknown = set(deltas) - set(model.counter_fields)
        if unknown:
            raise ValueError(f"{ItemKind(kind).value} has no counters {sorted(unknown)}")
        result = await self._db[model.collection_name].update_one(
            {"_id": item_id}, {"$inc": dict(deltas)}, session=self._s
        )
        if result.matched_count == 0:
            raise NotFoundError(ItemKind(kind).value, item_id)

    # Transactions
    async def add_transaction(self, tx: Transaction) -> Transaction:
        return await self._insert(tx)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        doc = await self._db[Transaction.collection_name].find_one(
            {"_id": transaction_id}, session=self._s
        )
        return self._decode(Transaction, doc)

    async def get_transactions(
        self, account_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> Iterable[Transaction]:
        cursor = (
            self._db[Transaction.collection_name]
            .find({"account_id": account_id}, session=self._s)
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .skip(offset)
        )
        if limit is not None:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        return [self._decode(Transaction, d) for d in docs]  # type: ignore[misc]

    async def count_transactions(self, account_id: str) -> int:
        return await self._db[Transaction.collection_name].count_documents(
            {"account_id": account_id}, session=self._s
        )

    async def get_item_transactions(
        self, kind: ItemKind, item_id: str
    ) -> Iterable[Transaction]:
        cursor = self._db[Transaction.collection_name].find(
            {"item_kind": ItemKind(kind).value, "item_id": item_id}, session=self._s
        )
        docs = await cursor.to_list(length=None)
        return [self._decode(Transaction, d) for d in docs]  # type: ignore[misc]

    async def get_item_snapshot(
        self, kind: ItemKind, item_id: str
    ) -> Optional[Tuple[MonetizableItemBase, List[Transaction]]]:
        if self._s is None:
            async with self.transaction():
                return await self.get_item_snapshot(kind, item_id)
        item = await self.get_item(kind, item_id)
        if item is None:
            return None
        return item, list(await self.get_item_transactions(kind, item_id))

    # Ownerships
    async def add_ownership(self, ownership: Ownership) -> Ownership:
        return await self._insert_unique(
            ownership, (ownership.account_id, ownership.article_id)
        )

    async def get_ownership(
        self, account_id: str, article_id: str
    ) -> Optional[Ownership]:
        doc = await self._db[Ownership.collection_name].find_one(
            {"account_id": account_id, "article_id": article_id}, session=self._s
        )
        return self._decode(Ownership, doc)

    async def get_ownerships(self, account_id: str) -> Iterable[Ownership]:
        docs = await (
            self._db[Ownership.collection_name]
            .find({"account_id": account_id}, session=self._s)
            .to_list(length=None)
        )
        return [self._decode(Ownership, d) for d in docs]  # type: ignore[misc]

    # Memberships
    async def add_membership(self, membership: Membership) -> Membership:
        return await self._insert_unique(
            membership,
            (membership.account_id, membership.target_kind.value, membership.target_id),
        )

    async def get_live_membership(
        self, account_id: str, target_kind: ItemKind, target_id: str
    ) -> Optional[Membership]:
        doc = await self._db[Membership.collection_name].find_one(
            {
                "account_id": account_id,
                "target_kind": ItemKind(target_kind).value,
                "target_id": target_id,
                "status": {"$in": [s.value for s in LIVE_MEMBERSHIP_STATUSES]},
            },
            session=self._s,
        )
        return self._decode(Membership, doc)

    async def get_memberships(self, account_id: str) -> Iterable[Membership]:
        docs = await (
            self._db[Membership.collection_name]
            .find({"account_id": account_id}, session=self._s)
            .to_list(length=None)
        )
        return [self._decode(Membership, d) for d in docs]  # type: ignore[misc]

    # Notifications
    async def add_notification_event(
        self, notification: NotificationEvent
    ) -> NotificationEvent:
        return await self._insert(notification)

    # Audit trail
    async def add_ledger_event(self, event: LedgerEvent) -> LedgerEvent:
        return await self._insert(event)
