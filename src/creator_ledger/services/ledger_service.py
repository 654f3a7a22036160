from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from ..db.base import BaseDBManager
from ..errors import (
    DuplicateRecordError,
    InvalidAmountError,
    LedgerError,
    NotAuthenticatedError,
    PaymentMethodMissingError,
    UnsupportedTargetError,
)
from ..logging.ledger_logger import LedgerLogger
from ..models.base import PaginatedResult, utcnow
from ..models.items import Article, ItemKind, MonetizableItemBase
from ..models.membership import Membership, MembershipStatus, Ownership
from ..models.results import LedgerOutcome, LedgerResult
from ..models.transaction import Transaction, TransactionKind
from .catalog_service import CatalogService
from .notification_service import NotificationService
from .payment_service import PaymentService
from .retry import ConflictRetryPolicy


logger = logging.getLogger(__name__)


class LedgerService:
    """
    Records tips, article purchases and subscriptions.

    Each operation is one all-or-nothing unit: the transaction, its side
    record (ownership or membership) and the counter increment are written
    inside a single `transaction()` block. Counters only move through the
    manager's atomic increment. The ownership and live-membership checks
    double as idempotency guards, backed by unique keys in the store, so a
    retry after an unknown outcome never charges twice.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        catalog: CatalogService,
        payments: PaymentService,
        notifications: Optional[NotificationService] = None,
        retry_policy: Optional[ConflictRetryPolicy] = None,
        min_tip_amount: int = 5,
        trial_days: int = 7,
        period_days: int = 30,
        currency: str = "USD",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._catalog = catalog
        self._payments = payments
        self._notifications = notifications
        self._retry = retry_policy or ConflictRetryPolicy()
        self._min_tip_amount = min_tip_amount
        self._trial_days = trial_days
        self._period_days = period_days
        self._currency = currency
        self._clock = clock

    async def record_purchase(
        self,
        account_id: Optional[str],
        article_id: str,
        correlation_id: str | None = None,
    ) -> LedgerResult:
        return await self._run(
            "Purchase",
            account_id,
            correlation_id,
            {"article_id": article_id},
            lambda: self._record_purchase(account_id, article_id, correlation_id),
        )

    async def record_tip(
        self,
        account_id: Optional[str],
        item_kind: ItemKind | str,
        item_id: str,
        amount: int,
        correlation_id: str | None = None,
    ) -> LedgerResult:
        return await self._run(
            "Tip",
            account_id,
            correlation_id,
            {
                "item_kind": getattr(item_kind, "value", item_kind),
                "item_id": item_id,
                "amount": amount,
            },
            lambda: self._record_tip(account_id, item_kind, item_id, amount, correlation_id),
        )

    async def record_subscription(
        self,
        account_id: Optional[str],
        target_kind: ItemKind | str,
        target_id: str,
        trial: bool = False,
        correlation_id: str | None = None,
    ) -> LedgerResult:
        return await self._run(
            "Subscription",
            account_id,
            correlation_id,
            {
                "target_kind": getattr(target_kind, "value", target_kind),
                "target_id": target_id,
                "trial": trial,
            },
            lambda: self._record_subscription(
                account_id, target_kind, target_id, trial, correlation_id
            ),
        )

    async def get_history(
        self, account_id: Optional[str], limit: int = 50, offset: int = 0
    ) -> PaginatedResult:
        """The account's transactions, newest first."""
        account_id = self._require_account(account_id)
        items = list(await self._db.get_transactions(account_id, limit=limit, offset=offset))
        total = await self._db.count_transactions(account_id)
        return PaginatedResult(items=items, total=total, limit=limit, offset=offset)

    # Operations

    async def _record_purchase(
        self, account_id: Optional[str], article_id: str, correlation_id: str | None
    ) -> LedgerResult:
        account_id = self._require_account(account_id)
        article: Article = await self._catalog.require_item(ItemKind.ARTICLE, article_id)  # type: ignore[assignment]

        if await self._catalog.is_owned(account_id, article):
            return await self._already_owned(account_id, article)

        if not await self._payments.has_usable_method(account_id):
            raise PaymentMethodMissingError()

        now = self._clock()
        try:
            async with self._db.transaction():
                ownership = await self._db.add_ownership(
                    Ownership(
                        account_id=account_id,
                        article_id=article_id,
                        amount=article.price,
                        purchased_at=now,
                    )
                )
                tx = await self._db.add_transaction(
                    Transaction(
                        account_id=account_id,
                        kind=TransactionKind.PURCHASE,
                        amount=article.price,
                        currency=self._currency,
                        description=f"Purchased: {article.title}",
                        item_kind=ItemKind.ARTICLE,
                        item_id=article_id,
                        created_at=now,
                    )
                )
        except DuplicateRecordError:
            # A concurrent call for the same pair committed first
            return await self._already_owned(account_id, article)

        await self._audit(
            self._ledger.log_transaction,
            account_id=account_id,
            message="Article purchased",
            details={"article_id": article_id, "amount": tx.amount, "transaction_id": tx.id},
            correlation_id=correlation_id,
        )
        if self._notifications:
            await self._notify(self._notifications.notify_article_purchased(article, tx))

        return LedgerResult(
            outcome=LedgerOutcome.RECORDED,
            transaction=tx,
            ownership=ownership,
        )

    async def _record_tip(
        self,
        account_id: Optional[str],
        item_kind: ItemKind | str,
        item_id: str,
        amount: int,
        correlation_id: str | None,
    ) -> LedgerResult:
        account_id = self._require_account(account_id)
        self._validate_tip_amount(amount)
        item = await self._catalog.require_item(item_kind, item_id)
        if not item.tippable:
            raise UnsupportedTargetError(f"{item.item_kind.value} '{item_id}' cannot be tipped")

        deltas = {"tips_count": 1}
        if "tips_total_amount" in item.counter_fields:
            deltas["tips_total_amount"] = amount

        async with self._db.transaction():
            tx = await self._db.add_transaction(
                Transaction(
                    account_id=account_id,
                    kind=TransactionKind.TIP,
                    amount=amount,
                    currency=self._currency,
                    description=f"Tipped: {item.display_name}",
                    item_kind=item.item_kind,
                    item_id=item_id,
                    created_at=self._clock(),
                )
            )
            await self._db.increment_item_counters(item.item_kind, item_id, deltas)

        counters = await self._committed_counters(item)
        await self._audit(
            self._ledger.log_transaction,
            account_id=account_id,
            message="Tip recorded",
            details={
                "item_kind": item.item_kind.value,
                "item_id": item_id,
                "amount": amount,
                "transaction_id": tx.id,
                "counters": counters,
            },
            correlation_id=correlation_id,
        )
        if self._notifications:
            await self._notify(self._notifications.notify_tip_received(item, tx))

        return LedgerResult(outcome=LedgerOutcome.RECORDED, transaction=tx, counters=counters)

    async def _record_subscription(
        self,
        account_id: Optional[str],
        target_kind: ItemKind | str,
        target_id: str,
        trial: bool,
        correlation_id: str | None,
    ) -> LedgerResult:
        account_id = self._require_account(account_id)
        target = await self._catalog.require_item(target_kind, target_id)
        if not target.subscribable:
            raise UnsupportedTargetError(
                f"{target.item_kind.value} '{target_id}' does not take subscriptions"
            )
        if not getattr(target, "is_active", True):
            raise UnsupportedTargetError(f"{target.item_kind.value} '{target_id}' is not active")

        existing = await self._db.get_live_membership(account_id, target.item_kind, target_id)
        if existing is not None:
            return await self._already_subscribed(existing, target)

        now = self._clock()
        if trial:
            status = MembershipStatus.TRIAL
            period_end = now + timedelta(days=self._trial_days)
            trial_ends_at: Optional[datetime] = period_end
            amount = 0
        else:
            status = MembershipStatus.ACTIVE
            period_end = now + timedelta(days=self._period_days)
            trial_ends_at = None
            amount = getattr(target, "monthly_price")

        description = f"Subscribed to: {target.display_name}"
        if trial:
            description += " (Free Trial)"

        try:
            async with self._db.transaction():
                membership = await self._db.add_membership(
                    Membership(
                        account_id=account_id,
                        target_kind=target.item_kind,
                        target_id=target_id,
                        status=status,
                        trial_ends_at=trial_ends_at,
                        current_period_end=period_end,
                        subscribed_at=now,
                    )
                )
                tx = await self._db.add_transaction(
                    Transaction(
                        account_id=account_id,
                        kind=TransactionKind.SUBSCRIPTION,
                        amount=amount,
                        currency=self._currency,
                        description=description,
                        item_kind=target.item_kind,
                        item_id=target_id,
                        created_at=now,
                    )
                )
                await self._db.increment_item_counters(
                    target.item_kind, target_id, {"members_count": 1}
                )
        except DuplicateRecordError:
            existing = await self._db.get_live_membership(account_id, target.item_kind, target_id)
            return await self._already_subscribed(existing, target)

        counters = await self._committed_counters(target)
        await self._audit(
            self._ledger.log_transaction,
            account_id=account_id,
            message="Subscription recorded",
            details={
                "target_kind": target.item_kind.value,
                "target_id": target_id,
                "status": status.value,
                "amount": amount,
                "transaction_id": tx.id,
                "counters": counters,
            },
            correlation_id=correlation_id,
        )
        if self._notifications:
            await self._notify(self._notifications.notify_member_joined(target, tx, trial))

        return LedgerResult(
            outcome=LedgerOutcome.RECORDED,
            transaction=tx,
            membership=membership,
            counters=counters,
        )

    # Helpers

    async def _run(
        self,
        action: str,
        account_id: Optional[str],
        correlation_id: Optional[str],
        details: Dict[str, Any],
        operation: Callable[[], Awaitable[LedgerResult]],
    ) -> LedgerResult:
        try:
            return await self._retry.run(operation)
        except LedgerError as exc:
            if exc.context.account_id is None:
                exc.context.account_id = account_id
            if exc.context.correlation_id is None:
                exc.context.correlation_id = correlation_id
            await self._audit(
                self._ledger.log_error,
                message=f"{action} rejected",
                details={**details, "code": exc.code, "error": exc.message},
                account_id=account_id,
                correlation_id=correlation_id,
            )
            if account_id and self._notifications:
                await self._notify(
                    self._notifications.notify_transaction_error(
                        account_id, exc.message, {**details, "code": exc.code}
                    )
                )
            raise

    @staticmethod
    def _require_account(account_id: Optional[str]) -> str:
        if not account_id:
            raise NotAuthenticatedError()
        return account_id

    def _validate_tip_amount(self, amount: Any) -> None:
        minimum = max(self._min_tip_amount, 1)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < minimum:
            raise InvalidAmountError(amount, minimum)

    async def _committed_counters(self, item: MonetizableItemBase) -> Dict[str, int]:
        await self._catalog.invalidate(item.item_kind, item.id or "")
        fresh = await self._db.get_item(item.item_kind, item.id or "")
        return fresh.counters() if fresh is not None else {}

    async def _already_owned(self, account_id: str, article: Article) -> LedgerResult:
        ownership = await self._db.get_ownership(account_id, article.id or "")
        return LedgerResult(
            outcome=LedgerOutcome.ALREADY_OWNED,
            ownership=ownership,
            counters=article.counters(),
        )

    async def _already_subscribed(
        self, membership: Optional[Membership], target: MonetizableItemBase
    ) -> LedgerResult:
        fresh = await self._db.get_item(target.item_kind, target.id or "")
        return LedgerResult(
            outcome=LedgerOutcome.ALREADY_SUBSCRIBED,
            membership=membership,
            counters=(fresh or target).counters(),
        )

    @staticmethod
    async def _notify(notification: Awaitable[Any]) -> None:
        # The ledger operation has already committed at this point
        try:
            await notification
        except Exception:
            logger.exception("Failed to dispatch ledger notification")

    @staticmethod
    async def _audit(write: Callable[..., Awaitable[None]], **event: Any) -> None:
        # The outcome is already settled when this runs
        try:
            await write(**event)
        except Exception:
            logger.exception("Failed to write ledger audit event")
