from __future__ import annotations

from typing import Any, Dict, Optional

from ..db.base import BaseDBManager
from ..models.items import MonetizableItemBase
from ..models.notification import (
    NotificationEvent,
    NotificationStatus,
    NotificationType,
)
from ..models.transaction import Transaction
from ..notifications.queue import AsyncNotificationQueue


class NotificationService:
    """
    Stores notification events and dispatches them via a message queue.
    Called after a ledger operation commits.
    """

    def __init__(self, db: BaseDBManager, queue: AsyncNotificationQueue) -> None:
        self._db = db
        self._queue = queue

    async def notify_tip_received(
        self, item: MonetizableItemBase, tx: Transaction
    ) -> NotificationEvent:
        return await self._emit(
            item.recipient_id,
            NotificationType.TIP_RECEIVED,
            {
                "item_kind": item.item_kind.value,
                "item_id": item.id,
                "amount": tx.amount,
                "from_account_id": tx.account_id,
            },
            transaction_id=tx.id,
        )

    async def notify_article_purchased(
        self, item: MonetizableItemBase, tx: Transaction
    ) -> NotificationEvent:
        return await self._emit(
            item.recipient_id,
            NotificationType.ARTICLE_PURCHASED,
            {"article_id": item.id, "amount": tx.amount, "buyer_account_id": tx.account_id},
            transaction_id=tx.id,
        )

    async def notify_member_joined(
        self, item: MonetizableItemBase, tx: Transaction, trial: bool
    ) -> NotificationEvent:
        return await self._emit(
            item.recipient_id,
            NotificationType.MEMBER_JOINED,
            {
                "item_kind": item.item_kind.value,
                "item_id": item.id,
                "member_account_id": tx.account_id,
                "trial": trial,
            },
            transaction_id=tx.id,
        )

    async def notify_transaction_error(
        self, account_id: str, message: str, details: dict
    ) -> NotificationEvent:
        return await self._emit(
            account_id,
            NotificationType.TRANSACTION_ERROR,
            {"message": message, "details": details},
        )

    async def _emit(
        self,
        account_id: str,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        transaction_id: Optional[str] = None,
    ) -> NotificationEvent:
        event = NotificationEvent(
            account_id=account_id,
            notification_type=notification_type,
            transaction_id=transaction_id,
            payload=payload,
            status=NotificationStatus.PENDING,
        )
        event = await self._db.add_notification_event(event)

        await self._queue.enqueue(
            {
                "notification_id": event.id,
                "type": event.notification_type.value,
                "account_id": account_id,
                "payload": event.payload,
            }
        )
        return event
