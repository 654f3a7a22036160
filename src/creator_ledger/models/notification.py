from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class NotificationType(str, Enum):
    # To the creator / owner receiving money
    TIP_RECEIVED = "tip_received"
    ARTICLE_PURCHASED = "article_purchased"
    MEMBER_JOINED = "member_joined"
    # To the account whose operation was rejected
    TRANSACTION_ERROR = "transaction_error"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationEvent(DBSerializableModel):
    """
    A message for a creator or a paying account, stored before it is queued.
    Written only after the ledger operation it reports on has committed.
    """

    collection_name: ClassVar[str] = "ledger_notifications"

    id: Optional[str] = Field(default=None)
    account_id: str = Field(description="Recipient of the notification.")
    notification_type: NotificationType
    transaction_id: Optional[str] = Field(
        default=None, description="Ledger transaction being reported, if one committed."
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
