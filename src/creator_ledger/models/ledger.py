from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class LedgerEventType(str, Enum):
    TRANSACTION = "transaction"  # a tip, purchase or subscription committed
    ERROR = "error"  # an operation was rejected and wrote nothing
    SYSTEM = "system"  # maintenance, e.g. a counter repair


class LedgerEvent(DBSerializableModel):
    """
    One audit-trail line about a money movement or its rejection.

    `details` carries the operation's identifiers (item kind and id, amount,
    transaction id) and, for committed tips and subscriptions, the counter
    values after the commit. Rows are never updated.
    """

    collection_name: ClassVar[str] = "ledger_audit_events"

    id: Optional[str] = Field(default=None)
    event_type: LedgerEventType
    account_id: Optional[str] = Field(
        default=None, description="Paying account; None for system events."
    )
    correlation_id: Optional[str] = Field(
        default=None,
        description="Request correlation id shared by the HTTP log lines of the same call.",
    )
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
