from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow
from .items import ItemKind


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    TIP = "tip"
    SUBSCRIPTION = "subscription"


class Transaction(DBSerializableModel):
    """
    One monetary action. Immutable once recorded: the ledger never updates
    or deletes a transaction, and aggregate counters are derived from the
    non-voided ones.
    """

    collection_name: ClassVar[str] = "ledger_transactions"

    id: Optional[str] = Field(default=None)
    account_id: str
    kind: TransactionKind
    amount: int = Field(ge=0, description="Amount in minor currency units.")
    currency: str = "USD"
    description: str = ""
    item_kind: Optional[ItemKind] = None
    item_id: Optional[str] = None
    voided: bool = False
    created_at: datetime = Field(default_factory=utcnow)
