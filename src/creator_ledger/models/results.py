from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .membership import Membership, Ownership
from .transaction import Transaction


class LedgerOutcome(str, Enum):
    RECORDED = "recorded"
    ALREADY_OWNED = "already_owned"
    ALREADY_SUBSCRIBED = "already_subscribed"


class LedgerResult(BaseModel):
    """
    What a ledger operation committed. For the idempotent short-circuits
    `transaction` is None and nothing new was written.
    """

    outcome: LedgerOutcome
    transaction: Optional[Transaction] = None
    ownership: Optional[Ownership] = None
    membership: Optional[Membership] = None
    counters: Dict[str, int] = Field(default_factory=dict)

    @property
    def recorded(self) -> bool:
        return self.outcome == LedgerOutcome.RECORDED


class ReconciliationReport(BaseModel):
    item_kind: str
    item_id: str
    observed: Dict[str, int]
    expected: Dict[str, int]
    repaired: bool = False

    @property
    def diverged(self) -> bool:
        return self.observed != self.expected
