from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow
from .items import ItemKind


class Ownership(DBSerializableModel):
    """Account owns an article; at most one per (account, article)."""

    collection_name: ClassVar[str] = "ledger_ownerships"

    id: Optional[str] = Field(default=None)
    account_id: str
    article_id: str
    amount: int = Field(ge=0)
    purchased_at: datetime = Field(default_factory=utcnow)


class MembershipStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"


LIVE_MEMBERSHIP_STATUSES = (MembershipStatus.TRIAL, MembershipStatus.ACTIVE)


class Membership(DBSerializableModel):
    """
    Time-boxed membership of an account in a community or creator tier.
    At most one trial/active membership exists per (account, target).
    """

    collection_name: ClassVar[str] = "ledger_memberships"

    id: Optional[str] = Field(default=None)
    account_id: str
    target_kind: ItemKind
    target_id: str
    status: MembershipStatus
    trial_ends_at: Optional[datetime] = None
    current_period_end: datetime
    subscribed_at: datetime = Field(default_factory=utcnow)

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_MEMBERSHIP_STATUSES
