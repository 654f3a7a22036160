from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class Account(DBSerializableModel):
    """
    Identity that spends or receives money.
    Created by the external identity provider; the ledger only references it.
    """

    collection_name: ClassVar[str] = "ledger_accounts"

    id: Optional[str] = Field(default=None)
    display_name: str = ""
    avatar_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PaymentBrand(str, Enum):
    VISA = "visa"
    MASTERCARD = "mc"
    AMEX = "amex"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


class PaymentMethod(DBSerializableModel):
    collection_name: ClassVar[str] = "ledger_payment_methods"

    id: Optional[str] = Field(default=None)
    account_id: str
    brand: PaymentBrand
    last4: Optional[str] = Field(default=None, min_length=4, max_length=4)
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)
